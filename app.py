# /// script
# requires-python = ">=3.12"
# dependencies = ["flask>=3.0", "pydantic>=2.0"]
# ///
"""HTTP API for the live game tracker.

Each tracking session wraps one :class:`~game_tracker.GameTracker` for one
team in one game.  Every committed change is published to the team's
game-state document and to the game's shared metadata, so the other side's
tracker and any spectators see it.

Mutating requests identify the user with the ``X-User-Id`` header; the
user must be allowed to track the session's team.

Game, team and user ids become document path segments, so they are
limited to letters, digits and ``_ . @ -`` and must start with a letter or
digit.

Usage:
    uv run app.py
"""

from __future__ import annotations

import json
import logging
import os
import queue
import re
import threading
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Iterator, Optional

from flask import Flask, Response, jsonify, request
from pydantic import ValidationError

from box_score import format_box_score, generate_box_score
from config import create_document_store, get_log_level
from data.document_store import DocumentStore, StoreError, Subscription
from game_sync import GameSync, SyncError, tracker_metadata
from game_tracker import GameTracker, TrackerError
from models import PlayRecord, Player, RunnerMoveRequest, UserProfile
from permissions import can_user_track_team
from play_resolver import PendingPlay, UnknownPlayTypeError, list_play_types
from rosters import RosterError, batting_order_for

logger = logging.getLogger("app")

# ---------------------------------------------------------------------------
# App setup
# ---------------------------------------------------------------------------

app = Flask(__name__)

SYNC: GameSync = GameSync(create_document_store())

# In-memory registries
USERS: dict[str, UserProfile] = {}
SESSIONS: dict[str, "TrackingSession"] = {}

SSE_KEEPALIVE_SECONDS = 30

_ID_PATTERN = re.compile(r"[A-Za-z0-9][A-Za-z0-9_.@-]*")


def init_sync(store: DocumentStore, season_id: str | None = None) -> GameSync:
    """Point the app at a different document store (used by tests)."""
    global SYNC
    SYNC = GameSync(store, season_id=season_id)
    SESSIONS.clear()
    return SYNC


@dataclass
class TrackingSession:
    """One user's tracker for one team in one game.

    Requests touch the tracker only inside :meth:`locked`.  Metadata
    callbacks can fire on another session's request thread, so they only
    record the opponent's score; it is applied the next time the session
    is locked.
    """

    session_id: str
    game_id: str
    team_id: str
    user_id: str
    tracker: GameTracker
    user_name: str = ""
    subscriptions: list[Subscription] = field(default_factory=list)
    lock: threading.RLock = field(default_factory=threading.RLock, repr=False)
    _incoming_lock: threading.Lock = field(default_factory=threading.Lock, repr=False)
    _incoming_opponent_score: Optional[int] = field(default=None, repr=False)

    @property
    def side(self) -> str:
        return "home" if self.tracker.state.tracked_team_is_home else "away"

    def note_opponent_score(self, runs: int) -> None:
        with self._incoming_lock:
            self._incoming_opponent_score = runs

    @contextmanager
    def locked(self) -> Iterator[GameTracker]:
        with self.lock:
            with self._incoming_lock:
                runs, self._incoming_opponent_score = self._incoming_opponent_score, None
            if runs is not None:
                self.tracker.set_opponent_score(runs)
            yield self.tracker

    def close(self) -> None:
        for sub in self.subscriptions:
            sub.unsubscribe()
        self.subscriptions = []


# ---------------------------------------------------------------------------
# Serialization helpers
# ---------------------------------------------------------------------------

def _pending_payload(pending: Optional[PendingPlay]) -> Optional[dict[str, Any]]:
    if pending is None:
        return None
    return {
        "play_type": pending.play.code,
        "label": pending.play.label,
        "batter": pending.batter,
        "bases": pending.bases.model_dump(),
        "runs": pending.runs,
        "outs": pending.outs,
        "warnings": list(pending.warnings),
    }


def _record_payload(record: Optional[PlayRecord]) -> Optional[dict[str, Any]]:
    return record.model_dump(mode="json") if record is not None else None


def _state_payload(session: TrackingSession) -> dict[str, Any]:
    tracker = session.tracker
    state = tracker.state
    history = state.play_history
    return {
        "session_id": session.session_id,
        "game_id": session.game_id,
        "team_id": session.team_id,
        "inning": tracker.display_inning,
        "half": tracker.current_half.value,
        "outs": state.outs,
        "bases": tracker.display_bases.model_dump(),
        "score": state.score,
        "opponent_score": state.opponent_score,
        "current_batter": tracker.current_batter.model_dump(),
        "on_deck_batter": tracker.on_deck_batter.model_dump(),
        "tracked_team_batting": state.tracked_team_batting,
        "is_home": state.tracked_team_is_home,
        "side_retired": tracker.side_retired,
        "game_active": state.game_active,
        "pending": _pending_payload(tracker.pending),
        "plays": len(history),
        "last_play": _record_payload(history[-1] if history else None),
    }


def _error(message: str, status: int, **extra: Any):
    return jsonify({"error": message, **extra}), status


def _validation_details(exc: ValidationError) -> list[str]:
    return [f"{e.get('loc', '?')}: {e.get('msg', '?')}" for e in exc.errors()]


def _invalid_id(*values: Any) -> bool:
    return any(not isinstance(v, str) or _ID_PATTERN.fullmatch(v) is None for v in values)


# ---------------------------------------------------------------------------
# Session lookup and authorization
# ---------------------------------------------------------------------------

def _current_user() -> Optional[UserProfile]:
    user_id = request.headers.get("X-User-Id", "")
    return USERS.get(user_id)


def _authorized_session(session_id: str):
    """Return ``(session, None)`` or ``(None, error_response)``."""
    session = SESSIONS.get(session_id)
    if session is None:
        return None, _error("Session not found", 404)
    if not can_user_track_team(_current_user(), session.team_id):
        return None, _error("Not allowed to track this team", 403)
    return session, None


def _publish(session: TrackingSession, include_opponent: bool = False) -> None:
    """Persist the session's team document and the shared metadata."""
    SYNC.publish_game_state(session.game_id, session.team_id, session.tracker)
    SYNC.publish_metadata(session.game_id,
                          tracker_metadata(session.tracker, include_opponent=include_opponent,
                                           tracker_name=session.user_name))


def _publish_and_respond(session: TrackingSession, include_opponent: bool = False,
                         **extra: Any):
    try:
        _publish(session, include_opponent=include_opponent)
    except StoreError as exc:
        logger.error("Publishing %s/%s failed: %s", session.game_id, session.team_id, exc)
        return _error(f"Sync failed: {exc}", 503, state=_state_payload(session))
    return jsonify({"state": _state_payload(session), **extra})


# ---------------------------------------------------------------------------
# Catalog and users
# ---------------------------------------------------------------------------

@app.route("/api/play-types")
def api_play_types():
    return jsonify([p.model_dump() for p in list_play_types()])


@app.route("/api/users", methods=["POST"])
def api_register_user():
    data = request.get_json(silent=True) or {}
    try:
        profile = UserProfile.model_validate(data)
    except ValidationError as exc:
        return _error("Invalid user profile", 400, details=_validation_details(exc))
    if _invalid_id(profile.user_id):
        return _error(f"Invalid userId: {profile.user_id!r}", 400)
    USERS[profile.user_id] = profile
    return jsonify(profile.model_dump(by_alias=True, mode="json")), 201


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------

@app.route("/api/sessions", methods=["POST"])
def api_create_session():
    data = request.get_json(silent=True) or {}
    game_id = data.get("gameId")
    team_id = data.get("teamId")
    if not game_id or not team_id:
        return _error("gameId and teamId are required", 400)
    if _invalid_id(game_id, team_id):
        return _error("Invalid gameId or teamId", 400)

    user = _current_user()
    if not can_user_track_team(user, team_id):
        return _error("Not allowed to track this team", 403)

    try:
        explicit_order = ([Player.model_validate(p) for p in data["battingOrder"]]
                          if data.get("battingOrder") else None)
    except ValidationError as exc:
        return _error(f"Invalid batting order: {exc}", 400)

    try:
        existing = SYNC.load_game_state(game_id, team_id) if data.get("resume") else None
    except SyncError as exc:
        return _error(str(exc), 400, details=exc.details)
    except StoreError as exc:
        return _error(f"Sync failed: {exc}", 503)

    # A resumed game keeps its persisted order; the roster only seeds new games.
    try:
        if existing is not None:
            order = explicit_order
            if not order and not existing.batting_order:
                order = batting_order_for(data.get("team", team_id))
            tracker = GameTracker.from_document(existing, order)
            tracker.team_id = team_id
        else:
            order = explicit_order or batting_order_for(data.get("team", team_id))
            tracker = GameTracker(order, team_id=team_id,
                                  tracked_team_is_home=bool(data.get("isHome", False)))
            tracker.start_game()
    except RosterError as exc:
        return _error(f"Invalid batting order: {exc}", 400)
    except TrackerError as exc:
        return _error(str(exc), 400)

    session = TrackingSession(
        session_id=uuid.uuid4().hex[:12],
        game_id=game_id,
        team_id=team_id,
        user_id=user.user_id,
        tracker=tracker,
        user_name=user.display_name or user.user_id,
    )
    SESSIONS[session.session_id] = session

    opponent_field = "away_score" if tracker.state.tracked_team_is_home else "home_score"

    def on_metadata(metadata) -> None:
        if metadata is not None:
            session.note_opponent_score(getattr(metadata, opponent_field))

    with session.locked():
        session.subscriptions.append(SYNC.subscribe_metadata(game_id, on_metadata))
        try:
            SYNC.update_presence(game_id, user.user_id, team_id,
                                 user_name=user.display_name, can_track=True)
            _publish(session)
        except StoreError as exc:
            return _error(f"Sync failed: {exc}", 503, state=_state_payload(session))
        logger.info("Session %s tracking %s in game %s", session.session_id, team_id, game_id)
        return jsonify({"session_id": session.session_id, "state": _state_payload(session)}), 201


@app.route("/api/sessions/<session_id>", methods=["DELETE"])
def api_close_session(session_id: str):
    session, error = _authorized_session(session_id)
    if error:
        return error
    SESSIONS.pop(session_id, None)
    session.close()
    try:
        SYNC.remove_presence(session.game_id, session.user_id)
        SYNC.publish_metadata(session.game_id, {f"{session.side}_has_tracker": False})
    except StoreError as exc:
        return _error(f"Sync failed: {exc}", 503)
    return jsonify({"closed": session_id})


@app.route("/api/sessions/<session_id>/state")
def api_session_state(session_id: str):
    session = SESSIONS.get(session_id)
    if session is None:
        return _error("Session not found", 404)
    with session.locked():
        return jsonify({"state": _state_payload(session)})


@app.route("/api/sessions/<session_id>/box-score")
def api_box_score(session_id: str):
    session = SESSIONS.get(session_id)
    if session is None:
        return _error("Session not found", 404)
    with session.locked() as tracker:
        box = generate_box_score(tracker.state.play_history, tracker.batting_order,
                                 team_name=session.team_id)
    if request.args.get("format") == "text":
        return Response(format_box_score(box), mimetype="text/plain")
    return jsonify(box)


# ---------------------------------------------------------------------------
# Tracking actions
# ---------------------------------------------------------------------------

@app.route("/api/sessions/<session_id>/plays", methods=["POST"])
def api_select_play(session_id: str):
    session, error = _authorized_session(session_id)
    if error:
        return error
    data = request.get_json(silent=True) or {}
    with session.locked() as tracker:
        try:
            result = tracker.select_play(data.get("playType", ""))
        except UnknownPlayTypeError as exc:
            return _error(str(exc), 400)
        if isinstance(result, PlayRecord):
            return _publish_and_respond(session, committed=_record_payload(result))
        return jsonify({"state": _state_payload(session), "accepted": result is not None})


@app.route("/api/sessions/<session_id>/runners", methods=["POST"])
def api_adjust_runner(session_id: str):
    session, error = _authorized_session(session_id)
    if error:
        return error
    try:
        move = RunnerMoveRequest.model_validate(request.get_json(silent=True) or {})
    except ValidationError as exc:
        return _error("Invalid runner command", 400, details=_validation_details(exc))
    with session.locked() as tracker:
        changed = tracker.adjust_runner(move.command)
        return jsonify({"state": _state_payload(session), "changed": changed})


@app.route("/api/sessions/<session_id>/confirm", methods=["POST"])
def api_confirm_play(session_id: str):
    session, error = _authorized_session(session_id)
    if error:
        return error
    with session.locked() as tracker:
        record = tracker.confirm_play()
        if record is None:
            return jsonify({"state": _state_payload(session), "committed": None})
        return _publish_and_respond(session, committed=_record_payload(record))


@app.route("/api/sessions/<session_id>/cancel", methods=["POST"])
def api_cancel_play(session_id: str):
    session, error = _authorized_session(session_id)
    if error:
        return error
    with session.locked() as tracker:
        tracker.cancel_play()
        return jsonify({"state": _state_payload(session)})


@app.route("/api/sessions/<session_id>/undo", methods=["POST"])
def api_undo(session_id: str):
    session, error = _authorized_session(session_id)
    if error:
        return error
    with session.locked() as tracker:
        record = tracker.undo()
        if record is None:
            return jsonify({"state": _state_payload(session), "undone": None})
        return _publish_and_respond(session, undone=_record_payload(record))


@app.route("/api/sessions/<session_id>/half-inning", methods=["POST"])
def api_advance_half_inning(session_id: str):
    session, error = _authorized_session(session_id)
    if error:
        return error
    with session.locked() as tracker:
        if not tracker.advance_half_inning():
            return jsonify({"state": _state_payload(session), "advanced": False})
        return _publish_and_respond(session, advanced=True)


@app.route("/api/sessions/<session_id>/opponent-score", methods=["POST"])
def api_opponent_score(session_id: str):
    session, error = _authorized_session(session_id)
    if error:
        return error
    data = request.get_json(silent=True) or {}
    with session.locked() as tracker:
        try:
            tracker.set_opponent_score(int(data.get("runs", -1)))
        except (TypeError, ValueError) as exc:
            return _error(f"Invalid opponent score: {exc}", 400)
        return _publish_and_respond(session, include_opponent=True)


@app.route("/api/sessions/<session_id>/end", methods=["POST"])
def api_end_game(session_id: str):
    session, error = _authorized_session(session_id)
    if error:
        return error
    with session.locked() as tracker:
        tracker.end_game()
        return _publish_and_respond(session)


# ---------------------------------------------------------------------------
# Game-level routes
# ---------------------------------------------------------------------------

@app.route("/api/games/<game_id>/metadata")
def api_game_metadata(game_id: str):
    if _invalid_id(game_id):
        return _error("Invalid gameId", 400)
    try:
        metadata = SYNC.get_metadata(game_id)
    except StoreError as exc:
        return _error(f"Sync failed: {exc}", 503)
    if metadata is None:
        return _error("No metadata for this game", 404)
    payload = metadata.model_dump(by_alias=True, mode="json")
    payload["live"] = SYNC.is_live(metadata)
    return jsonify(payload)


@app.route("/api/games/<game_id>/presence")
def api_game_presence(game_id: str):
    if _invalid_id(game_id):
        return _error("Invalid gameId", 400)
    try:
        users = SYNC.list_presence(game_id)
    except StoreError as exc:
        return _error(f"Sync failed: {exc}", 503)
    return jsonify([u.model_dump(by_alias=True) for u in users])


@app.route("/api/games/<game_id>/reset", methods=["POST"])
def api_reset_game(game_id: str):
    data = request.get_json(silent=True) or {}
    home_team_id = data.get("homeTeamId")
    away_team_id = data.get("awayTeamId")
    if not home_team_id or not away_team_id:
        return _error("homeTeamId and awayTeamId are required", 400)
    if _invalid_id(game_id, home_team_id, away_team_id):
        return _error("Invalid gameId, homeTeamId or awayTeamId", 400)
    user = _current_user()
    if not (can_user_track_team(user, home_team_id) and can_user_track_team(user, away_team_id)):
        return _error("Resetting a game requires tracking rights for both teams", 403)
    try:
        SYNC.reset_game(game_id, home_team_id, away_team_id)
    except StoreError as exc:
        return _error(f"Sync failed: {exc}", 503)
    for session_id, session in list(SESSIONS.items()):
        if session.game_id == game_id:
            session.close()
            SESSIONS.pop(session_id, None)
    return jsonify({"reset": game_id})


@app.route("/api/games/<game_id>/events")
def api_game_events(game_id: str):
    if _invalid_id(game_id):
        return _error("Invalid gameId", 400)
    q: queue.Queue = queue.Queue()

    def on_metadata(metadata) -> None:
        q.put(metadata.model_dump(by_alias=True, mode="json") if metadata else None)

    # Subscribed only once the stream is consumed; closing it unsubscribes.
    def generate():
        with SYNC.subscribe_metadata(game_id, on_metadata):
            while True:
                try:
                    msg = q.get(timeout=SSE_KEEPALIVE_SECONDS)
                except queue.Empty:
                    yield ":\n\n"
                    continue
                yield f"event: metadata\ndata: {json.dumps(msg)}\n\n"

    return Response(
        generate(),
        mimetype="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "X-Accel-Buffering": "no",
        },
    )


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    logging.basicConfig(
        level=get_log_level(),
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
    )
    port = int(os.environ.get("PORT", 5050))
    app.run(debug=True, host="0.0.0.0", port=port, threaded=True)
