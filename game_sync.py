# /// script
# requires-python = ">=3.12"
# dependencies = ["pydantic>=2.0"]
# ///
"""Real-time synchronization for dual-team game tracking.

Each side of a live game (home and away) runs its own tracker and owns a
private per-team document.  Both sides also write a shared metadata
document (inning, outs, scores, pitchers) that spectators subscribe to.

Document layout::

    seasons/{seasonId}/games/{gameId}/metadata/current
    seasons/{seasonId}/games/{gameId}/gameState/{teamId}
    seasons/{seasonId}/games/{gameId}/presence/{userId}

Failure semantics:

- Writes and one-shot reads propagate :class:`~data.document_store.StoreError`
  to the caller.  Nothing is retried here.
- Subscription callbacks never see an exception.  Read failures and
  malformed documents are logged and delivered as ``None``.
- Metadata writes from the two trackers are last-write-wins per field.
  ``gameStartedAt`` and ``lastScoreChange`` are stamped here, never by a
  tracker, and a ``final`` status holds until the game is reset.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, Optional

from pydantic import ValidationError

from config import get_live_window_seconds, get_season_id
from data.document_store import SERVER_TIMESTAMP, DocumentStore, Subscription
from game_tracker import GameTracker
from models import GameMetadata, GameStatus, Presence, TeamGameStateDoc

logger = logging.getLogger(__name__)

MetadataCallback = Callable[[Optional[GameMetadata]], None]
GameStateCallback = Callable[[Optional[TeamGameStateDoc]], None]
PresenceCallback = Callable[[Optional[list[Presence]]], None]

# Fields stamped with the server time by the sync layer.
STAMPED_FIELDS = frozenset({"last_updated", "game_started_at", "last_score_change"})

# Fields a tracker may merge into the shared metadata document.
METADATA_FIELDS: dict[str, str] = {
    name: info.alias or name for name, info in GameMetadata.model_fields.items()
    if name not in STAMPED_FIELDS
}

_SCORE_KEYS = ("homeScore", "awayScore")


class SyncError(Exception):
    """Raised when a stored document does not match the expected schema."""

    def __init__(self, message: str, path: str | None = None,
                 details: list[str] | None = None):
        self.path = path
        self.details = details or []
        super().__init__(message)


# ---------------------------------------------------------------------------
# Liveness
# ---------------------------------------------------------------------------

def is_game_live(
    metadata: GameMetadata | None,
    now: float | None = None,
    window_seconds: int | None = None,
) -> bool:
    """A game is live if it is not final and its metadata changed within the
    live window."""
    if metadata is None or metadata.last_updated is None:
        return False
    if metadata.status == GameStatus.FINAL:
        return False
    now = time.time() if now is None else now
    window = get_live_window_seconds() if window_seconds is None else window_seconds
    return metadata.last_updated > now - window


def tracker_metadata(
    tracker: GameTracker,
    include_opponent: bool = False,
    tracker_name: str | None = None,
) -> dict[str, Any]:
    """Shared metadata fields derived from one side's tracker.

    Only the tracked team's own score is included unless *include_opponent*
    is set, so the two trackers do not overwrite each other's runs.  When
    *tracker_name* is given the side is also flagged as tracked by that user.
    """
    state = tracker.state
    side, other = ("home", "away") if state.tracked_team_is_home else ("away", "home")
    fields: dict[str, Any] = {
        "status": GameStatus.FINAL if tracker.ended else GameStatus.IN_PROGRESS,
        "inning": tracker.display_inning,
        "outs": 0 if tracker.side_retired else state.outs,
        "side_retired": tracker.side_retired,
        "half_inning": tracker.current_half,
        f"{side}_score": state.score,
    }
    if include_opponent:
        fields[f"{other}_score"] = state.opponent_score
    if tracker_name is not None:
        fields[f"{side}_has_tracker"] = True
        fields[f"{side}_tracker_name"] = tracker_name
    return fields


def _validation_details(exc: ValidationError) -> list[str]:
    return [f"{e.get('loc', '?')}: {e.get('msg', '?')}" for e in exc.errors()]


# ---------------------------------------------------------------------------
# Sync client
# ---------------------------------------------------------------------------

class GameSync:
    """Reads, writes and watches the documents of live games in one season."""

    def __init__(
        self,
        store: DocumentStore,
        season_id: str | None = None,
        live_window_seconds: int | None = None,
    ):
        self.store = store
        self.season_id = season_id or get_season_id()
        self.live_window_seconds = (get_live_window_seconds()
                                    if live_window_seconds is None else live_window_seconds)

    # -- paths -------------------------------------------------------------

    def _game_root(self, game_id: str) -> str:
        return f"seasons/{self.season_id}/games/{game_id}"

    def metadata_path(self, game_id: str) -> str:
        return f"{self._game_root(game_id)}/metadata/current"

    def game_state_path(self, game_id: str, team_id: str) -> str:
        return f"{self._game_root(game_id)}/gameState/{team_id}"

    def presence_collection(self, game_id: str) -> str:
        return f"{self._game_root(game_id)}/presence"

    def presence_path(self, game_id: str, user_id: str) -> str:
        return f"{self.presence_collection(game_id)}/{user_id}"

    # -- per-team game state -----------------------------------------------

    def publish_game_state(
        self,
        game_id: str,
        team_id: str,
        state: TeamGameStateDoc | GameTracker,
    ) -> TeamGameStateDoc:
        """Overwrite a team's tracking document and stamp the update time."""
        doc = state.to_document() if isinstance(state, GameTracker) else state
        payload = doc.model_dump(by_alias=True, mode="json")
        payload["teamId"] = team_id
        payload["lastUpdated"] = SERVER_TIMESTAMP
        stored = self.store.set(self.game_state_path(game_id, team_id), payload)
        logger.debug("Published game state for %s/%s (%d plays)",
                     game_id, team_id, len(doc.plays))
        return TeamGameStateDoc.model_validate(stored)

    def load_game_state(self, game_id: str, team_id: str) -> TeamGameStateDoc | None:
        path = self.game_state_path(game_id, team_id)
        raw = self.store.get(path)
        if raw is None:
            return None
        try:
            return TeamGameStateDoc.model_validate(raw)
        except ValidationError as exc:
            raise SyncError(f"Invalid game state document at {path}", path=path,
                            details=_validation_details(exc)) from exc

    def subscribe_game_state(
        self,
        game_id: str,
        team_id: str,
        callback: GameStateCallback,
    ) -> Subscription:
        """Watch a team's document.  Missing documents arrive as defaults."""
        path = self.game_state_path(game_id, team_id)

        def on_next(raw: dict[str, Any] | None) -> None:
            if raw is None:
                callback(TeamGameStateDoc(team_id=team_id))
                return
            try:
                doc = TeamGameStateDoc.model_validate(raw)
            except ValidationError as exc:
                logger.warning("Ignoring malformed game state at %s: %s", path, exc)
                callback(None)
                return
            callback(doc)

        return self.store.watch(path, on_next, self._error_handler(path, callback))

    # -- shared metadata ---------------------------------------------------

    def _normalize_metadata(self, partial: dict[str, Any] | GameMetadata) -> dict[str, Any]:
        if isinstance(partial, GameMetadata):
            return partial.model_dump(by_alias=True, mode="json", exclude=set(STAMPED_FIELDS))
        aliases = set(METADATA_FIELDS.values())
        normalized: dict[str, Any] = {}
        unknown: list[str] = []
        for key, value in partial.items():
            if key in METADATA_FIELDS:
                normalized[METADATA_FIELDS[key]] = value
            elif key in aliases:
                normalized[key] = value
            else:
                unknown.append(key)
        if unknown:
            raise ValueError(f"Unknown metadata field(s): {', '.join(sorted(unknown))}")
        return normalized

    def publish_metadata(
        self,
        game_id: str,
        partial: dict[str, Any] | GameMetadata,
    ) -> GameMetadata:
        """Merge shared fields into the game's metadata document.

        ``lastScoreChange`` is stamped when either score changes and
        ``gameStartedAt`` the first time the game goes in progress.  A final
        game is not moved back to in progress.

        Raises:
            ValueError: On unknown field names or out-of-range values.
            StoreError: If the write fails.
        """
        path = self.metadata_path(game_id)
        update = self._normalize_metadata(partial)
        current = self.store.get(path) or {}
        if (current.get("status") == GameStatus.FINAL.value
                and update.get("status") == GameStatus.IN_PROGRESS.value):
            del update["status"]
        try:
            candidate = GameMetadata.model_validate({**current, **update})
        except ValidationError as exc:
            raise ValueError(
                f"Invalid metadata update: {'; '.join(_validation_details(exc))}"
            ) from exc
        dumped = candidate.model_dump(by_alias=True, mode="json")
        payload = {key: dumped[key] for key in update}
        payload["lastUpdated"] = SERVER_TIMESTAMP
        if any(key in payload and payload[key] != current.get(key, 0) for key in _SCORE_KEYS):
            payload["lastScoreChange"] = SERVER_TIMESTAMP
        if (dumped["status"] == GameStatus.IN_PROGRESS.value
                and current.get("gameStartedAt") is None):
            payload["gameStartedAt"] = SERVER_TIMESTAMP
            logger.info("Game %s started", game_id)
        stored = self.store.merge(path, payload)
        return GameMetadata.model_validate(stored)

    def get_metadata(self, game_id: str) -> GameMetadata | None:
        path = self.metadata_path(game_id)
        raw = self.store.get(path)
        if raw is None:
            return None
        try:
            return GameMetadata.model_validate(raw)
        except ValidationError as exc:
            raise SyncError(f"Invalid metadata document at {path}", path=path,
                            details=_validation_details(exc)) from exc

    def subscribe_metadata(self, game_id: str, callback: MetadataCallback) -> Subscription:
        """Watch shared metadata.  A missing document arrives as defaults."""
        path = self.metadata_path(game_id)

        def on_next(raw: dict[str, Any] | None) -> None:
            if raw is None:
                callback(GameMetadata())
                return
            try:
                metadata = GameMetadata.model_validate(raw)
            except ValidationError as exc:
                logger.warning("Ignoring malformed metadata at %s: %s", path, exc)
                callback(None)
                return
            callback(metadata)

        return self.store.watch(path, on_next, self._error_handler(path, callback))

    def is_live(self, metadata: GameMetadata | None, now: float | None = None) -> bool:
        return is_game_live(metadata, now=now, window_seconds=self.live_window_seconds)

    # -- reset -------------------------------------------------------------

    def reset_game(self, game_id: str, home_team_id: str, away_team_id: str) -> None:
        """Clear both teams' tracking documents and the shared metadata.

        Every subscriber of this game sees the reset.  Presence documents
        are left alone.
        """
        logger.warning("Resetting game %s (%s vs %s)", game_id, home_team_id, away_team_id)
        for team_id, is_home in ((home_team_id, True), (away_team_id, False)):
            self.publish_game_state(
                game_id, team_id,
                TeamGameStateDoc(team_id=team_id, tracked_team_is_home=is_home,
                                 tracked_team_batting=not is_home),
            )
        payload = GameMetadata().model_dump(by_alias=True, mode="json")
        payload["lastUpdated"] = SERVER_TIMESTAMP
        self.store.set(self.metadata_path(game_id), payload)

    # -- presence ----------------------------------------------------------

    def update_presence(
        self,
        game_id: str,
        user_id: str,
        team_id: str,
        user_name: str = "",
        can_track: bool = False,
    ) -> Presence:
        """Write or refresh a user's heartbeat for this game."""
        payload = {
            "userId": user_id,
            "teamId": team_id,
            "userName": user_name,
            "role": "tracker" if can_track else "viewer",
            "lastSeen": SERVER_TIMESTAMP,
        }
        stored = self.store.set(self.presence_path(game_id, user_id), payload)
        return Presence.model_validate(stored)

    def remove_presence(self, game_id: str, user_id: str) -> None:
        self.store.delete(self.presence_path(game_id, user_id))

    def list_presence(self, game_id: str) -> list[Presence]:
        return [Presence.model_validate(d) for d in
                self.store.list_collection(self.presence_collection(game_id))]

    def subscribe_presence(self, game_id: str, callback: PresenceCallback) -> Subscription:
        path = self.presence_collection(game_id)

        def on_next(raw_docs: list[dict[str, Any]]) -> None:
            users: list[Presence] = []
            for raw in raw_docs:
                try:
                    users.append(Presence.model_validate(raw))
                except ValidationError as exc:
                    logger.warning("Skipping malformed presence under %s: %s", path, exc)
            callback(users)

        return self.store.watch_collection(path, on_next, self._error_handler(path, callback))

    # -- helpers -----------------------------------------------------------

    @staticmethod
    def _error_handler(path: str, callback: Callable[[Any], None]) -> Callable[[Exception], None]:
        def on_error(exc: Exception) -> None:
            logger.warning("Subscription to %s failed: %s", path, exc)
            callback(None)
        return on_error
