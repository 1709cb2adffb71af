# /// script
# requires-python = ">=3.12"
# dependencies = ["flask>=3.0", "pytest>=7.0", "pydantic>=2.0"]
# ///
"""Tests for the tracker HTTP API.

Validates:
  1. Users and tracking permissions (403 for non-trackers)
  2. Session lifecycle, including resume from a persisted document
  3. Play selection, runner adjustment, confirm, cancel and undo
  4. Shared metadata and opponent score between two trackers
  5. Game reset and presence
  6. SSE endpoint streams the current metadata first
  7. Ids that cannot be document path segments are rejected
"""

import json
import sys
import threading
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

import pytest

import app as app_module
from app import app, USERS, SESSIONS, init_sync
from data.document_store import MemoryDocumentStore


ORDER = [{"name": "P1", "number": "1"}, {"name": "P2", "number": "2"}, {"name": "P3", "number": "3"}]
CUSTOM_ORDER = [{"name": "X"}, {"name": "Y"}, {"name": "Z"}]

ADMIN = {"X-User-Id": "admin"}
CAPTAIN = {"X-User-Id": "captain"}
PLAYER = {"X-User-Id": "player"}


@pytest.fixture
def client():
    init_sync(MemoryDocumentStore(), season_id="test")
    USERS.clear()
    app.config["TESTING"] = True
    with app.test_client() as c:
        c.post("/api/users", json={"userId": "admin", "displayName": "Admin", "userRole": "admin"})
        c.post("/api/users", json={
            "userId": "captain",
            "displayName": "Cap",
            "teamRoles": {"green": {"role": "captain"}},
        })
        c.post("/api/users", json={"userId": "player", "userRole": "player"})
        yield c
    for session in list(SESSIONS.values()):
        session.close()
    SESSIONS.clear()


def _start(client, team_id="green", headers=CAPTAIN, **extra):
    body = {"gameId": "g1", "teamId": team_id, "battingOrder": ORDER, **extra}
    resp = client.post("/api/sessions", json=body, headers=headers)
    assert resp.status_code == 201, resp.get_json()
    return resp.get_json()["session_id"]


def _play(client, session_id, code, headers=CAPTAIN):
    resp = client.post(f"/api/sessions/{session_id}/plays", json={"playType": code}, headers=headers)
    assert resp.status_code == 200
    if "committed" in resp.get_json():
        return resp.get_json()
    return client.post(f"/api/sessions/{session_id}/confirm", headers=headers).get_json()


# -----------------------------------------------------------------------
# Catalog and users
# -----------------------------------------------------------------------


class TestCatalogAndUsers:
    def test_play_types(self, client):
        data = client.get("/api/play-types").get_json()
        assert len(data) == 12
        assert {"code": "strikeout", "label": "K"}.items() <= data[5].items()

    def test_register_user_requires_id(self, client):
        resp = client.post("/api/users", json={"displayName": "Nobody"})
        assert resp.status_code == 400
        assert resp.get_json()["details"]


# -----------------------------------------------------------------------
# Sessions
# -----------------------------------------------------------------------


class TestSessions:
    def test_requires_ids(self, client):
        resp = client.post("/api/sessions", json={"gameId": "g1"}, headers=CAPTAIN)
        assert resp.status_code == 400

    def test_player_cannot_track(self, client):
        resp = client.post("/api/sessions", json={"gameId": "g1", "teamId": "green"}, headers=PLAYER)
        assert resp.status_code == 403

    def test_captain_limited_to_own_team(self, client):
        resp = client.post("/api/sessions", json={"gameId": "g1", "teamId": "gold"}, headers=CAPTAIN)
        assert resp.status_code == 403

    def test_unknown_user(self, client):
        resp = client.post("/api/sessions", json={"gameId": "g1", "teamId": "green"})
        assert resp.status_code == 403

    def test_create_session(self, client):
        resp = client.post("/api/sessions", json={"gameId": "g1", "teamId": "green", "battingOrder": ORDER},
                           headers=CAPTAIN)
        state = resp.get_json()["state"]
        assert state["inning"] == 1
        assert state["half"] == "TOP"
        assert state["current_batter"]["name"] == "P1"
        assert state["on_deck_batter"]["name"] == "P2"
        assert state["tracked_team_batting"]

    def test_roster_batting_order(self, client):
        session_id = _start(client, battingOrder=None, team="Green")
        state = client.get(f"/api/sessions/{session_id}/state").get_json()["state"]
        assert state["current_batter"]["name"] == "Matt Leonardelli"

    def test_unknown_roster(self, client):
        resp = client.post("/api/sessions", json={"gameId": "g1", "teamId": "green", "team": "Purple"},
                           headers=CAPTAIN)
        assert resp.status_code == 400

    def test_presence_and_close(self, client):
        session_id = _start(client)
        presence = client.get("/api/games/g1/presence").get_json()
        assert presence[0]["userId"] == "captain"
        assert presence[0]["role"] == "tracker"
        resp = client.delete(f"/api/sessions/{session_id}", headers=CAPTAIN)
        assert resp.status_code == 200
        assert client.get("/api/games/g1/presence").get_json() == []
        assert client.get(f"/api/sessions/{session_id}/state").status_code == 404

    def test_resume(self, client):
        session_id = _start(client)
        _play(client, session_id, "single")
        client.delete(f"/api/sessions/{session_id}", headers=CAPTAIN)
        resumed = _start(client, resume=True)
        state = client.get(f"/api/sessions/{resumed}/state").get_json()["state"]
        assert state["plays"] == 1
        assert state["bases"]["first"] == "P1"
        assert state["current_batter"]["name"] == "P2"

    def test_resume_keeps_persisted_order_over_roster(self, client):
        session_id = _start(client, battingOrder=CUSTOM_ORDER, team="Green")
        _play(client, session_id, "single")
        client.delete(f"/api/sessions/{session_id}", headers=CAPTAIN)
        resumed = _start(client, battingOrder=None, team="Green", resume=True)
        state = client.get(f"/api/sessions/{resumed}/state").get_json()["state"]
        assert state["current_batter"]["name"] == "Y"
        assert state["bases"]["first"] == "X"

    def test_resume_team_without_roster(self, client):
        session_id = _start(client, team_id="team-42", headers=ADMIN, battingOrder=CUSTOM_ORDER)
        _play(client, session_id, "single", headers=ADMIN)
        client.delete(f"/api/sessions/{session_id}", headers=ADMIN)
        resp = client.post("/api/sessions", json={"gameId": "g1", "teamId": "team-42", "resume": True},
                           headers=ADMIN)
        assert resp.status_code == 201, resp.get_json()
        assert resp.get_json()["state"]["current_batter"]["name"] == "Y"

    def test_resume_before_first_play_keeps_side_and_inning(self, client):
        session_id = _start(client, team_id="gold", headers=ADMIN, isHome=True)
        data = client.post(f"/api/sessions/{session_id}/half-inning", headers=ADMIN).get_json()
        assert data["advanced"]
        client.delete(f"/api/sessions/{session_id}", headers=ADMIN)
        resumed = _start(client, team_id="gold", headers=ADMIN, resume=True)
        state = client.get(f"/api/sessions/{resumed}/state").get_json()["state"]
        assert state["plays"] == 0
        assert state["is_home"]
        assert state["tracked_team_batting"]
        assert (state["inning"], state["half"]) == (1, "BOTTOM")

    def test_resume_retired_side(self, client):
        session_id = _start(client)
        for _ in range(3):
            _play(client, session_id, "strikeout")
        assert app_module.SYNC.load_game_state("g1", "green").outs == 0
        client.delete(f"/api/sessions/{session_id}", headers=CAPTAIN)
        resumed = _start(client, resume=True)
        state = client.get(f"/api/sessions/{resumed}/state").get_json()["state"]
        assert state["side_retired"]
        data = client.post(f"/api/sessions/{resumed}/half-inning", headers=CAPTAIN).get_json()
        assert data["advanced"]

    def test_unknown_session(self, client):
        resp = client.post("/api/sessions/nope/plays", json={"playType": "single"}, headers=CAPTAIN)
        assert resp.status_code == 404


# -----------------------------------------------------------------------
# Tracking actions
# -----------------------------------------------------------------------


class TestTracking:
    def test_select_then_confirm(self, client):
        session_id = _start(client)
        resp = client.post(f"/api/sessions/{session_id}/plays", json={"playType": "double"}, headers=CAPTAIN)
        data = resp.get_json()
        assert data["accepted"]
        assert data["state"]["pending"]["bases"]["second"] == "P1"
        data = client.post(f"/api/sessions/{session_id}/confirm", headers=CAPTAIN).get_json()
        assert data["committed"]["play_label"] == "2B"
        assert data["state"]["pending"] is None
        assert data["state"]["current_batter"]["name"] == "P2"

    def test_strikeout_commits_immediately(self, client):
        session_id = _start(client)
        data = client.post(f"/api/sessions/{session_id}/plays", json={"playType": "strikeout"},
                           headers=CAPTAIN).get_json()
        assert data["committed"]["play_type"] == "strikeout"
        assert data["state"]["outs"] == 1

    def test_unknown_play_type(self, client):
        session_id = _start(client)
        resp = client.post(f"/api/sessions/{session_id}/plays", json={"playType": "bunt"}, headers=CAPTAIN)
        assert resp.status_code == 400

    def test_other_user_forbidden(self, client):
        session_id = _start(client)
        resp = client.post(f"/api/sessions/{session_id}/plays", json={"playType": "single"}, headers=PLAYER)
        assert resp.status_code == 403

    def test_runner_command(self, client):
        session_id = _start(client)
        _play(client, session_id, "single")
        client.post(f"/api/sessions/{session_id}/plays", json={"playType": "groundout"}, headers=CAPTAIN)
        resp = client.post(f"/api/sessions/{session_id}/runners",
                           json={"command": {"kind": "advance", "base": "first"}}, headers=CAPTAIN)
        data = resp.get_json()
        assert data["changed"]
        assert data["state"]["bases"] == {"first": None, "second": "P1", "third": None}

    def test_invalid_runner_command(self, client):
        session_id = _start(client)
        resp = client.post(f"/api/sessions/{session_id}/runners",
                           json={"command": {"kind": "teleport"}}, headers=CAPTAIN)
        assert resp.status_code == 400
        assert resp.get_json()["details"]

    def test_runner_command_without_pending(self, client):
        session_id = _start(client)
        resp = client.post(f"/api/sessions/{session_id}/runners",
                           json={"command": {"kind": "remove", "base": "first"}}, headers=CAPTAIN)
        assert not resp.get_json()["changed"]

    def test_cancel(self, client):
        session_id = _start(client)
        client.post(f"/api/sessions/{session_id}/plays", json={"playType": "walk"}, headers=CAPTAIN)
        data = client.post(f"/api/sessions/{session_id}/cancel", headers=CAPTAIN).get_json()
        assert data["state"]["pending"] is None
        assert data["state"]["bases"]["first"] is None

    def test_undo(self, client):
        session_id = _start(client)
        _play(client, session_id, "homerun")
        data = client.post(f"/api/sessions/{session_id}/undo", headers=CAPTAIN).get_json()
        assert data["undone"]["play_type"] == "homerun"
        assert data["state"]["score"] == 0
        meta = client.get("/api/games/g1/metadata").get_json()
        assert meta["awayScore"] == 0

    def test_undo_empty_history(self, client):
        session_id = _start(client)
        data = client.post(f"/api/sessions/{session_id}/undo", headers=CAPTAIN).get_json()
        assert data["undone"] is None

    def test_half_inning(self, client):
        session_id = _start(client)
        resp = client.post(f"/api/sessions/{session_id}/half-inning", headers=CAPTAIN)
        assert not resp.get_json()["advanced"]
        for _ in range(3):
            _play(client, session_id, "strikeout")
        data = client.post(f"/api/sessions/{session_id}/half-inning", headers=CAPTAIN).get_json()
        assert data["advanced"]
        assert data["state"]["half"] == "BOTTOM"
        assert client.get("/api/games/g1/metadata").get_json()["halfInning"] == "BOTTOM"

    def test_end_game(self, client):
        session_id = _start(client)
        data = client.post(f"/api/sessions/{session_id}/end", headers=CAPTAIN).get_json()
        assert not data["state"]["game_active"]
        data = client.post(f"/api/sessions/{session_id}/plays", json={"playType": "single"},
                           headers=CAPTAIN).get_json()
        assert not data["accepted"]

    def test_box_score(self, client):
        session_id = _start(client)
        _play(client, session_id, "triple")
        box = client.get(f"/api/sessions/{session_id}/box-score").get_json()
        assert box["total_hits"] == 1
        resp = client.get(f"/api/sessions/{session_id}/box-score?format=text")
        assert resp.mimetype == "text/plain"
        assert b"P1" in resp.data


# -----------------------------------------------------------------------
# Two trackers sharing one game
# -----------------------------------------------------------------------


class TestSharedGame:
    def test_metadata_live(self, client):
        session_id = _start(client)
        _play(client, session_id, "homerun")
        meta = client.get("/api/games/g1/metadata").get_json()
        assert meta["awayScore"] == 1
        assert meta["live"]

    def test_metadata_missing(self, client):
        assert client.get("/api/games/none/metadata").status_code == 404

    def test_metadata_status_and_tracker_flags(self, client):
        session_id = _start(client)
        meta = client.get("/api/games/g1/metadata").get_json()
        assert meta["status"] == "in_progress"
        assert meta["awayHasTracker"] and meta["awayTrackerName"] == "Cap"
        assert not meta["homeHasTracker"]
        assert meta["gameStartedAt"] is not None
        assert meta["lastScoreChange"] is None

        _play(client, session_id, "homerun")
        assert client.get("/api/games/g1/metadata").get_json()["lastScoreChange"] is not None

        client.post(f"/api/sessions/{session_id}/end", headers=CAPTAIN)
        meta = client.get("/api/games/g1/metadata").get_json()
        assert meta["status"] == "final"
        assert not meta["live"]

        client.delete(f"/api/sessions/{session_id}", headers=CAPTAIN)
        meta = client.get("/api/games/g1/metadata").get_json()
        assert not meta["awayHasTracker"]
        assert meta["status"] == "final"

    def test_opponent_score_applied_when_session_next_used(self, client):
        session_id = _start(client)
        session = SESSIONS[session_id]
        app_module.SYNC.publish_metadata("g1", {"homeScore": 4})
        assert session.tracker.state.opponent_score == 0
        state = client.get(f"/api/sessions/{session_id}/state").get_json()["state"]
        assert state["opponent_score"] == 4

    def test_metadata_callback_does_not_wait_for_busy_session(self, client):
        session_id = _start(client)
        session = SESSIONS[session_id]
        held, release = threading.Event(), threading.Event()

        def hold_session():
            with session.lock:
                held.set()
                release.wait(5)

        worker = threading.Thread(target=hold_session)
        worker.start()
        assert held.wait(5)
        try:
            app_module.SYNC.publish_metadata("g1", {"homeScore": 2})
            assert session.tracker.state.opponent_score == 0
        finally:
            release.set()
            worker.join(5)
        state = client.get(f"/api/sessions/{session_id}/state").get_json()["state"]
        assert state["opponent_score"] == 2

    def test_opponent_runs_reach_other_tracker(self, client):
        away = _start(client, team_id="green")
        home = _start(client, team_id="gold", headers=ADMIN, isHome=True)
        _play(client, away, "homerun")
        state = client.get(f"/api/sessions/{home}/state").get_json()["state"]
        assert state["opponent_score"] == 1
        assert state["score"] == 0

    def test_opponent_score_endpoint(self, client):
        session_id = _start(client)
        data = client.post(f"/api/sessions/{session_id}/opponent-score", json={"runs": 3},
                           headers=CAPTAIN).get_json()
        assert data["state"]["opponent_score"] == 3
        assert client.get("/api/games/g1/metadata").get_json()["homeScore"] == 3

    def test_opponent_score_invalid(self, client):
        session_id = _start(client)
        resp = client.post(f"/api/sessions/{session_id}/opponent-score", json={"runs": "lots"},
                           headers=CAPTAIN)
        assert resp.status_code == 400

    def test_reset_requires_both_teams(self, client):
        resp = client.post("/api/games/g1/reset", json={"homeTeamId": "gold", "awayTeamId": "green"},
                           headers=CAPTAIN)
        assert resp.status_code == 403

    def test_reset(self, client):
        session_id = _start(client)
        _play(client, session_id, "homerun")
        resp = client.post("/api/games/g1/reset", json={"homeTeamId": "gold", "awayTeamId": "green"},
                           headers=ADMIN)
        assert resp.status_code == 200
        assert client.get(f"/api/sessions/{session_id}/state").status_code == 404
        meta = client.get("/api/games/g1/metadata").get_json()
        assert meta["awayScore"] == 0
        assert app_module.SYNC.load_game_state("g1", "green").plays == []


# -----------------------------------------------------------------------
# Server-sent events
# -----------------------------------------------------------------------


class TestEvents:
    def test_event_stream_starts_with_metadata(self, client):
        resp = client.get("/api/games/g1/events", buffered=False)
        assert resp.status_code == 200
        assert resp.mimetype == "text/event-stream"
        chunk = next(iter(resp.response))
        text = chunk.decode() if isinstance(chunk, bytes) else chunk
        assert text.startswith("event: metadata\n")
        payload = json.loads(text.split("data: ", 1)[1])
        assert payload["inning"] == 1
        resp.close()

    def test_subscribes_only_while_streaming(self, client):
        store = app_module.SYNC.store
        resp = client.get("/api/games/g1/events", buffered=False)
        assert store.watcher_count() == 0
        next(iter(resp.response))
        assert store.watcher_count() == 1
        resp.close()
        assert store.watcher_count() == 0


# -----------------------------------------------------------------------
# Id validation
# -----------------------------------------------------------------------


class TestIdValidation:
    @pytest.mark.parametrize("team_id", ["a/b", "..", ".", ".hidden"])
    def test_session_team_id(self, client, team_id):
        resp = client.post("/api/sessions", json={"gameId": "g1", "teamId": team_id, "battingOrder": ORDER},
                           headers=ADMIN)
        assert resp.status_code == 400

    @pytest.mark.parametrize("game_id", ["../g1", "..", 7])
    def test_session_game_id(self, client, game_id):
        resp = client.post("/api/sessions", json={"gameId": game_id, "teamId": "green", "battingOrder": ORDER},
                           headers=ADMIN)
        assert resp.status_code == 400

    def test_team_id_with_dash_accepted(self, client):
        _start(client, team_id="team-42", headers=ADMIN)

    @pytest.mark.parametrize("route", ["metadata", "presence", "events"])
    def test_game_routes(self, client, route):
        assert client.get(f"/api/games/.hidden/{route}").status_code == 400

    def test_reset_team_ids(self, client):
        resp = client.post("/api/games/g1/reset", json={"homeTeamId": "..", "awayTeamId": "green"},
                           headers=ADMIN)
        assert resp.status_code == 400

    def test_user_id(self, client):
        resp = client.post("/api/users", json={"userId": "../admin", "userRole": "admin"})
        assert resp.status_code == 400
        assert "../admin" not in USERS
