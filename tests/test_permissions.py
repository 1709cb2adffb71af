# /// script
# requires-python = ">=3.12"
# dependencies = ["pydantic>=2.0", "pytest>=7.0"]
# ///
"""Tests for team tracking permissions."""

import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

import pytest

from models import UserProfile
from permissions import can_user_track_team, get_game_tracking_permissions


def _user(role="player", team_roles=None):
    return UserProfile.model_validate({
        "userId": "u1",
        "userRole": role,
        "teamRoles": team_roles or {},
    })


class TestCanUserTrackTeam:
    @pytest.mark.parametrize("role", ["admin", "league-staff", "staff", "scorekeeper"])
    def test_league_roles_track_any_team(self, role):
        assert can_user_track_team(_user(role), "green")

    @pytest.mark.parametrize("team_role", ["captain", "team-staff"])
    def test_active_team_role(self, team_role):
        user = _user(team_roles={"green": {"role": team_role, "status": "active"}})
        assert can_user_track_team(user, "green")
        assert not can_user_track_team(user, "gold")

    def test_inactive_team_role(self):
        user = _user(team_roles={"green": {"role": "captain", "status": "inactive"}})
        assert not can_user_track_team(user, "green")

    def test_team_player_cannot_track(self):
        user = _user(team_roles={"green": {"role": "player"}})
        assert not can_user_track_team(user, "green")

    def test_no_user(self):
        assert not can_user_track_team(None, "green")

    def test_no_team(self):
        user = _user(team_roles={"green": {"role": "captain"}})
        assert not can_user_track_team(user, None)


class TestGameTrackingPermissions:
    GAME = {"homeTeamId": "green", "awayTeamId": "gold"}

    def test_captain_of_home_team(self):
        user = _user(team_roles={"green": {"role": "captain"}})
        assert get_game_tracking_permissions(user, self.GAME) == {
            "canTrackHome": True, "canTrackAway": False, "canView": True,
        }

    def test_scorekeeper_tracks_both(self):
        perms = get_game_tracking_permissions(_user("scorekeeper"), self.GAME)
        assert perms["canTrackHome"] and perms["canTrackAway"]

    def test_anonymous(self):
        assert get_game_tracking_permissions(None, self.GAME) == {
            "canTrackHome": False, "canTrackAway": False, "canView": False,
        }

    def test_missing_game(self):
        assert not get_game_tracking_permissions(_user("admin"), None)["canView"]
