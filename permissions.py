"""Who may track which team.

League-wide roles (admin, league staff, staff, scorekeeper) may track any
team.  Otherwise the user needs an active captain or team-staff role on
that specific team.
"""

from __future__ import annotations

from typing import Any

from models import TeamRoleName, UserProfile, UserRole

LEAGUE_TRACKING_ROLES = frozenset({
    UserRole.ADMIN,
    UserRole.LEAGUE_STAFF,
    UserRole.STAFF,
    UserRole.SCOREKEEPER,
})

TEAM_TRACKING_ROLES = frozenset({TeamRoleName.CAPTAIN, TeamRoleName.TEAM_STAFF})


def can_user_track_team(profile: UserProfile | None, team_id: str | None) -> bool:
    if profile is None:
        return False
    if profile.user_role in LEAGUE_TRACKING_ROLES:
        return True
    team_role = profile.team_roles.get(team_id) if team_id else None
    if team_role is None or team_role.status != "active":
        return False
    return team_role.role in TEAM_TRACKING_ROLES


def get_game_tracking_permissions(
    profile: UserProfile | None,
    game: dict[str, Any] | None,
) -> dict[str, bool]:
    """Tracking rights for both sides of a game.

    Args:
        profile: The signed-in user, or None.
        game: Dict with ``homeTeamId`` and ``awayTeamId``.
    """
    if profile is None or game is None:
        return {"canTrackHome": False, "canTrackAway": False, "canView": False}
    return {
        "canTrackHome": can_user_track_team(profile, game.get("homeTeamId")),
        "canTrackAway": can_user_track_team(profile, game.get("awayTeamId")),
        "canView": True,
    }
