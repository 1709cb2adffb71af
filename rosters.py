# /// script
# requires-python = ">=3.12"
# dependencies = ["pydantic>=2.0"]
# ///
"""Team roster loading."""

from __future__ import annotations

import json
from pathlib import Path

from pydantic import ValidationError

from models import Player

_ROSTER_PATH = Path(__file__).resolve().parent / "data" / "sample_rosters.json"


class RosterError(Exception):
    """Raised when a roster file is missing a team or has invalid entries."""

    def __init__(self, message: str, team: str | None = None):
        self.team = team
        super().__init__(message)


def load_rosters(path: Path | None = None) -> dict[str, list[Player]]:
    """Load every team's roster from JSON, keyed by team name."""
    p = path or _ROSTER_PATH
    with open(p) as f:
        raw = json.load(f)
    rosters: dict[str, list[Player]] = {}
    for team, players in raw.items():
        try:
            rosters[team] = [Player.model_validate(entry) for entry in players]
        except ValidationError as exc:
            raise RosterError(f"Invalid roster entry for {team}: {exc}", team=team) from exc
    return rosters


def batting_order_for(team: str, rosters: dict[str, list[Player]] | None = None) -> list[Player]:
    """Default batting order for a team: its roster in listed order."""
    rosters = rosters if rosters is not None else load_rosters()
    if team not in rosters:
        raise RosterError(f"Unknown team '{team}'. Known teams: {', '.join(sorted(rosters))}",
                          team=team)
    if not rosters[team]:
        raise RosterError(f"Team '{team}' has an empty roster", team=team)
    return list(rosters[team])
