# /// script
# requires-python = ">=3.12"
# dependencies = ["pydantic>=2.0"]
# ///
"""Data models for the softball live game tracker."""

from __future__ import annotations

from enum import Enum
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class Base(str, Enum):
    FIRST = "first"
    SECOND = "second"
    THIRD = "third"


# Placement target for a runner crossing the plate.
HOME = "home"

BASE_ORDER: tuple[Base, ...] = (Base.FIRST, Base.SECOND, Base.THIRD)


class Half(str, Enum):
    TOP = "TOP"
    BOTTOM = "BOTTOM"


class GameStatus(str, Enum):
    SCHEDULED = "scheduled"
    IN_PROGRESS = "in_progress"
    FINAL = "final"


class UserRole(str, Enum):
    ADMIN = "admin"
    LEAGUE_STAFF = "league-staff"
    STAFF = "staff"
    SCOREKEEPER = "scorekeeper"
    PLAYER = "player"


class TeamRoleName(str, Enum):
    CAPTAIN = "captain"
    TEAM_STAFF = "team-staff"
    PLAYER = "player"


# ---------------------------------------------------------------------------
# Roster
# ---------------------------------------------------------------------------

class Player(BaseModel):
    name: str
    number: str = ""
    position: str = ""


# ---------------------------------------------------------------------------
# Base state
# ---------------------------------------------------------------------------

class BaseState(BaseModel):
    """Runner identity (batter name) on each base, or None."""
    first: Optional[str] = None
    second: Optional[str] = None
    third: Optional[str] = None

    def runner_on(self, base: Base | str) -> Optional[str]:
        return getattr(self, Base(base).value)

    def occupied(self) -> list[Base]:
        return [b for b in BASE_ORDER if self.runner_on(b) is not None]

    def runner_count(self) -> int:
        return len(self.occupied())

    def with_runner(self, base: Base | str, runner: Optional[str]) -> BaseState:
        return self.model_copy(update={Base(base).value: runner})

    def cleared(self) -> BaseState:
        return BaseState()


# ---------------------------------------------------------------------------
# Play catalog
# ---------------------------------------------------------------------------

class PlayType(BaseModel):
    """A selectable play with its default base/out behaviour."""
    model_config = ConfigDict(frozen=True)

    code: str
    label: str
    bases: int = Field(default=0, ge=0, le=4, description="Bases the batter is credited with")
    is_hit: bool = False
    is_out: bool = False
    no_adjust: bool = Field(default=False, description="Commits without a runner adjustment step")
    outs: int = Field(default=0, ge=0, le=3, description="Fixed outs charged (double play)")


PLAY_TYPES: dict[str, PlayType] = {
    p.code: p for p in (
        PlayType(code="single", label="1B", bases=1, is_hit=True),
        PlayType(code="double", label="2B", bases=2, is_hit=True),
        PlayType(code="triple", label="3B", bases=3, is_hit=True),
        PlayType(code="homerun", label="HR", bases=4, is_hit=True),
        PlayType(code="walk", label="BB", bases=1),
        PlayType(code="strikeout", label="K", is_out=True, no_adjust=True),
        PlayType(code="groundout", label="GO", is_out=True),
        PlayType(code="flyout", label="FO", is_out=True),
        PlayType(code="sacfly", label="SF", is_out=True),
        PlayType(code="fielders_choice", label="FC"),
        PlayType(code="error", label="E"),
        PlayType(code="doubleplay", label="DP", outs=2),
    )
}


# ---------------------------------------------------------------------------
# Committed play
# ---------------------------------------------------------------------------

class PlayRecord(BaseModel):
    """One committed plate appearance. Never mutated after commit."""
    model_config = ConfigDict(frozen=True)

    inning: int = Field(ge=1)
    tracked_team_batting: bool = True
    half: Half
    batter: str
    play_type: str
    play_label: str
    outs_before: int = Field(ge=0)
    outs_after: int = Field(ge=0)
    bases_before: BaseState
    bases_after: BaseState
    runs_scored: int = Field(default=0, ge=0)
    timestamp: float


# ---------------------------------------------------------------------------
# Runner adjustment commands
# ---------------------------------------------------------------------------

class Advance(BaseModel):
    kind: Literal["advance"] = "advance"
    base: Base


class Retreat(BaseModel):
    kind: Literal["retreat"] = "retreat"
    base: Base


class PlaceAt(BaseModel):
    kind: Literal["place_at"] = "place_at"
    from_base: Base
    to: Union[Base, Literal["home"]]


class Remove(BaseModel):
    kind: Literal["remove"] = "remove"
    base: Base


RunnerMoveCommand = Annotated[
    Union[Advance, Retreat, PlaceAt, Remove],
    Field(discriminator="kind"),
]


class RunnerMoveRequest(BaseModel):
    """Envelope used to parse a command from a JSON payload."""
    command: RunnerMoveCommand


# ---------------------------------------------------------------------------
# Shared and per-team documents
# ---------------------------------------------------------------------------

class GameMetadata(BaseModel):
    """Shared live-game document visible to both trackers and spectators.

    ``outs`` stays within 0-2; a side with three outs awaiting the
    operator's transition is published as ``sideRetired`` with 0 outs.
    ``gameStartedAt`` and ``lastScoreChange`` are stamped by the sync layer.
    """
    model_config = ConfigDict(populate_by_name=True)

    status: GameStatus = GameStatus.SCHEDULED
    inning: int = Field(default=1, ge=1)
    outs: int = Field(default=0, ge=0, le=2)
    side_retired: bool = Field(default=False, alias="sideRetired")
    half_inning: Half = Field(default=Half.TOP, alias="halfInning")
    home_score: int = Field(default=0, ge=0, alias="homeScore")
    away_score: int = Field(default=0, ge=0, alias="awayScore")
    home_pitcher: Optional[str] = Field(default=None, alias="homePitcher")
    away_pitcher: Optional[str] = Field(default=None, alias="awayPitcher")
    home_has_tracker: bool = Field(default=False, alias="homeHasTracker")
    home_tracker_name: str = Field(default="", alias="homeTrackerName")
    away_has_tracker: bool = Field(default=False, alias="awayHasTracker")
    away_tracker_name: str = Field(default="", alias="awayTrackerName")
    game_started_at: Optional[float] = Field(default=None, alias="gameStartedAt")
    last_score_change: Optional[float] = Field(default=None, alias="lastScoreChange")
    last_updated: Optional[float] = Field(default=None, alias="lastUpdated")

    @property
    def is_top(self) -> bool:
        return self.half_inning == Half.TOP


class Presence(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_id: str = Field(alias="userId")
    team_id: str = Field(alias="teamId")
    user_name: str = Field(default="", alias="userName")
    role: str = "viewer"
    last_seen: Optional[float] = Field(default=None, alias="lastSeen")


class AtBatEntry(BaseModel):
    """Compact plate-appearance line stored alongside the full play log."""
    batter: str
    result: str
    inning: int
    runs: int = 0


class TeamGameStateDoc(BaseModel):
    """Persisted tracking document for one team in one game."""
    model_config = ConfigDict(populate_by_name=True)

    team_id: str = Field(alias="teamId")
    at_bats: list[AtBatEntry] = Field(default_factory=list, alias="atBats")
    plays: list[PlayRecord] = Field(default_factory=list)
    batting_order: list[Player] = Field(default_factory=list, alias="battingOrder")
    inning: int = Field(default=1, ge=1)
    outs: int = Field(default=0, ge=0, le=2)
    side_retired: bool = Field(default=False, alias="sideRetired")
    score: int = Field(default=0, ge=0)
    opponent_score: int = Field(default=0, ge=0, alias="opponentScore")
    bases: BaseState = Field(default_factory=BaseState)
    tracked_team_batting: bool = Field(default=True, alias="isTrackedTeamBatting")
    tracked_team_is_home: bool = Field(default=False, alias="isHome")
    current_batter: int = Field(default=0, ge=0, alias="currentBatter")
    game_active: bool = Field(default=True, alias="gameActive")
    last_updated: Optional[float] = Field(default=None, alias="lastUpdated")

    @model_validator(mode="after")
    def _batter_within_order(self) -> TeamGameStateDoc:
        if self.batting_order and self.current_batter >= len(self.batting_order):
            raise ValueError("currentBatter is outside the batting order")
        return self


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------

class TeamRole(BaseModel):
    role: TeamRoleName
    status: str = "active"


class UserProfile(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_id: str = Field(alias="userId")
    display_name: str = Field(default="", alias="displayName")
    user_role: UserRole = Field(default=UserRole.PLAYER, alias="userRole")
    team_roles: dict[str, TeamRole] = Field(default_factory=dict, alias="teamRoles")
