# /// script
# requires-python = ">=3.12"
# dependencies = ["pydantic>=2.0"]
# ///
"""Default play outcomes.

Given a play type, the current bases and the batter, computes the
tentative result of the play before the operator adjusts any runners:
where every runner ends up, how many runs score automatically and how
many outs are charged.

Only forced or unambiguous movement is applied here.  Plays where the
outcome depends on what the fielders did (sacrifice flies, ground outs,
fielder's choices, errors, double plays) leave the runners where they
are and defer to the runner adjustment step.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from models import PLAY_TYPES, Base, BaseState, PlayType


class UnknownPlayTypeError(ValueError):
    """Raised when a play code is not in the catalog."""

    def __init__(self, code: str):
        self.code = code
        super().__init__(
            f"Unknown play type '{code}'. Valid codes: {', '.join(PLAY_TYPES)}"
        )


# ---------------------------------------------------------------------------
# Pending play
# ---------------------------------------------------------------------------

@dataclass
class PendingPlay:
    """Tentative result of a play that has not been committed yet.

    Attributes:
        play: The catalog entry that produced this play.
        batter: Name of the batter at the plate.
        bases: Tentative runner placement after the play.
        runs: Runs credited so far (automatic plus manual adjustments).
        outs: Outs charged so far.
        warnings: Validation notes raised while adjusting runners.
    """
    play: PlayType
    batter: str
    bases: BaseState
    runs: int = 0
    outs: int = 0
    warnings: list[str] = field(default_factory=list)

    @property
    def commits_immediately(self) -> bool:
        return self.play.no_adjust


# ---------------------------------------------------------------------------
# Catalog access
# ---------------------------------------------------------------------------

def get_play_type(code: str) -> PlayType:
    try:
        return PLAY_TYPES[code]
    except KeyError:
        raise UnknownPlayTypeError(code) from None


def list_play_types() -> list[PlayType]:
    return list(PLAY_TYPES.values())


# ---------------------------------------------------------------------------
# Advancement rules
# ---------------------------------------------------------------------------

def _home_run(bases: BaseState, batter: str) -> tuple[BaseState, int]:
    return BaseState(), bases.runner_count() + 1


def _triple(bases: BaseState, batter: str) -> tuple[BaseState, int]:
    return BaseState(third=batter), bases.runner_count()


def _double(bases: BaseState, batter: str) -> tuple[BaseState, int]:
    runs = sum(1 for b in (Base.SECOND, Base.THIRD) if bases.runner_on(b))
    return BaseState(second=batter, third=bases.first), runs


def _walk(bases: BaseState, batter: str) -> tuple[BaseState, int]:
    """Forced advance: a runner moves only if every base behind them is occupied."""
    if not bases.first:
        return bases.with_runner(Base.FIRST, batter), 0
    if not bases.second:
        return BaseState(first=batter, second=bases.first, third=bases.third), 0
    if not bases.third:
        return BaseState(first=batter, second=bases.first, third=bases.second), 0
    return BaseState(first=batter, second=bases.first, third=bases.second), 1


def _single(bases: BaseState, batter: str) -> tuple[BaseState, int]:
    runs = 1 if bases.third else 0
    return BaseState(first=batter, second=bases.first, third=bases.second), runs


def resolve(play_type: PlayType | str, bases: BaseState, batter: str) -> PendingPlay:
    """Compute the default outcome of a play.

    Args:
        play_type: Catalog entry or its code (e.g. ``"single"``).
        bases: Runners on base before the play.
        batter: Name of the batter at the plate.

    Returns:
        A :class:`PendingPlay` holding the tentative bases, runs and outs.
        Strikeouts are flagged via ``commits_immediately`` and never move
        runners.

    Raises:
        UnknownPlayTypeError: If *play_type* is an unknown code.
    """
    play = get_play_type(play_type) if isinstance(play_type, str) else play_type
    new_bases = bases.model_copy()
    runs = 0
    outs = 0
    warnings: list[str] = []

    if play.bases == 4:
        new_bases, runs = _home_run(bases, batter)
    elif play.bases == 3:
        new_bases, runs = _triple(bases, batter)
    elif play.bases == 2:
        new_bases, runs = _double(bases, batter)
    elif play.bases == 1:
        if play.code == "walk":
            new_bases, runs = _walk(bases, batter)
        else:
            new_bases, runs = _single(bases, batter)
    elif play.is_out:
        # Sac flies and ground outs never score a runner automatically.
        outs = 1
    elif play.outs:
        outs = play.outs
    elif play.code in ("fielders_choice", "error"):
        if bases.first:
            warnings.append(
                f"{bases.first} was on first and is replaced by {batter}; "
                "move or remove the runner before confirming"
            )
        new_bases = new_bases.with_runner(Base.FIRST, batter)

    return PendingPlay(
        play=play,
        batter=batter,
        bases=new_bases,
        runs=runs,
        outs=outs,
        warnings=warnings,
    )
