# /// script
# requires-python = ">=3.12"
# dependencies = ["pydantic>=2.0"]
# ///
"""Manual runner corrections applied to a pending play.

The operator can override the default placement produced by
:mod:`play_resolver` before confirming a play.  Every function here
mutates only the :class:`~play_resolver.PendingPlay` it is given; nothing
is visible to the game state until the play is committed.

Each operation returns ``True`` when it changed the pending play and
``False`` when it was a no-op (empty origin base, no retreat target).
"""

from __future__ import annotations

import logging

from models import (
    HOME,
    Advance,
    Base,
    PlaceAt,
    Remove,
    Retreat,
    RunnerMoveCommand,
)
from play_resolver import PendingPlay

logger = logging.getLogger(__name__)


_NEXT_BASE: dict[Base, Base | str] = {
    Base.FIRST: Base.SECOND,
    Base.SECOND: Base.THIRD,
    Base.THIRD: HOME,
}

_PREVIOUS_BASE: dict[Base, Base | None] = {
    Base.FIRST: None,
    Base.SECOND: Base.FIRST,
    Base.THIRD: Base.SECOND,
}


def _place(pending: PendingPlay, runner: str, target: Base | str) -> None:
    if target == HOME:
        pending.runs += 1
        return
    target = Base(target)
    occupant = pending.bases.runner_on(target)
    if occupant is not None and occupant != runner:
        # Last write wins; the displaced runner is dropped from the bases.
        message = f"{runner} moved onto {target.value}, replacing {occupant}"
        pending.warnings.append(message)
        logger.warning("Runner collision: %s", message)
    pending.bases = pending.bases.with_runner(target, runner)


def advance(pending: PendingPlay, base: Base | str) -> bool:
    """Move the runner on *base* forward one base (third scores)."""
    base = Base(base)
    runner = pending.bases.runner_on(base)
    if runner is None:
        return False
    pending.bases = pending.bases.with_runner(base, None)
    _place(pending, runner, _NEXT_BASE[base])
    return True


def retreat(pending: PendingPlay, base: Base | str) -> bool:
    """Move the runner on *base* back one base.  First has no retreat target."""
    base = Base(base)
    runner = pending.bases.runner_on(base)
    target = _PREVIOUS_BASE[base]
    if runner is None or target is None:
        return False
    pending.bases = pending.bases.with_runner(base, None)
    _place(pending, runner, target)
    return True


def move_to(pending: PendingPlay, from_base: Base | str, target: Base | str) -> bool:
    """Place the runner on *from_base* directly on *target* (a base or ``"home"``)."""
    from_base = Base(from_base)
    runner = pending.bases.runner_on(from_base)
    if runner is None:
        return False
    pending.bases = pending.bases.with_runner(from_base, None)
    _place(pending, runner, target if target == HOME else Base(target))
    return True


def remove_runner(pending: PendingPlay, base: Base | str) -> bool:
    """Mark the runner on *base* out: clear the base and charge one out."""
    base = Base(base)
    if pending.bases.runner_on(base) is None:
        return False
    pending.bases = pending.bases.with_runner(base, None)
    pending.outs += 1
    return True


def apply_command(pending: PendingPlay, command: RunnerMoveCommand) -> bool:
    """Dispatch a :data:`~models.RunnerMoveCommand` to the matching operation."""
    if isinstance(command, Advance):
        return advance(pending, command.base)
    if isinstance(command, Retreat):
        return retreat(pending, command.base)
    if isinstance(command, PlaceAt):
        return move_to(pending, command.from_base, command.to)
    if isinstance(command, Remove):
        return remove_runner(pending, command.base)
    raise TypeError(f"Unsupported runner command: {type(command).__name__}")
