# /// script
# requires-python = ">=3.12"
# dependencies = ["pydantic>=2.0"]
# ///
"""Live single-game tracker.

Owns the state of one team's plate appearances in one game: the bases,
outs, score, whose turn it is in the batting order, the committed play
history and the half-inning bookkeeping.

Typical flow::

    tracker = GameTracker(batting_order, team_id="green")
    tracker.start_game()
    tracker.select_play("single")        # PendingPlay with default runners
    tracker.advance_runner("second")     # optional manual correction
    tracker.confirm_play()               # PlayRecord appended to history
    tracker.undo()                       # exact inverse of the last commit

Invalid operations (undo with no history, confirming with no pending play,
moving a runner from an empty base, any play after the game ended) are
no-ops that return ``None`` or ``False`` and leave the state untouched.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Optional

from models import (
    AtBatEntry,
    Base,
    BaseState,
    Half,
    Player,
    PlayRecord,
    RunnerMoveCommand,
    TeamGameStateDoc,
)
import runner_adjustment
from play_resolver import PendingPlay, resolve

logger = logging.getLogger(__name__)

OUTS_PER_HALF = 3


class TrackerError(Exception):
    """Raised when a tracker cannot be built from the given inputs."""

    def __init__(self, message: str, field: str | None = None):
        self.field = field
        super().__init__(message)


# ---------------------------------------------------------------------------
# Game state
# ---------------------------------------------------------------------------

@dataclass
class GameState:
    """Mutable aggregate for one tracked team.

    ``inning`` is the tracker's half-inning counter: it advances when the
    opponent's half ends.  For a home-side tracker that means the counter
    runs one ahead of the scoreboard inning while the tracked team bats;
    use :attr:`GameTracker.display_inning` for the scoreboard value.
    """
    inning: int = 1
    outs: int = 0
    bases: BaseState = field(default_factory=BaseState)
    score: int = 0
    opponent_score: int = 0
    current_batter: int = 0
    play_history: list[PlayRecord] = field(default_factory=list)
    tracked_team_batting: bool = True
    tracked_team_is_home: bool = False
    game_active: bool = True


# ---------------------------------------------------------------------------
# Half-inning helpers
# ---------------------------------------------------------------------------

def half_for(tracked_team_batting: bool, tracked_team_is_home: bool) -> Half:
    """Scoreboard half for the current batting side."""
    return Half.BOTTOM if tracked_team_batting == tracked_team_is_home else Half.TOP


def display_inning_for(counter: int, tracked_team_batting: bool,
                       tracked_team_is_home: bool) -> int:
    if tracked_team_is_home and tracked_team_batting:
        return max(1, counter - 1)
    return counter


def counter_inning_for(display_inning: int, tracked_team_batting: bool,
                       tracked_team_is_home: bool) -> int:
    if tracked_team_is_home and tracked_team_batting:
        return display_inning + 1
    return display_inning


def next_half_inning(inning: int, tracked_team_batting: bool) -> tuple[int, bool]:
    """Return ``(inning, tracked_team_batting)`` after a side is retired.

    The tracked team's half ending hands the bat to the opponent in the
    same inning; the opponent's half ending starts the next inning with the
    tracked team batting.
    """
    if tracked_team_batting:
        return inning, False
    return inning + 1, True


# ---------------------------------------------------------------------------
# Tracker
# ---------------------------------------------------------------------------

class GameTracker:
    """Single-writer state machine for one team's live game tracking."""

    def __init__(
        self,
        batting_order: list[Player],
        team_id: str = "",
        tracked_team_is_home: bool = False,
        clock: Callable[[], float] = time.time,
    ):
        if not batting_order:
            raise TrackerError("Batting order must contain at least one player",
                               field="batting_order")
        self.batting_order = list(batting_order)
        self.team_id = team_id
        self.clock = clock
        self.pending: Optional[PendingPlay] = None
        self.state = GameState(
            tracked_team_batting=not tracked_team_is_home,
            tracked_team_is_home=tracked_team_is_home,
        )

    # -- derived state -----------------------------------------------------

    @property
    def current_batter(self) -> Player:
        return self.batting_order[self.state.current_batter]

    @property
    def on_deck_batter(self) -> Player:
        return self.batting_order[(self.state.current_batter + 1) % len(self.batting_order)]

    @property
    def current_half(self) -> Half:
        return half_for(self.state.tracked_team_batting, self.state.tracked_team_is_home)

    @property
    def display_inning(self) -> int:
        return display_inning_for(self.state.inning, self.state.tracked_team_batting,
                                  self.state.tracked_team_is_home)

    @property
    def side_retired(self) -> bool:
        return self.state.outs >= OUTS_PER_HALF

    @property
    def ended(self) -> bool:
        return not self.state.game_active

    @property
    def can_record_play(self) -> bool:
        return (self.state.game_active
                and self.state.tracked_team_batting
                and not self.side_retired)

    @property
    def display_bases(self) -> BaseState:
        """Bases to show: the pending placement while a play is open."""
        return self.pending.bases if self.pending else self.state.bases

    # -- lifecycle ---------------------------------------------------------

    def start_game(self) -> GameState:
        """Reset to the first inning.  The away side bats first."""
        is_home = self.state.tracked_team_is_home
        self.state = GameState(tracked_team_batting=not is_home,
                               tracked_team_is_home=is_home)
        self.pending = None
        logger.info("Tracking started for team %s (%s)", self.team_id or "?",
                    "home" if is_home else "away")
        return self.state

    def end_game(self) -> None:
        """Enter the terminal state.  No further plays are accepted."""
        self.pending = None
        self.state.game_active = False
        logger.info("Game ended for team %s: %d-%d", self.team_id or "?",
                    self.state.score, self.state.opponent_score)

    def set_opponent_score(self, runs: int) -> None:
        if runs < 0:
            raise ValueError("Opponent score cannot be negative")
        self.state.opponent_score = runs

    # -- play selection ----------------------------------------------------

    def select_play(self, play_code: str) -> PendingPlay | PlayRecord | None:
        """Start a play for the current batter.

        Returns the :class:`PendingPlay` awaiting confirmation, or the
        committed :class:`PlayRecord` for plays that need no adjustment
        (strikeouts).  Returns ``None`` when no play can be recorded.

        Raises:
            UnknownPlayTypeError: If *play_code* is not in the catalog.
        """
        if not self.can_record_play:
            return None
        pending = resolve(play_code, self.state.bases, self.current_batter.name)
        if pending.commits_immediately:
            self.pending = None
            return self._commit(pending)
        self.pending = pending
        return pending

    def cancel_play(self) -> None:
        self.pending = None

    # -- runner adjustment -------------------------------------------------

    def adjust_runner(self, command: RunnerMoveCommand) -> bool:
        if self.pending is None:
            return False
        return runner_adjustment.apply_command(self.pending, command)

    def advance_runner(self, base: Base | str) -> bool:
        if self.pending is None:
            return False
        return runner_adjustment.advance(self.pending, base)

    def retreat_runner(self, base: Base | str) -> bool:
        if self.pending is None:
            return False
        return runner_adjustment.retreat(self.pending, base)

    def move_runner(self, from_base: Base | str, target: Base | str) -> bool:
        if self.pending is None:
            return False
        return runner_adjustment.move_to(self.pending, from_base, target)

    def remove_runner(self, base: Base | str) -> bool:
        if self.pending is None:
            return False
        return runner_adjustment.remove_runner(self.pending, base)

    # -- commit / undo -----------------------------------------------------

    def confirm_play(self) -> PlayRecord | None:
        """Commit the pending play.  No pending play, no-op."""
        if self.pending is None or not self.state.game_active:
            return None
        pending, self.pending = self.pending, None
        return self._commit(pending)

    def _commit(self, pending: PendingPlay) -> PlayRecord:
        state = self.state
        outs_before = state.outs
        outs_after = min(outs_before + pending.outs, OUTS_PER_HALF)

        record = PlayRecord(
            inning=self.display_inning,
            tracked_team_batting=state.tracked_team_batting,
            half=self.current_half,
            batter=pending.batter,
            play_type=pending.play.code,
            play_label=pending.play.label,
            outs_before=outs_before,
            outs_after=outs_after,
            bases_before=state.bases.model_copy(),
            bases_after=pending.bases.model_copy(),
            runs_scored=pending.runs,
            timestamp=self.clock(),
        )

        state.outs = outs_after
        state.bases = pending.bases.model_copy()
        state.score += pending.runs
        state.current_batter = (state.current_batter + 1) % len(self.batting_order)
        state.play_history.append(record)

        logger.debug("Committed %s by %s: %d run(s), outs %d -> %d",
                     record.play_label, record.batter, record.runs_scored,
                     outs_before, outs_after)
        if self.side_retired:
            logger.info("Side retired in %s %d", record.half.value.lower(), record.inning)
        return record

    def undo(self) -> PlayRecord | None:
        """Reverse the most recent committed play.

        Restores bases, outs, score and batter index to the values before
        that play.  When the play belongs to an earlier half-inning than
        the current one, the half-inning transition is reversed as well.
        Returns the removed record, or ``None`` if there was nothing to
        undo.
        """
        state = self.state
        if not state.play_history or not state.game_active:
            return None

        record = state.play_history.pop()
        crosses_boundary = (
            record.inning != self.display_inning
            or record.tracked_team_batting != state.tracked_team_batting
            or (record.outs_before >= OUTS_PER_HALF and state.outs == 0)
        )

        self.pending = None
        state.bases = record.bases_before.model_copy()
        state.outs = record.outs_before
        state.score -= record.runs_scored
        state.current_batter = (state.current_batter - 1 + len(self.batting_order)) % len(self.batting_order)

        if crosses_boundary:
            state.tracked_team_batting = record.tracked_team_batting
            state.inning = counter_inning_for(record.inning, record.tracked_team_batting,
                                              state.tracked_team_is_home)
            logger.info("Undo reversed half-inning transition back to %s %d",
                        record.half.value.lower(), record.inning)
        return record

    # -- half-inning transition --------------------------------------------

    def advance_half_inning(self) -> bool:
        """Operator-confirmed switch to the other side batting.

        While the tracked team bats this requires three outs; while the
        opponent bats the operator may advance at any time, since their
        outs are not tracked here.
        """
        state = self.state
        if not state.game_active:
            return False
        if state.tracked_team_batting and not self.side_retired:
            return False
        self.pending = None
        state.inning, state.tracked_team_batting = next_half_inning(
            state.inning, state.tracked_team_batting)
        state.outs = 0
        state.bases = state.bases.cleared()
        logger.info("Now %s %d, %s batting", self.current_half.value.lower(),
                    self.display_inning,
                    "tracked team" if state.tracked_team_batting else "opponent")
        return True

    # -- persistence -------------------------------------------------------

    def to_document(self) -> TeamGameStateDoc:
        """Persisted form.  A retired side is stored as ``side_retired`` with 0 outs."""
        state = self.state
        return TeamGameStateDoc(
            team_id=self.team_id,
            at_bats=[
                AtBatEntry(batter=r.batter, result=r.play_label,
                           inning=r.inning, runs=r.runs_scored)
                for r in state.play_history
            ],
            plays=list(state.play_history),
            batting_order=list(self.batting_order),
            inning=state.inning,
            outs=0 if self.side_retired else state.outs,
            side_retired=self.side_retired,
            score=state.score,
            opponent_score=state.opponent_score,
            bases=state.bases.model_copy(),
            tracked_team_batting=state.tracked_team_batting,
            tracked_team_is_home=state.tracked_team_is_home,
            current_batter=state.current_batter,
            game_active=state.game_active,
        )

    @classmethod
    def from_document(
        cls,
        doc: TeamGameStateDoc,
        batting_order: list[Player] | None = None,
        clock: Callable[[], float] = time.time,
    ) -> GameTracker:
        """Resume tracking from a persisted team document.

        Raises:
            TrackerError: If neither the document nor the caller supplies a
                batting order.
        """
        order = batting_order or doc.batting_order
        if not order:
            raise TrackerError("Persisted game has no batting order", field="battingOrder")
        tracker = cls(order, team_id=doc.team_id,
                      tracked_team_is_home=doc.tracked_team_is_home, clock=clock)
        tracker.state = GameState(
            inning=doc.inning,
            outs=OUTS_PER_HALF if doc.side_retired else doc.outs,
            bases=doc.bases.model_copy(),
            score=doc.score,
            opponent_score=doc.opponent_score,
            current_batter=doc.current_batter % len(order),
            play_history=list(doc.plays),
            tracked_team_batting=doc.tracked_team_batting,
            tracked_team_is_home=doc.tracked_team_is_home,
            game_active=doc.game_active,
        )
        return tracker
