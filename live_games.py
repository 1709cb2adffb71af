# /// script
# requires-python = ">=3.12"
# dependencies = ["pydantic>=2.0"]
# ///
"""Live game indicator.

Watches the shared metadata of a set of scheduled games and keeps a list
of the ones currently live (metadata updated within the live window).
The monitor owns its listeners and its live list; create one per consumer
and call :meth:`LiveGameMonitor.stop` on teardown.

Usage::

    monitor = LiveGameMonitor(sync, on_update=lambda games: print(games))
    monitor.start([ScheduledGame(game_id="g1", home_team="Green", away_team="Gold")])
    ...
    monitor.stop()
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional

from data.document_store import Subscription
from game_sync import GameSync
from models import GameMetadata

logger = logging.getLogger(__name__)


@dataclass
class ScheduledGame:
    game_id: str
    home_team: str = "Home"
    away_team: str = "Away"


@dataclass
class LiveGame:
    game_id: str
    home_team: str
    away_team: str
    home_score: int
    away_score: int
    inning: int
    outs: int
    is_top: bool
    last_updated: Optional[float]


def format_live_game(game: LiveGame) -> str:
    """One-line banner text, e.g. ``LIVE: Gold 2 @ Green 3 (Top 4)``."""
    half = "Top" if game.is_top else "Bot"
    return (f"LIVE: {game.away_team} {game.away_score} @ "
            f"{game.home_team} {game.home_score} ({half} {game.inning})")


class LiveGameMonitor:
    """Tracks which of a set of games are live."""

    def __init__(
        self,
        sync: GameSync,
        on_update: Callable[[list[LiveGame]], None] | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self.sync = sync
        self.on_update = on_update
        self.clock = clock
        self._subscriptions: list[Subscription] = []
        self._live: dict[str, LiveGame] = {}

    @property
    def running(self) -> bool:
        return bool(self._subscriptions)

    def start(self, games: list[ScheduledGame]) -> None:
        """Subscribe to every game's metadata, replacing any previous run."""
        self.stop()
        if not games:
            self._emit()
            return
        for game in games:
            sub = self.sync.subscribe_metadata(
                game.game_id,
                lambda metadata, game=game: self._handle_metadata(game, metadata),
            )
            self._subscriptions.append(sub)
        logger.info("Monitoring %d game(s) for live activity", len(self._subscriptions))

    def stop(self) -> None:
        """Unsubscribe all listeners and forget the live list."""
        for sub in self._subscriptions:
            sub.unsubscribe()
        self._subscriptions = []
        self._live = {}

    def live_games(self) -> list[LiveGame]:
        return list(self._live.values())

    def is_live(self, game_id: str) -> bool:
        return game_id in self._live

    def get_live_game(self, game_id: str) -> LiveGame | None:
        return self._live.get(game_id)

    def _handle_metadata(self, game: ScheduledGame, metadata: GameMetadata | None) -> None:
        if metadata is not None and self.sync.is_live(metadata, now=self.clock()):
            self._live[game.game_id] = LiveGame(
                game_id=game.game_id,
                home_team=game.home_team,
                away_team=game.away_team,
                home_score=metadata.home_score,
                away_score=metadata.away_score,
                inning=metadata.inning,
                outs=metadata.outs,
                is_top=metadata.is_top,
                last_updated=metadata.last_updated,
            )
        elif self._live.pop(game.game_id, None) is not None:
            logger.info("Game %s is no longer live", game.game_id)
        self._emit()

    def _emit(self) -> None:
        if self.on_update is not None:
            self.on_update(self.live_games())
