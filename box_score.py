# /// script
# requires-python = ">=3.12"
# dependencies = ["pydantic>=2.0"]
# ///
"""Batting box score derived from a tracker's play history."""

from __future__ import annotations

from dataclasses import dataclass

from models import PLAY_TYPES, Player, PlayRecord

# Plate appearances that do not count as official at-bats.
NON_AT_BAT_PLAYS = frozenset({"walk", "sacfly"})


@dataclass
class BatterLine:
    pa: int = 0
    ab: int = 0
    hits: int = 0
    singles: int = 0
    doubles: int = 0
    triples: int = 0
    hr: int = 0
    bb: int = 0
    k: int = 0
    runs: int = 0
    rbi: int = 0

    @property
    def avg(self) -> float:
        return round(self.hits / self.ab, 3) if self.ab else 0.0

    def to_dict(self) -> dict:
        return {
            "PA": self.pa, "AB": self.ab, "H": self.hits,
            "1B": self.singles, "2B": self.doubles, "3B": self.triples,
            "HR": self.hr, "BB": self.bb, "K": self.k,
            "R": self.runs, "RBI": self.rbi, "AVG": self.avg,
        }


_HIT_COLUMNS = {"single": "singles", "double": "doubles",
                "triple": "triples", "homerun": "hr"}


def _scorers(record: PlayRecord) -> list[str]:
    """Runners who crossed the plate on a play, when that can be determined.

    A runner who was on base before the play and is gone after it either
    scored or was put out.  Only when the number of vanished runners equals
    the runs scored can each of them be credited.
    """
    after = {r for r in (record.bases_after.first, record.bases_after.second,
                         record.bases_after.third) if r}
    vanished = [r for r in (record.bases_before.third, record.bases_before.second,
                            record.bases_before.first) if r and r not in after]
    if record.play_type == "homerun":
        vanished.append(record.batter)
    if len(vanished) == record.runs_scored:
        return vanished
    return []


def batting_lines(plays: list[PlayRecord], batting_order: list[Player]) -> dict[str, BatterLine]:
    """Per-batter lines keyed by name, in batting-order order."""
    lines: dict[str, BatterLine] = {p.name: BatterLine() for p in batting_order}
    for record in plays:
        line = lines.setdefault(record.batter, BatterLine())
        line.pa += 1
        if record.play_type not in NON_AT_BAT_PLAYS:
            line.ab += 1
        play = PLAY_TYPES.get(record.play_type)
        if play is not None and play.is_hit:
            line.hits += 1
            column = _HIT_COLUMNS[record.play_type]
            setattr(line, column, getattr(line, column) + 1)
        if record.play_type == "walk":
            line.bb += 1
        elif record.play_type == "strikeout":
            line.k += 1
        # No RBI on errors or double plays.
        if record.play_type not in ("error", "doubleplay"):
            line.rbi += record.runs_scored
        for runner in _scorers(record):
            lines.setdefault(runner, BatterLine()).runs += 1
    return lines


def inning_runs(plays: list[PlayRecord]) -> list[int]:
    """Runs by scoreboard inning, padded with zeros up to the last inning played."""
    if not plays:
        return []
    totals = [0] * max(r.inning for r in plays)
    for record in plays:
        totals[record.inning - 1] += record.runs_scored
    return totals


def generate_box_score(plays: list[PlayRecord], batting_order: list[Player],
                       team_name: str = "") -> dict:
    lines = batting_lines(plays, batting_order)
    positions = {p.name: p.position for p in batting_order}
    return {
        "team_name": team_name,
        "inning_runs": inning_runs(plays),
        "total_runs": sum(r.runs_scored for r in plays),
        "total_hits": sum(line.hits for line in lines.values()),
        "batting": [
            {"name": name, "position": positions.get(name, ""), **line.to_dict()}
            for name, line in lines.items()
        ],
    }


def format_box_score(box: dict) -> str:
    """Plain-text rendering of :func:`generate_box_score` output."""
    lines = []
    innings = box["inning_runs"]
    header = f"{'Team':<20}" + "".join(f" {i:>3}" for i in range(1, len(innings) + 1))
    header += "  |   R   H"
    lines.append(header)
    lines.append("-" * len(header))
    row = f"{box['team_name'] or 'Team':<20}" + "".join(f" {r:>3}" for r in innings)
    row += f"  | {box['total_runs']:>3} {box['total_hits']:>3}"
    lines.append(row)

    lines.append("")
    lines.append(f"  {'Name':<22} {'Pos':<5} {'AB':>3} {'H':>3} {'R':>3} {'RBI':>4} {'BB':>3} {'K':>3}")
    lines.append(f"  {'-'*22} {'-'*5} {'-'*3} {'-'*3} {'-'*3} {'-'*4} {'-'*3} {'-'*3}")
    for b in box["batting"]:
        lines.append(
            f"  {b['name']:<22} {b['position']:<5} {b['AB']:>3} {b['H']:>3} "
            f"{b['R']:>3} {b['RBI']:>4} {b['BB']:>3} {b['K']:>3}"
        )
    return "\n".join(lines)
