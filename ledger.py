"""Player statistics and the ledgers that receive finished games."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable, Mapping

import pandas as pd

LOGGER = logging.getLogger(__name__)

RESULT_COLUMNS = [
    "tag",
    "result",
    "timestamp_utc",
    "seed",
    "moves",
    "score",
    "elapsed_s",
]


class LedgerError(RuntimeError):
    """Raised when a ledger cannot record or load game results."""


@dataclass(frozen=True)
class GameOutcome:
    """Summary of one finished solo game."""

    result: str
    score: int
    moves: int
    elapsed_time: int
    seed: int | None = None
    finished_at: str = field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )

    @property
    def won(self) -> bool:
        return self.result == "won"


@dataclass(frozen=True)
class PlayerStats:
    """Lifetime statistics for one player.

    ``fastest_win_time`` and ``fewest_moves`` stay ``0`` until the first win.
    """

    games_played: int = 0
    wins: int = 0
    losses: int = 0
    total_score: int = 0
    best_score: int = 0
    fastest_win_time: int = 0
    fewest_moves: int = 0

    @property
    def win_rate(self) -> float | None:
        if not self.games_played:
            return None
        return self.wins / self.games_played

    def to_dict(self) -> dict[str, int]:
        """Return the summary in the ledger's wire shape."""

        return {
            "gamesPlayed": self.games_played,
            "wins": self.wins,
            "losses": self.losses,
            "totalScore": self.total_score,
            "bestScore": self.best_score,
            "fastestWinTime": self.fastest_win_time,
            "fewestMoves": self.fewest_moves,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "PlayerStats":
        return cls(
            games_played=int(data.get("gamesPlayed", 0)),
            wins=int(data.get("wins", 0)),
            losses=int(data.get("losses", 0)),
            total_score=int(data.get("totalScore", 0)),
            best_score=int(data.get("bestScore", 0)),
            fastest_win_time=int(data.get("fastestWinTime", 0)),
            fewest_moves=int(data.get("fewestMoves", 0)),
        )


def _keep_lowest(current: int, candidate: int) -> int:
    if current == 0:
        return candidate
    return min(current, candidate)


def record_outcome(stats: PlayerStats, outcome: GameOutcome) -> PlayerStats:
    """Return *stats* updated with *outcome*."""

    updated = replace(
        stats,
        games_played=stats.games_played + 1,
        total_score=stats.total_score + outcome.score,
        best_score=max(stats.best_score, outcome.score),
    )
    if outcome.won:
        return replace(
            updated,
            wins=stats.wins + 1,
            fastest_win_time=_keep_lowest(stats.fastest_win_time, outcome.elapsed_time),
            fewest_moves=_keep_lowest(stats.fewest_moves, outcome.moves),
        )
    return replace(updated, losses=stats.losses + 1)


def stats_from_outcomes(outcomes: Iterable[GameOutcome]) -> PlayerStats:
    stats = PlayerStats()
    for outcome in outcomes:
        stats = record_outcome(stats, outcome)
    return stats


def outcome_to_row(outcome: GameOutcome, tag: str) -> dict[str, Any]:
    return {
        "tag": tag,
        "result": outcome.result,
        "timestamp_utc": outcome.finished_at,
        "seed": None if outcome.seed is None else str(outcome.seed),
        "moves": outcome.moves,
        "score": outcome.score,
        "elapsed_s": outcome.elapsed_time,
    }


class InMemoryLedger:
    """Ledger that keeps every recorded game in a list."""

    def __init__(self) -> None:
        self.entries: list[tuple[GameOutcome, PlayerStats]] = []

    def record(self, outcome: GameOutcome, stats: PlayerStats) -> None:
        self.entries.append((outcome, stats))

    @property
    def latest(self) -> PlayerStats | None:
        if not self.entries:
            return None
        return self.entries[-1][1]


class ParquetLedger:
    """Append finished games to a Parquet result log.

    The log uses the same columns as the exports read by ``scripts/`` so the
    validation and summary tools work on it directly.
    """

    def __init__(self, path: Path, *, tag: str = "solo") -> None:
        self.path = Path(path)
        self.tag = tag

    def load_frame(self) -> pd.DataFrame:
        if not self.path.exists():
            return pd.DataFrame(columns=RESULT_COLUMNS)
        try:
            return pd.read_parquet(self.path)
        except (OSError, ValueError, ImportError) as exc:
            raise LedgerError(f"{self.path}: cannot read result log: {exc}") from exc

    def append_rows(self, rows: list[Mapping[str, Any]]) -> int:
        frame = self.load_frame()
        addition = pd.DataFrame(list(rows), columns=RESULT_COLUMNS)
        if frame.empty:
            frame = addition
        else:
            frame = pd.concat([frame, addition], ignore_index=True)
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            frame.to_parquet(self.path, index=False)
        except (OSError, ValueError, ImportError) as exc:
            raise LedgerError(f"{self.path}: cannot write result log: {exc}") from exc
        LOGGER.debug("Appended %d rows to %s", len(rows), self.path)
        return int(frame.shape[0])

    def record(self, outcome: GameOutcome, stats: PlayerStats) -> None:
        self.append_rows([outcome_to_row(outcome, self.tag)])
        LOGGER.info(
            "Recorded %s game for %s (games=%d wins=%d)",
            outcome.result,
            self.tag,
            stats.games_played,
            stats.wins,
        )

    def stats(self, tag: str | None = None) -> PlayerStats:
        """Aggregate the log (optionally one *tag*) into :class:`PlayerStats`."""

        frame = self.load_frame()
        if tag is not None and not frame.empty:
            frame = frame[frame["tag"] == tag]
        return stats_from_frame(frame)


def stats_from_frame(frame: pd.DataFrame) -> PlayerStats:
    if frame.empty:
        return PlayerStats()

    results = frame["result"].fillna("").astype(str).str.strip().str.lower()
    scores = pd.to_numeric(frame["score"], errors="coerce").fillna(0).astype(int)
    moves = pd.to_numeric(frame["moves"], errors="coerce")
    elapsed = pd.to_numeric(frame["elapsed_s"], errors="coerce")

    finished = results.isin(["won", "blocked"])
    won = results.eq("won")
    win_moves = moves[won].dropna()
    win_elapsed = elapsed[won].dropna()

    return PlayerStats(
        games_played=int(finished.sum()),
        wins=int(won.sum()),
        losses=int(results.eq("blocked").sum()),
        total_score=int(scores[finished].sum()),
        best_score=max(0, int(scores[finished].max())) if finished.any() else 0,
        fastest_win_time=int(win_elapsed.min()) if not win_elapsed.empty else 0,
        fewest_moves=int(win_moves.min()) if not win_moves.empty else 0,
    )


__all__ = [
    "GameOutcome",
    "InMemoryLedger",
    "LedgerError",
    "ParquetLedger",
    "PlayerStats",
    "RESULT_COLUMNS",
    "outcome_to_row",
    "record_outcome",
    "stats_from_frame",
    "stats_from_outcomes",
]
