"""Check Klondike result logs against what a real deal can produce.

The logs are the Parquet files written by :class:`ledger.ParquetLedger` or
CSV exports with the same columns.  Besides the structural checks (columns,
result values, duplicates) every row is held to the game's own bounds: a win
takes at least :data:`rules.MIN_WINNING_MOVES` moves and no deal scores above
:func:`rules.score_ceiling`.
"""
from __future__ import annotations

import argparse
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable, Sequence

import pandas as pd

from ledger import RESULT_COLUMNS, PlayerStats, stats_from_frame
from rules import MIN_WINNING_MOVES, score_ceiling

LOGGER = logging.getLogger(__name__)

REQUIRED_COLUMNS = ("tag", "result", "timestamp_utc")
RECOMMENDED_COLUMNS = ("seed", "moves", "score", "elapsed_s")
ALLOWED_RESULTS = ("won", "blocked", "abandoned", "unknown")
IDENTITY_COLUMNS = ["tag", "seed", "timestamp_utc"]

TEXT_COLUMNS = ("tag", "result", "timestamp_utc", "seed")
COUNT_COLUMNS = ("moves", "elapsed_s")


class DatasetError(Exception):
    """Raised when a result log cannot be read at all."""


@dataclass
class Record:
    """One game as read from a result log."""

    tag: str
    result: str
    timestamp_utc: str
    seed: str | None = None
    moves: int | None = None
    score: int | None = None
    elapsed_s: int | None = None

    @property
    def won(self) -> bool:
        return self.result == "won"


def _read_csv(path: Path) -> pd.DataFrame:
    try:
        return pd.read_csv(path, dtype=str, keep_default_na=False, encoding="utf-8-sig")
    except pd.errors.EmptyDataError as exc:
        raise DatasetError(f"{path}: Missing header row") from exc


def load_frame(path: Path) -> pd.DataFrame:
    """Read *path* as it is stored; see :func:`normalise_frame` for cleaning."""

    readers = {
        ".csv": _read_csv,
        ".parquet": pd.read_parquet,
    }
    reader = readers.get(path.suffix.lower())
    if reader is None:
        raise DatasetError(f"{path}: Unsupported file extension")
    if not path.exists():
        raise DatasetError(f"{path}: No such file")
    try:
        frame = reader(path)
    except (OSError, ValueError, ImportError) as exc:
        raise DatasetError(f"{path}: Cannot read result log: {exc}") from exc
    LOGGER.debug("Loaded %d rows from %s", frame.shape[0], path)
    return frame


def _text(frame: pd.DataFrame, column: str) -> pd.Series:
    if column not in frame:
        return pd.Series(pd.NA, index=frame.index, dtype="string")
    values = frame[column].astype("string").str.strip()
    return values.replace("", pd.NA)


def _count(frame: pd.DataFrame, column: str, *, signed: bool = False) -> pd.Series:
    if column not in frame:
        return pd.Series(pd.NA, index=frame.index, dtype="Int64")
    values = pd.to_numeric(frame[column], errors="coerce")
    values = values.where(values.abs() != float("inf"))
    if not signed:
        values = values.where(values >= 0)
    return (values // 1).astype("Int64")


def normalise_frame(frame: pd.DataFrame) -> pd.DataFrame:
    """Return *frame* reduced to the result-log columns with clean types.

    Missing columns come back as all-NA, blank strings become NA, counts
    that are negative or not numbers become NA.  Scores stay signed since
    recycling can push them below zero.
    """

    frame = frame.rename(columns=lambda column: str(column).strip().lower())
    clean = pd.DataFrame(index=frame.index)
    for column in TEXT_COLUMNS:
        clean[column] = _text(frame, column)
    clean["result"] = clean["result"].str.lower()
    for column in COUNT_COLUMNS:
        clean[column] = _count(frame, column)
    clean["score"] = _count(frame, "score", signed=True)
    return clean[RESULT_COLUMNS]


def _cell(value: Any) -> Any:
    return None if pd.isna(value) else value


def records_from_frame(frame: pd.DataFrame) -> list[Record]:
    records = []
    for row in frame.to_dict("records"):
        moves, score, elapsed = (_cell(row[column]) for column in ("moves", "score", "elapsed_s"))
        records.append(
            Record(
                tag=_cell(row["tag"]) or "",
                result=_cell(row["result"]) or "",
                timestamp_utc=_cell(row["timestamp_utc"]) or "",
                seed=_cell(row["seed"]),
                moves=None if moves is None else int(moves),
                score=None if score is None else int(score),
                elapsed_s=None if elapsed is None else int(elapsed),
            )
        )
    return records


def load_records(path: Path) -> list[Record]:
    return records_from_frame(normalise_frame(load_frame(path)))


@dataclass
class ValidationResult:
    path: Path
    frame: pd.DataFrame
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def is_ok(self) -> bool:
        return not self.errors

    @property
    def rows(self) -> int:
        return int(self.frame.shape[0])

    @property
    def result_counts(self) -> dict[str, int]:
        counts = self.frame["result"].dropna().value_counts()
        return {str(label): int(count) for label, count in counts.items()}

    @property
    def stats(self) -> PlayerStats:
        return stats_from_frame(self.frame)


def _duplicates(frame: pd.DataFrame) -> list[str]:
    repeated = frame[frame.duplicated(subset=IDENTITY_COLUMNS)]
    repeated = repeated.drop_duplicates(subset=IDENTITY_COLUMNS)
    return [
        f"(tag={_cell(row.tag) or ''}, seed={_cell(row.seed) or '-'}, "
        f"timestamp_utc={_cell(row.timestamp_utc) or ''})"
        for row in repeated.itertuples(index=False)
    ]


def validate_frame(path: Path, raw: pd.DataFrame) -> ValidationResult:
    """Validate a frame as returned by :func:`load_frame`."""

    frame = normalise_frame(raw)
    result = ValidationResult(path=path, frame=frame)
    if frame.empty:
        result.errors.append("No records found")
        return result

    header = {str(column).strip().lower() for column in raw.columns}
    missing_columns = [column for column in REQUIRED_COLUMNS if column not in header]
    if missing_columns:
        result.errors.append("Missing required columns: " + ", ".join(sorted(missing_columns)))
    missing_recommended = [column for column in RECOMMENDED_COLUMNS if column not in header]
    if missing_recommended:
        result.warnings.append(
            "Missing recommended columns: " + ", ".join(sorted(missing_recommended))
        )

    results = frame["result"]
    unexpected = results[results.notna() & ~results.isin(ALLOWED_RESULTS)]
    if not unexpected.empty:
        result.errors.append(
            "Unexpected result values: " + ", ".join(sorted(set(unexpected)))
        )

    empty_tags = int(frame["tag"].isna().sum())
    if empty_tags:
        result.errors.append(f"{empty_tags} records missing tag values")
    empty_timestamps = int(frame["timestamp_utc"].isna().sum())
    if empty_timestamps:
        result.errors.append(f"{empty_timestamps} records missing timestamp_utc values")

    won = results.eq("won").fillna(False)
    if "moves" in header:
        win_moves = frame.loc[won, "moves"]
        silent = int(win_moves.isna().sum())
        if silent:
            result.errors.append(f"{silent} won records without a move count")
        too_short = int((win_moves.dropna() < MIN_WINNING_MOVES).sum())
        if too_short:
            result.errors.append(
                f"{too_short} won records with fewer than {MIN_WINNING_MOVES} moves"
            )

    if "score" in header:
        ceiling = score_ceiling()
        too_high = int((frame["score"].dropna() > ceiling).sum())
        if too_high:
            result.errors.append(f"{too_high} records scoring above {ceiling}")

    duplicates = _duplicates(frame)
    if duplicates:
        result.errors.append("Duplicate records detected: " + ", ".join(duplicates))

    if results.dropna().nunique() == 1:
        result.warnings.append(
            "All records share the same result value; outcome coverage may be incomplete"
        )

    return result


def format_result(result: ValidationResult) -> str:
    counts = " ".join(
        f"{label}={count}" for label, count in sorted(result.result_counts.items())
    )
    status = "ok" if result.is_ok else "failed"
    return f"{result.path}: {status} ({result.rows} rows) {counts}".strip()


def format_stats(stats: PlayerStats) -> str:
    line = f"games={stats.games_played} wins={stats.wins} best score={stats.best_score}"
    if stats.wins:
        line += f" fastest win={stats.fastest_win_time}s fewest moves={stats.fewest_moves}"
    return line


def run(paths: Iterable[str]) -> list[ValidationResult]:
    results: list[ValidationResult] = []
    for raw_path in paths:
        path = Path(raw_path)
        results.append(validate_frame(path, load_frame(path)))
    return results


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Validate Klondike result logs written as CSV or Parquet.",
    )
    parser.add_argument(
        "paths",
        nargs="+",
        help="Paths to result logs. Use shell globs to validate multiple files at once.",
    )
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_arg_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.WARNING)

    try:
        results = run(args.paths)
    except DatasetError as exc:
        parser.error(str(exc))

    has_error = False
    for result in results:
        print(format_result(result))
        if not result.frame.empty:
            print(f"  stats: {format_stats(result.stats)}")
        for warning in result.warnings:
            print(f"  warning: {warning}")
        for error in result.errors:
            print(f"  error: {error}")
            has_error = True
    return 1 if has_error else 0


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    raise SystemExit(main())
