"""Summarise Klondike game-result logs into per-file statistics."""
from __future__ import annotations

import argparse
import json
import logging
from dataclasses import asdict, dataclass
from pathlib import Path
from statistics import mean, median
from typing import Iterable, Sequence

from ledger import GameOutcome, PlayerStats, stats_from_outcomes
from scripts.validate import DatasetError, Record, load_records

LOGGER = logging.getLogger(__name__)

FINISHED_RESULTS = ("won", "blocked")


@dataclass(frozen=True)
class Summary:
    """Aggregate statistics describing a collection of game records."""

    total_records: int
    result_counts: dict[str, int]
    win_rate: float | None
    average_moves: float | None
    median_moves: float | None
    average_score: float | None
    average_elapsed_s: float | None
    median_elapsed_s: float | None
    player: PlayerStats


def _normalise_result(value: str | None) -> str:
    return (value or "").strip().lower()


def filter_records(
    records: Sequence[Record],
    include_results: Sequence[str] | None = None,
    exclude_results: Sequence[str] | None = None,
    tags: Sequence[str] | None = None,
) -> list[Record]:
    """Return *records* filtered by result inclusion/exclusion lists and tags."""

    include_set = {_normalise_result(value) for value in include_results or []}
    exclude_set = {_normalise_result(value) for value in exclude_results or []}
    tag_set = set(tags or [])

    filtered: list[Record] = []
    for record in records:
        result = _normalise_result(record.result)
        if include_set and result not in include_set:
            continue
        if exclude_set and result in exclude_set:
            continue
        if tag_set and record.tag not in tag_set:
            continue
        filtered.append(record)
    return filtered


def player_stats(records: Sequence[Record]) -> PlayerStats:
    """Replay finished games through the ledger's statistics rules.

    Only ``won`` and ``blocked`` rows count as played games; abandoned and
    unknown rows are skipped.
    """

    outcomes = [
        GameOutcome(
            result=_normalise_result(record.result),
            score=record.score or 0,
            moves=record.moves or 0,
            elapsed_time=record.elapsed_s or 0,
            finished_at=record.timestamp_utc,
        )
        for record in records
        if _normalise_result(record.result) in FINISHED_RESULTS
    ]
    return stats_from_outcomes(outcomes)


def _mean_median(samples: list[int]) -> tuple[float | None, float | None]:
    if not samples:
        return None, None
    return mean(samples), median(samples)


def summarise_records(records: Sequence[Record]) -> Summary:
    """Return aggregate statistics for *records*."""

    total = len(records)
    result_counts: dict[str, int] = {}
    for record in records:
        result = _normalise_result(record.result) or "unknown"
        result_counts[result] = result_counts.get(result, 0) + 1

    move_samples = [record.moves for record in records if record.moves is not None]
    score_samples = [record.score for record in records if record.score is not None]
    elapsed_samples = [
        record.elapsed_s for record in records if record.elapsed_s is not None
    ]

    average_moves, median_moves = _mean_median(move_samples)
    average_elapsed, median_elapsed = _mean_median(elapsed_samples)

    return Summary(
        total_records=total,
        result_counts=result_counts,
        win_rate=result_counts.get("won", 0) / total if total else None,
        average_moves=average_moves,
        median_moves=median_moves,
        average_score=mean(score_samples) if score_samples else None,
        average_elapsed_s=average_elapsed,
        median_elapsed_s=median_elapsed,
        player=player_stats(records),
    )


def format_summary(path: Path, summary: Summary) -> str:
    """Return a human-readable description of *summary* for *path*."""

    lines = [f"{path}: {summary.total_records} records"]

    if summary.result_counts:
        ordered = ", ".join(
            f"{label}={count}" for label, count in sorted(summary.result_counts.items())
        )
        lines.append(f"  results: {ordered}")

    if summary.win_rate is not None:
        lines.append(f"  win rate: {summary.win_rate * 100:.1f}%")

    if summary.average_moves is not None:
        lines.append(
            f"  moves: mean={summary.average_moves:.1f} median={summary.median_moves:.1f}"
        )
    if summary.average_score is not None:
        lines.append(f"  average score: {summary.average_score:.1f}")
    if summary.average_elapsed_s is not None:
        lines.append(
            f"  time: mean={summary.average_elapsed_s:.1f}s median={summary.median_elapsed_s:.1f}s"
        )

    player = summary.player
    lines.append(
        f"  games={player.games_played} wins={player.wins} losses={player.losses}"
        f" best score={player.best_score}"
    )
    if player.wins:
        lines.append(
            f"  fastest win: {player.fastest_win_time}s, fewest moves: {player.fewest_moves}"
        )

    return "\n".join(lines)


def summarise_path(
    path: Path,
    include_results: Sequence[str] | None = None,
    exclude_results: Sequence[str] | None = None,
    tags: Sequence[str] | None = None,
) -> Summary:
    """Load records from *path* and return their summary."""

    records = load_records(path)
    filtered = filter_records(records, include_results, exclude_results, tags)
    LOGGER.debug("%s: %d of %d records kept", path, len(filtered), len(records))
    return summarise_records(filtered)


def run(
    paths: Iterable[str],
    *,
    include_results: Sequence[str] | None = None,
    exclude_results: Sequence[str] | None = None,
    tags: Sequence[str] | None = None,
) -> list[tuple[Path, Summary]]:
    results: list[tuple[Path, Summary]] = []
    for raw_path in paths:
        path = Path(raw_path)
        summary = summarise_path(path, include_results, exclude_results, tags)
        results.append((path, summary))
    return results


def summary_to_dict(summary: Summary) -> dict[str, object]:
    """Return a JSON-serialisable representation of *summary*."""

    payload = asdict(summary)
    payload["result_counts"] = dict(sorted(payload["result_counts"].items()))
    payload["player"] = summary.player.to_dict()
    return payload


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Summarise Klondike game-result logs exported as CSV or Parquet.",
    )
    parser.add_argument(
        "paths",
        nargs="+",
        help="Paths to result logs. Use shell globs to summarise multiple files at once.",
    )
    parser.add_argument(
        "--include-result",
        dest="include_results",
        action="append",
        default=None,
        help="Only include games whose result matches the given value. Can be repeated.",
    )
    parser.add_argument(
        "--exclude-result",
        dest="exclude_results",
        action="append",
        default=None,
        help="Ignore games whose result matches the given value. Can be repeated.",
    )
    parser.add_argument(
        "--tag",
        dest="tags",
        action="append",
        default=None,
        help="Only include games recorded under the given tag. Can be repeated.",
    )
    parser.add_argument(
        "--json",
        dest="as_json",
        action="store_true",
        help="Emit the summary as JSON instead of formatted text.",
    )
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_arg_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.WARNING)

    try:
        summaries = run(
            args.paths,
            include_results=args.include_results,
            exclude_results=args.exclude_results,
            tags=args.tags,
        )
    except DatasetError as exc:
        parser.error(str(exc))

    if args.as_json:
        payload = [
            {"path": str(path), "summary": summary_to_dict(summary)}
            for path, summary in summaries
        ]
        print(json.dumps(payload, indent=2))
    else:
        for path, summary in summaries:
            print(format_summary(path, summary))

    return 0


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    raise SystemExit(main())
