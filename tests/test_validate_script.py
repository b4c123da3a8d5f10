import csv
import pathlib
import sys

import pandas as pd
import pytest

ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from ledger import RESULT_COLUMNS, GameOutcome, ParquetLedger, PlayerStats
from rules import MIN_WINNING_MOVES, score_ceiling
from scripts import validate


def _write_csv(path: pathlib.Path, rows):
    fieldnames = sorted({key for row in rows for key in row.keys()})
    with path.open("w", encoding="utf-8", newline="") as handle:
        writer = csv.DictWriter(handle, fieldnames=fieldnames)
        writer.writeheader()
        writer.writerows(rows)


def _validate(path: pathlib.Path):
    return validate.validate_frame(path, validate.load_frame(path))


def _row(**overrides):
    row = {
        "tag": "alpha",
        "result": "won",
        "timestamp_utc": "2024-01-01T00:00:00Z",
        "seed": "42",
        "moves": "120",
        "score": "95",
        "elapsed_s": "600",
    }
    row.update(overrides)
    return row


def test_validate_frame_success(tmp_path):
    csv_path = tmp_path / "results.csv"
    _write_csv(
        csv_path,
        [
            _row(),
            _row(tag="beta", result="blocked", timestamp_utc="2024-01-02T00:00:00Z",
                 seed="43", moves="130", score="-20", elapsed_s="650"),
        ],
    )

    result = _validate(csv_path)
    records = validate.load_records(csv_path)

    assert result.is_ok
    assert result.errors == []
    assert result.warnings == []
    assert result.result_counts == {"won": 1, "blocked": 1}
    assert result.stats.games_played == 2
    assert result.stats.fewest_moves == 120
    assert records[1].score == -20
    assert records[0].elapsed_s == 600
    assert records[0].seed == "42"


def test_negative_and_garbled_counts_are_dropped(tmp_path):
    csv_path = tmp_path / "negative.csv"
    _write_csv(
        csv_path,
        [{"tag": "a", "result": " Blocked ", "timestamp_utc": "t", "moves": "-3", "elapsed_s": "x"}],
    )

    (record,) = validate.load_records(csv_path)

    assert record.result == "blocked"
    assert record.moves is None
    assert record.elapsed_s is None
    assert record.score is None


def test_duplicate_detection(tmp_path):
    csv_path = tmp_path / "duplicate.csv"
    row = {
        "tag": "gamma",
        "result": "abandoned",
        "timestamp_utc": "2024-01-03T00:00:00Z",
        "seed": "44",
    }
    _write_csv(csv_path, [row, row])

    result = _validate(csv_path)

    assert not result.is_ok
    assert any(
        "Duplicate records detected: (tag=gamma, seed=44" in error for error in result.errors
    )


def test_missing_required_column(tmp_path):
    csv_path = tmp_path / "missing.csv"
    _write_csv(csv_path, [{"tag": "delta", "result": "won"}])

    result = _validate(csv_path)

    assert not result.is_ok
    assert "Missing required columns: timestamp_utc" in result.errors


@pytest.mark.parametrize("value", ["win", "loss", "partial"])
def test_invalid_result_values(tmp_path, value):
    csv_path = tmp_path / f"invalid_{value}.csv"
    _write_csv(
        csv_path,
        [{"tag": "epsilon", "result": value, "timestamp_utc": "2024-01-04T00:00:00Z"}],
    )

    result = _validate(csv_path)

    assert not result.is_ok
    assert f"Unexpected result values: {value}" in result.errors


def test_wins_need_a_move_count(tmp_path):
    csv_path = tmp_path / "wins.csv"
    _write_csv(
        csv_path,
        [
            _row(tag="a", moves=""),
            _row(tag="b", result="blocked", moves=""),
        ],
    )

    result = _validate(csv_path)

    assert "1 won records without a move count" in result.errors


def test_wins_shorter_than_a_deal_allows_are_rejected(tmp_path):
    csv_path = tmp_path / "short.csv"
    _write_csv(
        csv_path,
        [
            _row(tag="a", moves=str(MIN_WINNING_MOVES - 1)),
            _row(tag="b", moves=str(MIN_WINNING_MOVES)),
            _row(tag="c", result="blocked", moves="3"),
        ],
    )

    result = _validate(csv_path)

    assert result.errors == [f"1 won records with fewer than {MIN_WINNING_MOVES} moves"]


def test_scores_above_the_ceiling_are_rejected(tmp_path):
    ceiling = score_ceiling()
    csv_path = tmp_path / "scores.csv"
    _write_csv(
        csv_path,
        [
            _row(tag="a", score=str(ceiling)),
            _row(tag="b", result="blocked", score=str(ceiling + 1)),
        ],
    )

    result = _validate(csv_path)

    assert result.errors == [f"1 records scoring above {ceiling}"]


def test_validates_ledger_parquet_output(tmp_path):
    parquet_path = tmp_path / "results.parquet"
    ledger = ParquetLedger(parquet_path, tag="solo")
    ledger.append_rows(
        [
            {"tag": "solo", "result": "won", "timestamp_utc": "2024-01-01T00:00:00+00:00",
             "seed": "1", "moves": 90, "score": 130, "elapsed_s": 400},
            {"tag": "solo", "result": "blocked", "timestamp_utc": "2024-01-02T00:00:00+00:00",
             "seed": "2", "moves": 60, "score": -5, "elapsed_s": 300},
        ]
    )

    result = validate.run([str(parquet_path)])[0]
    records = validate.records_from_frame(result.frame)

    assert result.is_ok
    assert list(result.frame.columns) == RESULT_COLUMNS
    assert records[0].moves == 90
    assert records[1].score == -5
    assert result.stats == ledger.stats()


def test_ledger_records_validate_cleanly(tmp_path):
    parquet_path = tmp_path / "ledger.parquet"
    ledger = ParquetLedger(parquet_path, tag="bob")
    ledger.record(GameOutcome(result="won", score=600, moves=140, elapsed_time=200, seed=5), PlayerStats())
    ledger.record(GameOutcome(result="blocked", score=-40, moves=70, elapsed_time=90, seed=6), PlayerStats())

    result = _validate(parquet_path)

    assert result.is_ok
    assert result.result_counts == {"blocked": 1, "won": 1}


def test_empty_log_is_an_error(tmp_path):
    parquet_path = tmp_path / "empty.parquet"
    pd.DataFrame(columns=RESULT_COLUMNS).to_parquet(parquet_path, index=False)

    result = _validate(parquet_path)

    assert result.errors == ["No records found"]


def test_run_reports_each_file(tmp_path, capsys):
    csv_one = tmp_path / "one.csv"
    csv_two = tmp_path / "two.csv"
    _write_csv(
        csv_one,
        [{"tag": "zeta", "result": "won", "timestamp_utc": "2024-01-05T00:00:00Z"}],
    )
    _write_csv(csv_two, [{"tag": "zeta", "result": "won", "timestamp_utc": ""}])

    exit_code = validate.main([str(csv_one), str(csv_two)])

    captured = capsys.readouterr()
    assert "one.csv: ok (1 rows) won=1" in captured.out
    assert "stats: games=1 wins=1" in captured.out
    assert "error: 1 records missing timestamp_utc values" in captured.out
    assert exit_code == 1


def test_unreadable_parquet_is_a_usage_error(tmp_path):
    parquet_path = tmp_path / "sample.parquet"
    parquet_path.write_bytes(b"")

    with pytest.raises(SystemExit) as exc:
        validate.main([str(parquet_path)])

    assert exc.value.code == 2


def test_headerless_csv_is_a_dataset_error(tmp_path):
    csv_path = tmp_path / "blank.csv"
    csv_path.write_text("", encoding="utf-8")

    with pytest.raises(validate.DatasetError):
        validate.load_frame(csv_path)


def test_unsupported_extension(tmp_path):
    with pytest.raises(validate.DatasetError):
        validate.load_records(tmp_path / "results.json")
