from datetime import datetime
from pathlib import Path
import sys

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from processor.csv_reader import parse_timestamp, read_csv_rows, to_bool, to_float, to_int
from processor.errors import SourceFileError


def test_read_csv_rows_strips_bom_trims_and_skips_blank_lines(tmp_path):
    path = tmp_path / "feed.csv"
    path.write_bytes("\ufeffa, b ,c\n 1 , 2,3\n\n,,\n4,5,6\n".encode("utf-8"))

    rows = list(read_csv_rows(path))

    assert [r for _, r in rows] == [
        {"a": "1", "b": "2", "c": "3"},
        {"a": "4", "b": "5", "c": "6"},
    ]
    assert rows[0][0] == 2


def test_read_csv_rows_tolerates_ragged_rows(tmp_path):
    path = tmp_path / "feed.csv"
    path.write_text("a,b,c\n1\n1,2,3,4,5\n", encoding="utf-8")

    records = [r for _, r in read_csv_rows(path)]

    assert records[0] == {"a": "1", "b": "", "c": ""}
    assert records[1] == {"a": "1", "b": "2", "c": "3"}


def test_read_csv_rows_accepts_fields_above_default_size_limit(tmp_path):
    path = tmp_path / "feed.csv"
    long_title = "x" * 200_000
    path.write_text(f"title,group\n{long_title},fashion\nshort,food\n", encoding="utf-8")

    records = [r for _, r in read_csv_rows(path)]

    assert len(records[0]["title"]) == 200_000
    assert records[1] == {"title": "short", "group": "food"}


def test_read_csv_rows_handles_quoted_commas(tmp_path):
    path = tmp_path / "feed.csv"
    path.write_text('title,group\n"Sale, 50% off",fashion\n', encoding="utf-8")

    records = [r for _, r in read_csv_rows(path)]

    assert records == [{"title": "Sale, 50% off", "group": "fashion"}]


def test_read_csv_rows_missing_file_raises_source_error(tmp_path):
    with pytest.raises(SourceFileError):
        list(read_csv_rows(tmp_path / "nope.csv"))


def test_parse_timestamp_normalises_aware_values_to_naive_utc():
    assert parse_timestamp("2024-03-01T10:00:00+09:00") == datetime(2024, 3, 1, 1, 0, 0)
    assert parse_timestamp("2024-03-01T10:00:00Z") == datetime(2024, 3, 1, 10, 0, 0)
    assert parse_timestamp("2024-03-01 10:00:00") == datetime(2024, 3, 1, 10, 0, 0)
    assert parse_timestamp("2024/03/01 10:00") == datetime(2024, 3, 1, 10, 0, 0)


@pytest.mark.parametrize("raw", [None, "", "   ", "not-a-date", "2024-13-45"])
def test_parse_timestamp_rejects_garbage(raw):
    assert parse_timestamp(raw) is None


def test_numeric_and_boolean_coercions():
    assert to_float("1.5") == 1.5
    assert to_float("abc") == 0.0
    assert to_float("nan") == 0.0
    assert to_float("") == 0.0
    assert to_int("3") == 3
    assert to_int("3.0") == 3
    assert to_int("x") == 0
    assert to_bool("true") is True
    assert to_bool("TRUE") is False
    assert to_bool("false") is False
