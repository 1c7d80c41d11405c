"""
Unit tests for the profiler service.
"""
import pytest
import pandas as pd
from insight_chat.core.errors import DataFormatError
from insight_chat.core.schemas import ColumnType, DatasetProfile
from insight_chat.services.profiler import (
    detect_column_type,
    profile_csv,
    sample_lines,
    split_csv,
)


def column_type(values):
    return detect_column_type(pd.Series(values, dtype=object))


@pytest.mark.unit
def test_profile_csv_basic(sales_csv):
    """Test profiling a basic dataset."""
    profile = profile_csv(sales_csv)

    assert isinstance(profile, DatasetProfile)
    assert profile.row_count == 3
    assert profile.column_count == 2
    assert [c.name for c in profile.columns] == ["Month", "Sales"]
    assert profile.columns[0].inferred_type == ColumnType.STRING
    assert profile.columns[1].inferred_type == ColumnType.INTEGER


@pytest.mark.unit
@pytest.mark.parametrize("values,expected", [
    (["1", "2", "3"], ColumnType.INTEGER),
    (["-4", "007", "12"], ColumnType.INTEGER),
    (["1.5", "2"], ColumnType.FLOAT),
    (["1e3", "2.25"], ColumnType.FLOAT),
    (["", "", ""], ColumnType.EMPTY),
    (["  ", None], ColumnType.EMPTY),
    (["2024-01-01", "2024-02-01"], ColumnType.DATE),
    (["2024-01-01T10:00:00", "", "2024-03-01"], ColumnType.DATE),
    (["a", "b"], ColumnType.STRING),
    (["1", "two", "3"], ColumnType.STRING),
    (["Jan", "Feb", "Mar"], ColumnType.STRING),
    (["May", "June"], ColumnType.STRING),
    (["Monday", "Tuesday"], ColumnType.STRING),
    (["now", "today"], ColumnType.STRING),
    (["2024-01-01", "today"], ColumnType.STRING),
    (["03/15/2024", "04/01/2024"], ColumnType.DATE),
])
def test_detect_column_type(values, expected):
    assert column_type(values) == expected


@pytest.mark.unit
def test_blanks_do_not_change_the_type():
    assert column_type(["1", "", "3", None]) == ColumnType.INTEGER


@pytest.mark.unit
def test_missing_counts_match_blank_cells():
    csv_text = "a,b,c\n1,,x\n,2\n3,4,5\n , ,"
    profile = profile_csv(csv_text)

    header, rows = split_csv(csv_text)
    independent = sum(
        1
        for row in rows
        for i in range(len(header))
        if i >= len(row) or row[i].strip() == ""
    )

    assert len(profile.columns) == len(header)
    assert sum(c.missing_count for c in profile.columns) == independent
    assert [c.missing_count for c in profile.columns] == [2, 2, 2]


@pytest.mark.unit
def test_quotes_are_stripped():
    profile = profile_csv('"name","score"\n"Ann","10"\n"Bo","12"')

    assert [c.name for c in profile.columns] == ["name", "score"]
    assert profile.columns[1].inferred_type == ColumnType.INTEGER


@pytest.mark.unit
def test_windows_line_endings():
    profile = profile_csv("x,y\r\n1,2\r\n3,4\r\n")

    assert profile.row_count == 2
    assert profile.columns[1].inferred_type == ColumnType.INTEGER


@pytest.mark.unit
@pytest.mark.parametrize("csv_text", ["", "a,b", "a,b\n", "\n\n"])
def test_no_data_rows_raises(csv_text):
    with pytest.raises(DataFormatError):
        profile_csv(csv_text)


@pytest.mark.unit
def test_sample_lines_keeps_header():
    csv_text = "h\n" + "\n".join(str(i) for i in range(50))

    sample = sample_lines(csv_text, 5)

    assert sample.splitlines() == ["h", "0", "1", "2", "3", "4"]
    assert sample_lines("h\n1", 20) == "h\n1"
