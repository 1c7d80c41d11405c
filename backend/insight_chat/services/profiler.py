"""
Column profiling over raw CSV text.

The CSV dialect is deliberately naive: lines split on newlines, cells split
on commas, double quotes stripped. Quoted commas and escaped quotes are not
supported.
"""
import logging
import re
import pandas as pd
from typing import List, Tuple
from insight_chat.core.errors import DataFormatError
from insight_chat.core.performance import track_performance
from insight_chat.core.schemas import ColumnProfile, ColumnType, DatasetProfile

logger = logging.getLogger(__name__)

LINE_SPLIT = re.compile(r'\r?\n')
INTEGER_PATTERN = r'-?[0-9]+'
ISO_DATE_PREFIX = r'[0-9]{4}-[0-9]{2}-[0-9]{2}'
# A date cell has at least one digit; bare month or day names and the
# pandas keywords "now" and "today" stay strings
HAS_DIGIT = r'[0-9]'


def _clean_cell(cell: str) -> str:
    return cell.strip().replace('"', '')


def split_csv(csv_text: str) -> Tuple[List[str], List[List[str]]]:
    """Split CSV text into a header and data rows of cleaned cells."""
    lines = LINE_SPLIT.split(csv_text.strip())
    header = [_clean_cell(h) for h in lines[0].split(',')]
    rows = [[_clean_cell(c) for c in line.split(',')] for line in lines[1:]]
    return header, rows


def sample_lines(csv_text: str, n: int) -> str:
    """Header line plus the first `n` data lines, unmodified."""
    lines = LINE_SPLIT.split(csv_text.strip())
    return '\n'.join(lines[:n + 1])


def _to_frame(header: List[str], rows: List[List[str]]) -> pd.DataFrame:
    # Positional columns: header names may repeat. Short rows are padded
    # with None, which counts as a missing cell.
    width = len(header)
    padded = [row[:width] + [None] * (width - len(row)) for row in rows]
    return pd.DataFrame(padded, columns=range(width), dtype=object)


def _blank_mask(values: pd.Series) -> pd.Series:
    return values.isna() | (values.fillna('').astype(str).str.strip() == '')


def detect_column_type(values: pd.Series) -> ColumnType:
    """
    Classify one column from its raw string cells.

    EMPTY when every cell is blank; INTEGER when every non-blank cell is an
    integer literal; FLOAT when every non-blank cell is numeric; DATE when
    every non-blank cell contains a digit and parses as a date or starts
    with YYYY-MM-DD; otherwise STRING.
    """
    present = values[~_blank_mask(values)].astype(str)
    if present.empty:
        return ColumnType.EMPTY

    numeric = pd.to_numeric(present, errors='coerce')
    if numeric.notna().all():
        if present.str.fullmatch(INTEGER_PATTERN).all():
            return ColumnType.INTEGER
        return ColumnType.FLOAT

    if present.str.contains(HAS_DIGIT).all():
        parsed = pd.to_datetime(present, errors='coerce', format='mixed')
        if (parsed.notna() | present.str.match(ISO_DATE_PREFIX)).all():
            return ColumnType.DATE

    return ColumnType.STRING


@track_performance("profile_csv")
def profile_csv(csv_text: str) -> DatasetProfile:
    """
    Profile raw CSV text.

    Raises:
        DataFormatError: when the text has no data rows
    """
    header, rows = split_csv(csv_text or '')
    if not rows:
        raise DataFormatError("CSV file has no data rows.", title="File error")

    df = _to_frame(header, rows)
    columns = []
    for index, name in enumerate(header):
        series = df[index]
        columns.append(ColumnProfile(
            name=name,
            inferred_type=detect_column_type(series),
            missing_count=int(_blank_mask(series).sum()),
        ))

    profile = DatasetProfile(row_count=len(rows), column_count=len(header), columns=columns)
    logger.info(f"Profiled CSV: {profile.row_count} rows, {profile.column_count} columns")
    return profile

