"""
Turns raw completion JSON into typed, chart-ready results.

Chart tables arrive as a JSON string holding a header-first 2-D array of
(mostly) string cells. They are transposed into row objects keyed by the
header, and every cell is coerced on its own: the service may mix "150"
and 150 in the same column.
"""
import re
import json
import math
import logging
from typing import Any, Dict, List, Optional, Union
from pydantic import ValidationError
from insight_chat.core.errors import ChartDataError, ResponseParseError
from insight_chat.core.performance import track_performance
from insight_chat.core.schemas import (
    AnalysisResult,
    ChartType,
    DataKeys,
    DatasetProfile,
    Finding,
    InspectionSummary,
    PlotSpec,
    PreAnalysisResult,
)

logger = logging.getLogger(__name__)

CODE_FENCE = re.compile(r'^\s*```[a-zA-Z]*\s*\n?(.*?)\n?\s*```\s*$', re.DOTALL)
DECIMAL_LITERAL = re.compile(r'[+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?', re.ASCII)
INTEGER_LITERAL = re.compile(r'[+-]?\d+', re.ASCII)


def strip_code_fences(text: str) -> str:
    """Remove a ```json ... ``` wrapper if the whole text is fenced."""
    match = CODE_FENCE.match(text)
    return match.group(1) if match else text.strip()


def coerce_cell(value: Any) -> Any:
    """
    Coerce one chart cell.

    Strings that trim to a finite decimal literal become int (integer
    literals) or float; blank strings become None; any other string is
    returned unchanged. Non-string values pass through.
    """
    if not isinstance(value, str):
        return value
    trimmed = value.strip()
    if not trimmed:
        return None
    if DECIMAL_LITERAL.fullmatch(trimmed):
        if INTEGER_LITERAL.fullmatch(trimmed):
            return int(trimmed)
        number = float(trimmed)
        if math.isfinite(number):
            return number
    return value


def parse_json_object(raw_text: str) -> Dict[str, Any]:
    """
    Parse completion text into a JSON object.

    Raises:
        ResponseParseError: on empty, malformed or non-object text
    """
    if not raw_text or not raw_text.strip():
        raise ResponseParseError("The response was empty.")
    try:
        payload = json.loads(strip_code_fences(raw_text))
    except ValueError as e:
        logger.warning(f"Completion returned invalid JSON: {e}")
        raise ResponseParseError(f"The response is not valid JSON ({e.msg} at position {e.pos}).")
    if not isinstance(payload, dict):
        raise ResponseParseError("The response is not a JSON object.")
    return payload


def _rows_from_table(data: Any, title: str) -> List[Dict[str, Any]]:
    if data is None:
        return []
    if isinstance(data, str):
        if not data.strip():
            return []
        try:
            data = json.loads(data)
        except ValueError as e:
            raise ChartDataError(f'The data of chart "{title}" is not valid JSON: {e.msg}.')

    if not isinstance(data, list):
        return []

    # Already row objects: a previously normalized result
    if data and all(isinstance(row, dict) for row in data):
        return [{str(k): coerce_cell(v) for k, v in row.items()} for row in data]

    if len(data) < 2:
        return []

    header = data[0]
    if not isinstance(header, list):
        raise ChartDataError(f'The first row of chart "{title}" must be a header array.')
    keys = [str(h) for h in header]

    rows = []
    for index, row in enumerate(data[1:], start=1):
        if not isinstance(row, list):
            raise ChartDataError(f'Row {index} of chart "{title}" is not an array.')
        cells = row[:len(keys)] + [None] * (len(keys) - len(row))
        rows.append({key: coerce_cell(cell) for key, cell in zip(keys, cells)})
    return rows


def _data_keys(raw: Any, title: str) -> DataKeys:
    if raw is None:
        return DataKeys()
    if isinstance(raw, DataKeys):
        return raw
    if not isinstance(raw, dict):
        raise ChartDataError(f'The data keys of chart "{title}" must be an object.')

    y = raw.get("y")
    if isinstance(y, str):
        y = [y] if y else None
    elif isinstance(y, list):
        y = [str(k) for k in y if k] or None
    elif y is not None:
        raise ChartDataError(f'The "y" key of chart "{title}" must be a list of column names.')

    def key(name: str) -> Optional[str]:
        value = raw.get(name)
        return str(value) if value else None

    return DataKeys(x=key("x"), y=y, name=key("name"), value=key("value"))


def _chart_type(raw: Any, title: str) -> ChartType:
    if isinstance(raw, ChartType):
        return raw
    try:
        return ChartType(str(raw).strip().lower())
    except ValueError:
        raise ChartDataError(f'Chart "{title}" has an unsupported chart type: {raw!r}.')


def normalize_plot(plot: Dict[str, Any]) -> PlotSpec:
    """
    Build a PlotSpec from one raw plot object.

    Raises:
        ChartDataError: when the table is malformed or a data key is missing from a row
    """
    title = str(plot.get("title") or "")
    chart_type = _chart_type(plot.get("chart_type", plot.get("chartType")), title)
    rows = _rows_from_table(plot.get("data"), title)
    data_keys = _data_keys(plot.get("data_keys", plot.get("dataKeys")), title)

    for key in data_keys.referenced():
        for index, row in enumerate(rows):
            if key not in row:
                raise ChartDataError(
                    f'Chart "{title}" refers to column "{key}", which is missing from data row {index + 1}.'
                )

    return PlotSpec(
        chart_type=chart_type,
        title=title,
        description=str(plot.get("description") or ""),
        data=rows,
        data_keys=data_keys,
    )


def normalize_analysis_payload(
    payload: Union[Dict[str, Any], AnalysisResult],
    profile: Optional[DatasetProfile] = None,
) -> AnalysisResult:
    """
    Normalize a decoded analysis payload.

    Also accepts an AnalysisResult (or its dump); normalizing it again
    returns an equal result.
    """
    if isinstance(payload, AnalysisResult):
        payload = payload.model_dump()

    raw_findings = payload.get("findings")
    if not isinstance(raw_findings, list):
        raise ResponseParseError('The response has no "findings" list.')

    findings = []
    for raw in raw_findings:
        if not isinstance(raw, dict) or not isinstance(raw.get("insight"), str):
            raise ResponseParseError('Every finding needs an "insight" text.')
        plot = raw.get("plot")
        if plot is not None and not isinstance(plot, dict):
            raise ChartDataError("A finding's plot must be an object.")
        findings.append(Finding(insight=raw["insight"], plot=normalize_plot(plot) if plot else None))

    followups = payload.get("suggested_followups") or []
    if not isinstance(followups, list):
        followups = []

    summary = None
    raw_summary = payload.get("inspection_summary")
    if isinstance(raw_summary, dict):
        try:
            summary = InspectionSummary.model_validate(raw_summary)
        except ValidationError as e:
            logger.warning(f"Ignoring malformed inspection summary: {e.error_count()} errors")
    if summary is None and profile is not None:
        summary = InspectionSummary.from_profile(profile)

    return AnalysisResult(
        inspection_summary=summary,
        findings=findings,
        suggested_followups=[f for f in followups if isinstance(f, str) and f.strip()],
    )


@track_performance("normalize_analysis")
def normalize_analysis(raw_text: str, profile: Optional[DatasetProfile] = None) -> AnalysisResult:
    """
    Parse and normalize the raw text of an analysis completion.

    Raises:
        ResponseParseError: when the text is not the JSON object we asked for
        ChartDataError: when a chart's table cannot be interpreted
    """
    result = normalize_analysis_payload(parse_json_object(raw_text), profile)
    logger.debug(f"Normalized analysis with {len(result.findings)} findings")
    return result


def parse_pre_analysis(raw_text: str) -> PreAnalysisResult:
    """Parse a pre-analysis completion into summary + suggested questions."""
    payload = parse_json_object(raw_text)
    try:
        return PreAnalysisResult.model_validate(payload)
    except ValidationError as e:
        logger.warning(f"Pre-analysis response failed validation: {e.error_count()} errors")
        raise ResponseParseError('The response needs a "summary" text and a "suggestedQuestions" list.')


def parse_summary(raw_text: str) -> str:
    """Rolling summary text from a summary completion."""
    summary = parse_json_object(raw_text).get("summary")
    if not isinstance(summary, str):
        raise ResponseParseError('The response has no "summary" text.')
    return summary.strip()
