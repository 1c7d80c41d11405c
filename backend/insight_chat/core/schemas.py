from enum import Enum
from pydantic import BaseModel, ConfigDict, Field
from typing import List, Optional, Any, Dict


class ColumnType(str, Enum):
    EMPTY = "EMPTY"
    INTEGER = "INTEGER"
    FLOAT = "FLOAT"
    DATE = "DATE"
    STRING = "STRING"


class ColumnProfile(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    inferred_type: ColumnType
    missing_count: int = Field(ge=0)


class DatasetProfile(BaseModel):
    model_config = ConfigDict(frozen=True)

    row_count: int
    column_count: int
    columns: List[ColumnProfile]


class ChartType(str, Enum):
    BAR = "bar"
    LINE = "line"
    PIE = "pie"
    SCATTER = "scatter"


class DataKeys(BaseModel):
    model_config = ConfigDict(frozen=True)

    x: Optional[str] = None
    y: Optional[List[str]] = None  # always a list, even for a single series
    name: Optional[str] = None
    value: Optional[str] = None

    def referenced(self) -> List[str]:
        """All keys a renderer will look up in each row."""
        keys = [k for k in (self.x, self.name, self.value) if k]
        keys.extend(self.y or [])
        return keys


class PlotSpec(BaseModel):
    model_config = ConfigDict(frozen=True)

    chart_type: ChartType
    title: str = ""
    description: str = ""
    data: List[Dict[str, Any]] = []  # row-objects, header names as keys
    data_keys: DataKeys = DataKeys()


class Finding(BaseModel):
    model_config = ConfigDict(frozen=True)

    insight: str
    plot: Optional[PlotSpec] = None


class ColumnDetail(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    type: str
    missing_values: int


class InspectionSummary(BaseModel):
    model_config = ConfigDict(frozen=True)

    rows: int
    columns: int
    column_details: List[ColumnDetail] = []

    @classmethod
    def from_profile(cls, profile: DatasetProfile) -> "InspectionSummary":
        return cls(
            rows=profile.row_count,
            columns=profile.column_count,
            column_details=[
                ColumnDetail(name=c.name, type=c.inferred_type.value, missing_values=c.missing_count)
                for c in profile.columns
            ],
        )


class AnalysisResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    inspection_summary: Optional[InspectionSummary] = None
    findings: List[Finding]
    suggested_followups: List[str] = []


class PreAnalysisResult(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    summary: str
    suggested_questions: List[str] = Field(default_factory=list, alias="suggestedQuestions")


class Sender(str, Enum):
    USER = "user"
    AGENT = "agent"


class ConversationTurn(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    sender: Sender
    text: str
    analysis_result: Optional[AnalysisResult] = None
    is_error: bool = False
    in_flight: bool = False  # placeholder agent turn while a question is answered


class SessionState(str, Enum):
    PRE_ANALYSIS = "pre_analysis"
    LOADING = "loading"
    SHOWING_SUGGESTIONS = "showing_suggestions"
    CHAT = "chat"
    ERROR = "error"


class UserError(BaseModel):
    title: str
    message: str


class QuestionRequest(BaseModel):
    question: str = Field(min_length=1, max_length=2000)


class DrillDownRequest(BaseModel):
    chart_title: str = Field(min_length=1, max_length=500)
    data_point: Dict[str, Any]


class SessionView(BaseModel):
    session_id: str
    state: SessionState
    file_name: Optional[str] = None
    profile: Optional[DatasetProfile] = None
    pre_analysis: Optional[PreAnalysisResult] = None
    turns: List[ConversationTurn] = []
    error: Optional[UserError] = None
