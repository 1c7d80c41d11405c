"""
Prompt construction for the structured-completion service.

Every builder here is a pure function: the same inputs give the same
prompt. Only a bounded sample of the CSV is ever embedded.
"""
import json
from typing import Any, Dict, Optional
from insight_chat.core.sanitization import sanitize_for_prompt
from insight_chat.core.schemas import DatasetProfile
from insight_chat.services.profiler import sample_lines

DEFAULT_SAMPLE_LINES = 200
QUICK_SAMPLE_LINES = 20

JSON_RESPONSE_INSTRUCTIONS = """
Always answer with a single valid JSON object. Do not wrap it in markdown (no ```json fences).
The JSON must strictly conform to the provided schema.
"""

ANALYST_PERSONA = """You are an expert data analyst. Your task is to analyze the provided dataset to answer the user's question.
Give actionable insights and create clear visualizations where appropriate."""

CHART_RULES = """**Output rules:**
- The top-level object has "findings" (array, required) and "suggested_followups" (array of strings, required).
- Every finding has "insight" (string, required) and an optional "plot".
- A "plot" has "chart_type" (one of "bar", "line", "scatter", "pie"), "title", "description", "data" and "data_keys".
- "data" MUST be a JSON string encoding an array of arrays. The FIRST row is the header, e.g. '[["City", "Sales"], ["Lisbon", 120]]'. Each following row holds one data point.
- "data_keys" names header columns: "x" for the category/X axis, "y" for the value series, "name" and "value" for pie charts.
- "data_keys.y" is ALWAYS an array, even for a single series (e.g. ["Sales"]).
- Every key used in "data_keys" MUST appear in the header row of "data"."""


def format_profile(profile: DatasetProfile) -> str:
    """Profile as indented JSON for embedding in a prompt."""
    return profile.model_dump_json(indent=2)


def build_pre_analysis_prompt(
    profile: DatasetProfile,
    csv_text: str,
    language: str = "English",
    max_sample_lines: int = QUICK_SAMPLE_LINES,
) -> str:
    """
    Quick-recognition prompt sent right after upload.

    Only the header and the first few lines travel with the profile.
    """
    return f"""
You are a data analysis assistant. A user has just uploaded a data file.
Below are the data profile and a sample of the first lines.
Give a very brief summary of the dataset and suggest 3-4 interesting starter questions the user could ask to begin the analysis.

Data profile:
{format_profile(profile)}

Data sample (CSV):
{sample_lines(csv_text, max_sample_lines)}

Answer in {language}.
{JSON_RESPONSE_INSTRUCTIONS}"""


def build_analysis_prompt(
    dataset_sample: str,
    question: str,
    recent_history: str = "",
    running_summary: str = "",
    profile: Optional[DatasetProfile] = None,
    language: str = "English",
    max_sample_lines: int = DEFAULT_SAMPLE_LINES,
) -> str:
    """
    Full analysis prompt for one user question.

    The running summary and recent history become separate context sections,
    each included only when non-empty.
    """
    context = []
    if profile is not None:
        context.append(f"- **Data profile:**\n{format_profile(profile)}")
    if running_summary.strip():
        context.append(f"- **Summary of the earlier conversation:**\n{running_summary.strip()}")
    if recent_history.strip():
        context.append(f"- **Recent conversation:**\n{recent_history.strip()}")
    context.append(f"- **Current user question:** \"{sanitize_for_prompt(question)}\"")
    context_block = "\n".join(context)

    return f"""
{ANALYST_PERSONA}

**Context:**
{context_block}

**Data (CSV sample):**
```csv
{sample_lines(dataset_sample, max_sample_lines)}
```

**Instructions:**
1. **Analyze:** Use the question, the profile and the conversation so far to analyze the data above.
2. **Find insights:** State 1 to 3 key findings that directly answer the question.
3. **Chart them:** For each finding that can be visualized, add a 'plot'.
   - Pick the most suitable chart type and keep charts simple.
   - If the data needs aggregating (sum, mean, count), aggregate it yourself and put the aggregated table in 'data'.
   - Every chart must support the insight it belongs to.
4. **Suggest next steps:** Give 3-5 'suggested_followups' that invite deeper exploration.

{CHART_RULES}

Answer in {language}.
{JSON_RESPONSE_INSTRUCTIONS}"""


def build_summary_prompt(older_transcript: str) -> str:
    """Prompt that compresses older turns into the rolling summary."""
    return f"""
You maintain the memory of a data-analysis conversation between a user and an analyst agent.
Summarize the conversation below in a compact paragraph that a colleague could pick up from.
- Keep every concrete data point mentioned (numbers, column names, categories, dates, rankings).
- Keep the thread of inquiry: what the user asked, in order, and what was concluded.
- Leave out pleasantries and chart formatting details.

Conversation:
{older_transcript}
{JSON_RESPONSE_INSTRUCTIONS}"""


def build_drill_down_question(chart_title: str, data_point: Dict[str, Any]) -> str:
    """Follow-up question for a clicked point of a chart."""
    details = ", ".join(
        f"{sanitize_for_prompt(str(key), 100)}: {sanitize_for_prompt(json.dumps(value, default=str), 200)}"
        for key, value in data_point.items()
    )
    return (
        f"Drill down into the point ({details}) of the chart \"{sanitize_for_prompt(chart_title, 200)}\". "
        "What explains this value, and how does it compare to the rest of the data?"
    )
