"""
Shared fixtures: a scripted completion service, a recording sleep and
canned CSV / completion payloads.
"""
import os
import json
import pytest
from typing import Any, Dict, List

# The HTTP tests send many requests from the same client address
os.environ.setdefault("RATE_LIMIT_PER_MINUTE", "1000")

from insight_chat.core.config import Settings
from insight_chat.core.storage import InMemoryTranscriptStore
from insight_chat.services.completion import CompletionClient, RetryPolicy
from insight_chat.services.output_schemas import SUMMARY_SCHEMA
from insight_chat.services.providers import CompletionService

SALES_CSV = "Month,Sales\nJan,150\nFeb,200\nMar,250"

PRE_ANALYSIS_JSON = json.dumps({
    "summary": "Monthly sales for the first quarter.",
    "suggestedQuestions": ["What's the trend?", "Which month sold the most?", "How much was sold in total?"],
})

ANALYSIS_JSON = json.dumps({
    "findings": [
        {
            "insight": "Sales grow every month, from 150 in Jan to 250 in Mar.",
            "plot": {
                "chart_type": "line",
                "title": "Sales by month",
                "description": "Monthly sales",
                "data": json.dumps([["Month", "Sales"], ["Jan", "150"], ["Feb", "200"], ["Mar", "250"]]),
                "data_keys": {"x": "Month", "y": ["Sales"]},
            },
        },
        {"insight": "March is the best month."},
    ],
    "suggested_followups": ["What drove the March peak?"],
})

DEFAULT_SUMMARY_JSON = json.dumps({"summary": "The user explored monthly sales; sales grow from 150 to 250."})


class FakeCompletionService(CompletionService):
    """
    Scripted completion service.

    `responses` feed `complete` for analysis and pre-analysis schemas,
    `summaries` feed it for the summary schema, `streams` feed `stream`.
    A script item that is an exception is raised instead of returned.
    """

    name = "fake"

    def __init__(self, responses=(), summaries=(), streams=()):
        self.responses: List[Any] = list(responses)
        self.summaries: List[Any] = list(summaries)
        self.streams: List[Any] = list(streams)
        self.calls: List[Dict[str, Any]] = []
        self.stream_calls: List[Dict[str, Any]] = []

    @property
    def summary_calls(self) -> List[Dict[str, Any]]:
        return [c for c in self.calls if c["schema"] is SUMMARY_SCHEMA]

    @property
    def primary_calls(self) -> List[Dict[str, Any]]:
        return [c for c in self.calls if c["schema"] is not SUMMARY_SCHEMA]

    async def complete(self, prompt, schema, temperature):
        self.calls.append({"prompt": prompt, "schema": schema, "temperature": temperature})
        if schema is SUMMARY_SCHEMA:
            item = self.summaries.pop(0) if self.summaries else DEFAULT_SUMMARY_JSON
        else:
            assert self.responses, "no scripted response left"
            item = self.responses.pop(0)
        if isinstance(item, BaseException):
            raise item
        return item

    async def stream(self, prompt, schema, temperature):
        self.stream_calls.append({"prompt": prompt, "schema": schema, "temperature": temperature})
        assert self.streams, "no scripted stream left"
        script = self.streams.pop(0)
        if isinstance(script, BaseException):
            raise script
        for item in script:
            if isinstance(item, BaseException):
                raise item
            yield item


class RecordingSleep:
    """Stands in for asyncio.sleep and remembers every requested delay."""

    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, delay: float):
        self.delays.append(delay)


def make_client(service: CompletionService, sleep=None, rand=lambda: 0.5, max_attempts: int = 3) -> CompletionClient:
    policy = RetryPolicy(max_attempts=max_attempts, base_delay=1.0, sleep=sleep or RecordingSleep(), rand=rand)
    return CompletionClient(service, policy)


@pytest.fixture
def recording_sleep():
    return RecordingSleep()


@pytest.fixture
def settings():
    return Settings()


@pytest.fixture
def transcript_store():
    return InMemoryTranscriptStore()


@pytest.fixture
def sales_csv():
    return SALES_CSV


@pytest.fixture
def pre_analysis_json():
    return PRE_ANALYSIS_JSON


@pytest.fixture
def analysis_json():
    return ANALYSIS_JSON
