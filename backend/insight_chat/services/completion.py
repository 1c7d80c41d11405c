"""
Completion client: retries quota failures with exponential backoff and
exposes streamed completions as an ordered, cancellable chunk stream.
"""
import time
import random
import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, Optional, TypeVar
from insight_chat.core.config import Settings
from insight_chat.core.errors import QuotaExceededError, ServiceError
from insight_chat.core.performance import PerformanceMonitor
from insight_chat.services.providers import CompletionService

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """
    Attempt limit and backoff for quota failures.

    The wait after failed attempt n (0-based) is
    ``base_delay * 2**n + uniform(0, max_jitter)``; max_jitter defaults to
    base_delay, which keeps successive waits non-decreasing.
    """

    max_attempts: int = 3
    base_delay: float = 1.0
    max_jitter: Optional[float] = None
    sleep: Callable[[float], Awaitable[Any]] = field(default=asyncio.sleep, compare=False)
    rand: Callable[[], float] = field(default=random.random, compare=False)

    def delay_for(self, attempt: int) -> float:
        jitter = self.base_delay if self.max_jitter is None else self.max_jitter
        return self.base_delay * (2 ** attempt) + self.rand() * jitter

    @classmethod
    def from_settings(cls, settings: Settings) -> "RetryPolicy":
        return cls(max_attempts=settings.max_retries, base_delay=settings.retry_base_delay_seconds)


@dataclass(frozen=True)
class StreamChunk:
    text: str
    accumulated: str
    final: bool


class CompletionStream:
    """
    Ordered chunks of one completion.

    One chunk is read ahead so the last one can be flagged ``final``.
    Iteration is single-pass; ``aclose`` cancels the underlying request.
    """

    def __init__(self, source: AsyncIterator[str], first_text: str):
        self._source = source
        self._pending: Optional[str] = first_text
        self._accumulated = ""
        self._closed = False

    @property
    def text(self) -> str:
        """Everything delivered so far."""
        return self._accumulated

    @property
    def closed(self) -> bool:
        return self._closed

    def __aiter__(self) -> "CompletionStream":
        return self

    async def __anext__(self) -> StreamChunk:
        if self._closed or self._pending is None:
            raise StopAsyncIteration

        text = self._pending
        try:
            self._pending = await self._source.__anext__()
        except StopAsyncIteration:
            self._pending = None
            self._closed = True

        self._accumulated += text
        return StreamChunk(text=text, accumulated=self._accumulated, final=self._pending is None)

    async def collect(self) -> str:
        """Drain the stream and return the full text."""
        async for _ in self:
            pass
        return self._accumulated

    async def aclose(self) -> None:
        if self._closed and self._pending is None:
            return
        self._closed = True
        self._pending = None
        aclose = getattr(self._source, "aclose", None)
        if aclose is not None:
            await aclose()
        logger.debug("Completion stream cancelled")


class CompletionClient:
    """Calls a CompletionService under a RetryPolicy."""

    def __init__(self, service: CompletionService, policy: Optional[RetryPolicy] = None):
        self.service = service
        self.policy = policy or RetryPolicy()

    async def invoke(self, prompt: str, schema: Dict[str, Any], temperature: float) -> str:
        """
        Full JSON text of one completion.

        Raises:
            QuotaExceededError: when every attempt hit the quota
            InvalidKeyError / ServiceError: on the first non-quota failure
        """
        return await self._with_retry(
            lambda: self.service.complete(prompt, schema, temperature),
            "completion_invoke",
        )

    async def invoke_stream(self, prompt: str, schema: Dict[str, Any], temperature: float) -> CompletionStream:
        """
        Open a streamed completion.

        Retries cover opening the stream (up to its first chunk); failures
        after that surface from the stream itself.
        """
        async def open_stream() -> CompletionStream:
            source = self.service.stream(prompt, schema, temperature)
            try:
                first = await source.__anext__()
            except StopAsyncIteration:
                raise ServiceError("The AI service returned an empty response.")
            return CompletionStream(source, first)

        return await self._with_retry(open_stream, "completion_stream_open")

    async def _with_retry(self, attempt_fn: Callable[[], Awaitable[T]], metric_name: str) -> T:
        attempts = self.policy.max_attempts
        for attempt in range(attempts):
            start_time = time.perf_counter()
            try:
                result = await attempt_fn()
            except QuotaExceededError as e:
                PerformanceMonitor.record_metric(
                    metric_name, time.perf_counter() - start_time,
                    {'status': 'error', 'error': 'quota', 'attempt': attempt + 1}
                )
                if attempt + 1 >= attempts:
                    logger.error(f"Completion quota exceeded after {attempts} attempts")
                    raise
                delay = self.policy.delay_for(attempt)
                logger.warning(
                    f"Completion quota exceeded (attempt {attempt + 1}/{attempts}), retrying in {delay:.2f}s: {e.message}"
                )
                await self.policy.sleep(delay)
            except ServiceError as e:
                PerformanceMonitor.record_metric(
                    metric_name, time.perf_counter() - start_time,
                    {'status': 'error', 'error': e.kind, 'attempt': attempt + 1}
                )
                logger.error(f"Completion failed ({e.kind}), not retrying: {e.message}")
                raise
            else:
                PerformanceMonitor.record_metric(
                    metric_name, time.perf_counter() - start_time,
                    {'status': 'success', 'attempt': attempt + 1}
                )
                return result
        # max_attempts < 1
        raise ServiceError("No completion attempt was made.")
