"""
Tests for the completion client: retry policy and streaming.
"""
import pytest
from conftest import FakeCompletionService, RecordingSleep, make_client
from insight_chat.core.errors import InvalidKeyError, QuotaExceededError, ServiceError
from insight_chat.services.completion import RetryPolicy
from insight_chat.services.output_schemas import ANALYSIS_RESULT_SCHEMA

SCHEMA = ANALYSIS_RESULT_SCHEMA


@pytest.mark.unit
@pytest.mark.asyncio
async def test_retries_quota_failures_then_succeeds(recording_sleep):
    service = FakeCompletionService(responses=[
        QuotaExceededError("429"),
        QuotaExceededError("429"),
        '{"ok": true}',
    ])
    client = make_client(service, sleep=recording_sleep)

    assert await client.invoke("p", SCHEMA, 0.3) == '{"ok": true}'
    assert len(service.calls) == 3
    assert len(recording_sleep.delays) == 2
    assert recording_sleep.delays[1] >= recording_sleep.delays[0]


@pytest.mark.unit
@pytest.mark.asyncio
@pytest.mark.parametrize("error", [InvalidKeyError("bad key"), ServiceError("boom")])
async def test_non_quota_failure_is_not_retried(recording_sleep, error):
    service = FakeCompletionService(responses=[error, '{"ok": true}'])
    client = make_client(service, sleep=recording_sleep)

    with pytest.raises(type(error)):
        await client.invoke("p", SCHEMA, 0.3)

    assert len(service.calls) == 1
    assert recording_sleep.delays == []


@pytest.mark.unit
@pytest.mark.asyncio
async def test_exhausted_retries_reraise_last_quota_error(recording_sleep):
    last = QuotaExceededError("third")
    service = FakeCompletionService(responses=[QuotaExceededError("first"), QuotaExceededError("second"), last])
    client = make_client(service, sleep=recording_sleep)

    with pytest.raises(QuotaExceededError) as exc_info:
        await client.invoke("p", SCHEMA, 0.3)

    assert exc_info.value is last
    assert len(service.calls) == 3
    assert len(recording_sleep.delays) == 2


@pytest.mark.unit
@pytest.mark.asyncio
async def test_backoff_waits_follow_the_policy():
    sleep = RecordingSleep()
    service = FakeCompletionService(responses=[QuotaExceededError("q")] * 4 + ['{}'])
    client = make_client(service, sleep=sleep, rand=lambda: 0.25, max_attempts=5)

    await client.invoke("p", SCHEMA, 0.3)

    # base * 2**n + 0.25 * jitter(=base)
    assert sleep.delays == [1.25, 2.25, 4.25, 8.25]


@pytest.mark.unit
def test_waits_are_monotonic_whatever_the_jitter():
    low = RetryPolicy(base_delay=1.0, rand=lambda: 0.0)
    high = RetryPolicy(base_delay=1.0, rand=lambda: 0.999)

    for attempt in range(6):
        assert low.delay_for(attempt + 1) >= high.delay_for(attempt)


@pytest.mark.unit
@pytest.mark.asyncio
async def test_stream_marks_last_chunk_final():
    service = FakeCompletionService(streams=[['{"findings"', ': []', ', "suggested_followups": []}']])
    client = make_client(service)

    stream = await client.invoke_stream("p", SCHEMA, 0.3)
    chunks = [chunk async for chunk in stream]

    assert [c.final for c in chunks] == [False, False, True]
    assert chunks[1].accumulated == '{"findings": []'
    assert stream.text == '{"findings": [], "suggested_followups": []}'


@pytest.mark.unit
@pytest.mark.asyncio
async def test_stream_is_not_restartable():
    service = FakeCompletionService(streams=[["a", "b"]])
    stream = await make_client(service).invoke_stream("p", SCHEMA, 0.3)

    assert await stream.collect() == "ab"
    assert [chunk async for chunk in stream] == []


@pytest.mark.unit
@pytest.mark.asyncio
async def test_opening_a_stream_retries_quota(recording_sleep):
    service = FakeCompletionService(streams=[QuotaExceededError("429"), ["{}"]])
    client = make_client(service, sleep=recording_sleep)

    stream = await client.invoke_stream("p", SCHEMA, 0.3)

    assert await stream.collect() == "{}"
    assert len(service.stream_calls) == 2
    assert len(recording_sleep.delays) == 1


@pytest.mark.unit
@pytest.mark.asyncio
async def test_empty_stream_is_a_service_error():
    service = FakeCompletionService(streams=[[]])

    with pytest.raises(ServiceError):
        await make_client(service).invoke_stream("p", SCHEMA, 0.3)


@pytest.mark.unit
@pytest.mark.asyncio
async def test_failure_mid_stream_propagates(recording_sleep):
    service = FakeCompletionService(streams=[["{", ServiceError("connection reset")]])
    stream = await make_client(service, sleep=recording_sleep).invoke_stream("p", SCHEMA, 0.3)

    with pytest.raises(ServiceError):
        await stream.collect()
    assert len(service.stream_calls) == 1


@pytest.mark.unit
@pytest.mark.asyncio
async def test_stream_can_be_cancelled():
    service = FakeCompletionService(streams=[["a", "b", "c"]])
    stream = await make_client(service).invoke_stream("p", SCHEMA, 0.3)

    first = await stream.__anext__()
    await stream.aclose()

    assert first.text == "a"
    assert stream.closed
    assert [chunk async for chunk in stream] == []
