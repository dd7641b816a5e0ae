from __future__ import annotations

import asyncio
import json
import sys

import pytest

from flowinvest.exceptions import ExtractionError, UpstreamError, ValidationExhausted
from flowinvest.services.retry_loop import ConstrainedRetryLoop, LoopState, RetryPolicy

GOOD = json.dumps(
    {
        "grade": "B+",
        "riskScore": 5,
        "analysis": ["• [-] Too much tech exposure", "• [+] Solid long-term growth", "• [~] Average fees"],
    }
)
BAD = json.dumps({"grade": "C", "analysis": "This portfolio is reasonably diversified but has some issues."})


@pytest.mark.asyncio
async def test_stops_on_first_valid_attempt(scripted_client):
    client = scripted_client(BAD, GOOD, BAD)
    loop = ConstrainedRetryLoop(client, RetryPolicy(max_attempts=5))

    outcome = await loop.obtain("grade my portfolio")

    assert outcome.state is LoopState.VALIDATED
    assert outcome.validated
    assert outcome.attempt == 2
    assert len(client.calls) == 2
    assert outcome.structured["analysis"] == [
        "• [+] Solid long-term growth",
        "• [~] Average fees",
        "• [-] Too much tech exposure",
    ]


@pytest.mark.asyncio
async def test_makes_exactly_max_attempts_then_falls_back(scripted_client):
    client = scripted_client(BAD)
    loop = ConstrainedRetryLoop(client, RetryPolicy(max_attempts=5, deadline=None))

    outcome = await loop.obtain("grade my portfolio")

    assert len(client.calls) == 5
    assert outcome.state is LoopState.EXHAUSTED_FALLBACK
    assert not outcome.validated
    assert outcome.structured == json.loads(BAD)
    assert outcome.history == [LoopState.ATTEMPTING]


@pytest.mark.asyncio
async def test_retry_prompts_carry_correction_note(scripted_client):
    client = scripted_client(BAD, GOOD)
    loop = ConstrainedRetryLoop(client, RetryPolicy(max_attempts=3, max_words=8))

    await loop.obtain("grade my portfolio")

    first, second = (call["messages"][-1]["content"] for call in client.calls)
    assert first == "grade my portfolio"
    assert second.startswith("grade my portfolio")
    assert "Attempt 2" in second
    assert "fewer than 8 words" in second
    assert all(call["json_mode"] for call in client.calls)


@pytest.mark.asyncio
async def test_raises_when_nothing_ever_parses(scripted_client):
    client = scripted_client("not json at all")
    loop = ConstrainedRetryLoop(client, RetryPolicy(max_attempts=3))

    with pytest.raises(ValidationExhausted) as exc_info:
        await loop.obtain("grade my portfolio")

    assert exc_info.value.attempts == 3
    assert isinstance(exc_info.value.cause, ExtractionError)
    assert len(client.calls) == 3


@pytest.mark.asyncio
async def test_arrays_do_not_count_as_fallback(scripted_client):
    client = scripted_client("[1, 2, 3]")
    loop = ConstrainedRetryLoop(client, RetryPolicy(max_attempts=2))

    with pytest.raises(ValidationExhausted):
        await loop.obtain("grade my portfolio")


@pytest.mark.asyncio
async def test_fallback_keeps_most_recent_object(scripted_client):
    older = json.dumps({"grade": "C", "analysis": "prose"})
    newer = json.dumps({"grade": "B", "analysis": "more prose"})
    client = scripted_client(older, "garbage", newer, "garbage")
    loop = ConstrainedRetryLoop(client, RetryPolicy(max_attempts=4))

    outcome = await loop.obtain("grade my portfolio")

    assert outcome.state is LoopState.EXHAUSTED_FALLBACK
    assert outcome.structured["grade"] == "B"


@pytest.mark.asyncio
async def test_transient_upstream_errors_are_retried(scripted_client):
    client = scripted_client(UpstreamError("network"), GOOD)
    loop = ConstrainedRetryLoop(client, RetryPolicy(max_attempts=3))

    outcome = await loop.obtain("grade my portfolio")

    assert outcome.validated
    assert len(client.calls) == 2


@pytest.mark.asyncio
async def test_invalid_key_aborts_immediately(scripted_client):
    client = scripted_client(UpstreamError("invalid_key"), GOOD)
    loop = ConstrainedRetryLoop(client, RetryPolicy(max_attempts=5))

    with pytest.raises(UpstreamError) as exc_info:
        await loop.obtain("grade my portfolio")

    assert exc_info.value.kind == "invalid_key"
    assert len(client.calls) == 1


@pytest.mark.asyncio
async def test_deadline_stops_before_max_attempts(scripted_client):
    ticks = iter([0.0, 10.0, 200.0, 300.0])
    client = scripted_client(BAD)
    loop = ConstrainedRetryLoop(
        client,
        RetryPolicy(max_attempts=5, deadline=180.0),
        clock=lambda: next(ticks),
    )

    outcome = await loop.obtain("grade my portfolio")

    assert outcome.state is LoopState.EXHAUSTED_FALLBACK
    assert len(client.calls) == 2


@pytest.mark.asyncio
async def test_slow_call_times_out_as_upstream_error():
    class _SlowClient:
        calls = 0

        async def complete(self, messages, **kwargs):
            _SlowClient.calls += 1
            await asyncio.sleep(1)
            return GOOD

    loop = ConstrainedRetryLoop(_SlowClient(), RetryPolicy(max_attempts=2, call_timeout=0.01))

    with pytest.raises(ValidationExhausted) as exc_info:
        await loop.obtain("grade my portfolio")

    assert isinstance(exc_info.value.cause, UpstreamError)
    assert exc_info.value.cause.kind == "timeout"
    assert _SlowClient.calls == 2


def test_rejects_zero_attempts():
    with pytest.raises(ValueError):
        ConstrainedRetryLoop(object(), RetryPolicy(max_attempts=0))


@pytest.mark.asyncio
@pytest.mark.skipif(not hasattr(sys, "get_int_max_str_digits"), reason="no int digit limit")
async def test_unparseable_huge_number_consumes_one_attempt(scripted_client):
    client = scripted_client('{"analysis": ' + "9" * 5000 + "}", GOOD)
    loop = ConstrainedRetryLoop(client, RetryPolicy(max_attempts=3))

    outcome = await loop.obtain("grade my portfolio")

    assert outcome.validated
    assert len(client.calls) == 2
