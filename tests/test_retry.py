import pytest

from agent_generation.errors import RetryExhaustedError
from agent_generation.retry import RetryPolicy, run_with_retry


def _recording_sleeper():
    delays: list[float] = []

    async def sleep(seconds: float) -> None:
        delays.append(seconds)

    return delays, sleep


@pytest.mark.asyncio
async def test_first_success_makes_one_call_and_never_sleeps():
    delays, sleep = _recording_sleeper()
    calls = {"n": 0}

    async def attempt():
        calls["n"] += 1
        return "ok"

    out = await run_with_retry(attempt, policy=RetryPolicy(sleeper=sleep))
    assert out == "ok"
    assert calls["n"] == 1
    assert delays == []


@pytest.mark.asyncio
@pytest.mark.parametrize("failures", [1, 3, 5])
async def test_n_failures_then_success_doubles_delay(failures):
    delays, sleep = _recording_sleeper()
    calls = {"n": 0}

    async def attempt():
        calls["n"] += 1
        return None if calls["n"] <= failures else calls["n"]

    out = await run_with_retry(attempt, policy=RetryPolicy(sleeper=sleep))
    assert out == failures + 1
    assert calls["n"] == failures + 1
    assert delays == [1.0 * 2**i for i in range(failures)]
    assert sum(delays) == 1.0 * (2**failures - 1)


@pytest.mark.asyncio
async def test_exceptions_are_retried_like_parse_failures():
    delays, sleep = _recording_sleeper()
    calls = {"n": 0}

    async def attempt():
        calls["n"] += 1
        if calls["n"] == 1:
            raise ConnectionError("boom")
        return "ok"

    assert await run_with_retry(attempt, policy=RetryPolicy(sleeper=sleep)) == "ok"
    assert delays == [1.0]


@pytest.mark.asyncio
async def test_backoff_restarts_for_each_invocation():
    delays, sleep = _recording_sleeper()
    policy = RetryPolicy(sleeper=sleep)

    for _ in range(2):
        calls = {"n": 0}

        async def attempt():
            calls["n"] += 1
            return None if calls["n"] < 3 else "ok"

        await run_with_retry(attempt, policy=policy)

    assert delays == [1.0, 2.0, 1.0, 2.0]


@pytest.mark.asyncio
async def test_max_attempts_raises_with_last_error():
    delays, sleep = _recording_sleeper()

    async def attempt():
        raise TimeoutError("slow")

    with pytest.raises(RetryExhaustedError) as exc:
        await run_with_retry(attempt, policy=RetryPolicy(max_attempts=3, sleeper=sleep), name="should_respond")
    assert exc.value.attempts == 3
    assert isinstance(exc.value.last_error, TimeoutError)
    assert delays == [1.0, 2.0]


@pytest.mark.asyncio
async def test_max_total_delay_stops_before_overshooting():
    delays, sleep = _recording_sleeper()

    async def attempt():
        return None

    with pytest.raises(RetryExhaustedError):
        await run_with_retry(attempt, policy=RetryPolicy(max_total_delay_seconds=5.0, sleeper=sleep))
    # 1 + 2 = 3; the next 4s delay would exceed 5s in total.
    assert delays == [1.0, 2.0]


def test_policy_rejects_nonsense_bounds():
    with pytest.raises(ValueError):
        RetryPolicy(max_attempts=0)
    with pytest.raises(ValueError):
        RetryPolicy(multiplier=0.5)
