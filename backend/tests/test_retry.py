import logging

import pytest

from idempay.exceptions import ChargeFailed, VersionConflict
from idempay.services.retry import is_transient, retry_async


class FakeSleep:
    def __init__(self):
        self.delays = []

    async def __call__(self, delay):
        self.delays.append(delay)


class Flaky:
    """Raises the queued errors in order, then returns ``result``."""

    def __init__(self, *errors, result="ok"):
        self.errors = list(errors)
        self.result = result
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return self.result


@pytest.mark.asyncio
async def test_backoff_doubles_from_base():
    sleep = FakeSleep()
    op = Flaky(*(VersionConflict("k", 0) for _ in range(3)))
    await retry_async(op, attempts=4, base_delay=0.1, sleep=sleep)
    assert sleep.delays == pytest.approx([0.1, 0.2, 0.4])


def test_transient_marker():
    assert is_transient(ChargeFailed("timeout", transient=True))
    assert not is_transient(ChargeFailed("declined"))
    assert is_transient(VersionConflict("k", 0))
    assert is_transient(ConnectionError("reset"))


@pytest.mark.asyncio
async def test_returns_first_success_without_sleeping():
    sleep = FakeSleep()
    op = Flaky()
    assert await retry_async(op, attempts=3, base_delay=1.0, sleep=sleep) == "ok"
    assert op.calls == 1
    assert sleep.delays == []


@pytest.mark.asyncio
async def test_retries_transient_errors_with_backoff():
    sleep = FakeSleep()
    op = Flaky(ConnectionError("a"), ConnectionError("b"), result="charged")
    assert await retry_async(op, attempts=3, base_delay=1.0, sleep=sleep) == "charged"
    assert op.calls == 3
    assert sleep.delays == [1.0, 2.0]


@pytest.mark.asyncio
async def test_non_transient_error_is_not_retried():
    sleep = FakeSleep()
    op = Flaky(ChargeFailed("Payment amount exceeds limit"))
    with pytest.raises(ChargeFailed):
        await retry_async(op, attempts=3, base_delay=1.0, sleep=sleep)
    assert op.calls == 1
    assert sleep.delays == []


@pytest.mark.asyncio
async def test_exhaustion_reraises_last_error():
    sleep = FakeSleep()
    op = Flaky(TimeoutError("first"), TimeoutError("second"), TimeoutError("third"))
    with pytest.raises(TimeoutError, match="third"):
        await retry_async(op, attempts=3, base_delay=1.0, sleep=sleep)
    assert op.calls == 3
    assert sleep.delays == [1.0, 2.0]


@pytest.mark.asyncio
async def test_custom_predicate_limits_what_is_retried():
    sleep = FakeSleep()
    op = Flaky(ConnectionError("not a conflict"))
    with pytest.raises(ConnectionError):
        await retry_async(
            op,
            attempts=3,
            base_delay=0.1,
            retry_if=lambda exc: isinstance(exc, VersionConflict),
            sleep=sleep,
        )
    assert op.calls == 1


@pytest.mark.asyncio
async def test_rejects_zero_attempts():
    with pytest.raises(ValueError):
        await retry_async(Flaky(), attempts=0, base_delay=1.0)


@pytest.mark.asyncio
async def test_retries_and_exhaustion_are_logged(caplog):
    op = Flaky(ConnectionError("a"), ConnectionError("b"))
    with caplog.at_level(logging.WARNING, logger="idempay.services.retry"):
        with pytest.raises(ConnectionError):
            await retry_async(op, attempts=2, base_delay=0, sleep=FakeSleep(), label="Charge")
    messages = [r.getMessage() for r in caplog.records]
    assert any("Charge failed (attempt 1/2)" in m for m in messages)
    assert any("Charge failed after 2 attempts" in m for m in messages)
