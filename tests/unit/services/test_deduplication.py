"""
Tests for RequestDeduplicator.

Concurrent callers are gated on an asyncio.Event so every caller is attached
before the single execution settles.
"""

import asyncio

import pytest

from resilience_toolkit.core.exceptions import DeduplicationPropagatedError
from resilience_toolkit.services.deduplication import (
    RequestDeduplicator,
    make_request_key,
)


# =============================================================================
# Test Fixtures
# =============================================================================


class GatedOperation:
    """Async operation that blocks until released and counts executions."""

    def __init__(self, result=None, error: Exception | None = None) -> None:
        self.calls = 0
        self.gate = asyncio.Event()
        self.result = result
        self.error = error

    async def __call__(self, *args, **kwargs):
        self.calls += 1
        await self.gate.wait()
        if self.error is not None:
            raise self.error
        return self.result


@pytest.fixture
def dedup(clock) -> RequestDeduplicator:
    return RequestDeduplicator(grace_seconds=5.0, clock=clock)


# =============================================================================
# Key Derivation
# =============================================================================


class TestMakeRequestKey:
    def test_same_request_same_key(self) -> None:
        first = make_request_key("get", "/jobs", {"b": 2, "a": 1})
        second = make_request_key("GET", "/jobs", {"a": 1, "b": 2})

        assert first == second
        assert first.startswith("GET:/jobs:")

    def test_body_changes_key(self) -> None:
        assert make_request_key("POST", "/jobs", body={"x": 1}) != make_request_key(
            "POST", "/jobs", body={"x": 2}
        )


# =============================================================================
# In-flight Sharing
# =============================================================================


class TestConcurrentCalls:
    """Concurrent callers with one key share a single execution."""

    @pytest.mark.asyncio
    async def test_executes_once(self, dedup: RequestDeduplicator) -> None:
        operation = GatedOperation(result={"id": "p1"})

        tasks = [asyncio.ensure_future(dedup.deduped_call("k", operation)) for _ in range(5)]
        await asyncio.sleep(0)
        assert dedup.in_flight("k")
        operation.gate.set()
        results = await asyncio.gather(*tasks)

        assert operation.calls == 1
        assert results == [{"id": "p1"}] * 5
        assert not dedup.in_flight("k")
        assert dedup.get_stats()["deduplicated_requests"] == 4

    @pytest.mark.asyncio
    async def test_failure_propagated_to_waiters(self, dedup: RequestDeduplicator) -> None:
        """The executing caller gets the original error, waiters a wrapper."""
        original = RuntimeError("upstream exploded")
        operation = GatedOperation(error=original)

        tasks = [asyncio.ensure_future(dedup.deduped_call("k", operation)) for _ in range(3)]
        await asyncio.sleep(0)
        operation.gate.set()
        outcomes = await asyncio.gather(*tasks, return_exceptions=True)

        assert operation.calls == 1
        assert outcomes[0] is original
        for outcome in outcomes[1:]:
            assert isinstance(outcome, DeduplicationPropagatedError)
            assert str(outcome) == "upstream exploded"
            assert outcome.original_error is original

    @pytest.mark.asyncio
    async def test_cancelled_starter_does_not_cancel_waiters(
        self, dedup: RequestDeduplicator
    ) -> None:
        operation = GatedOperation(result="value")

        starter = asyncio.ensure_future(dedup.deduped_call("k", operation))
        await asyncio.sleep(0)
        waiter = asyncio.ensure_future(dedup.deduped_call("k", operation))
        await asyncio.sleep(0)

        starter.cancel()
        await asyncio.sleep(0)
        operation.gate.set()

        assert await waiter == "value"
        assert starter.cancelled()
        assert operation.calls == 1
        assert not dedup.in_flight("k")

    @pytest.mark.asyncio
    async def test_result_retained_after_starter_cancelled(
        self, dedup: RequestDeduplicator
    ) -> None:
        operation = GatedOperation(result="value")

        starter = asyncio.ensure_future(dedup.deduped_call("k", operation))
        await asyncio.sleep(0)
        starter.cancel()
        operation.gate.set()
        with pytest.raises(asyncio.CancelledError):
            await starter
        for _ in range(3):
            await asyncio.sleep(0)

        assert await dedup.deduped_call("k", operation) == "value"
        assert operation.calls == 1

    @pytest.mark.asyncio
    async def test_key_released_after_failure(self, dedup: RequestDeduplicator) -> None:
        operation = GatedOperation(error=RuntimeError("boom"))

        tasks = [asyncio.ensure_future(dedup.deduped_call("k", operation)) for _ in range(2)]
        await asyncio.sleep(0)
        assert dedup.in_flight("k")
        operation.gate.set()
        await asyncio.gather(*tasks, return_exceptions=True)

        assert not dedup.in_flight("k")
        assert dedup.get_stats()["in_flight"] == 0

        retry = GatedOperation(result="ok")
        retry.gate.set()
        assert await dedup.deduped_call("k", retry) == "ok"
        assert retry.calls == 1

    @pytest.mark.asyncio
    async def test_failures_are_not_retained(self, dedup: RequestDeduplicator) -> None:
        failing = GatedOperation(error=ValueError("nope"))
        failing.gate.set()
        with pytest.raises(ValueError):
            await dedup.deduped_call("k", failing)

        succeeding = GatedOperation(result=7)
        succeeding.gate.set()

        assert await dedup.deduped_call("k", succeeding) == 7
        assert succeeding.calls == 1

    @pytest.mark.asyncio
    async def test_distinct_keys_execute_independently(self, dedup: RequestDeduplicator) -> None:
        operation = GatedOperation(result="x")
        operation.gate.set()

        await asyncio.gather(
            dedup.deduped_call("a", operation),
            dedup.deduped_call("b", operation),
        )

        assert operation.calls == 2

    @pytest.mark.asyncio
    async def test_arguments_forwarded(self, dedup: RequestDeduplicator) -> None:
        async def echo(value, suffix=""):
            return f"{value}{suffix}"

        assert await dedup.deduped_call("k", echo, "a", suffix="!") == "a!"


# =============================================================================
# Grace Window
# =============================================================================


class TestGraceWindow:
    """Successful results are served to late arrivals for grace_seconds."""

    @pytest.mark.asyncio
    async def test_served_within_window(self, dedup: RequestDeduplicator, clock) -> None:
        operation = GatedOperation(result="fresh")
        operation.gate.set()

        await dedup.deduped_call("k", operation)
        clock.advance(4.9)
        result = await dedup.deduped_call("k", operation)

        assert result == "fresh"
        assert operation.calls == 1
        assert dedup.get_stats()["recent_hits"] == 1

    @pytest.mark.asyncio
    async def test_re_executes_after_window(self, dedup: RequestDeduplicator, clock) -> None:
        operation = GatedOperation(result="fresh")
        operation.gate.set()

        await dedup.deduped_call("k", operation)
        clock.advance(5.0)
        await dedup.deduped_call("k", operation)

        assert operation.calls == 2

    @pytest.mark.asyncio
    async def test_zero_grace_disables_retention(self, clock) -> None:
        dedup = RequestDeduplicator(grace_seconds=0.0, clock=clock)
        operation = GatedOperation(result="x")
        operation.gate.set()

        await dedup.deduped_call("k", operation)
        await dedup.deduped_call("k", operation)

        assert operation.calls == 2

    @pytest.mark.asyncio
    async def test_cleanup(self, dedup: RequestDeduplicator, clock) -> None:
        operation = GatedOperation(result="x")
        operation.gate.set()
        await dedup.deduped_call("a", operation)
        clock.advance(6.0)

        assert dedup.cleanup() == 1
        assert dedup.get_stats()["retained"] == 0


class TestStats:
    @pytest.mark.asyncio
    async def test_efficiency(self, dedup: RequestDeduplicator) -> None:
        operation = GatedOperation(result="x")
        operation.gate.set()

        for _ in range(4):
            await dedup.deduped_call("k", operation)

        stats = dedup.get_stats()
        assert stats["total_requests"] == 4
        assert stats["saved_requests"] == 3
        assert stats["efficiency_rate"] == 75.0

    def test_reset_metrics(self, dedup: RequestDeduplicator) -> None:
        dedup.reset_metrics()
        assert dedup.get_stats()["total_requests"] == 0
