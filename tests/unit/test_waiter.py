"""Unit tests for the confirmation waiter."""

import asyncio
import uuid

import pytest

from alertcall.escalation.tracker import CallStatusTracker
from alertcall.escalation.waiter import ConfirmationWaiter, Resolution


async def _new_attempt(store):
    attempt = await store.create_attempt(
        alert_id=uuid.uuid4(),
        contact_id=uuid.uuid4(),
        contact_name="Alice",
        phone="+15550000001",
        loop_number=1,
        attempt_number=1,
    )
    await store.mark_dispatched(attempt.id, "CA0001")
    return attempt


async def _later(delay, coro):
    await asyncio.sleep(delay)
    await coro


class TestConfirmationWaiter:
    """Test how waiting on one attempt resolves."""

    @pytest.mark.asyncio
    async def test_confirmation_wakes_waiter_immediately(self, store, signals, tracker):
        """A signalled confirmation returns long before the poll interval."""
        waiter = ConfirmationWaiter(store, signals=signals, poll_interval=10)
        attempt = await _new_attempt(store)
        loop = asyncio.get_running_loop()

        started = loop.time()
        task = asyncio.create_task(_later(0.02, tracker.on_confirmation_event(attempt.id)))
        resolution = await waiter.wait(attempt.id, timeout=5)
        elapsed = loop.time() - started
        await task

        assert resolution is Resolution.CONFIRMED
        assert elapsed < 1

    @pytest.mark.asyncio
    async def test_polling_sees_confirmation_without_signal(self, store):
        """Writers in another process are picked up by polling."""
        waiter = ConfirmationWaiter(store, poll_interval=0.01)
        remote_tracker = CallStatusTracker(store)
        attempt = await _new_attempt(store)

        task = asyncio.create_task(_later(0.05, remote_tracker.on_confirmation_event(attempt.id)))
        resolution = await waiter.wait(attempt.id, timeout=2)
        await task

        assert resolution is Resolution.CONFIRMED

    @pytest.mark.asyncio
    async def test_terminal_status_is_unconfirmed(self, store, waiter, tracker):
        """A call that ends without a keypress resolves as unconfirmed."""
        attempt = await _new_attempt(store)

        task = asyncio.create_task(_later(0.02, tracker.on_status_event(attempt.id, "no-answer")))
        resolution = await waiter.wait(attempt.id, timeout=2)
        await task

        assert resolution is Resolution.TERMINAL_UNCONFIRMED

    @pytest.mark.asyncio
    async def test_times_out_when_nothing_happens(self, store, waiter):
        """No event within the bound resolves as timed out."""
        attempt = await _new_attempt(store)
        loop = asyncio.get_running_loop()

        started = loop.time()
        resolution = await waiter.wait(attempt.id, timeout=0.1)
        elapsed = loop.time() - started

        assert resolution is Resolution.TIMED_OUT
        assert 0.1 <= elapsed < 0.5

    @pytest.mark.asyncio
    async def test_non_terminal_updates_keep_waiting(self, store, waiter, tracker):
        """Ringing and answered calls are still pending."""
        attempt = await _new_attempt(store)

        async def progress():
            await tracker.on_status_event(attempt.id, "ringing")
            await tracker.on_status_event(attempt.id, "in-progress")

        task = asyncio.create_task(_later(0.01, progress()))
        resolution = await waiter.wait(attempt.id, timeout=0.1)
        await task

        assert resolution is Resolution.TIMED_OUT

    @pytest.mark.asyncio
    async def test_already_confirmed_returns_at_once(self, store, waiter, tracker):
        """A confirmation recorded before waiting is seen by the first read."""
        attempt = await _new_attempt(store)
        await tracker.on_confirmation_event(attempt.id)

        resolution = await waiter.wait(attempt.id, timeout=0)

        assert resolution is Resolution.CONFIRMED

    @pytest.mark.asyncio
    async def test_confirmation_wins_over_later_completed(self, store, waiter, tracker):
        """Confirmed then completed still resolves as confirmed."""
        attempt = await _new_attempt(store)
        await tracker.on_confirmation_event(attempt.id)
        await tracker.on_status_event(attempt.id, "completed", "20")

        resolution = await waiter.wait(attempt.id, timeout=1)

        assert resolution is Resolution.CONFIRMED

    @pytest.mark.asyncio
    async def test_missing_attempt_is_unconfirmed(self, waiter):
        """An attempt that does not exist cannot be confirmed."""
        resolution = await waiter.wait(uuid.uuid4(), timeout=1)

        assert resolution is Resolution.TERMINAL_UNCONFIRMED

    @pytest.mark.asyncio
    async def test_read_errors_are_retried(self, store, waiter, tracker):
        """A failing read is retried until the deadline."""
        attempt = await _new_attempt(store)
        original = store.get_attempt
        failures = {"left": 2}

        async def flaky_get_attempt(attempt_id):
            if failures["left"]:
                failures["left"] -= 1
                raise RuntimeError("connection reset")
            return await original(attempt_id)

        store.get_attempt = flaky_get_attempt
        await tracker.on_confirmation_event(attempt.id)

        resolution = await waiter.wait(attempt.id, timeout=1)

        assert resolution is Resolution.CONFIRMED
        assert failures["left"] == 0

    @pytest.mark.asyncio
    async def test_signal_registration_is_released(self, store, waiter, signals):
        """Waiting leaves no signal behind."""
        attempt = await _new_attempt(store)

        await waiter.wait(attempt.id, timeout=0.02)

        assert len(signals) == 0
