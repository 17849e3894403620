"""Unit tests for the call dispatcher."""

import pytest

from alertcall.exceptions import DispatchError, PersistenceError
from alertcall.models.call import CallStatus

from tests.conftest import ALICE, BASE_URL, make_contact


@pytest.fixture
def alice():
    return make_contact("Alice", ALICE, 1)


class TestCallDispatcher:
    """Test placing and recording single calls."""

    @pytest.mark.asyncio
    async def test_dispatch_records_queued_attempt(self, dispatcher, provider, store, alert, alice):
        """A placed call is stored with its provider reference."""
        attempt = await dispatcher.dispatch(alert, alice, 2, 1, "Critical alert.")

        assert attempt.status == CallStatus.QUEUED
        assert attempt.provider_call_id == provider.calls[0].call_id

        stored = await store.get_attempt(attempt.id)
        assert stored.alert_id == alert.id
        assert stored.contact_id == alice.id
        assert stored.phone == ALICE
        assert stored.loop_number == 2
        assert stored.attempt_number == 1
        assert stored.script == "Critical alert."
        assert stored.provider_call_id == attempt.provider_call_id

    @pytest.mark.asyncio
    async def test_attempt_exists_before_provider_call(self, dispatcher, provider, store, alert, alice):
        """The record is written before the provider is asked to dial."""
        seen = []

        async def inspect(call):
            seen.append(await store.get_attempt(call.attempt_id))

        provider.on_place = inspect

        await dispatcher.dispatch(alert, alice, 1, 1)

        assert seen[0] is not None
        assert seen[0].status == CallStatus.INITIATED

    @pytest.mark.asyncio
    async def test_callback_urls_carry_attempt_id(self, dispatcher, provider, alert, alice):
        """Instructions and status callbacks point at this attempt."""
        attempt = await dispatcher.dispatch(alert, alice, 1, 1)
        call = provider.calls[0]

        assert call.instructions_url == f"{BASE_URL}/api/calls/twiml/{attempt.id}"
        assert call.status_callback_url == f"{BASE_URL}/api/calls/status/{attempt.id}"
        assert dispatcher.gather_url(attempt.id) == f"{BASE_URL}/api/calls/gather/{attempt.id}"
        assert call.timeout_seconds == 30

    @pytest.mark.asyncio
    async def test_rejection_marks_attempt_failed(self, dispatcher, provider, store, alert, alice):
        """A refused call leaves a failed record and raises DispatchError."""
        provider.behaviors[ALICE] = "reject"

        with pytest.raises(DispatchError) as exc_info:
            await dispatcher.dispatch(alert, alice, 1, 1)

        failed = exc_info.value.attempt
        assert failed is not None
        stored = await store.get_attempt(failed.id)
        assert stored.status == CallStatus.FAILED
        assert stored.provider_call_id is None
        assert "not a valid phone number" in stored.error_message

    @pytest.mark.asyncio
    async def test_store_failure_skips_provider(self, dispatcher, provider, store, alert, alice):
        """Without a record no call is placed."""
        async def broken_create_attempt(**kwargs):
            raise RuntimeError("database is locked")

        store.create_attempt = broken_create_attempt

        with pytest.raises(PersistenceError):
            await dispatcher.dispatch(alert, alice, 1, 1)

        assert provider.calls == []

    @pytest.mark.asyncio
    async def test_untrackable_call_is_hung_up(self, dispatcher, provider, store, alert, alice):
        """A call whose reference cannot be stored is cancelled."""
        async def broken_mark_dispatched(attempt_id, provider_call_id):
            raise RuntimeError("database is locked")

        store.mark_dispatched = broken_mark_dispatched

        with pytest.raises(PersistenceError) as exc_info:
            await dispatcher.dispatch(alert, alice, 1, 1)

        assert provider.hangups == [{"call_id": provider.calls[0].call_id, "ringing": True}]
        stored = await store.get_attempt(exc_info.value.attempt.id)
        assert stored.status == CallStatus.FAILED
