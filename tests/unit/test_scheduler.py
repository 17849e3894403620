"""Unit tests for the escalation scheduler."""

import asyncio

import pytest

from alertcall.escalation.scheduler import EscalationScheduler

from tests.conftest import ALICE, make_alert


class TestEscalationScheduler:
    """Test alert pickup and task tracking."""

    @pytest.mark.asyncio
    async def test_polling_starts_one_escalation_per_alert(self, container):
        """Every unclaimed alert gets exactly one escalation."""
        container.provider.default_behavior = "confirm"
        first, _ = await container.alerts.save_alert(make_alert())
        second, _ = await container.alerts.save_alert(make_alert())

        started = await container.scheduler.trigger_alert_polling()
        assert started == 2
        assert container.scheduler.in_flight == 2

        # Still in flight, so a second poll starts nothing
        assert await container.scheduler.trigger_alert_polling() == 0

        await asyncio.gather(*container.scheduler._tasks.values())

        for alert in (first, second):
            stored = await container.alerts.get_alert(alert.id)
            assert stored.processed is True
            assert stored.confirmed is True
        assert container.scheduler.in_flight == 0

    @pytest.mark.asyncio
    async def test_claimed_alert_is_not_escalated_twice(self, container):
        """Handling an alert someone else claimed does nothing."""
        alert, _ = await container.alerts.save_alert(make_alert())
        await container.alerts.claim_alert(alert.id)

        outcome = await container.service.handle_alert(alert)

        assert outcome is None
        assert container.provider.calls == []

    @pytest.mark.asyncio
    async def test_stop_cancels_running_escalations(self, container):
        """Stopping the scheduler cancels escalations in flight."""
        container.provider.default_behavior = "silent"
        alert, _ = await container.alerts.save_alert(make_alert())

        assert container.scheduler.launch(alert) is True
        assert container.scheduler.launch(alert) is False
        await asyncio.sleep(0.05)

        await container.scheduler.stop()

        assert container.scheduler.in_flight == 0
        assert container.provider.dialed[0] == ALICE

        # The live call is hung up and the alert goes back to the pollers
        assert container.provider.hangups == [
            {"call_id": container.provider.calls[0].call_id, "ringing": True}
        ]
        stored = await container.alerts.get_alert(alert.id)
        assert stored.processed is False
        assert stored.processing_started_at is None
        assert alert.id in [a.id for a in await container.source.fetch_new_alerts()]

    @pytest.mark.asyncio
    async def test_failed_run_releases_alert(self, container, monkeypatch):
        """An error escaping the run leaves the alert for the next poll."""
        alert, _ = await container.alerts.save_alert(make_alert())

        async def broken_run(*args, **kwargs):
            raise RuntimeError("store went away")

        monkeypatch.setattr(container.orchestrator, "run", broken_run)

        with pytest.raises(RuntimeError):
            await container.service.handle_alert(alert)

        stored = await container.alerts.get_alert(alert.id)
        assert stored.processed is False
        assert stored.processing_started_at is None
        assert await container.alerts.claim_alert(alert.id) is True

    @pytest.mark.asyncio
    async def test_start_and_job_status(self, container):
        """A running scheduler reports its polling job."""
        scheduler = EscalationScheduler(container.service, container.source, poll_interval=3600)

        assert scheduler.get_job_status()["status"] == "stopped"

        await scheduler.start()
        try:
            status = scheduler.get_job_status()
            assert status["status"] == "running"
            assert [job["id"] for job in status["jobs"]] == ["poll_alerts"]
            assert status["in_flight_alerts"] == []
        finally:
            await scheduler.stop()

        assert scheduler.get_job_status()["status"] == "stopped"
