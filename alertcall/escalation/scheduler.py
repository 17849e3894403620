"""Scheduler that picks up new alerts and runs their escalations."""

import asyncio
import uuid
from datetime import datetime
from typing import TYPE_CHECKING, Dict, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from alertcall.config import settings
from alertcall.models.alert import Alert
from alertcall.storage.base import AlertSource
from alertcall.utils.logging import get_logger

if TYPE_CHECKING:
    from alertcall.services.escalation_service import EscalationService

logger = get_logger(__name__)


class EscalationScheduler:
    """Polls the alert source and starts one task per alert.

    Escalations of different alerts run concurrently; the calls within one
    escalation stay sequential inside its task.
    """

    def __init__(
        self,
        service: "EscalationService",
        source: AlertSource,
        poll_interval: Optional[int] = None,
    ):
        self.scheduler = AsyncIOScheduler()
        self.service = service
        self.source = source
        self.poll_interval = poll_interval or settings.ALERT_POLL_INTERVAL_SECONDS
        self.is_running = False
        self._tasks: Dict[uuid.UUID, asyncio.Task] = {}

    async def start(self) -> None:
        """Start the escalation scheduler."""
        if self.is_running:
            logger.warning("Escalation scheduler already running")
            return

        try:
            self.scheduler.add_job(
                self._poll_alerts,
                trigger=IntervalTrigger(seconds=self.poll_interval),
                id="poll_alerts",
                name="Poll New Alerts",
                max_instances=1,
                coalesce=True,
                misfire_grace_time=30,
                next_run_time=datetime.now()
            )

            self.scheduler.start()
            self.is_running = True

            logger.info("Escalation scheduler started", poll_interval=self.poll_interval)

        except Exception as e:
            logger.error("Error starting escalation scheduler", error=str(e))
            raise

    async def stop(self) -> None:
        """Stop polling and cancel running escalations."""
        if self.is_running:
            self.scheduler.shutdown(wait=False)
            self.is_running = False

        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

        logger.info("Escalation scheduler stopped", cancelled_escalations=len(tasks))

    def launch(self, alert: Alert) -> bool:
        """Start escalating ``alert`` unless it is already in flight."""
        if alert.id in self._tasks:
            logger.debug("Escalation already in flight", alert_id=str(alert.id))
            return False

        task = asyncio.create_task(
            self.service.handle_alert(alert),
            name=f"escalation-{alert.id}"
        )
        self._tasks[alert.id] = task
        task.add_done_callback(lambda t, alert_id=alert.id: self._on_task_done(alert_id, t))
        return True

    def _on_task_done(self, alert_id: uuid.UUID, task: asyncio.Task) -> None:
        self._tasks.pop(alert_id, None)
        if task.cancelled():
            logger.warning("Escalation cancelled", alert_id=str(alert_id))
            return

        error = task.exception()
        if error is not None:
            logger.error(
                "Escalation task failed",
                alert_id=str(alert_id),
                error=str(error),
                exc_info=error
            )

    async def _poll_alerts(self) -> None:
        """Fetch new alerts and start their escalations."""
        try:
            launched = await self.trigger_alert_polling()
            if launched > 0:
                logger.info("Started escalations", count=launched)

        except Exception as e:
            logger.error("Error polling alerts", error=str(e))

    async def trigger_alert_polling(self) -> int:
        """Poll once now. Returns the number of escalations started."""
        alerts = await self.source.fetch_new_alerts()
        return sum(1 for alert in alerts if self.launch(alert))

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    def get_job_status(self) -> dict:
        """Get status of scheduled jobs and running escalations."""
        jobs = []
        if self.is_running:
            for job in self.scheduler.get_jobs():
                jobs.append({
                    "id": job.id,
                    "name": job.name,
                    "next_run": job.next_run_time.isoformat() if job.next_run_time else None,
                    "trigger": str(job.trigger)
                })

        return {
            "status": "running" if self.is_running else "stopped",
            "jobs": jobs,
            "in_flight_alerts": [str(alert_id) for alert_id in self._tasks],
        }
