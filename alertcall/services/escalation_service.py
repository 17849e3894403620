"""Runs the escalation for a single alert."""

import asyncio
from datetime import datetime
from typing import List, Optional, Tuple

from alertcall.config import settings
from alertcall.escalation.contacts import ContactManager
from alertcall.escalation.messages import build_spoken_message, create_preview
from alertcall.escalation.orchestrator import EscalationOrchestrator, Outcome
from alertcall.models.alert import Alert
from alertcall.models.contact import Contact
from alertcall.storage.base import AlertRepository
from alertcall.utils.logging import CorrelationContextManager, get_logger
from alertcall.utils.validation import sanitize_input

logger = get_logger(__name__)


class EscalationService:
    """Glue between stored alerts, the contact chain and the orchestrator."""

    def __init__(
        self,
        orchestrator: EscalationOrchestrator,
        alerts: AlertRepository,
        contacts: ContactManager,
        max_loops: Optional[int] = None,
        per_contact_timeout: Optional[float] = None,
    ):
        self.orchestrator = orchestrator
        self.alerts = alerts
        self.contacts = contacts
        self.max_loops = max_loops or settings.MAX_ESCALATION_LOOPS
        self.per_contact_timeout = per_contact_timeout or settings.per_contact_timeout

    async def handle_alert(self, alert: Alert) -> Optional[Outcome]:
        """Escalate an alert once.

        Returns ``None`` when another worker already claimed the alert.
        """
        with CorrelationContextManager(alert_id=str(alert.id)):
            if not await self.alerts.claim_alert(alert.id):
                logger.info("Alert already claimed", alert_id=str(alert.id))
                return None

            try:
                chain = await self._load_chain(alert)
                message = build_spoken_message(alert)
                outcome = await self.orchestrator.run(
                    alert,
                    chain,
                    max_loops=self.max_loops,
                    per_contact_timeout=self.per_contact_timeout,
                    message=message,
                )
            except (asyncio.CancelledError, Exception) as e:
                logger.warning(
                    "Escalation interrupted, releasing alert",
                    alert_id=str(alert.id),
                    error=repr(e)
                )
                await self._release(alert)
                raise

            logger.info(
                "Alert escalation finished",
                alert_id=str(alert.id),
                confirmed=outcome.confirmed,
                attempt_count=outcome.attempt_count
            )
            return outcome

    async def _load_chain(self, alert: Alert) -> List[Contact]:
        try:
            return await self.contacts.get_escalation_chain()
        except Exception as e:
            logger.error("Could not load escalation chain", alert_id=str(alert.id), error=str(e))
            return []

    async def _release(self, alert: Alert) -> None:
        """Hand an unfinished alert back to the pollers."""
        try:
            released = await self.alerts.release_alert(alert.id)
        except Exception as e:
            logger.error("Could not release alert", alert_id=str(alert.id), error=str(e))
            return
        if released:
            logger.info("Alert released for another escalation run", alert_id=str(alert.id))

    async def submit_alert(
        self,
        *,
        source_message_id: str,
        sender: str,
        subject: str,
        body: Optional[str] = None,
        received_at: Optional[datetime] = None,
    ) -> Tuple[Alert, bool]:
        """Store an incoming alert. Returns the alert and whether it is new."""
        alert = Alert(
            source_message_id=source_message_id,
            sender=sanitize_input(sender, max_length=500),
            subject=sanitize_input(subject, max_length=500),
            body_preview=create_preview(body),
            received_at=received_at,
        )
        stored, created = await self.alerts.save_alert(alert)

        if created:
            logger.info("Alert received", alert_id=str(stored.id), source_message_id=source_message_id)
        else:
            logger.info("Duplicate alert ignored", alert_id=str(stored.id), source_message_id=source_message_id)
        return stored, created
