"""Storage interfaces for alerts and call attempts."""

import uuid
from abc import ABC, abstractmethod
from typing import List, Optional, Tuple

from alertcall.models.alert import Alert
from alertcall.models.call import CallAttempt, CallStatus


class CallRecordStore(ABC):
    """Durable storage for call attempts.

    Every mutation of ``status`` or ``confirmed`` is a compare-and-set keyed
    by attempt id, so a status callback and a keypress callback arriving
    together cannot overwrite each other.
    """

    @abstractmethod
    async def create_attempt(
        self,
        *,
        alert_id: uuid.UUID,
        contact_id: Optional[uuid.UUID],
        contact_name: Optional[str],
        phone: str,
        loop_number: int,
        attempt_number: int,
        script: Optional[str] = None,
    ) -> CallAttempt:
        """Persist a new attempt in the ``initiated`` state."""

    @abstractmethod
    async def get_attempt(self, attempt_id: uuid.UUID) -> Optional[CallAttempt]:
        """Read the current state of an attempt."""

    @abstractmethod
    async def list_attempts(self, alert_id: uuid.UUID) -> List[CallAttempt]:
        """List attempts of an alert in dispatch order."""

    @abstractmethod
    async def mark_dispatched(self, attempt_id: uuid.UUID, provider_call_id: str) -> None:
        """Record the provider reference and move ``initiated`` to ``queued``."""

    @abstractmethod
    async def mark_failed(self, attempt_id: uuid.UUID, error_message: str) -> None:
        """Fail an attempt that has not reached a terminal status."""

    @abstractmethod
    async def apply_status(
        self,
        attempt_id: uuid.UUID,
        status: CallStatus,
        duration: Optional[int] = None,
    ) -> bool:
        """Apply a provider status. Returns False when nothing changed."""

    @abstractmethod
    async def confirm(self, attempt_id: uuid.UUID) -> bool:
        """Latch the attempt as confirmed. Returns False if it already was."""


class AlertRepository(ABC):
    """Storage for alerts and their escalation result."""

    @abstractmethod
    async def save_alert(self, alert: Alert) -> Tuple[Alert, bool]:
        """Store an alert unless its source message id is known.

        Returns the stored alert and whether it was newly created.
        """

    @abstractmethod
    async def get_alert(self, alert_id: uuid.UUID) -> Optional[Alert]:
        """Read an alert."""

    @abstractmethod
    async def claim_alert(self, alert_id: uuid.UUID) -> bool:
        """Mark processing as started. False if someone else already did."""

    @abstractmethod
    async def release_alert(self, alert_id: uuid.UUID) -> bool:
        """Undo an unfinished claim so the alert is picked up again.

        Processed alerts are left alone. Returns whether a claim was released.
        """

    @abstractmethod
    async def mark_processed(self, alert_id: uuid.UUID, confirmed: bool) -> bool:
        """Record the final result. Only the first call has an effect."""

    @abstractmethod
    async def list_unprocessed(self, limit: int = 50) -> List[Alert]:
        """Alerts that nobody has started escalating yet."""


class AlertSource(ABC):
    """Inbound collaborator polled for alerts to escalate."""

    @abstractmethod
    async def fetch_new_alerts(self) -> List[Alert]:
        """Return alerts that still need an escalation run."""


class StoredAlertSource(AlertSource):
    """Serves stored alerts nobody has escalated yet."""

    def __init__(self, repository: AlertRepository, batch_size: int = 50):
        self.repository = repository
        self.batch_size = batch_size

    async def fetch_new_alerts(self) -> List[Alert]:
        return await self.repository.list_unprocessed(limit=self.batch_size)
