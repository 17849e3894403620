"""Applies provider callbacks to call attempts."""

import uuid
from typing import Optional, Union

from alertcall.config import settings
from alertcall.escalation.waiter import AttemptSignals
from alertcall.exceptions import AttemptNotFound, WebhookMalformed
from alertcall.models.call import CallStatus, PROVIDER_STATUSES
from alertcall.storage.base import CallRecordStore
from alertcall.utils.logging import get_logger

logger = get_logger(__name__)


def parse_provider_status(value: Optional[str]) -> CallStatus:
    """Map a provider status string onto ``CallStatus``."""
    try:
        status = CallStatus((value or "").strip().lower())
    except ValueError:
        raise WebhookMalformed(f"Unknown call status: {value!r}")

    if status not in PROVIDER_STATUSES:
        raise WebhookMalformed(f"Status not accepted from provider: {value!r}")
    return status


def parse_duration(value: Union[str, int, None]) -> Optional[int]:
    """Call duration in whole seconds, or ``None`` when absent."""
    if value is None or value == "":
        return None
    try:
        duration = int(value)
    except (TypeError, ValueError):
        raise WebhookMalformed(f"Invalid call duration: {value!r}")
    if duration < 0:
        raise WebhookMalformed(f"Invalid call duration: {value!r}")
    return duration


class CallStatusTracker:
    """Turns status and keypress callbacks into store updates.

    Every event is idempotent: duplicates and late arrivals leave the
    attempt as it is. The first confirmation wins and later status events
    can only fill in a missing duration.
    """

    def __init__(
        self,
        store: CallRecordStore,
        signals: Optional[AttemptSignals] = None,
        confirm_digit: Optional[str] = None,
    ):
        self.store = store
        self.signals = signals
        self.confirm_digit = confirm_digit or settings.CONFIRM_DIGIT

    def _notify(self, attempt_id: uuid.UUID) -> None:
        if self.signals is not None:
            self.signals.notify(attempt_id)

    async def on_status_event(
        self,
        attempt_id: uuid.UUID,
        provider_status: Optional[str],
        duration: Union[str, int, None] = None,
    ) -> bool:
        """Record a provider status change. Returns whether anything changed."""
        status = parse_provider_status(provider_status)
        call_duration = parse_duration(duration)

        changed = await self.store.apply_status(attempt_id, status, call_duration)
        if changed:
            logger.info(
                "Call status updated",
                attempt_id=str(attempt_id),
                status=status.value,
                duration=call_duration
            )
            self._notify(attempt_id)
        else:
            logger.debug(
                "Call status event ignored",
                attempt_id=str(attempt_id),
                status=status.value
            )
        return changed

    async def on_confirmation_event(self, attempt_id: uuid.UUID) -> bool:
        """Latch the attempt as confirmed. Returns whether this call set it."""
        changed = await self.store.confirm(attempt_id)
        if changed:
            logger.info("Call confirmed", attempt_id=str(attempt_id))
            self._notify(attempt_id)
        else:
            logger.debug("Duplicate confirmation ignored", attempt_id=str(attempt_id))
        return changed

    async def on_gather_event(self, attempt_id: uuid.UUID, digits: Optional[str]) -> bool:
        """Handle the keypress result. Returns whether it confirmed the attempt.

        Any other key, or none, is not a confirmation; the call ends and its
        final status arrives through the status callback.
        """
        pressed = (digits or "").strip()
        if pressed == self.confirm_digit:
            await self.on_confirmation_event(attempt_id)
            return True

        attempt = await self.store.get_attempt(attempt_id)
        if attempt is None:
            raise AttemptNotFound(f"Unknown call attempt {attempt_id}")

        logger.info(
            "Call answered without confirmation",
            attempt_id=str(attempt_id),
            digits=pressed or None
        )
        return False
