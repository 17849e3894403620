"""Waits for a call attempt to be confirmed, end, or run out of time."""

import asyncio
import uuid
from enum import Enum
from typing import Dict, Optional

from alertcall.config import settings
from alertcall.storage.base import CallRecordStore
from alertcall.utils.logging import get_logger

logger = get_logger(__name__)


class Resolution(str, Enum):
    """How waiting on one attempt ended."""

    CONFIRMED = "confirmed"
    TERMINAL_UNCONFIRMED = "terminal_unconfirmed"
    TIMED_OUT = "timed_out"


class AttemptSignals:
    """Wake-up events for attempts that someone is waiting on.

    Only a hint: waiters always re-read the store, so a missed or spurious
    signal costs at most one poll interval.
    """

    def __init__(self):
        self._events: Dict[uuid.UUID, asyncio.Event] = {}

    def register(self, attempt_id: uuid.UUID) -> asyncio.Event:
        event = self._events.get(attempt_id)
        if event is None:
            event = asyncio.Event()
            self._events[attempt_id] = event
        return event

    def discard(self, attempt_id: uuid.UUID) -> None:
        self._events.pop(attempt_id, None)

    def notify(self, attempt_id: uuid.UUID) -> None:
        event = self._events.get(attempt_id)
        if event is not None:
            event.set()

    def __len__(self) -> int:
        return len(self._events)


class ConfirmationWaiter:
    """Watches one attempt until it resolves.

    The store is polled every ``poll_interval`` seconds. When the status
    tracker runs in the same process it also signals the waiter, which
    then re-reads the store right away.
    """

    def __init__(
        self,
        store: CallRecordStore,
        signals: Optional[AttemptSignals] = None,
        poll_interval: Optional[float] = None,
    ):
        self.store = store
        self.signals = signals if signals is not None else AttemptSignals()
        self.poll_interval = (
            poll_interval if poll_interval is not None
            else settings.CONFIRMATION_POLL_INTERVAL_SECONDS
        )

    async def wait(self, attempt_id: uuid.UUID, timeout: float) -> Resolution:
        """Block until the attempt is confirmed, terminal, or ``timeout`` passes."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        event = self.signals.register(attempt_id)

        try:
            while True:
                # Clear before reading so a signal raised after the read is kept
                event.clear()
                resolution = await self._check(attempt_id)
                if resolution is not None:
                    return resolution

                remaining = deadline - loop.time()
                if remaining <= 0:
                    logger.info("Confirmation wait timed out", attempt_id=str(attempt_id))
                    return Resolution.TIMED_OUT

                try:
                    await asyncio.wait_for(event.wait(), timeout=min(self.poll_interval, remaining))
                except asyncio.TimeoutError:
                    pass
        finally:
            self.signals.discard(attempt_id)

    def notify(self, attempt_id: uuid.UUID) -> None:
        """Wake the waiter of ``attempt_id``, if any."""
        self.signals.notify(attempt_id)

    async def _check(self, attempt_id: uuid.UUID) -> Optional[Resolution]:
        try:
            attempt = await self.store.get_attempt(attempt_id)
        except Exception as e:
            # Read failures are retried on the next poll until the deadline
            logger.warning("Could not read call attempt", attempt_id=str(attempt_id), error=str(e))
            return None

        if attempt is None:
            logger.warning("Call attempt disappeared while waiting", attempt_id=str(attempt_id))
            return Resolution.TERMINAL_UNCONFIRMED

        if attempt.confirmed:
            return Resolution.CONFIRMED

        if attempt.is_terminal:
            return Resolution.TERMINAL_UNCONFIRMED

        return None
