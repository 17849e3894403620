"""Escalation state machine: one call at a time through the contact chain."""

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable, Iterator, List, Optional, Sequence, Tuple

from alertcall.config import settings
from alertcall.escalation.contacts import build_chain
from alertcall.escalation.dispatcher import CallDispatcher
from alertcall.escalation.waiter import ConfirmationWaiter, Resolution
from alertcall.exceptions import DispatchError
from alertcall.models.alert import Alert
from alertcall.models.call import CallAttempt, CallStatus
from alertcall.models.contact import Contact
from alertcall.storage.base import AlertRepository
from alertcall.utils.logging import get_logger, log_call_event

logger = get_logger(__name__)

# Provider statuses in which a call has not been answered yet
_UNANSWERED_STATUSES = frozenset({CallStatus.INITIATED, CallStatus.QUEUED, CallStatus.RINGING})


class SessionState(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    FAILED = "failed"


@dataclass
class Outcome:
    """Result of one escalation run."""

    confirmed: bool
    attempts: List[CallAttempt] = field(default_factory=list)
    confirmed_attempt: Optional[CallAttempt] = None

    @property
    def attempt_count(self) -> int:
        return len(self.attempts)


@dataclass
class EscalationSession:
    """Progress of a single run; lives only as long as ``run``."""

    alert: Alert
    loop_number: int = 0
    contact_index: int = 0
    state: SessionState = SessionState.PENDING
    attempts: List[CallAttempt] = field(default_factory=list)
    confirmed_attempt: Optional[CallAttempt] = None

    def to_outcome(self) -> Outcome:
        return Outcome(
            confirmed=self.state is SessionState.CONFIRMED,
            attempts=list(self.attempts),
            confirmed_attempt=self.confirmed_attempt,
        )


def iter_steps(chain: Sequence[Contact], max_loops: int) -> Iterator[Tuple[int, int, Contact]]:
    """Yield ``(loop_number, attempt_number, contact)`` in calling order."""
    for loop_number in range(1, max_loops + 1):
        for index, contact in enumerate(chain):
            yield loop_number, index + 1, contact


class EscalationOrchestrator:
    """Calls contacts in order until one confirms or every loop is spent.

    Only the attempt currently being waited on decides what happens next.
    Events for earlier attempts still update their records but never
    change the decision.
    """

    def __init__(
        self,
        dispatcher: CallDispatcher,
        waiter: ConfirmationWaiter,
        alerts: Optional[AlertRepository] = None,
        inter_contact_delay: Optional[float] = None,
        inter_loop_delay: Optional[float] = None,
        hangup_on_timeout: Optional[bool] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.dispatcher = dispatcher
        self.waiter = waiter
        self.alerts = alerts
        self.inter_contact_delay = (
            inter_contact_delay if inter_contact_delay is not None
            else settings.INTER_CONTACT_DELAY_SECONDS
        )
        self.inter_loop_delay = (
            inter_loop_delay if inter_loop_delay is not None
            else settings.INTER_LOOP_DELAY_SECONDS
        )
        self.hangup_on_timeout = (
            hangup_on_timeout if hangup_on_timeout is not None
            else settings.HANGUP_ON_TIMEOUT
        )
        self._sleep = sleep

    async def run(
        self,
        alert: Alert,
        contacts: Sequence[Contact],
        max_loops: Optional[int] = None,
        per_contact_timeout: Optional[float] = None,
        message: Optional[str] = None,
    ) -> Outcome:
        """Escalate ``alert`` through ``contacts``.

        Never raises for a failed attempt: refused calls, storage errors and
        timeouts all count as "not confirmed" and the run moves on.
        """
        max_loops = max_loops if max_loops is not None else settings.MAX_ESCALATION_LOOPS
        timeout = per_contact_timeout if per_contact_timeout is not None else settings.per_contact_timeout
        if max_loops < 1:
            raise ValueError("max_loops must be at least 1")

        session = EscalationSession(alert=alert)
        chain = build_chain(contacts)

        if not chain:
            logger.warning("No active contacts, escalation failed", alert_id=str(alert.id))
            session.state = SessionState.FAILED
            await self._conclude(session)
            return session.to_outcome()

        logger.info(
            "Escalation started",
            alert_id=str(alert.id),
            contact_count=len(chain),
            max_loops=max_loops
        )

        previous_loop = None
        for loop_number, attempt_number, contact in iter_steps(chain, max_loops):
            if previous_loop is not None:
                if loop_number != previous_loop:
                    logger.info(
                        "Escalation loop finished without confirmation",
                        alert_id=str(alert.id),
                        loop_number=previous_loop
                    )
                    await self._sleep(self.inter_loop_delay)
                else:
                    await self._sleep(self.inter_contact_delay)
            previous_loop = loop_number

            session.loop_number = loop_number
            session.contact_index = attempt_number - 1

            resolution = await self._attempt(session, contact, attempt_number, timeout, message)
            if resolution is Resolution.CONFIRMED:
                session.state = SessionState.CONFIRMED
                break

        if session.state is SessionState.PENDING:
            session.state = SessionState.FAILED

        session.attempts = await self._refresh(session.attempts)
        await self._conclude(session)
        return session.to_outcome()

    async def _attempt(
        self,
        session: EscalationSession,
        contact: Contact,
        attempt_number: int,
        timeout: float,
        message: Optional[str],
    ) -> Resolution:
        alert_id = str(session.alert.id)

        try:
            attempt = await self.dispatcher.dispatch(
                session.alert, contact, session.loop_number, attempt_number, message
            )
        except DispatchError as e:
            if e.attempt is not None:
                session.attempts.append(e.attempt)
            log_call_event(
                logger, alert_id,
                str(e.attempt.id) if e.attempt is not None else None,
                session.loop_number, attempt_number, "dispatch_failed",
                contact_name=contact.contact_name,
                error=str(e)
            )
            return Resolution.TERMINAL_UNCONFIRMED
        except Exception as e:
            logger.error(
                "Unexpected error dispatching call",
                alert_id=alert_id,
                loop_number=session.loop_number,
                attempt_number=attempt_number,
                error=str(e),
                exc_info=True
            )
            return Resolution.TERMINAL_UNCONFIRMED

        session.attempts.append(attempt)
        try:
            resolution = await self.waiter.wait(attempt.id, timeout)
        except asyncio.CancelledError:
            logger.warning(
                "Escalation cancelled while waiting on a call",
                alert_id=alert_id,
                attempt_id=str(attempt.id)
            )
            await self._hangup_stale(attempt)
            raise

        if resolution is Resolution.CONFIRMED:
            session.confirmed_attempt = attempt
        elif resolution is Resolution.TIMED_OUT and self.hangup_on_timeout:
            await self._hangup_stale(attempt)

        log_call_event(
            logger, alert_id, str(attempt.id),
            session.loop_number, attempt_number, resolution.value,
            contact_name=contact.contact_name
        )
        return resolution

    async def _hangup_stale(self, attempt: CallAttempt) -> None:
        """End a call we stopped waiting for, so it cannot ring alongside the next one."""
        try:
            current = await self.dispatcher.store.get_attempt(attempt.id)
        except Exception as e:
            logger.warning("Could not read timed out attempt", attempt_id=str(attempt.id), error=str(e))
            current = attempt

        if current is None or current.is_terminal or not current.provider_call_id:
            return

        try:
            await self.dispatcher.provider.hangup_call(
                current.provider_call_id,
                ringing=current.status in _UNANSWERED_STATUSES,
            )
        except Exception as e:
            logger.warning("Could not hang up timed out call", attempt_id=str(attempt.id), error=str(e))

    async def _refresh(self, attempts: List[CallAttempt]) -> List[CallAttempt]:
        refreshed = []
        for attempt in attempts:
            try:
                current = await self.dispatcher.store.get_attempt(attempt.id)
            except Exception as e:
                logger.warning("Could not refresh call attempt", attempt_id=str(attempt.id), error=str(e))
                current = None
            refreshed.append(current or attempt)
        return refreshed

    async def _conclude(self, session: EscalationSession) -> None:
        confirmed = session.state is SessionState.CONFIRMED
        session.alert.processed = True
        session.alert.confirmed = confirmed

        if self.alerts is not None:
            try:
                await self.alerts.mark_processed(session.alert.id, confirmed)
            except Exception as e:
                logger.error(
                    "Could not mark alert processed",
                    alert_id=str(session.alert.id),
                    error=str(e)
                )

        if confirmed:
            logger.info(
                "Escalation confirmed",
                alert_id=str(session.alert.id),
                loop_number=session.loop_number,
                attempt_count=len(session.attempts)
            )
        else:
            logger.warning(
                "Escalation exhausted without confirmation",
                alert_id=str(session.alert.id),
                attempt_count=len(session.attempts)
            )
