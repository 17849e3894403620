"""Wiring of the escalation components."""

from dataclasses import dataclass
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from alertcall.connectors.base import CallProvider
from alertcall.connectors.twilio_voice import TwilioVoiceConnector
from alertcall.escalation.contacts import ContactManager
from alertcall.escalation.dispatcher import CallDispatcher
from alertcall.escalation.orchestrator import EscalationOrchestrator
from alertcall.escalation.scheduler import EscalationScheduler
from alertcall.escalation.tracker import CallStatusTracker
from alertcall.escalation.waiter import AttemptSignals, ConfirmationWaiter
from alertcall.models.database import get_session_maker
from alertcall.services.escalation_service import EscalationService
from alertcall.services.monitoring import MonitoringService
from alertcall.storage.base import AlertRepository, AlertSource, CallRecordStore, StoredAlertSource
from alertcall.storage.sql import SQLAlertRepository, SQLCallRecordStore


@dataclass
class ServiceContainer:
    """Every long-lived collaborator of one running process."""

    provider: CallProvider
    store: CallRecordStore
    alerts: AlertRepository
    source: AlertSource
    contacts: ContactManager
    signals: AttemptSignals
    waiter: ConfirmationWaiter
    tracker: CallStatusTracker
    dispatcher: CallDispatcher
    orchestrator: EscalationOrchestrator
    service: EscalationService
    scheduler: EscalationScheduler
    monitoring: MonitoringService
    uses_database: bool = True


def build_container(
    provider: Optional[CallProvider] = None,
    store: Optional[CallRecordStore] = None,
    alerts: Optional[AlertRepository] = None,
    contacts: Optional[ContactManager] = None,
    session_maker: Optional[async_sessionmaker[AsyncSession]] = None,
    base_url: Optional[str] = None,
    poll_interval: Optional[float] = None,
    inter_contact_delay: Optional[float] = None,
    inter_loop_delay: Optional[float] = None,
    per_contact_timeout: Optional[float] = None,
    max_loops: Optional[int] = None,
) -> ServiceContainer:
    """Build the component graph.

    Missing storage falls back to the SQL backends; a missing provider
    falls back to Twilio configured from settings.
    """
    uses_database = store is None or alerts is None
    if uses_database and session_maker is None:
        session_maker = get_session_maker()

    provider = provider or TwilioVoiceConnector()
    store = store or SQLCallRecordStore(session_maker)
    alerts = alerts or SQLAlertRepository(session_maker)
    contacts = contacts or ContactManager(session_maker=session_maker)

    signals = AttemptSignals()
    waiter = ConfirmationWaiter(store, signals=signals, poll_interval=poll_interval)
    tracker = CallStatusTracker(store, signals=signals)
    dispatcher = CallDispatcher(provider, store, base_url=base_url)
    orchestrator = EscalationOrchestrator(
        dispatcher,
        waiter,
        alerts=alerts,
        inter_contact_delay=inter_contact_delay,
        inter_loop_delay=inter_loop_delay,
    )
    service = EscalationService(
        orchestrator,
        alerts,
        contacts,
        max_loops=max_loops,
        per_contact_timeout=per_contact_timeout,
    )
    source = StoredAlertSource(alerts)
    scheduler = EscalationScheduler(service, source)
    monitoring = MonitoringService(
        provider,
        scheduler=scheduler,
        session_maker=session_maker if uses_database else None,
    )

    return ServiceContainer(
        provider=provider,
        store=store,
        alerts=alerts,
        source=source,
        contacts=contacts,
        signals=signals,
        waiter=waiter,
        tracker=tracker,
        dispatcher=dispatcher,
        orchestrator=orchestrator,
        service=service,
        scheduler=scheduler,
        monitoring=monitoring,
        uses_database=uses_database,
    )
