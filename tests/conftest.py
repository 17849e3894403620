"""Pytest configuration and fixtures."""

import asyncio
import json
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Awaitable, Callable, Dict, List, Optional, Union

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from alertcall.connectors.base import CallProvider
from alertcall.escalation.contacts import ContactManager
from alertcall.escalation.dispatcher import CallDispatcher
from alertcall.escalation.orchestrator import EscalationOrchestrator
from alertcall.escalation.tracker import CallStatusTracker
from alertcall.escalation.waiter import AttemptSignals, ConfirmationWaiter
from alertcall.exceptions import CallProviderError
from alertcall.models import Alert, Base, Contact
from alertcall.services.container import build_container
from alertcall.storage.memory import InMemoryAlertRepository, InMemoryCallRecordStore

BASE_URL = "https://alerts.example.com"

# Timing knobs for tests, in seconds
POLL_INTERVAL = 0.01
PER_CONTACT_TIMEOUT = 0.3


@dataclass
class PlacedCall:
    """A call the fake provider was asked to place."""

    to: str
    attempt_id: uuid.UUID
    call_id: str
    instructions_url: str
    status_callback_url: str
    timeout_seconds: int


Behavior = Union[str, Callable[["FakeCallProvider", PlacedCall], Awaitable[None]]]


@dataclass
class FakeCallProvider(CallProvider):
    """Call provider that plays back scripted callee behavior.

    Behaviors per phone number:
        confirm   answers and presses the confirm key
        decline   answers and presses another key
        no-answer, busy, failed   ends with that status
        silent    never reports anything
        reject    refuses to place the call
    or any coroutine function taking ``(provider, call)``.
    """

    tracker: Optional[CallStatusTracker] = None
    behaviors: Dict[str, Behavior] = field(default_factory=dict)
    default_behavior: Behavior = "no-answer"
    calls: List[PlacedCall] = field(default_factory=list)
    hangups: List[dict] = field(default_factory=list)
    healthy: bool = True
    on_place: Optional[Callable[[PlacedCall], Awaitable[None]]] = None
    _tasks: List[asyncio.Task] = field(default_factory=list)

    async def place_call(
        self,
        to: str,
        instructions_url: str,
        status_callback_url: str,
        timeout_seconds: int,
        from_: Optional[str] = None,
    ) -> str:
        behavior = self.behaviors.get(to, self.default_behavior)
        if behavior == "reject":
            raise CallProviderError("The 'To' number is not a valid phone number", code=21211)

        call = PlacedCall(
            to=to,
            attempt_id=uuid.UUID(status_callback_url.rsplit("/", 1)[-1]),
            call_id=f"CA{len(self.calls) + 1:032d}",
            instructions_url=instructions_url,
            status_callback_url=status_callback_url,
            timeout_seconds=timeout_seconds,
        )
        self.calls.append(call)

        if self.on_place is not None:
            await self.on_place(call)

        self._tasks.append(asyncio.create_task(self._react(behavior, call)))
        return call.call_id

    async def hangup_call(self, provider_call_id: str, ringing: bool = False) -> bool:
        self.hangups.append({"call_id": provider_call_id, "ringing": ringing})
        return True

    async def check_connection(self) -> bool:
        return self.healthy

    async def _react(self, behavior: Behavior, call: PlacedCall) -> None:
        await asyncio.sleep(0)
        if callable(behavior):
            await behavior(self, call)
            return

        if self.tracker is None or behavior == "silent":
            return

        await self.tracker.on_status_event(call.attempt_id, "ringing")
        if behavior == "confirm":
            await self.tracker.on_status_event(call.attempt_id, "in-progress")
            await self.tracker.on_gather_event(call.attempt_id, "1")
            await self.tracker.on_status_event(call.attempt_id, "completed", "14")
        elif behavior == "decline":
            await self.tracker.on_status_event(call.attempt_id, "in-progress")
            await self.tracker.on_gather_event(call.attempt_id, "9")
            await self.tracker.on_status_event(call.attempt_id, "completed", "9")
        else:
            await self.tracker.on_status_event(call.attempt_id, behavior)

    @property
    def dialed(self) -> List[str]:
        return [call.to for call in self.calls]

    async def settle(self) -> None:
        """Wait for every scripted reaction to finish."""
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)


ALICE = "+15550000001"
BOB = "+15550000002"
CAROL = "+15550000003"


def make_contact(name: str, phone: str, order: int, active: bool = True) -> Contact:
    return Contact(
        id=uuid.uuid4(),
        contact_name=name,
        phone_number=phone,
        escalation_order=order,
        is_active=active,
    )


def make_alert(source_message_id: Optional[str] = None, **overrides) -> Alert:
    values = {
        "id": uuid.uuid4(),
        "source_message_id": source_message_id or f"<{uuid.uuid4()}@monitor.example.com>",
        "sender": "Monitoring <alerts@monitor.example.com>",
        "subject": "Database replica lag above threshold",
        "body_preview": "Replica db-2 is 340 seconds behind the primary.",
        "received_at": datetime.now(timezone.utc),
        "processed": False,
        "confirmed": False,
    }
    values.update(overrides)
    return Alert(**values)


@pytest.fixture
def contacts():
    """Alice then Bob."""
    return [make_contact("Alice", ALICE, 1), make_contact("Bob", BOB, 2)]


@pytest.fixture
def alert():
    return make_alert()


@pytest.fixture
def store():
    return InMemoryCallRecordStore()


@pytest.fixture
def alert_repository():
    return InMemoryAlertRepository()


@pytest.fixture
def signals():
    return AttemptSignals()


@pytest.fixture
def tracker(store, signals):
    return CallStatusTracker(store, signals=signals)


@pytest.fixture
def provider(tracker):
    return FakeCallProvider(tracker=tracker)


@pytest.fixture
def waiter(store, signals):
    return ConfirmationWaiter(store, signals=signals, poll_interval=POLL_INTERVAL)


@pytest.fixture
def dispatcher(provider, store):
    return CallDispatcher(provider, store, base_url=BASE_URL, ring_timeout=30)


@pytest.fixture
def orchestrator(dispatcher, waiter, alert_repository):
    return EscalationOrchestrator(
        dispatcher,
        waiter,
        alerts=alert_repository,
        inter_contact_delay=0,
        inter_loop_delay=0,
        hangup_on_timeout=True,
    )


@pytest.fixture
def contacts_file(tmp_path):
    """Contacts file with Alice, Bob and an inactive Carol."""
    path = tmp_path / "contacts.json"
    path.write_text(json.dumps({
        "contacts": [
            {"name": "Bob", "phone": BOB, "order": 2},
            {"name": "Alice", "phone": ALICE, "order": 1},
            {"name": "Carol", "phone": CAROL, "order": 3, "active": False},
        ]
    }), encoding="utf-8")
    return str(path)


@pytest.fixture
def container(contacts_file):
    """In-memory service container driven by a fake call provider."""
    fake = FakeCallProvider()
    services = build_container(
        provider=fake,
        store=InMemoryCallRecordStore(),
        alerts=InMemoryAlertRepository(),
        contacts=ContactManager(contacts_file=contacts_file),
        base_url=BASE_URL,
        poll_interval=POLL_INTERVAL,
        inter_contact_delay=0,
        inter_loop_delay=0,
        per_contact_timeout=PER_CONTACT_TIMEOUT,
        max_loops=2,
    )
    fake.tracker = services.tracker
    return services


@pytest_asyncio.fixture
async def session_maker(tmp_path):
    """Session maker bound to a fresh SQLite database."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'alertcall_test.db'}", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()
