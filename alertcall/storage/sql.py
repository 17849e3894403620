"""SQLAlchemy-backed storage."""

import uuid
from datetime import datetime, timezone
from typing import List, Optional, Tuple

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from alertcall.exceptions import AttemptNotFound, PersistenceError
from alertcall.models.alert import Alert
from alertcall.models.call import (
    CallAttempt,
    CallStatus,
    TERMINAL_STATUSES,
    resolve_status_update,
)
from alertcall.models.database import get_session_maker
from alertcall.storage.base import AlertRepository, CallRecordStore
from alertcall.utils.logging import get_logger

logger = get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SQLCallRecordStore(CallRecordStore):
    """Call attempts in the ``call_attempts`` table.

    Status changes are optimistic compare-and-set updates: read the row,
    compute the new state, then update only if ``status`` and ``confirmed``
    still hold the values that were read.
    """

    def __init__(
        self,
        session_maker: Optional[async_sessionmaker[AsyncSession]] = None,
        max_cas_retries: int = 5,
    ):
        self._session_maker = session_maker
        self.max_cas_retries = max_cas_retries

    @property
    def session_maker(self) -> async_sessionmaker[AsyncSession]:
        if self._session_maker is None:
            self._session_maker = get_session_maker()
        return self._session_maker

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
        now = _utcnow()
        attempt = CallAttempt(
            id=uuid.uuid4(),
            alert_id=alert_id,
            contact_id=contact_id,
            contact_name=contact_name,
            phone=phone,
            script=script,
            status=CallStatus.INITIATED,
            confirmed=False,
            loop_number=loop_number,
            attempt_number=attempt_number,
            created_at=now,
            updated_at=now,
        )
        try:
            async with self.session_maker() as session:
                session.add(attempt)
                await session.commit()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Could not record call attempt: {e}") from e
        return attempt

    async def get_attempt(self, attempt_id: uuid.UUID) -> Optional[CallAttempt]:
        async with self.session_maker() as session:
            return await session.get(CallAttempt, attempt_id)

    async def list_attempts(self, alert_id: uuid.UUID) -> List[CallAttempt]:
        async with self.session_maker() as session:
            result = await session.execute(
                select(CallAttempt)
                .where(CallAttempt.alert_id == alert_id)
                .order_by(
                    CallAttempt.loop_number,
                    CallAttempt.attempt_number,
                    CallAttempt.created_at,
                )
            )
            return list(result.scalars().all())

    async def mark_dispatched(self, attempt_id: uuid.UUID, provider_call_id: str) -> None:
        try:
            async with self.session_maker() as session:
                result = await session.execute(
                    update(CallAttempt)
                    .where(CallAttempt.id == attempt_id)
                    .values(provider_call_id=provider_call_id)
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount == 0:
                    raise AttemptNotFound(f"Unknown call attempt {attempt_id}")

                # A status callback may already have moved the call along
                await session.execute(
                    update(CallAttempt)
                    .where(
                        CallAttempt.id == attempt_id,
                        CallAttempt.status == CallStatus.INITIATED,
                        CallAttempt.confirmed.is_(False),
                    )
                    .values(status=CallStatus.QUEUED)
                    .execution_options(synchronize_session=False)
                )
                await session.commit()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Could not record dispatch: {e}") from e

    async def mark_failed(self, attempt_id: uuid.UUID, error_message: str) -> None:
        try:
            async with self.session_maker() as session:
                await session.execute(
                    update(CallAttempt)
                    .where(CallAttempt.id == attempt_id)
                    .values(error_message=error_message)
                    .execution_options(synchronize_session=False)
                )
                await session.execute(
                    update(CallAttempt)
                    .where(
                        CallAttempt.id == attempt_id,
                        CallAttempt.confirmed.is_(False),
                        CallAttempt.status.not_in(list(TERMINAL_STATUSES)),
                    )
                    .values(status=CallStatus.FAILED)
                    .execution_options(synchronize_session=False)
                )
                await session.commit()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Could not record failure: {e}") from e

    async def apply_status(
        self,
        attempt_id: uuid.UUID,
        status: CallStatus,
        duration: Optional[int] = None,
    ) -> bool:
        for _ in range(self.max_cas_retries):
            async with self.session_maker() as session:
                current = await session.get(CallAttempt, attempt_id)
                if current is None:
                    raise AttemptNotFound(f"Unknown call attempt {attempt_id}")

                change = resolve_status_update(
                    current.status, current.confirmed, current.duration, status, duration
                )
                if change is None:
                    return False

                new_status, new_duration = change
                result = await session.execute(
                    update(CallAttempt)
                    .where(
                        CallAttempt.id == attempt_id,
                        CallAttempt.status == current.status,
                        CallAttempt.confirmed == current.confirmed,
                    )
                    .values(status=new_status, duration=new_duration)
                    .execution_options(synchronize_session=False)
                )
                await session.commit()
                if result.rowcount == 1:
                    return True

            logger.debug("Call attempt changed concurrently, retrying", attempt_id=str(attempt_id))

        raise PersistenceError(f"Could not apply status to call attempt {attempt_id}")

    async def confirm(self, attempt_id: uuid.UUID) -> bool:
        async with self.session_maker() as session:
            result = await session.execute(
                update(CallAttempt)
                .where(
                    CallAttempt.id == attempt_id,
                    CallAttempt.confirmed.is_(False),
                )
                # A late keypress also overrides a terminal status such as canceled
                .values(confirmed=True, status=CallStatus.CONFIRMED)
                .execution_options(synchronize_session=False)
            )
            await session.commit()
            if result.rowcount == 1:
                return True

            if await session.get(CallAttempt, attempt_id) is None:
                raise AttemptNotFound(f"Unknown call attempt {attempt_id}")
            return False


class SQLAlertRepository(AlertRepository):
    """Alerts in the ``alerts`` table."""

    def __init__(self, session_maker: Optional[async_sessionmaker[AsyncSession]] = None):
        self._session_maker = session_maker

    @property
    def session_maker(self) -> async_sessionmaker[AsyncSession]:
        if self._session_maker is None:
            self._session_maker = get_session_maker()
        return self._session_maker

    async def _find_by_source_id(self, session: AsyncSession, source_message_id: str) -> Optional[Alert]:
        result = await session.execute(
            select(Alert).where(Alert.source_message_id == source_message_id)
        )
        return result.scalar_one_or_none()

    async def save_alert(self, alert: Alert) -> Tuple[Alert, bool]:
        async with self.session_maker() as session:
            existing = await self._find_by_source_id(session, alert.source_message_id)
            if existing:
                return existing, False

            if alert.id is None:
                alert.id = uuid.uuid4()
            if alert.received_at is None:
                alert.received_at = _utcnow()
            alert.processed = bool(alert.processed)
            alert.confirmed = bool(alert.confirmed)
            alert.created_at = alert.created_at or _utcnow()
            session.add(alert)
            try:
                await session.commit()
            except IntegrityError:
                # Lost a race against another writer of the same event
                await session.rollback()
                existing = await self._find_by_source_id(session, alert.source_message_id)
                if existing is None:
                    raise
                return existing, False
            return alert, True

    async def get_alert(self, alert_id: uuid.UUID) -> Optional[Alert]:
        async with self.session_maker() as session:
            return await session.get(Alert, alert_id)

    async def claim_alert(self, alert_id: uuid.UUID) -> bool:
        async with self.session_maker() as session:
            result = await session.execute(
                update(Alert)
                .where(
                    Alert.id == alert_id,
                    Alert.processed.is_(False),
                    Alert.processing_started_at.is_(None),
                )
                .values(processing_started_at=_utcnow())
                .execution_options(synchronize_session=False)
            )
            await session.commit()
            return result.rowcount == 1

    async def release_alert(self, alert_id: uuid.UUID) -> bool:
        async with self.session_maker() as session:
            result = await session.execute(
                update(Alert)
                .where(
                    Alert.id == alert_id,
                    Alert.processed.is_(False),
                    Alert.processing_started_at.is_not(None),
                )
                .values(processing_started_at=None)
                .execution_options(synchronize_session=False)
            )
            await session.commit()
            return result.rowcount == 1

    async def mark_processed(self, alert_id: uuid.UUID, confirmed: bool) -> bool:
        async with self.session_maker() as session:
            result = await session.execute(
                update(Alert)
                .where(Alert.id == alert_id, Alert.processed.is_(False))
                .values(
                    processed=True,
                    confirmed=confirmed,
                    processing_completed_at=_utcnow(),
                )
                .execution_options(synchronize_session=False)
            )
            await session.commit()
            return result.rowcount == 1

    async def list_unprocessed(self, limit: int = 50) -> List[Alert]:
        async with self.session_maker() as session:
            result = await session.execute(
                select(Alert)
                .where(
                    Alert.processed.is_(False),
                    Alert.processing_started_at.is_(None),
                )
                .order_by(Alert.received_at)
                .limit(limit)
            )
            return list(result.scalars().all())

