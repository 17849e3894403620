"""In-process storage for single-instance deployments and tests."""

import asyncio
import uuid
from collections import defaultdict
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from alertcall.exceptions import AttemptNotFound
from alertcall.models.alert import Alert
from alertcall.models.call import (
    CallAttempt,
    CallStatus,
    TERMINAL_STATUSES,
    resolve_status_update,
)
from alertcall.storage.base import AlertRepository, CallRecordStore

_ALERT_FIELDS = (
    "id", "source_message_id", "sender", "subject", "body_preview",
    "received_at", "processed", "confirmed", "processing_started_at",
    "processing_completed_at", "created_at",
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class InMemoryCallRecordStore(CallRecordStore):
    """Keeps attempts in a dict; each attempt has its own lock.

    Reads return fresh ``CallAttempt`` objects so callers never share
    mutable state with the store.
    """

    def __init__(self):
        self._records: Dict[uuid.UUID, Dict[str, Any]] = {}
        self._locks: Dict[uuid.UUID, asyncio.Lock] = defaultdict(asyncio.Lock)

    def _build(self, record: Dict[str, Any]) -> CallAttempt:
        return CallAttempt(**record)

    def _require(self, attempt_id: uuid.UUID) -> Dict[str, Any]:
        record = self._records.get(attempt_id)
        if record is None:
            raise AttemptNotFound(f"Unknown call attempt {attempt_id}")
        return record

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
        record = {
            "id": uuid.uuid4(),
            "alert_id": alert_id,
            "contact_id": contact_id,
            "contact_name": contact_name,
            "phone": phone,
            "script": script,
            "status": CallStatus.INITIATED,
            "confirmed": False,
            "loop_number": loop_number,
            "attempt_number": attempt_number,
            "provider_call_id": None,
            "duration": None,
            "error_message": None,
            "created_at": now,
            "updated_at": now,
        }
        self._records[record["id"]] = record
        return self._build(record)

    async def get_attempt(self, attempt_id: uuid.UUID) -> Optional[CallAttempt]:
        record = self._records.get(attempt_id)
        return self._build(record) if record is not None else None

    async def list_attempts(self, alert_id: uuid.UUID) -> List[CallAttempt]:
        records = [r for r in self._records.values() if r["alert_id"] == alert_id]
        records.sort(key=lambda r: (r["loop_number"], r["attempt_number"], r["created_at"]))
        return [self._build(r) for r in records]

    async def mark_dispatched(self, attempt_id: uuid.UUID, provider_call_id: str) -> None:
        async with self._locks[attempt_id]:
            record = self._require(attempt_id)
            record["provider_call_id"] = provider_call_id
            if record["status"] == CallStatus.INITIATED and not record["confirmed"]:
                record["status"] = CallStatus.QUEUED
            record["updated_at"] = _utcnow()

    async def mark_failed(self, attempt_id: uuid.UUID, error_message: str) -> None:
        async with self._locks[attempt_id]:
            record = self._require(attempt_id)
            record["error_message"] = error_message
            if not record["confirmed"] and record["status"] not in TERMINAL_STATUSES:
                record["status"] = CallStatus.FAILED
            record["updated_at"] = _utcnow()

    async def apply_status(
        self,
        attempt_id: uuid.UUID,
        status: CallStatus,
        duration: Optional[int] = None,
    ) -> bool:
        async with self._locks[attempt_id]:
            record = self._require(attempt_id)
            update = resolve_status_update(
                record["status"], record["confirmed"], record["duration"], status, duration
            )
            if update is None:
                return False
            record["status"], record["duration"] = update
            record["updated_at"] = _utcnow()
            return True

    async def confirm(self, attempt_id: uuid.UUID) -> bool:
        async with self._locks[attempt_id]:
            record = self._require(attempt_id)
            if record["confirmed"]:
                return False
            # A late keypress also overrides a terminal status such as canceled
            record["confirmed"] = True
            record["status"] = CallStatus.CONFIRMED
            record["updated_at"] = _utcnow()
            return True


class InMemoryAlertRepository(AlertRepository):
    """Keeps alerts in a dict."""

    def __init__(self):
        self._alerts: Dict[uuid.UUID, Dict[str, Any]] = {}
        self._lock = asyncio.Lock()

    def _build(self, record: Dict[str, Any]) -> Alert:
        return Alert(**record)

    async def save_alert(self, alert: Alert) -> Tuple[Alert, bool]:
        async with self._lock:
            for record in self._alerts.values():
                if record["source_message_id"] == alert.source_message_id:
                    return self._build(record), False

            record = {field: getattr(alert, field, None) for field in _ALERT_FIELDS}
            record["id"] = record["id"] or uuid.uuid4()
            record["processed"] = bool(record["processed"])
            record["confirmed"] = bool(record["confirmed"])
            record["received_at"] = record["received_at"] or _utcnow()
            record["created_at"] = record["created_at"] or _utcnow()
            self._alerts[record["id"]] = record
            return self._build(record), True

    async def get_alert(self, alert_id: uuid.UUID) -> Optional[Alert]:
        record = self._alerts.get(alert_id)
        return self._build(record) if record is not None else None

    async def claim_alert(self, alert_id: uuid.UUID) -> bool:
        async with self._lock:
            record = self._alerts.get(alert_id)
            if record is None or record["processed"] or record["processing_started_at"]:
                return False
            record["processing_started_at"] = _utcnow()
            return True

    async def release_alert(self, alert_id: uuid.UUID) -> bool:
        async with self._lock:
            record = self._alerts.get(alert_id)
            if record is None or record["processed"] or record["processing_started_at"] is None:
                return False
            record["processing_started_at"] = None
            return True

    async def mark_processed(self, alert_id: uuid.UUID, confirmed: bool) -> bool:
        async with self._lock:
            record = self._alerts.get(alert_id)
            if record is None or record["processed"]:
                return False
            record["processed"] = True
            record["confirmed"] = confirmed
            record["processing_completed_at"] = _utcnow()
            return True

    async def list_unprocessed(self, limit: int = 50) -> List[Alert]:
        records = [
            r for r in self._alerts.values()
            if not r["processed"] and r["processing_started_at"] is None
        ]
        records.sort(key=lambda r: r["received_at"])
        return [self._build(r) for r in records[:limit]]
