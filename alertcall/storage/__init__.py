"""Storage backends for alerts and call attempts."""

from .base import AlertRepository, AlertSource, CallRecordStore, StoredAlertSource
from .memory import InMemoryAlertRepository, InMemoryCallRecordStore
from .sql import SQLAlertRepository, SQLCallRecordStore

__all__ = [
    "AlertRepository",
    "AlertSource",
    "CallRecordStore",
    "InMemoryAlertRepository",
    "InMemoryCallRecordStore",
    "SQLAlertRepository",
    "SQLCallRecordStore",
    "StoredAlertSource",
]
