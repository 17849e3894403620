"""Database models for the alert escalation caller."""

from .database import Base, get_session_maker
from .alert import Alert
from .contact import Contact
from .call import CallAttempt, CallStatus, TERMINAL_STATUSES, PROVIDER_STATUSES

__all__ = [
    "Base",
    "get_session_maker",
    "Alert",
    "Contact",
    "CallAttempt",
    "CallStatus",
    "TERMINAL_STATUSES",
    "PROVIDER_STATUSES",
]
