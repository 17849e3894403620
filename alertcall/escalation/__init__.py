"""Escalation engine components for the alert escalation caller."""

from .contacts import ContactManager, build_chain
from .dispatcher import CallDispatcher
from .messages import build_spoken_message
from .orchestrator import EscalationOrchestrator, EscalationSession, Outcome, SessionState
from .scheduler import EscalationScheduler
from .tracker import CallStatusTracker
from .waiter import AttemptSignals, ConfirmationWaiter, Resolution

__all__ = [
    "AttemptSignals",
    "CallDispatcher",
    "CallStatusTracker",
    "ConfirmationWaiter",
    "ContactManager",
    "EscalationOrchestrator",
    "EscalationScheduler",
    "EscalationSession",
    "Outcome",
    "Resolution",
    "SessionState",
    "build_chain",
    "build_spoken_message",
]
