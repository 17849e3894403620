"""Service layer components for the alert escalation caller."""

from .container import ServiceContainer, build_container
from .escalation_service import EscalationService
from .monitoring import MonitoringService

__all__ = [
    "EscalationService",
    "MonitoringService",
    "ServiceContainer",
    "build_container",
]
