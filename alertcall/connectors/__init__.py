"""Call provider connectors for the alert escalation caller."""

from .base import CallProvider
from .twilio_voice import TwilioVoiceConnector

__all__ = [
    "CallProvider",
    "TwilioVoiceConnector",
]
