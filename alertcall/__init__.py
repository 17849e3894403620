"""Alert escalation caller: calls a contact chain until someone confirms."""

__version__ = "0.1.0"
