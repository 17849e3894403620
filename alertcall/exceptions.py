"""Exception hierarchy for the alert escalation caller."""

from typing import Any, Optional


class AlertCallError(Exception):
    """Base class for all application errors."""


class ConfigurationError(AlertCallError):
    """Required configuration is missing or invalid. Fatal at startup."""


class CallProviderError(AlertCallError):
    """The call provider refused or failed a request."""

    def __init__(self, message: str, code: Optional[int] = None):
        super().__init__(message)
        self.code = code


class DispatchError(AlertCallError):
    """A call attempt could not be placed.

    Terminal for the contact being dialed; the escalation moves on.
    """

    def __init__(self, message: str, attempt: Optional[Any] = None):
        super().__init__(message)
        self.attempt = attempt


class PersistenceError(DispatchError):
    """The call record store could not record an attempt."""


class WebhookMalformed(AlertCallError):
    """An inbound provider callback carried an unexpected payload."""


class AttemptNotFound(WebhookMalformed):
    """An inbound provider callback referenced an unknown attempt."""
