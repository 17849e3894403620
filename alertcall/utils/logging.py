"""Structured logging configuration using structlog."""

import logging
import sys
import uuid
from typing import Any, Optional

import structlog
from structlog.types import FilteringBoundLogger, Processor

from alertcall.config import settings

# Libraries that log every HTTP round trip at INFO
_NOISY_LOGGERS = ("twilio.http_client", "apscheduler", "urllib3", "httpx", "httpcore")


def setup_logging(level: Optional[str] = None, json_output: Optional[bool] = None) -> None:
    """Configure structured logging for the application.

    JSON lines are written unless ``json_output`` is false, which defaults
    to human readable console output while ``DEBUG`` is on.
    """
    log_level = getattr(logging, (level or settings.LOG_LEVEL).upper(), logging.INFO)
    if json_output is None:
        json_output = not settings.DEBUG

    renderer: Processor
    if json_output:
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=False)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.CallsiteParameterAdder(
                parameters={
                    structlog.processors.CallsiteParameter.MODULE,
                    structlog.processors.CallsiteParameter.FUNC_NAME,
                }
            ),
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        logger_factory=structlog.PrintLoggerFactory(file=sys.stdout),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=log_level)
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: Optional[str] = None) -> FilteringBoundLogger:
    """Get a structured logger instance."""
    return structlog.get_logger(name or __name__)


class CorrelationContextManager:
    """Bind a correlation id, plus any extra fields, to every log line in scope.

    Context variables are task local, so concurrent escalations each keep
    their own ids.
    """

    def __init__(self, correlation_id: Optional[str] = None, **context: Any):
        self.correlation_id = correlation_id or str(uuid.uuid4())
        self.context = context
        self._tokens = None

    def __enter__(self) -> str:
        self._tokens = structlog.contextvars.bind_contextvars(
            correlation_id=self.correlation_id, **self.context
        )
        return self.correlation_id

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self._tokens:
            structlog.contextvars.reset_contextvars(**self._tokens)
            self._tokens = None


def log_call_event(
    logger: FilteringBoundLogger,
    alert_id: str,
    attempt_id: Optional[str],
    loop_number: int,
    attempt_number: int,
    outcome: str,
    **kwargs: Any
) -> None:
    """Log the outcome of one call attempt."""
    logger.info(
        f"Call {outcome}: loop {loop_number} attempt {attempt_number}",
        alert_id=alert_id,
        attempt_id=attempt_id,
        loop_number=loop_number,
        attempt_number=attempt_number,
        call_outcome=outcome,
        **kwargs
    )


def log_webhook_event(
    logger: FilteringBoundLogger,
    kind: str,
    attempt_id: str,
    changed: bool,
    **kwargs: Any
) -> None:
    """Log an inbound provider callback. Replays that changed nothing go to debug."""
    log = logger.info if changed else logger.debug
    log(
        f"Webhook {kind}",
        webhook=kind,
        attempt_id=attempt_id,
        changed=changed,
        **kwargs
    )


def log_external_api_call(
    logger: FilteringBoundLogger,
    service: str,
    operation: str,
    success: bool,
    duration_ms: float,
    **kwargs: Any
) -> None:
    """Log external API calls with consistent format."""
    level = "info" if success else "error"
    getattr(logger, level)(
        f"{service} API call: {operation}",
        external_service=service,
        operation=operation,
        success=success,
        duration_ms=duration_ms,
        **kwargs
    )
