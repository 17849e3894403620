"""Logging and input helpers shared across the package."""

from .logging import CorrelationContextManager, get_logger, setup_logging
from .validation import mask_phone_number, normalize_phone, sanitize_input, validate_phone

__all__ = [
    "CorrelationContextManager",
    "get_logger",
    "setup_logging",
    "mask_phone_number",
    "normalize_phone",
    "sanitize_input",
    "validate_phone",
]
