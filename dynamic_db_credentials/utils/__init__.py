"""Utility modules for the credential lifecycle manager."""

# Logging
from .logger import ContextAwareLogger, configure_logging, get_logger, reset_logging

# Secret masking
from .redaction import REDACTED, redact, register_secret, unregister_secret

__all__ = [
    "ContextAwareLogger",
    "configure_logging",
    "get_logger",
    "reset_logging",
    "REDACTED",
    "redact",
    "register_secret",
    "unregister_secret",
]
