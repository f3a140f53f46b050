"""
Dynamic database credentials.

Creates, rotates and revokes short-lived database users on behalf of a secrets
host, using caller-supplied statement templates.
"""

from .exceptions import (
    BaseError,
    ConfigurationError,
    ConnectionError,
    ErrorCode,
    ExecutionError,
    GenerationError,
    OperationCancelledError,
    ValidationError,
)
from .services.credential_service import CredentialLifecycleService

__version__ = "0.1.0"

__all__ = [
    "CredentialLifecycleService",
    # Errors
    "BaseError",
    "ConfigurationError",
    "ConnectionError",
    "ErrorCode",
    "ExecutionError",
    "GenerationError",
    "OperationCancelledError",
    "ValidationError",
]
