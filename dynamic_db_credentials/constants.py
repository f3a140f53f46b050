"""
Constants and enums for the credential lifecycle manager.
"""

from enum import Enum

# Type identifier reported to the host
HANA_TYPE_NAME = "hdb"

# HANA identifiers are limited to 127 characters
MAX_IDENTIFIER_LENGTH = 127

# HANA's VALID UNTIL literal, always rendered in UTC
EXPIRATION_FORMAT = "%Y-%m-%d %H:%M:%S"

STATEMENT_SEPARATOR = ";"


class LogLevel(str, Enum):
    """Standard logging levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class EnvironmentVariable(str, Enum):
    """Standard environment variable names."""

    LOG_LEVEL = "LOG_LEVEL"


class OperationStatus(str, Enum):
    """Status values logged on operation exit."""

    SUCCESS = "success"
    ERROR = "error"
    CANCELLED = "cancelled"
