"""
Centralized configuration for the credential lifecycle manager.

This module provides a unified configuration system with support for:
- Environment variables
- Username generation policy
- Built-in statements used when the caller supplies none
- Validation using Pydantic
"""

import os
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .constants import MAX_IDENTIFIER_LENGTH, EnvironmentVariable, LogLevel


class LoggingConfig(BaseModel):
    """Logging configuration."""

    model_config = ConfigDict(validate_default=True)

    level: str = Field(
        default_factory=lambda: os.getenv(EnvironmentVariable.LOG_LEVEL.value, LogLevel.INFO.value),
        description="Logging level",
    )
    format: str = Field(
        default="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        description="Log format string",
    )

    @field_validator("level")
    def validate_log_level(cls, v: str) -> str:
        """Validate log level is valid."""
        valid_levels = {level.value for level in LogLevel}
        if v.upper() not in valid_levels:
            raise ValueError(f"Invalid log level: {v}. Must be one of {valid_levels}")
        return v.upper()


class UsernamePolicy(BaseModel):
    """How generated usernames are composed."""

    display_name_length: int = Field(default=32, ge=0, description="Display name truncation")
    role_name_length: int = Field(default=20, ge=0, description="Role name truncation")
    max_length: int = Field(
        default=MAX_IDENTIFIER_LENGTH, gt=0, description="Maximum username length"
    )
    separator: str = Field(default="_", description="Separator between username parts")
    uppercase: bool = Field(default=True, description="Upper-case the generated username")


class BuiltinStatements(BaseModel):
    """Statements used when a caller supplies none for an operation."""

    change_password: List[str] = Field(
        default_factory=lambda: ['ALTER USER {{username}} PASSWORD "{{password}}"'],
        description="Password rotation",
    )
    change_expiration: List[str] = Field(
        default_factory=lambda: ["ALTER USER {{username}} VALID UNTIL '{{expiration}}'"],
        description="Expiration rotation",
    )
    deactivate_user: str = Field(
        default="ALTER USER {{name}} DEACTIVATE USER NOW",
        description="First step of the default revocation",
    )
    drop_user: str = Field(
        default="DROP USER {{name}} RESTRICT",
        description="Second step of the default revocation, fails on dependent objects",
    )


class AppConfig(BaseModel):
    """Main application configuration."""

    logging: LoggingConfig = Field(
        default_factory=LoggingConfig, description="Logging configuration"
    )
    usernames: UsernamePolicy = Field(
        default_factory=UsernamePolicy, description="Username generation policy"
    )
    statements: BuiltinStatements = Field(
        default_factory=BuiltinStatements, description="Built-in default statements"
    )

    @classmethod
    def from_env(cls) -> "AppConfig":
        """Create configuration from environment variables."""
        return cls()


# Global configuration instance
_config: Optional[AppConfig] = None


def get_config() -> AppConfig:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = AppConfig.from_env()
    return _config


def set_config(config: AppConfig) -> None:
    """Set the global configuration instance."""
    global _config
    _config = config


def reset_config() -> None:
    """Reset the global configuration instance."""
    global _config
    _config = None
