"""
Pydantic schemas for the lifecycle operations exposed to the host.

Request and response models mirror the host's database-plugin protocol.
Substitution models are the closed set of template fields each operation kind
may reference; render_statement() rejects any other placeholder.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence

from pydantic import BaseModel, ConfigDict, Field, SecretStr

from ..exceptions import missing_statements

# ==================== STATEMENTS ====================


class Statements(BaseModel):
    """Caller-supplied statement templates for one operation."""

    commands: List[str] = Field(default_factory=list, description="Statement templates")

    def is_empty(self) -> bool:
        return not any(command.strip() for command in self.commands)


class StatementSource(str, Enum):
    """Where the statements of an operation come from."""

    CALLER = "caller"
    BUILTIN = "builtin"


class StatementSelection(BaseModel):
    """Caller statements or the built-in default, decided once per operation."""

    model_config = ConfigDict(frozen=True)

    source: StatementSource
    commands: List[str]

    @classmethod
    def resolve(
        cls,
        statements: Optional[Statements],
        default: Optional[Sequence[str]] = None,
        operation: str = "operation",
    ) -> "StatementSelection":
        """
        Pick the caller's statements when present, else the built-in default.

        Args:
            statements: Statements from the request, possibly empty
            default: Built-in statements; None when the operation has no default
            operation: Operation name used in the error message

        Raises:
            ConfigurationError: If no statements were supplied and there is no default
        """
        if statements is not None and not statements.is_empty():
            return cls(source=StatementSource.CALLER, commands=list(statements.commands))
        if default is None:
            raise missing_statements(operation)
        return cls(source=StatementSource.BUILTIN, commands=list(default))

    @property
    def is_builtin(self) -> bool:
        return self.source == StatementSource.BUILTIN


# ==================== SUBSTITUTIONS ====================


class Substitutions(BaseModel):
    """Base for the per-operation template fields."""

    model_config = ConfigDict(frozen=True)

    def as_mapping(self) -> Dict[str, str]:
        mapping = {}
        for name in type(self).model_fields:
            value = getattr(self, name)
            mapping[name] = value.get_secret_value() if isinstance(value, SecretStr) else value
        return mapping

    def secret_values(self) -> List[str]:
        """Values that must never appear in logs or error messages."""
        return [
            getattr(self, name).get_secret_value()
            for name in type(self).model_fields
            if isinstance(getattr(self, name), SecretStr)
        ]


class CreateSubstitutions(Substitutions):
    name: str
    password: SecretStr
    expiration: str


class PasswordSubstitutions(Substitutions):
    name: str
    username: str
    password: SecretStr


class ExpirationSubstitutions(Substitutions):
    name: str
    username: str
    expiration: str


class DeleteSubstitutions(Substitutions):
    name: str


# ==================== REQUESTS / RESPONSES ====================


class InitializeRequest(BaseModel):
    config: Dict[str, Any] = Field(default_factory=dict, description="Raw connection config")
    verify_connection: bool = Field(default=True, description="Connect and ping before returning")


class InitializeResponse(BaseModel):
    config: Dict[str, Any] = Field(default_factory=dict, description="Normalized config to persist")


class UsernameMetadata(BaseModel):
    display_name: str = ""
    role_name: str = ""


class NewUserRequest(BaseModel):
    username_config: UsernameMetadata = Field(default_factory=UsernameMetadata)
    statements: Statements = Field(default_factory=Statements)
    password: SecretStr
    expiration: datetime


class NewUserResponse(BaseModel):
    username: str


class ChangePassword(BaseModel):
    new_password: SecretStr
    statements: Statements = Field(default_factory=Statements)


class ChangeExpiration(BaseModel):
    new_expiration: Optional[datetime] = None
    statements: Statements = Field(default_factory=Statements)


class UpdateUserRequest(BaseModel):
    username: str
    password: Optional[ChangePassword] = None
    expiration: Optional[ChangeExpiration] = None

    def has_changes(self) -> bool:
        return self.password is not None or self.expiration is not None


class UpdateUserResponse(BaseModel):
    pass


class DeleteUserRequest(BaseModel):
    username: str
    statements: Statements = Field(default_factory=Statements)


class DeleteUserResponse(BaseModel):
    pass
