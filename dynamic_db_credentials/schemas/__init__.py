"""Pydantic schemas for requests, responses and template substitutions."""

from .credential_schemas import (
    ChangeExpiration,
    ChangePassword,
    CreateSubstitutions,
    DeleteSubstitutions,
    DeleteUserRequest,
    DeleteUserResponse,
    ExpirationSubstitutions,
    InitializeRequest,
    InitializeResponse,
    NewUserRequest,
    NewUserResponse,
    PasswordSubstitutions,
    StatementSelection,
    Statements,
    StatementSource,
    Substitutions,
    UpdateUserRequest,
    UpdateUserResponse,
    UsernameMetadata,
)

__all__ = [
    # Requests / responses
    "InitializeRequest",
    "InitializeResponse",
    "NewUserRequest",
    "NewUserResponse",
    "UpdateUserRequest",
    "UpdateUserResponse",
    "DeleteUserRequest",
    "DeleteUserResponse",
    "ChangePassword",
    "ChangeExpiration",
    "UsernameMetadata",
    # Statements
    "Statements",
    "StatementSelection",
    "StatementSource",
    # Substitutions
    "Substitutions",
    "CreateSubstitutions",
    "PasswordSubstitutions",
    "ExpirationSubstitutions",
    "DeleteSubstitutions",
]
