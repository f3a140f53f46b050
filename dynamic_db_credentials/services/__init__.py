"""Lifecycle services."""

from .credential_service import CredentialLifecycleService
from .revocation_policy import DefaultRevocationPolicy, RevocationState

__all__ = [
    "CredentialLifecycleService",
    "DefaultRevocationPolicy",
    "RevocationState",
]
