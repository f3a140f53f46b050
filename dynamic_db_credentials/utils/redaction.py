"""
Secret masking for log records and surfaced error messages.

Secrets are registered process-wide by the connection producer (the admin
password) and scrubbed from every record passing through a logger that carries
a SecretRedactionFilter. Per-call secrets, such as a new user's password, are
passed to redact() explicitly by the code that builds error messages.
"""

import logging
import threading
from typing import Iterable, Mapping, Set, Union

REDACTED = "[redacted]"

_secrets: Set[str] = set()
_secrets_lock = threading.Lock()


def register_secret(value: str) -> None:
    """Mask value in every log record from now on."""
    if not value:
        return
    with _secrets_lock:
        _secrets.add(value)


def unregister_secret(value: str) -> None:
    with _secrets_lock:
        _secrets.discard(value)


def registered_secrets() -> Set[str]:
    with _secrets_lock:
        return set(_secrets)


def redact(text: str, secrets: Union[Iterable[str], Mapping[str, str]] = ()) -> str:
    """
    Replace every occurrence of each secret in text.

    Args:
        text: Message that may echo a secret (e.g. a driver error quoting SQL)
        secrets: Values to mask, or a mapping of value -> replacement such as
            the one returned by CredentialLifecycleService.secret_values()

    Returns:
        The masked text. Registered secrets are always masked as well.
    """
    if isinstance(secrets, Mapping):
        replacements = dict(secrets)
    else:
        replacements = {value: REDACTED for value in secrets}
    for value in registered_secrets():
        replacements.setdefault(value, REDACTED)

    # Longest first so a secret containing another one is masked whole
    for value in sorted(replacements, key=len, reverse=True):
        if value:
            text = text.replace(value, replacements[value])
    return text


class SecretRedactionFilter(logging.Filter):
    """Logging filter that masks registered secrets in the rendered message."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not registered_secrets():
            return True

        message = record.getMessage()
        masked = redact(message)
        if masked != message:
            record.msg = masked
            record.args = None
        return True
