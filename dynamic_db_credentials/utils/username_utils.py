"""
Username, password and expiration helpers for newly issued credentials.

generate_username() builds ``v<sep>display<sep>role<sep>random<sep>timestamp``
from the caller's hints. The HANA-specific clean-up (no hyphens, upper case) is
a separate step, normalize_username(), applied by the caller afterwards.
"""

import secrets
import string
import time
from datetime import datetime, timezone
from typing import Callable, Optional

from ..constants import EXPIRATION_FORMAT, MAX_IDENTIFIER_LENGTH
from ..exceptions import GenerationError

USERNAME_PREFIX = "v"
RANDOM_SUFFIX_LENGTH = 20

_ALPHANUMERIC = string.ascii_letters + string.digits


def random_alphanumeric(length: int) -> str:
    """Cryptographically random [A-Za-z0-9] string."""
    return "".join(secrets.choice(_ALPHANUMERIC) for _ in range(length))


def truncate(value: str, length: int) -> str:
    if length < 0:
        return value
    return value[:length]


def generate_username(
    display_name: str,
    role_name: str,
    display_name_length: int = 32,
    role_name_length: int = 20,
    max_length: int = MAX_IDENTIFIER_LENGTH,
    separator: str = "_",
    uppercase: bool = True,
    random_source: Optional[Callable[[int], str]] = None,
    clock: Optional[Callable[[], float]] = None,
) -> str:
    """
    Generate a unique username from the display and role name hints.

    Args:
        display_name: Display name hint, truncated to display_name_length
        role_name: Role name hint, truncated to role_name_length
        display_name_length: Maximum characters kept from display_name
        role_name_length: Maximum characters kept from role_name
        max_length: Maximum length of the whole username
        separator: Placed between the non-empty parts
        uppercase: Upper-case the result
        random_source: Returns a random string of the requested length
        clock: Returns the current unix time

    Returns:
        The generated username

    Raises:
        GenerationError: If the random source fails
    """
    random_source = random_source or random_alphanumeric
    clock = clock or time.time

    try:
        suffix = random_source(RANDOM_SUFFIX_LENGTH)
    except Exception as e:
        raise GenerationError(
            "Unable to generate random username suffix",
            cause=e,
            display_name=display_name,
            role_name=role_name,
        ) from e
    if not suffix:
        raise GenerationError("Random source returned an empty suffix")

    parts = [
        USERNAME_PREFIX,
        truncate(display_name or "", display_name_length),
        truncate(role_name or "", role_name_length),
        suffix,
        str(int(clock())),
    ]
    username = separator.join(part for part in parts if part)
    username = truncate(username, max_length)

    if uppercase:
        username = username.upper()
    return username


def normalize_username(username: str) -> str:
    """HANA forbids hyphens in usernames and strongly prefers capital letters."""
    return username.replace("-", "_").upper()


def normalize_password(password: str) -> str:
    """Hyphens are rejected by most HANA password policies."""
    return password.replace("-", "_")


def format_expiration(expiration: datetime) -> str:
    """
    Render an expiration as HANA's VALID UNTIL literal.

    Naive datetimes are taken to be UTC already.
    """
    if expiration.tzinfo is None:
        expiration = expiration.replace(tzinfo=timezone.utc)
    return expiration.astimezone(timezone.utc).strftime(EXPIRATION_FORMAT)
