"""
Password hashing with Argon2.

The encoded hash carries its own algorithm, version, cost parameters and
salt ($argon2id$v=19$m=...,t=...,p=...$salt$hash), so verification needs
nothing but the stored string.
"""

from typing import Any

from argon2 import PasswordHasher
from argon2.exceptions import InvalidHashError, VerificationError

from portal.common.config import PASSWORD_HASH_TIME_COST
from portal.common.errors import EmptyInputError

ARGON2_PREFIX = "$argon2"

ph = PasswordHasher(time_cost=PASSWORD_HASH_TIME_COST)


def hash_password(plain_text: Any) -> str:
    """
    Hash a password for storage.

    Args:
        plain_text (str): The password as typed. Surrounding whitespace is ignored.

    Returns:
        str: Self-describing Argon2 hash.

    Raises:
        EmptyInputError: If the password is missing or blank.
    """
    if not isinstance(plain_text, str) or not plain_text.strip():
        raise EmptyInputError("Cannot hash an empty password", field="password")
    return ph.hash(plain_text.strip())


def verify_password(plain_text: Any, stored_hash: Any) -> bool:
    """
    Check a password against a stored hash. Never raises.

    Returns:
        bool: True only when the hash is well-formed and matches.
    """
    if not isinstance(plain_text, str) or not plain_text.strip():
        return False
    # Encoded Argon2 hashes are ASCII; anything else is an unmigrated legacy value
    if not isinstance(stored_hash, str) or not stored_hash or not stored_hash.isascii():
        return False
    try:
        return ph.verify(stored_hash, plain_text.strip())
    except (VerificationError, InvalidHashError):
        return False


def is_password_hash(value: Any) -> bool:
    """True when the value already looks like an Argon2 hash."""
    return isinstance(value, str) and value.startswith(ARGON2_PREFIX)
