"""Password hashing and verification for authentication."""

from functools import lru_cache

import bcrypt

from app.core.config import settings

# Min/max lengths for username and password validation.
USERNAME_MIN_LEN = 3
USERNAME_MAX_LEN = 50
PASSWORD_MIN_LEN = 8
PASSWORD_MAX_LEN = 128

# bcrypt only looks at the first 72 bytes of the secret.
BCRYPT_MAX_BYTES = 72


def normalize_username(username: str) -> str:
    """Usernames are stored and looked up trimmed and lower-cased."""
    return username.strip().lower()


def hash_password(plain_password: str, rounds: int | None = None) -> str:
    """Hash a plain-text password for storage. Do not store plain passwords."""
    pw_bytes = plain_password.encode("utf-8")[:BCRYPT_MAX_BYTES]
    salt = bcrypt.gensalt(rounds=rounds or settings.BCRYPT_ROUNDS)
    return bcrypt.hashpw(pw_bytes, salt).decode("utf-8")


def verify_password(plain_password: str, hashed: str) -> bool:
    """
    Verify a plain password against a stored bcrypt digest.

    The digest carries its own cost factor, so digests written with an older
    BCRYPT_ROUNDS still verify. Corrupt or foreign digests return False.
    """
    if not plain_password or not hashed:
        return False
    pw_bytes = plain_password.encode("utf-8")[:BCRYPT_MAX_BYTES]
    try:
        return bcrypt.checkpw(pw_bytes, hashed.encode("utf-8"))
    except (ValueError, TypeError):
        return False


@lru_cache
def _dummy_hash() -> str:
    return hash_password("nodeguard-dummy-password")


def warm_dummy_hash() -> None:
    """Compute the dummy digest up front (app startup) so no login pays for hashpw."""
    _dummy_hash()


def burn_password_check(plain_password: str) -> None:
    """Spend one bcrypt comparison so unknown usernames cost the same as wrong passwords."""
    verify_password(plain_password or "x", _dummy_hash())
