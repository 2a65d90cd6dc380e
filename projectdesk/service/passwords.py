from __future__ import annotations

from typing import Optional

from argon2 import PasswordHasher, Type
from argon2.exceptions import InvalidHash, VerificationError, VerifyMismatchError

from projectdesk.logging import get_logger

logger = get_logger(__name__)

# argon2id; every hash() call draws a fresh random salt
_pwd_hasher = PasswordHasher(type=Type.ID)


def hash_password(plaintext: str) -> str:
    if not plaintext:
        raise ValueError("password must not be empty")
    return _pwd_hasher.hash(plaintext)


def verify_password(plaintext: Optional[str], digest: Optional[str]) -> bool:
    """Constant-time check that never raises; missing or malformed input is a mismatch."""
    if not plaintext or not digest:
        return False
    try:
        return _pwd_hasher.verify(digest, plaintext)
    except VerifyMismatchError:
        return False
    except (InvalidHash, VerificationError):
        logger.warning("password_hash_unreadable")
        return False
