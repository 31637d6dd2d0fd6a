from __future__ import annotations

from typing import Optional

from argon2 import PasswordHasher, Type
from argon2.exceptions import InvalidHashError, VerificationError, VerifyMismatchError

from pantry_auth.config import Settings
from pantry_auth.logging import get_logger

logger = get_logger(__name__)


class CredentialHasher:
    """Salted argon2id password hashing with a fixed work factor."""

    algorithm = "argon2id"

    def __init__(self, settings: Optional[Settings] = None) -> None:
        if settings is None:
            self._hasher = PasswordHasher(type=Type.ID)
        else:
            self._hasher = PasswordHasher(
                time_cost=settings.password_time_cost,
                memory_cost=settings.password_memory_cost,
                parallelism=settings.password_parallelism,
                type=Type.ID,
            )

    def hash(self, plaintext: str) -> str:
        return self._hasher.hash(plaintext)

    def verify(self, plaintext: str, hashed: Optional[str]) -> bool:
        """Check ``plaintext`` against ``hashed``; malformed hashes yield False."""
        if not isinstance(hashed, str) or not hashed:
            return False
        try:
            return self._hasher.verify(hashed, plaintext)
        except VerifyMismatchError:
            return False
        except (InvalidHashError, VerificationError) as exc:
            logger.warning("password_hash_unusable", error=type(exc).__name__)
            return False

    def needs_rehash(self, hashed: str) -> bool:
        try:
            return self._hasher.check_needs_rehash(hashed)
        except InvalidHashError:
            return True
