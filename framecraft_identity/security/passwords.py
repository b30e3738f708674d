"""Password hashing and verification using Argon2id.

Passwords are combined with the configured ``PASSWORD_PEPPER`` before hashing.
The pepper lives only in server configuration and is never stored with the hash.
"""

from __future__ import annotations

from argon2 import PasswordHasher, Type
from argon2.exceptions import InvalidHashError, VerificationError, VerifyMismatchError

from ..config import Settings, get_settings


class PasswordVerifier:
    """One-way hash and verify for stored account credentials."""

    def __init__(
        self,
        *,
        pepper: str = "",
        time_cost: int = 3,
        memory_cost: int = 65536,
        parallelism: int = 4,
    ) -> None:
        self._pepper = pepper
        self._hasher = PasswordHasher(
            time_cost=time_cost,
            memory_cost=memory_cost,
            parallelism=parallelism,
            hash_len=32,
            salt_len=16,
            type=Type.ID,
        )
        self._dummy_hash: str | None = None

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "PasswordVerifier":
        settings = settings or get_settings()
        return cls(
            pepper=settings.password_pepper,
            time_cost=settings.argon2_time_cost,
            memory_cost=settings.argon2_memory_cost,
            parallelism=settings.argon2_parallelism,
        )

    def hash(self, password: str) -> str:
        """Hash a password; empty passwords are rejected with ``ValueError``."""
        if not password:
            raise ValueError("password cannot be empty")
        return self._hasher.hash(password + self._pepper)

    def verify(self, password: str, password_hash: str) -> bool:
        """Return ``True`` when ``password`` matches ``password_hash``."""
        if not password or not password_hash:
            return False
        try:
            return self._hasher.verify(password_hash, password + self._pepper)
        except (VerifyMismatchError, VerificationError, InvalidHashError):
            return False

    def needs_rehash(self, password_hash: str) -> bool:
        try:
            return self._hasher.check_needs_rehash(password_hash)
        except InvalidHashError:
            return False

    def burn(self, password: str) -> None:
        """Spend one verification on a throwaway hash so unknown emails cost the same."""
        if self._dummy_hash is None:
            self._dummy_hash = self._hasher.hash("framecraft-dummy-password")
        self.verify(password or "x", self._dummy_hash)
