from __future__ import annotations

import re
import secrets
from functools import cached_property
from typing import Optional

from passlib.context import CryptContext

from app.core.exceptions import WeakPassword

_UPPER = re.compile(r"[A-Z]")
_LOWER = re.compile(r"[a-z]")
_DIGIT = re.compile(r"[0-9]")
_SPECIAL = re.compile(r"[^A-Za-z0-9]")


class PasswordPolicy:
    """Stateless strength check applied before any password is hashed."""

    def __init__(self, min_length: int = 8) -> None:
        self.min_length = min_length

    def is_acceptable(self, password: Optional[str]) -> bool:
        if not password or len(password) < self.min_length:
            return False
        return all(rule.search(password) for rule in (_UPPER, _LOWER, _DIGIT, _SPECIAL))

    def validate(self, password: Optional[str]) -> None:
        # Deliberately silent about which rule failed.
        if not self.is_acceptable(password):
            raise WeakPassword()


class CredentialHasher:
    def __init__(self, rounds: int = 12) -> None:
        self._context = CryptContext(schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=rounds)

    @cached_property
    def _dummy_hash(self) -> str:
        return self._context.hash(secrets.token_urlsafe(16))

    def hash(self, password: str) -> str:
        return self._context.hash(password)

    def verify(self, password: str, hashed_password: str) -> bool:
        if not password or not hashed_password:
            return False
        return self._context.verify(password, hashed_password)

    def verify_constant_time(self, hashed_password: Optional[str], password: str) -> bool:
        """Verify, burning a comparable amount of work when no hash exists."""
        if hashed_password:
            return self.verify(password, hashed_password)
        self._context.verify(password or "", self._dummy_hash)
        return False
