from __future__ import annotations

import base64
from functools import lru_cache

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from app.core.settings import MIN_SECRET_LENGTH, Settings

_MIN_KDF_ITERATIONS = 100_000


class DecryptionError(Exception):
    """Ciphertext could not be authenticated with the active key."""


def _derive_key(secret: str, salt: str, iterations: int) -> bytes:
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=32,
        salt=salt.encode("utf-8"),
        iterations=max(_MIN_KDF_ITERATIONS, iterations),
    )
    return base64.urlsafe_b64encode(kdf.derive(secret.encode("utf-8")))


class SymmetricCipher:
    """Authenticated encryption for secrets stored on the principal row.

    Fernet tokens embed a random IV and an HMAC, so two encryptions of the
    same plaintext differ and any tampering or key mismatch fails loudly.
    Empty strings are encrypted like any other value.
    """

    def __init__(self, secret: str, *, salt: str, iterations: int = _MIN_KDF_ITERATIONS) -> None:
        if not secret or len(secret) < MIN_SECRET_LENGTH:
            raise ValueError(f"Encryption key must be at least {MIN_SECRET_LENGTH} characters")
        self._fernet = Fernet(_derive_key(secret, salt, iterations))

    def encrypt(self, plaintext: str) -> str:
        return self._fernet.encrypt(plaintext.encode("utf-8")).decode("ascii")

    def decrypt(self, ciphertext: str) -> str:
        try:
            return self._fernet.decrypt(ciphertext).decode("utf-8")
        except (InvalidToken, TypeError, ValueError) as exc:
            raise DecryptionError("Unable to decrypt value") from exc


@lru_cache(maxsize=4)
def _cipher_for(secret: str, salt: str, iterations: int) -> SymmetricCipher:
    return SymmetricCipher(secret, salt=salt, iterations=iterations)


def cipher_from_settings(settings: Settings) -> SymmetricCipher:
    return _cipher_for(
        settings.encryption_key,
        settings.encryption_kdf_salt,
        settings.encryption_kdf_iterations,
    )
