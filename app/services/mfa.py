from __future__ import annotations

import hmac
import json
import logging
import re
import secrets
from dataclasses import dataclass
from typing import Optional

import pyotp

from app.core.crypto import SymmetricCipher
from app.core.exceptions import (
    InvalidCredentials,
    InvalidMfaCode,
    InvalidRecoveryCode,
    MfaAlreadyEnabled,
    MfaNotConfigured,
    MfaNotEnabled,
)
from app.core.security import CredentialHasher
from app.models import MfaMethod, User

logger = logging.getLogger(__name__)

RECOVERY_CODE_COUNT = 8
RECOVERY_CODE_LENGTH = 8
TOTP_CODE_LENGTH = 6

RECOVERY_CODE_PATTERN = re.compile(rf"\d{{{RECOVERY_CODE_LENGTH}}}")
TOTP_CODE_PATTERN = re.compile(rf"\d{{{TOTP_CODE_LENGTH}}}")


@dataclass(frozen=True)
class MfaSetup:
    secret: str
    provisioning_uri: str
    recovery_codes: list[str]


@dataclass(frozen=True)
class MfaStatus:
    enabled: bool
    method: str
    remaining_recovery_codes: Optional[int] = None


def generate_totp_secret() -> str:
    return pyotp.random_base32()


def build_totp_uri(secret: str, email: str, issuer: str) -> str:
    totp = pyotp.TOTP(secret)
    return totp.provisioning_uri(name=email, issuer_name=issuer)


def verify_totp(secret: str, code: str) -> bool:
    if not code or not TOTP_CODE_PATTERN.fullmatch(code):
        return False
    totp = pyotp.TOTP(secret)
    return totp.verify(code, valid_window=1)


def generate_recovery_codes(count: int = RECOVERY_CODE_COUNT) -> list[str]:
    """Return *count* distinct zero-padded numeric codes."""
    upper = 10**RECOVERY_CODE_LENGTH
    codes: list[str] = []
    seen: set[str] = set()
    while len(codes) < count:
        code = str(secrets.randbelow(upper)).zfill(RECOVERY_CODE_LENGTH)
        if code not in seen:
            seen.add(code)
            codes.append(code)
    return codes


def normalize_code(code: Optional[str]) -> str:
    return "".join((code or "").split())


def clear_mfa_fields(user: User) -> None:
    user.mfa_enabled = False
    user.mfa_method = MfaMethod.NONE.value
    user.mfa_secret = None
    user.mfa_recovery_codes = None


class RecoveryCodeVault:
    """Serializes the recovery-code list as JSON and keeps it encrypted."""

    def __init__(self, cipher: SymmetricCipher) -> None:
        self._cipher = cipher

    def seal(self, codes: list[str]) -> str:
        return self._cipher.encrypt(json.dumps(codes))

    def open(self, ciphertext: Optional[str]) -> list[str]:
        if not ciphertext:
            return []
        return list(json.loads(self._cipher.decrypt(ciphertext)))


class MfaEnrollment:
    def __init__(self, cipher: SymmetricCipher, hasher: CredentialHasher, *, issuer: str) -> None:
        self._cipher = cipher
        self._vault = RecoveryCodeVault(cipher)
        self._hasher = hasher
        self._issuer = issuer

    def _require_password(self, user: User, password: str, action: str) -> None:
        if not self._hasher.verify(password, user.password_hash):
            logger.warning("%s failed: wrong password for user_id=%s", action, user.id)
            raise InvalidCredentials()

    def begin(self, user: User, password: str) -> MfaSetup:
        """Start TOTP enrollment; MFA stays disabled until a code is confirmed."""
        if user.mfa_enabled:
            raise MfaAlreadyEnabled()
        self._require_password(user, password, "MFA setup")

        secret = generate_totp_secret()
        recovery_codes = generate_recovery_codes()
        user.mfa_secret = self._cipher.encrypt(secret)
        user.mfa_recovery_codes = self._vault.seal(recovery_codes)
        user.mfa_method = MfaMethod.TOTP.value

        return MfaSetup(
            secret=secret,
            provisioning_uri=build_totp_uri(secret, user.email, self._issuer),
            recovery_codes=recovery_codes,
        )

    def begin_email(self, user: User, password: str) -> list[str]:
        if user.mfa_enabled:
            raise MfaAlreadyEnabled()
        self._require_password(user, password, "Email MFA setup")

        recovery_codes = generate_recovery_codes()
        user.mfa_secret = None
        user.mfa_recovery_codes = self._vault.seal(recovery_codes)
        user.mfa_method = MfaMethod.EMAIL.value
        return recovery_codes

    def regenerate(self, user: User, password: str) -> list[str]:
        if not user.mfa_enabled:
            raise MfaNotEnabled()
        self._require_password(user, password, "Recovery code regeneration")

        recovery_codes = generate_recovery_codes()
        user.mfa_recovery_codes = self._vault.seal(recovery_codes)
        return recovery_codes

    def disable(self, user: User, password: str) -> None:
        if not user.mfa_enabled:
            raise MfaNotEnabled()
        self._require_password(user, password, "MFA disable")
        clear_mfa_fields(user)

    def reset(self, user: User) -> None:
        clear_mfa_fields(user)


class MfaChallengeVerifier:
    def __init__(self, cipher: SymmetricCipher) -> None:
        self._cipher = cipher
        self._vault = RecoveryCodeVault(cipher)

    def confirm_enrollment(self, user: User, code: str) -> None:
        if user.mfa_enabled:
            raise MfaAlreadyEnabled()
        if not user.mfa_secret:
            raise MfaNotConfigured()
        if not self.verify_totp(user, code):
            # Pending secret stays so the user can retry with a fresh code.
            raise InvalidMfaCode("Invalid TOTP code")
        user.mfa_enabled = True
        user.mfa_method = MfaMethod.TOTP.value

    def verify_totp(self, user: User, code: str) -> bool:
        if not user.mfa_secret:
            return False
        return verify_totp(self._cipher.decrypt(user.mfa_secret), normalize_code(code))

    def redeem_recovery_code(self, user: User, code: str) -> bool:
        """Consume *code* from the user's set; the caller must persist the user."""
        code = normalize_code(code)
        codes = self._vault.open(user.mfa_recovery_codes)
        match = next((c for c in codes if hmac.compare_digest(c, code)), None)
        if match is None:
            return False
        codes.remove(match)
        user.mfa_recovery_codes = self._vault.seal(codes)
        logger.info("Recovery code consumed for user_id=%s remaining=%s", user.id, len(codes))
        return True

    def verify_login(self, user: User, code: str) -> None:
        code = normalize_code(code)
        if RECOVERY_CODE_PATTERN.fullmatch(code):
            if not self.redeem_recovery_code(user, code):
                raise InvalidRecoveryCode()
            return
        if not self.verify_totp(user, code):
            raise InvalidMfaCode()

    def remaining_recovery_codes(self, user: User) -> int:
        return len(self._vault.open(user.mfa_recovery_codes))


def mfa_status(user: User, verifier: MfaChallengeVerifier) -> MfaStatus:
    method = MfaMethod(user.mfa_method or MfaMethod.NONE).value
    if not user.mfa_enabled:
        return MfaStatus(enabled=False, method=method, remaining_recovery_codes=None)
    return MfaStatus(
        enabled=True,
        method=method,
        remaining_recovery_codes=verifier.remaining_recovery_codes(user),
    )
