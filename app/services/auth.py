"""Authentication use cases: registration, login, MFA, token refresh and revocation.

``AuthService`` is the single entry point other subsystems use. It is built
per request around repositories bound to that request's session, while the
cryptographic primitives and the revocation registry live in
``AuthComponents`` and are shared for the lifetime of the process.
"""

from __future__ import annotations

import logging
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import AsyncIterator, Optional, Type

from app.core.concurrency import KeyedLock
from app.core.crypto import SymmetricCipher, cipher_from_settings
from app.core.exceptions import (
    AccountDeactivated,
    AuthError,
    DuplicateEmail,
    InvalidChallenge,
    InvalidCredentials,
    InvalidMfaCode,
    MfaAlreadyEnabled,
    MfaNotConfigured,
    MfaNotEnabled,
    PrincipalNotFound,
    TokenExpired,
    TokenInvalid,
    TokenRevoked,
    TokenWrongType,
)
from app.core.logging import get_audit_logger
from app.core.revocation import TokenRevocationRegistry
from app.core.security import CredentialHasher, PasswordPolicy
from app.core.settings import Settings
from app.core.tokens import TokenClaims, TokenCodec, TokenType
from app.models import MfaMethod, User
from app.repositories.mfa_email_codes import MfaEmailCodeRepository
from app.repositories.users import UserId, UserRepository
from app.services.mfa import (
    RECOVERY_CODE_PATTERN,
    MfaChallengeVerifier,
    MfaEnrollment,
    MfaSetup,
    MfaStatus,
    mfa_status,
    normalize_code,
)
from app.services.mfa_email import EmailMfaCodes, LoggingMfaCodeSender, MfaCodeSender
from app.utils.masking import mask_email

logger = logging.getLogger(__name__)
audit = get_audit_logger()


@dataclass(frozen=True)
class AuthResult:
    user: User
    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    challenge_token: Optional[str] = None

    @property
    def mfa_required(self) -> bool:
        return self.challenge_token is not None


@dataclass(frozen=True)
class AuthenticatedPrincipal:
    user: User
    claims: TokenClaims

    @property
    def roles(self) -> tuple[str, ...]:
        return self.claims.roles


@dataclass
class AuthComponents:
    """Process-wide collaborators, created once at startup."""

    settings: Settings
    cipher: SymmetricCipher
    codec: TokenCodec
    registry: TokenRevocationRegistry
    hasher: CredentialHasher
    policy: PasswordPolicy
    locks: KeyedLock = field(default_factory=KeyedLock)
    code_sender: MfaCodeSender = field(default_factory=LoggingMfaCodeSender)

    @classmethod
    def from_settings(cls, settings: Settings) -> "AuthComponents":
        return cls(
            settings=settings,
            cipher=cipher_from_settings(settings),
            codec=TokenCodec.from_settings(settings),
            registry=TokenRevocationRegistry(),
            hasher=CredentialHasher(rounds=settings.bcrypt_rounds),
            policy=PasswordPolicy(min_length=settings.password_min_length),
        )


def _normalize_email(email: str) -> str:
    return (email or "").strip().lower()


class AuthService:
    def __init__(
        self,
        components: AuthComponents,
        users: UserRepository,
        email_codes: MfaEmailCodeRepository,
    ) -> None:
        self.components = components
        self.users = users
        self.codec = components.codec
        self.registry = components.registry
        self.hasher = components.hasher
        self.policy = components.policy
        self.enrollment = MfaEnrollment(
            components.cipher, components.hasher, issuer=components.settings.mfa_issuer
        )
        self.verifier = MfaChallengeVerifier(components.cipher)
        self.email_codes = EmailMfaCodes(
            email_codes,
            components.hasher,
            components.code_sender,
            ttl=timedelta(minutes=components.settings.mfa_email_code_ttl_minutes),
        )

    # ── helpers ──────────────────────────────────────────────────────────────

    @asynccontextmanager
    async def _locked_user(
        self, user_id: UserId, *, missing: Type[AuthError] = InvalidCredentials
    ) -> AsyncIterator[User]:
        async with self.components.locks.hold(str(user_id)):
            user = await self.users.get_by_id(user_id, for_update=True)
            if user is None:
                raise missing()
            yield user

    async def _issue_pair(self, user: User) -> AuthResult:
        roles = await self.users.get_roles(user.id)
        subject = str(user.id)
        return AuthResult(
            user=user,
            access_token=self.codec.issue_access(subject, roles, email=user.email),
            refresh_token=self.codec.issue_refresh(subject, roles),
        )

    async def _challenge_principal(self, challenge_token: str) -> tuple[TokenClaims, User]:
        claims = self.codec.parse(challenge_token)
        if claims.token_type is not TokenType.MFA_CHALLENGE:
            raise InvalidChallenge()
        user = await self.users.get_by_id(claims.subject)
        if user is None:
            raise InvalidCredentials()
        return claims, user

    # ── registration & login ─────────────────────────────────────────────────

    async def register(self, email: str, password: str, display_name: str) -> AuthResult:
        email = _normalize_email(email)
        if await self.users.email_exists(email):
            logger.warning("Registration attempt with existing email %s", mask_email(email))
            raise DuplicateEmail()
        self.policy.validate(password)

        user = User(
            id=uuid.uuid4(),
            email=email,
            password_hash=self.hasher.hash(password),
            display_name=display_name.strip(),
            is_active=True,
            mfa_enabled=False,
            mfa_method=MfaMethod.NONE.value,
        )
        user = await self.users.add(user)
        audit.info("USER_REGISTERED user_id=%s", user.id)
        return await self._issue_pair(user)

    async def login(self, email: str, password: str) -> AuthResult:
        user = await self.users.get_by_email(_normalize_email(email))
        if user is None:
            self.hasher.verify_constant_time(None, password)
            logger.warning("Login failed: unknown email %s", mask_email(email))
            raise InvalidCredentials()
        if not user.is_active:
            logger.warning("Login failed: deactivated account user_id=%s", user.id)
            raise AccountDeactivated()
        if not self.hasher.verify(password, user.password_hash):
            logger.warning("Login failed: wrong password for user_id=%s", user.id)
            raise InvalidCredentials()

        if user.mfa_enabled:
            challenge = self.codec.issue_mfa_challenge(str(user.id), email=user.email)
            if user.mfa_method == MfaMethod.EMAIL.value:
                await self.email_codes.issue(user)
            logger.info("Login requires MFA for user_id=%s", user.id)
            return AuthResult(user=user, challenge_token=challenge)

        async with self._locked_user(user.id) as locked:
            locked.last_login_at = datetime.now(timezone.utc)
            await self.users.save(locked)
        audit.info("USER_LOGIN user_id=%s", locked.id)
        return await self._issue_pair(locked)

    async def verify_mfa_login(self, challenge_token: str, code: str) -> AuthResult:
        claims = self.codec.parse(challenge_token)
        if claims.token_type is not TokenType.MFA_CHALLENGE:
            raise InvalidChallenge()

        async with self._locked_user(claims.subject) as user:
            if self.registry.is_revoked(claims.jti):
                raise TokenRevoked()
            if not user.is_active:
                raise AccountDeactivated()
            if not user.mfa_enabled:
                raise MfaNotEnabled("MFA is not enabled for this account")

            code = normalize_code(code)
            try:
                if user.mfa_method == MfaMethod.EMAIL.value and not RECOVERY_CODE_PATTERN.fullmatch(code):
                    if not await self.email_codes.consume(user.id, code):
                        raise InvalidMfaCode()
                else:
                    self.verifier.verify_login(user, code)
            except InvalidMfaCode:
                logger.warning("MFA login failed: invalid code for user_id=%s", user.id)
                raise

            user.last_login_at = datetime.now(timezone.utc)
            await self.users.save(user)
            self.registry.revoke(claims.jti, claims.expires_at)

        audit.info("USER_LOGIN_MFA user_id=%s", user.id)
        return await self._issue_pair(user)

    async def send_login_mfa_code(self, challenge_token: str) -> None:
        claims, user = await self._challenge_principal(challenge_token)
        if self.registry.is_revoked(claims.jti):
            raise TokenRevoked()
        if not user.is_active:
            raise AccountDeactivated()
        if not user.mfa_enabled or user.mfa_method != MfaMethod.EMAIL.value:
            raise MfaNotEnabled("Email MFA is not enabled for this account")
        await self.email_codes.issue(user)
        logger.info("MFA login code resent for user_id=%s", user.id)

    # ── tokens ───────────────────────────────────────────────────────────────

    async def refresh_token(self, refresh_token: str) -> AuthResult:
        claims = self.codec.parse(refresh_token)
        if claims.token_type is not TokenType.REFRESH:
            raise TokenWrongType()
        if self.registry.is_revoked(claims.jti):
            raise TokenRevoked()

        user = await self.users.get_by_id(claims.subject)
        if user is None:
            raise InvalidCredentials()
        if not user.is_active:
            raise AccountDeactivated()

        # Rotation: the presented refresh token is single-use.
        if not self.registry.revoke(claims.jti, claims.expires_at):
            logger.warning("Refresh token reuse detected for user_id=%s", user.id)
            raise TokenRevoked()
        return await self._issue_pair(user)

    async def authenticate(self, access_token: str) -> AuthenticatedPrincipal:
        """Resolve the principal behind an inbound access token."""
        claims = self.codec.parse(access_token)
        if claims.token_type is not TokenType.ACCESS:
            raise TokenWrongType()
        if self.registry.is_revoked(claims.jti):
            raise TokenRevoked()
        user = await self.users.get_by_id(claims.subject)
        if user is None:
            raise InvalidCredentials()
        if not user.is_active:
            raise AccountDeactivated()
        return AuthenticatedPrincipal(user=user, claims=claims)

    async def logout(self, access_claims: TokenClaims, refresh_token: Optional[str] = None) -> None:
        self.blacklist(access_claims.jti, access_claims.expires_at)
        audit.info("USER_LOGOUT user_id=%s", access_claims.subject)
        if not refresh_token:
            return
        try:
            refresh_claims = self.codec.parse(refresh_token)
        except (TokenExpired, TokenInvalid):
            # Nothing left to revoke.
            return
        if (
            refresh_claims.token_type is not TokenType.REFRESH
            or refresh_claims.subject != access_claims.subject
        ):
            raise TokenWrongType()
        self.blacklist(refresh_claims.jti, refresh_claims.expires_at)

    def blacklist(self, jti: Optional[str], expiry: datetime) -> None:
        self.registry.revoke(jti, expiry)

    def is_blacklisted(self, jti: Optional[str]) -> bool:
        return self.registry.is_revoked(jti)

    # ── password ─────────────────────────────────────────────────────────────

    async def change_password(self, user_id: UserId, current_password: str, new_password: str) -> None:
        async with self._locked_user(user_id) as user:
            if not self.hasher.verify(current_password, user.password_hash):
                logger.warning("Password change failed: wrong current password for user_id=%s", user.id)
                raise InvalidCredentials("Current password is incorrect")
            self.policy.validate(new_password)
            user.password_hash = self.hasher.hash(new_password)
            await self.users.save(user)
        audit.info("PASSWORD_CHANGED user_id=%s", user.id)

    # ── MFA management ───────────────────────────────────────────────────────

    async def begin_mfa_enrollment(self, user_id: UserId, password: str) -> MfaSetup:
        async with self._locked_user(user_id) as user:
            setup = self.enrollment.begin(user, password)
            await self.users.save(user)
        logger.info("MFA setup initiated for user_id=%s", user.id)
        return setup

    async def confirm_mfa_enrollment(self, user_id: UserId, code: str) -> MfaStatus:
        async with self._locked_user(user_id) as user:
            try:
                self.verifier.confirm_enrollment(user, code)
            except InvalidMfaCode:
                logger.warning("MFA verification failed: invalid code for user_id=%s", user.id)
                raise
            await self.users.save(user)
        audit.info("MFA_ENABLED user_id=%s method=%s", user.id, MfaMethod.TOTP.value)
        return mfa_status(user, self.verifier)

    async def begin_email_mfa_enrollment(self, user_id: UserId, password: str) -> list[str]:
        async with self._locked_user(user_id) as user:
            recovery_codes = self.enrollment.begin_email(user, password)
            await self.users.save(user)
            await self.email_codes.issue(user)
        logger.info("Email MFA setup initiated for user_id=%s", user.id)
        return recovery_codes

    async def confirm_email_mfa_enrollment(self, user_id: UserId, code: str) -> MfaStatus:
        async with self._locked_user(user_id) as user:
            if user.mfa_enabled:
                raise MfaAlreadyEnabled()
            if user.mfa_method != MfaMethod.EMAIL.value:
                raise MfaNotConfigured("Email MFA setup has not been initiated")
            if not await self.email_codes.consume(user.id, normalize_code(code)):
                logger.warning("Email MFA verification failed for user_id=%s", user.id)
                raise InvalidMfaCode("Invalid verification code")
            user.mfa_enabled = True
            await self.users.save(user)
        audit.info("MFA_ENABLED user_id=%s method=%s", user.id, MfaMethod.EMAIL.value)
        return mfa_status(user, self.verifier)

    async def disable_mfa(self, user_id: UserId, password: str) -> MfaStatus:
        async with self._locked_user(user_id) as user:
            self.enrollment.disable(user, password)
            await self.users.save(user)
        await self.email_codes.clear(user.id)
        audit.info("MFA_DISABLED user_id=%s", user.id)
        return mfa_status(user, self.verifier)

    async def regenerate_recovery_codes(self, user_id: UserId, password: str) -> list[str]:
        async with self._locked_user(user_id) as user:
            recovery_codes = self.enrollment.regenerate(user, password)
            await self.users.save(user)
        logger.info("Recovery codes regenerated for user_id=%s", user.id)
        return recovery_codes

    async def get_mfa_status(self, user_id: UserId) -> MfaStatus:
        user = await self.users.get_by_id(user_id)
        if user is None:
            raise InvalidCredentials()
        return mfa_status(user, self.verifier)

    async def admin_reset_mfa(self, target_user_id: UserId) -> None:
        async with self._locked_user(target_user_id, missing=PrincipalNotFound) as user:
            self.enrollment.reset(user)
            await self.users.save(user)
        await self.email_codes.clear(user.id)
        audit.info("MFA_RESET_BY_ADMIN user_id=%s", user.id)

    # ── maintenance ──────────────────────────────────────────────────────────

    async def purge_expired_email_codes(self) -> int:
        return await self.email_codes.purge_expired()
