"""Bearer token encoding and verification.

Tokens are HS256 JWTs carrying ``sub``, ``type``, ``jti``, ``iat`` and
``exp``. Access and refresh tokens also carry the ``roles`` held at issuance;
MFA challenge tokens never do. Verification is stateless: revocation is
checked separately against ``TokenRevocationRegistry``.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Iterable, Optional

from jose import ExpiredSignatureError, JWTError, jwt

from app.core.exceptions import TokenExpired, TokenInvalid
from app.core.settings import MIN_SECRET_LENGTH, Settings

logger = logging.getLogger(__name__)


class TokenType(str, Enum):
    ACCESS = "access"
    REFRESH = "refresh"
    MFA_CHALLENGE = "mfa_challenge"


@dataclass(frozen=True, slots=True)
class TokenClaims:
    subject: str
    token_type: TokenType
    jti: str
    issued_at: datetime
    expires_at: datetime
    roles: tuple[str, ...] = field(default_factory=tuple)
    email: Optional[str] = None


def _ordered_roles(roles: Optional[Iterable[str]]) -> tuple[str, ...]:
    if not roles:
        return ()
    return tuple(dict.fromkeys(str(role) for role in roles))


def _timestamp(value: Any) -> datetime:
    return datetime.fromtimestamp(int(value), tz=timezone.utc)


class TokenCodec:
    def __init__(
        self,
        secret: str,
        *,
        algorithm: str = "HS256",
        access_ttl: timedelta = timedelta(minutes=60),
        refresh_ttl: timedelta = timedelta(days=30),
        challenge_ttl: timedelta = timedelta(minutes=5),
    ) -> None:
        if not secret or len(secret) < MIN_SECRET_LENGTH:
            raise ValueError(f"JWT secret must be at least {MIN_SECRET_LENGTH} characters")
        self._secret = secret
        self._algorithm = algorithm
        self._ttls = {
            TokenType.ACCESS: access_ttl,
            TokenType.REFRESH: refresh_ttl,
            TokenType.MFA_CHALLENGE: challenge_ttl,
        }

    @classmethod
    def from_settings(cls, settings: Settings) -> "TokenCodec":
        return cls(
            settings.jwt_secret,
            algorithm=settings.jwt_algorithm,
            access_ttl=timedelta(minutes=settings.access_token_expire_minutes),
            refresh_ttl=timedelta(days=settings.refresh_token_expire_days),
            challenge_ttl=timedelta(minutes=settings.mfa_challenge_expire_minutes),
        )

    def issue(
        self,
        subject: str,
        token_type: TokenType,
        roles: Optional[Iterable[str]] = None,
        ttl: Optional[timedelta] = None,
        email: Optional[str] = None,
    ) -> str:
        token_type = TokenType(token_type)
        now = datetime.now(timezone.utc)
        expire = now + (ttl if ttl is not None else self._ttls[token_type])
        to_encode: dict[str, Any] = {
            "sub": str(subject),
            "type": token_type.value,
            "jti": str(uuid.uuid4()),
            "iat": now,
            "exp": expire,
        }
        if token_type is not TokenType.MFA_CHALLENGE:
            to_encode["roles"] = list(_ordered_roles(roles))
        if email:
            to_encode["email"] = email
        return jwt.encode(to_encode, self._secret, algorithm=self._algorithm)

    def issue_access(self, subject: str, roles: Iterable[str] = (), email: Optional[str] = None) -> str:
        return self.issue(subject, TokenType.ACCESS, roles=roles, email=email)

    def issue_refresh(self, subject: str, roles: Iterable[str] = ()) -> str:
        return self.issue(subject, TokenType.REFRESH, roles=roles)

    def issue_mfa_challenge(self, subject: str, email: Optional[str] = None) -> str:
        return self.issue(subject, TokenType.MFA_CHALLENGE, email=email)

    def _decode(self, token: str) -> dict[str, Any]:
        if not token or not isinstance(token, str):
            raise TokenInvalid()
        try:
            return jwt.decode(token, self._secret, algorithms=[self._algorithm])
        except ExpiredSignatureError as exc:
            raise TokenExpired() from exc
        except JWTError as exc:
            logger.warning("Rejected JWT: %s", exc.__class__.__name__)
            raise TokenInvalid() from exc

    def parse(self, token: str) -> TokenClaims:
        payload = self._decode(token)
        try:
            return TokenClaims(
                subject=str(payload["sub"]),
                token_type=TokenType(payload["type"]),
                jti=str(payload["jti"]),
                issued_at=_timestamp(payload["iat"]),
                expires_at=_timestamp(payload["exp"]),
                roles=_ordered_roles(payload.get("roles")),
                email=payload.get("email"),
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise TokenInvalid() from exc

    def validate(self, token: str) -> bool:
        try:
            self._decode(token)
        except (TokenExpired, TokenInvalid):
            return False
        return True

    def is_type(self, token: str, token_type: TokenType) -> bool:
        try:
            return self.parse(token).token_type is TokenType(token_type)
        except (TokenExpired, TokenInvalid):
            return False
