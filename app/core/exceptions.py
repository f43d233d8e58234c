"""Typed failures raised by the identity core.

Every error carries an HTTP status, a stable machine code and a generic,
user-safe message. Handlers in ``app.core.errors`` render them without any
internal detail.
"""

from __future__ import annotations

from typing import Optional


class AuthError(Exception):
    status_code = 401
    code = "unauthorized"
    message = "Authentication failed"

    def __init__(self, message: Optional[str] = None) -> None:
        self.message = message or self.message
        super().__init__(self.message)


class InvalidCredentials(AuthError):
    code = "invalid_credentials"
    message = "Invalid credentials"


class AccountDeactivated(AuthError):
    status_code = 403
    code = "account_deactivated"
    message = "Account is deactivated"


class WeakPassword(AuthError):
    status_code = 400
    code = "weak_password"
    message = "Password does not meet strength requirements"


class DuplicateEmail(AuthError):
    status_code = 409
    code = "duplicate_email"
    message = "Email already registered"


class PrincipalNotFound(AuthError):
    status_code = 404
    code = "principal_not_found"
    message = "User not found"


class TokenInvalid(AuthError):
    code = "token_invalid"
    message = "Invalid token"


class TokenExpired(AuthError):
    code = "token_expired"
    message = "Token has expired"


class TokenWrongType(AuthError):
    code = "token_wrong_type"
    message = "Token type not accepted here"


class InvalidChallenge(TokenWrongType):
    code = "invalid_challenge"
    message = "Invalid MFA challenge token"


class TokenRevoked(AuthError):
    code = "token_revoked"
    message = "Token has been revoked"


class MfaAlreadyEnabled(AuthError):
    status_code = 409
    code = "mfa_already_enabled"
    message = "MFA is already enabled"


class MfaNotEnabled(AuthError):
    status_code = 400
    code = "mfa_not_enabled"
    message = "MFA is not enabled"


class MfaNotConfigured(AuthError):
    status_code = 400
    code = "mfa_not_configured"
    message = "MFA setup has not been initiated"


class InvalidMfaCode(AuthError):
    code = "invalid_mfa_code"
    message = "Invalid MFA code"


class InvalidRecoveryCode(InvalidMfaCode):
    code = "invalid_recovery_code"
    message = "Invalid recovery code"


class InsufficientRole(AuthError):
    status_code = 403
    code = "forbidden"
    message = "Insufficient role"


class ConcurrentUpdate(AuthError):
    status_code = 409
    code = "concurrent_update"
    message = "The account was modified concurrently; retry the request"


__all__ = [
    "AuthError",
    "InvalidCredentials",
    "AccountDeactivated",
    "WeakPassword",
    "DuplicateEmail",
    "PrincipalNotFound",
    "TokenInvalid",
    "TokenExpired",
    "TokenWrongType",
    "InvalidChallenge",
    "TokenRevoked",
    "MfaAlreadyEnabled",
    "MfaNotEnabled",
    "MfaNotConfigured",
    "InvalidMfaCode",
    "InvalidRecoveryCode",
    "InsufficientRole",
    "ConcurrentUpdate",
]
