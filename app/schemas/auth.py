from datetime import datetime
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, EmailStr, Field


class RegisterRequest(BaseModel):
    email: EmailStr
    password: str
    display_name: str = Field(min_length=1, max_length=100)


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class MfaLoginRequest(BaseModel):
    challenge_token: str
    code: str


class MfaResendRequest(BaseModel):
    challenge_token: str


class RefreshRequest(BaseModel):
    refresh_token: str


class LogoutRequest(BaseModel):
    refresh_token: Optional[str] = None


class ChangePasswordRequest(BaseModel):
    current_password: str
    new_password: str


class PasswordConfirmRequest(BaseModel):
    password: str


class MfaVerifyRequest(BaseModel):
    code: str


class UserOut(BaseModel):
    id: UUID
    email: EmailStr
    display_name: str
    avatar_url: Optional[str] = None
    is_active: bool
    mfa_enabled: bool
    last_login_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class AuthResponse(BaseModel):
    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    challenge_token: Optional[str] = None
    mfa_required: bool = False
    token_type: str = "bearer"
    user: UserOut


class MfaSetupResponse(BaseModel):
    secret: str
    provisioning_uri: str
    recovery_codes: List[str]


class MfaRecoveryCodesResponse(BaseModel):
    recovery_codes: List[str]


class MfaStatusResponse(BaseModel):
    enabled: bool
    method: str
    remaining_recovery_codes: Optional[int] = None
