from uuid import UUID

from fastapi import APIRouter, Depends, Request, status

from app.api import deps
from app.core.limiter import auth_rate_limit, limiter
from app.models import TeamRole, User
from app.schemas.auth import (
    AuthResponse,
    ChangePasswordRequest,
    LoginRequest,
    LogoutRequest,
    MfaLoginRequest,
    MfaRecoveryCodesResponse,
    MfaResendRequest,
    MfaSetupResponse,
    MfaStatusResponse,
    MfaVerifyRequest,
    PasswordConfirmRequest,
    RefreshRequest,
    RegisterRequest,
    UserOut,
)
from app.services.auth import AuthenticatedPrincipal, AuthResult, AuthService
from app.services.mfa import MfaStatus

router = APIRouter(prefix="/auth", tags=["auth"])


def _auth_response(result: AuthResult) -> AuthResponse:
    return AuthResponse(
        access_token=result.access_token,
        refresh_token=result.refresh_token,
        challenge_token=result.challenge_token,
        mfa_required=result.mfa_required,
        user=UserOut.model_validate(result.user),
    )


def _status_response(mfa_status: MfaStatus) -> MfaStatusResponse:
    return MfaStatusResponse(
        enabled=mfa_status.enabled,
        method=mfa_status.method,
        remaining_recovery_codes=mfa_status.remaining_recovery_codes,
    )


@router.post("/register", response_model=AuthResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit(auth_rate_limit)
async def register(
    payload: RegisterRequest,
    request: Request,
    service: AuthService = Depends(deps.get_auth_service),
) -> AuthResponse:
    result = await service.register(payload.email, payload.password, payload.display_name)
    return _auth_response(result)


@router.post("/login", response_model=AuthResponse)
@limiter.limit(auth_rate_limit)
async def login(
    credentials: LoginRequest,
    request: Request,
    service: AuthService = Depends(deps.get_auth_service),
) -> AuthResponse:
    """Password login. Returns a challenge token instead of tokens when MFA is on."""
    result = await service.login(credentials.email, credentials.password)
    return _auth_response(result)


@router.post("/mfa/login", response_model=AuthResponse)
@limiter.limit(auth_rate_limit)
async def mfa_login(
    payload: MfaLoginRequest,
    request: Request,
    service: AuthService = Depends(deps.get_auth_service),
) -> AuthResponse:
    result = await service.verify_mfa_login(payload.challenge_token, payload.code)
    return _auth_response(result)


@router.post("/mfa/resend", status_code=status.HTTP_204_NO_CONTENT)
@limiter.limit(auth_rate_limit)
async def mfa_resend(
    payload: MfaResendRequest,
    request: Request,
    service: AuthService = Depends(deps.get_auth_service),
) -> None:
    await service.send_login_mfa_code(payload.challenge_token)
    return None


@router.post("/refresh", response_model=AuthResponse)
async def refresh_tokens(
    payload: RefreshRequest,
    service: AuthService = Depends(deps.get_auth_service),
) -> AuthResponse:
    result = await service.refresh_token(payload.refresh_token)
    return _auth_response(result)


@router.post("/logout", status_code=status.HTTP_204_NO_CONTENT)
async def logout(
    payload: LogoutRequest | None = None,
    principal: AuthenticatedPrincipal = Depends(deps.get_current_principal),
    service: AuthService = Depends(deps.get_auth_service),
) -> None:
    refresh_token = payload.refresh_token if payload else None
    await service.logout(principal.claims, refresh_token)
    return None


@router.get("/me", response_model=UserOut)
async def read_current_user(current_user: User = Depends(deps.get_current_user)) -> UserOut:
    return UserOut.model_validate(current_user)


@router.post("/change-password", status_code=status.HTTP_204_NO_CONTENT)
async def change_password(
    payload: ChangePasswordRequest,
    current_user: User = Depends(deps.get_current_user),
    service: AuthService = Depends(deps.get_auth_service),
) -> None:
    await service.change_password(current_user.id, payload.current_password, payload.new_password)
    return None


# ── MFA management ───────────────────────────────────────────────────────────


@router.post("/mfa/setup", response_model=MfaSetupResponse)
async def mfa_setup(
    payload: PasswordConfirmRequest,
    current_user: User = Depends(deps.get_current_user),
    service: AuthService = Depends(deps.get_auth_service),
) -> MfaSetupResponse:
    setup = await service.begin_mfa_enrollment(current_user.id, payload.password)
    return MfaSetupResponse(
        secret=setup.secret,
        provisioning_uri=setup.provisioning_uri,
        recovery_codes=setup.recovery_codes,
    )


@router.post("/mfa/verify", response_model=MfaStatusResponse)
async def mfa_verify(
    payload: MfaVerifyRequest,
    current_user: User = Depends(deps.get_current_user),
    service: AuthService = Depends(deps.get_auth_service),
) -> MfaStatusResponse:
    return _status_response(await service.confirm_mfa_enrollment(current_user.id, payload.code))


@router.post("/mfa/email/setup", response_model=MfaRecoveryCodesResponse)
async def mfa_email_setup(
    payload: PasswordConfirmRequest,
    current_user: User = Depends(deps.get_current_user),
    service: AuthService = Depends(deps.get_auth_service),
) -> MfaRecoveryCodesResponse:
    codes = await service.begin_email_mfa_enrollment(current_user.id, payload.password)
    return MfaRecoveryCodesResponse(recovery_codes=codes)


@router.post("/mfa/email/verify", response_model=MfaStatusResponse)
async def mfa_email_verify(
    payload: MfaVerifyRequest,
    current_user: User = Depends(deps.get_current_user),
    service: AuthService = Depends(deps.get_auth_service),
) -> MfaStatusResponse:
    return _status_response(await service.confirm_email_mfa_enrollment(current_user.id, payload.code))


@router.post("/mfa/disable", response_model=MfaStatusResponse)
async def mfa_disable(
    payload: PasswordConfirmRequest,
    current_user: User = Depends(deps.get_current_user),
    service: AuthService = Depends(deps.get_auth_service),
) -> MfaStatusResponse:
    return _status_response(await service.disable_mfa(current_user.id, payload.password))


@router.post("/mfa/recovery-codes", response_model=MfaRecoveryCodesResponse)
async def mfa_recovery_codes(
    payload: PasswordConfirmRequest,
    current_user: User = Depends(deps.get_current_user),
    service: AuthService = Depends(deps.get_auth_service),
) -> MfaRecoveryCodesResponse:
    codes = await service.regenerate_recovery_codes(current_user.id, payload.password)
    return MfaRecoveryCodesResponse(recovery_codes=codes)


@router.get("/mfa/status", response_model=MfaStatusResponse)
async def mfa_status(
    current_user: User = Depends(deps.get_current_user),
    service: AuthService = Depends(deps.get_auth_service),
) -> MfaStatusResponse:
    return _status_response(await service.get_mfa_status(current_user.id))


@router.post("/admin/users/{user_id}/mfa/reset", status_code=status.HTTP_204_NO_CONTENT)
async def admin_reset_mfa(
    user_id: UUID,
    principal: AuthenticatedPrincipal = Depends(deps.require_role(TeamRole.OWNER, TeamRole.ADMIN)),
    service: AuthService = Depends(deps.get_auth_service),
) -> None:
    await service.admin_reset_mfa(user_id)
    return None
