from fastapi import Depends, Request
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.context import bind_principal
from app.core.exceptions import InsufficientRole
from app.db.session import get_db
from app.models import TeamRole, User
from app.repositories.mfa_email_codes import MfaEmailCodeRepository
from app.repositories.users import UserRepository
from app.services.auth import AuthComponents, AuthenticatedPrincipal, AuthService

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/v1/auth/login")


async def get_db_session(db: AsyncSession = Depends(get_db)) -> AsyncSession:
    return db


def get_auth_components(request: Request) -> AuthComponents:
    return request.app.state.auth


async def get_auth_service(
    components: AuthComponents = Depends(get_auth_components),
    db: AsyncSession = Depends(get_db_session),
) -> AuthService:
    return AuthService(components, UserRepository(db), MfaEmailCodeRepository(db))


async def get_current_principal(
    token: str = Depends(oauth2_scheme),
    service: AuthService = Depends(get_auth_service),
) -> AuthenticatedPrincipal:
    principal = await service.authenticate(token)
    bind_principal(str(principal.user.id))
    return principal


async def get_current_user(
    principal: AuthenticatedPrincipal = Depends(get_current_principal),
) -> User:
    return principal.user


def require_role(*roles: TeamRole):
    """Guard requiring at least one of *roles* among the token's team roles."""
    allowed = {role.value for role in roles}

    async def dependency(
        principal: AuthenticatedPrincipal = Depends(get_current_principal),
    ) -> AuthenticatedPrincipal:
        if not allowed.intersection(principal.roles):
            raise InsufficientRole()
        return principal

    return dependency
