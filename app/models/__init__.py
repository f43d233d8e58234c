from app.models.enums import MfaMethod, TeamRole
from app.models.mfa_email_code import MfaEmailCode
from app.models.team_member import TeamMember
from app.models.user import User

__all__ = [
    "MfaEmailCode",
    "MfaMethod",
    "TeamMember",
    "TeamRole",
    "User",
]
