import enum


class MfaMethod(str, enum.Enum):
    NONE = "NONE"
    TOTP = "TOTP"
    EMAIL = "EMAIL"


class TeamRole(str, enum.Enum):
    OWNER = "OWNER"
    ADMIN = "ADMIN"
    MEMBER = "MEMBER"
    VIEWER = "VIEWER"
