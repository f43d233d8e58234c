import uuid

from sqlalchemy import Boolean, Column, DateTime, Integer, String, Text, func
from sqlalchemy.dialects.postgresql import UUID

from app.db.base import Base
from app.models.enums import MfaMethod


class User(Base):
    """The principal record the identity core reads and writes.

    ``mfa_secret`` and ``mfa_recovery_codes`` hold ciphertext produced by
    ``SymmetricCipher``; nothing else inspects them. ``version_id`` makes
    concurrent writers to the same row fail instead of overwriting each other.
    """

    __tablename__ = "users"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    email = Column(String(255), nullable=False, unique=True, index=True)
    password_hash = Column(String(255), nullable=False)
    display_name = Column(String(100), nullable=False)
    avatar_url = Column(String(500), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True, server_default="true")
    last_login_at = Column(DateTime(timezone=True), nullable=True)
    mfa_enabled = Column(Boolean, nullable=False, default=False, server_default="false")
    mfa_method = Column(String(10), nullable=False, default=MfaMethod.NONE.value, server_default=MfaMethod.NONE.value)
    mfa_secret = Column(String(500), nullable=True)
    mfa_recovery_codes = Column(Text, nullable=True)
    version_id = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )

    __mapper_args__ = {"version_id_col": version_id}
