from __future__ import annotations

import uuid
from typing import Optional, Union

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from app.core.exceptions import ConcurrentUpdate, DuplicateEmail
from app.models import TeamMember, User

UserId = Union[uuid.UUID, str]


def coerce_user_id(user_id: UserId) -> Optional[uuid.UUID]:
    if isinstance(user_id, uuid.UUID):
        return user_id
    try:
        return uuid.UUID(str(user_id))
    except (TypeError, ValueError):
        return None


class UserRepository:
    """Principal lookups and writes backed by an ``AsyncSession``."""

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def get_by_id(self, user_id: UserId, *, for_update: bool = False) -> Optional[User]:
        key = coerce_user_id(user_id)
        if key is None:
            return None
        stmt = select(User).where(User.id == key)
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def get_by_email(self, email: str) -> Optional[User]:
        stmt = select(User).where(func.lower(User.email) == email.strip().lower())
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def email_exists(self, email: str) -> bool:
        return await self.get_by_email(email) is not None

    async def get_roles(self, user_id: UserId) -> list[str]:
        key = coerce_user_id(user_id)
        if key is None:
            return []
        stmt = (
            select(TeamMember.role)
            .where(TeamMember.user_id == key)
            .distinct()
            .order_by(TeamMember.role)
        )
        result = await self.db.execute(stmt)
        return [str(role) for role in result.scalars().all()]

    async def add(self, user: User) -> User:
        self.db.add(user)
        try:
            await self.db.commit()
        except IntegrityError as exc:
            await self.db.rollback()
            raise DuplicateEmail() from exc
        await self.db.refresh(user)
        return user

    async def save(self, user: User) -> User:
        self.db.add(user)
        try:
            await self.db.commit()
        except StaleDataError as exc:
            await self.db.rollback()
            raise ConcurrentUpdate() from exc
        return user
