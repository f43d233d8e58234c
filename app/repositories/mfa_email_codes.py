from __future__ import annotations

from datetime import datetime

from sqlalchemy import delete, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models import MfaEmailCode
from app.repositories.users import UserId, coerce_user_id


class MfaEmailCodeRepository:
    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def add(self, code: MfaEmailCode) -> MfaEmailCode:
        self.db.add(code)
        await self.db.commit()
        return code

    async def list_active(self, user_id: UserId, now: datetime) -> list[MfaEmailCode]:
        stmt = select(MfaEmailCode).where(
            MfaEmailCode.user_id == coerce_user_id(user_id),
            MfaEmailCode.used.is_(False),
            MfaEmailCode.expires_at > now,
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def mark_used(self, code: MfaEmailCode) -> None:
        code.used = True
        self.db.add(code)
        await self.db.commit()

    async def delete_for_user(self, user_id: UserId) -> None:
        stmt = delete(MfaEmailCode).where(MfaEmailCode.user_id == coerce_user_id(user_id))
        await self.db.execute(stmt)
        await self.db.commit()

    async def purge(self, now: datetime) -> int:
        """Delete expired and already-used codes; returns the number removed."""
        stmt = delete(MfaEmailCode).where(
            or_(MfaEmailCode.expires_at <= now, MfaEmailCode.used.is_(True))
        )
        result = await self.db.execute(stmt)
        await self.db.commit()
        return result.rowcount or 0
