from __future__ import annotations

import logging
import secrets
import uuid
from datetime import datetime, timedelta, timezone
from typing import Protocol

from app.core.security import CredentialHasher
from app.models import MfaEmailCode, User
from app.repositories.mfa_email_codes import MfaEmailCodeRepository
from app.repositories.users import UserId
from app.utils.masking import mask_email

logger = logging.getLogger(__name__)

EMAIL_CODE_LENGTH = 6


class MfaCodeSender(Protocol):
    async def send_mfa_code(self, email: str, code: str) -> None: ...


class LoggingMfaCodeSender:
    """Placeholder delivery channel; records that a code went out, never the code."""

    async def send_mfa_code(self, email: str, code: str) -> None:
        logger.info("MFA email code dispatched to %s", mask_email(email))


def generate_email_code() -> str:
    return "".join(str(secrets.randbelow(10)) for _ in range(EMAIL_CODE_LENGTH))


class EmailMfaCodes:
    def __init__(
        self,
        repository: MfaEmailCodeRepository,
        hasher: CredentialHasher,
        sender: MfaCodeSender,
        *,
        ttl: timedelta = timedelta(minutes=10),
    ) -> None:
        self._repository = repository
        self._hasher = hasher
        self._sender = sender
        self._ttl = ttl

    async def issue(self, user: User) -> None:
        code = generate_email_code()
        record = MfaEmailCode(
            id=uuid.uuid4(),
            user_id=user.id,
            code_hash=self._hasher.hash(code),
            expires_at=datetime.now(timezone.utc) + self._ttl,
            used=False,
        )
        await self._repository.add(record)
        await self._sender.send_mfa_code(user.email, code)

    async def consume(self, user_id: UserId, code: str) -> bool:
        if not code:
            return False
        now = datetime.now(timezone.utc)
        for record in await self._repository.list_active(user_id, now):
            if self._hasher.verify(code, record.code_hash):
                await self._repository.mark_used(record)
                return True
        return False

    async def clear(self, user_id: UserId) -> None:
        await self._repository.delete_for_user(user_id)

    async def purge_expired(self) -> int:
        removed = await self._repository.purge(datetime.now(timezone.utc))
        if removed:
            logger.debug("Purged %s expired or used MFA email codes", removed)
        return removed
