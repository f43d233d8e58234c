from __future__ import annotations

import logging
import threading
from datetime import datetime, timezone
from typing import Dict, Optional

logger = logging.getLogger(__name__)

_PRUNE_EVERY = 256


def _utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class TokenRevocationRegistry:
    """In-memory record of revoked token identifiers (jti -> expiry).

    One instance is created per process and shared through ``app.state``.
    Entries are forgotten on restart; an entry outlives its usefulness once
    the token itself has expired, so expired entries are pruned lazily.
    """

    def __init__(self) -> None:
        self._entries: Dict[str, datetime] = {}
        self._lock = threading.Lock()
        self._writes = 0

    def revoke(self, jti: Optional[str], expiry: datetime) -> bool:
        """Revoke *jti* until *expiry*. Returns True only if it was not already revoked."""
        if not jti:
            logger.warning("revoke called without a jti, ignoring")
            return False
        expiry = _utc(expiry)
        now = datetime.now(timezone.utc)
        with self._lock:
            current = self._entries.get(jti)
            if current is not None and current > now:
                return False
            self._entries[jti] = expiry
            self._writes += 1
            if self._writes % _PRUNE_EVERY == 0:
                self._prune_locked(now)
            total = len(self._entries)
        logger.info("Token revoked jti=%s expiry=%s total=%s", jti, expiry.isoformat(), total)
        return True

    def is_revoked(self, jti: Optional[str]) -> bool:
        if not jti:
            return False
        with self._lock:
            expiry = self._entries.get(jti)
        if expiry is None:
            return False
        return expiry > datetime.now(timezone.utc)

    def prune(self, now: Optional[datetime] = None) -> int:
        with self._lock:
            return self._prune_locked(_utc(now) if now else datetime.now(timezone.utc))

    def _prune_locked(self, now: datetime) -> int:
        expired = [jti for jti, expiry in self._entries.items() if expiry <= now]
        for jti in expired:
            del self._entries[jti]
        return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
