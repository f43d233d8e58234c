import asyncio
import contextlib
import logging

from fastapi import FastAPI

from app.db.session import AsyncSessionLocal
from app.repositories.mfa_email_codes import MfaEmailCodeRepository
from app.repositories.users import UserRepository
from app.services.auth import AuthComponents, AuthService

logger = logging.getLogger(__name__)


async def run_maintenance(components: AuthComponents) -> None:
    """One sweep: drop stale email MFA codes and expired revocations."""
    async with AsyncSessionLocal() as session:
        service = AuthService(components, UserRepository(session), MfaEmailCodeRepository(session))
        removed = await service.purge_expired_email_codes()
    pruned = components.registry.prune()
    logger.debug("Maintenance sweep removed %s email codes, %s revocations", removed, pruned)


async def _maintenance_loop(components: AuthComponents, interval_seconds: float) -> None:
    while True:
        await asyncio.sleep(interval_seconds)
        try:
            await run_maintenance(components)
        except Exception:
            logger.exception("Maintenance sweep failed")


def register_event_handlers(app: FastAPI) -> None:
    @app.on_event("startup")
    async def on_startup() -> None:
        logger.info("Application startup")
        components: AuthComponents = app.state.auth
        interval = components.settings.mfa_code_cleanup_interval_minutes * 60
        app.state.maintenance_task = asyncio.create_task(_maintenance_loop(components, interval))

    @app.on_event("shutdown")
    async def on_shutdown() -> None:
        task = getattr(app.state, "maintenance_task", None)
        if task is not None:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        logger.info("Application shutdown")
