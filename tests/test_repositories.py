from datetime import datetime, timezone

import pytest
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.exc import StaleDataError

from app.core.exceptions import ConcurrentUpdate, DuplicateEmail
from app.db.session import normalize_database_url
from app.repositories.mfa_email_codes import MfaEmailCodeRepository
from app.repositories.users import UserRepository, coerce_user_id
from conftest import FakeAsyncSession, make_user


@pytest.mark.asyncio
async def test_save_maps_stale_row_to_concurrent_update():
    session = FakeAsyncSession(commit_error=StaleDataError("version mismatch"))
    with pytest.raises(ConcurrentUpdate) as excinfo:
        await UserRepository(session).save(make_user())
    assert excinfo.value.status_code == 409
    assert session.rollbacks == 1


@pytest.mark.asyncio
async def test_add_maps_unique_violation_to_duplicate_email():
    session = FakeAsyncSession(commit_error=IntegrityError("INSERT", {}, Exception("uq_users_email")))
    with pytest.raises(DuplicateEmail):
        await UserRepository(session).add(make_user())
    assert session.rollbacks == 1


@pytest.mark.asyncio
async def test_add_commits_and_refreshes():
    session = FakeAsyncSession()
    user = make_user()
    assert await UserRepository(session).add(user) is user
    assert session.commits == 1
    assert session.refreshed == [user]


@pytest.mark.asyncio
async def test_lookup_with_malformed_id_skips_the_database():
    session = FakeAsyncSession()
    repo = UserRepository(session)
    assert await repo.get_by_id("not-a-uuid") is None
    assert await repo.get_roles("not-a-uuid") == []
    assert session.statements == []


@pytest.mark.asyncio
async def test_purge_reports_deleted_rows():
    session = FakeAsyncSession(rowcount=3)
    removed = await MfaEmailCodeRepository(session).purge(datetime.now(timezone.utc))
    assert removed == 3
    assert session.commits == 1


def test_coerce_user_id():
    user = make_user()
    assert coerce_user_id(user.id) == user.id
    assert coerce_user_id(str(user.id)) == user.id
    assert coerce_user_id("garbage") is None
    assert coerce_user_id(None) is None


@pytest.mark.parametrize(
    "url, expected",
    [
        ("postgres://u:p@db:5432/app", "postgresql+psycopg://u:p@db:5432/app"),
        ("postgresql://u:p@db/app", "postgresql+psycopg://u:p@db/app"),
        ("postgresql+asyncpg://u:p@db/app", "postgresql+psycopg://u:p@db/app"),
        ("postgresql+psycopg://u:p@db/app", "postgresql+psycopg://u:p@db/app"),
    ],
)
def test_normalize_database_url(url, expected):
    assert normalize_database_url(url) == expected
