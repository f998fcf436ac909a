from decimal import Decimal
from types import SimpleNamespace

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from splitledger import balances, groups
from splitledger.database import get_session
from splitledger.main import app
from splitledger.models import DatabaseSchemaBase, User


@pytest.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'ledger.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(DatabaseSchemaBase.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
async def people(session):
    users = {name: User(name=name.title()) for name in ("alice", "bob", "carol", "dave")}
    session.add_all(users.values())
    await session.commit()
    return SimpleNamespace(**{name: user.id for name, user in users.items()})


@pytest.fixture
async def trip(session, people):
    """Alice's group with Bob and Carol; Dave is not a member."""
    return await groups.create_group(session, "Trip", people.alice, [people.bob, people.carol])


@pytest.fixture
def read_ledger(session_factory):
    """Read a group's stored balance records through a fresh session."""

    async def read(group_id: int) -> dict[int, dict[int, Decimal]]:
        async with session_factory() as fresh:
            records = await balances.group_balance_records(fresh, group_id)
            return {record.user_id: record.as_dict() for record in records}

    return read


@pytest.fixture
async def client(session_factory):
    async def override_session():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_session] = override_session
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client
    app.dependency_overrides.clear()


def as_user(user_id: int) -> dict:
    return {"X-User-Id": str(user_id)}


def money(value) -> Decimal:
    return Decimal(str(value))
