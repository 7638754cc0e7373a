"""Pytest configuration and fixtures for Loyalty DAO backend tests"""
import os
from datetime import datetime, timedelta
from typing import Any, AsyncGenerator, Dict, List, Optional, Tuple

import pytest
import pytest_asyncio
from dotenv import load_dotenv

# Load environment variables, then pin the app to sqlite before it builds its engine
load_dotenv()
os.environ["DATABASE_URL"] = os.getenv("TEST_DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ["DEBUG"] = "false"
os.environ["SWEEPER_ENABLED"] = "false"

from httpx import AsyncClient, ASGITransport  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from loyalty_dao.api.v1.deps import get_clock  # noqa: E402
from loyalty_dao.errors import ParameterApplyFailed  # noqa: E402
from loyalty_dao.main import app  # noqa: E402
from loyalty_dao.models import Member, Organization  # noqa: E402
from loyalty_dao.models.database import Base, get_db  # noqa: E402
from loyalty_dao.services.config_store import ConfigurationStore, get_config_store  # noqa: E402
from loyalty_dao.services.ledger import LedgerStore  # noqa: E402
from loyalty_dao.services.organizations import OrganizationService  # noqa: E402

START = datetime(2026, 1, 5, 12, 0, 0)


class FakeClock:
    """Callable time source that only moves when told to"""

    def __init__(self, start: datetime = START):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: Any) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


class RecordingConfigStore(ConfigurationStore):
    """In-memory configuration store that remembers every apply call"""

    def __init__(self, fail: bool = False):
        self.values: Dict[str, Any] = {}
        self.calls: List[Tuple[str, Any, Optional[str]]] = []
        self.fail = fail

    async def apply_parameter(self, name: str, value: Any, proposal_id: Optional[str] = None) -> None:
        self.calls.append((name, value, proposal_id))
        if self.fail:
            raise ParameterApplyFailed(f"Could not apply parameter {name}", parameter=name)
        self.values[name] = value

    async def get_parameter(self, name: str) -> Optional[Any]:
        return self.values.get(name)


class GovernanceSeed:
    """Creates organizations and members through the real service layer"""

    def __init__(self, store: LedgerStore, clock: FakeClock):
        self.store = store
        self.clock = clock
        self.service = OrganizationService(store, clock=clock)
        self._users = 0

    async def organization(self, **overrides: Any) -> Organization:
        name = overrides.pop("name", "Test Loyalty DAO")
        settings = {
            "min_proposal_threshold": 100,
            "voting_period_seconds": 3600,
            "execution_delay_seconds": 600,
            "quorum_percentage": 10.0,
            "super_majority_threshold": 66.67,
        }
        settings.update(overrides)
        return await self.service.create_organization(name, **settings)

    async def member(self, organization: Organization, tokens: Any = 0, role: str = "member") -> Member:
        self._users += 1
        return await self.service.join(
            organization.id,
            f"user-{self._users}",
            governance_tokens=tokens,
            role=role,
        )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def config_store() -> RecordingConfigStore:
    return RecordingConfigStore()


@pytest.fixture
def failing_config_store() -> RecordingConfigStore:
    return RecordingConfigStore(fail=True)


@pytest_asyncio.fixture(scope="function")
async def session_factory() -> AsyncGenerator[async_sessionmaker, None]:
    """Fresh in-memory database per test"""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    try:
        yield factory
    finally:
        await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def db_session(session_factory: async_sessionmaker) -> AsyncGenerator[AsyncSession, None]:
    session = session_factory()
    try:
        yield session
    finally:
        await session.close()


@pytest_asyncio.fixture(scope="function")
async def store(db_session: AsyncSession) -> LedgerStore:
    return LedgerStore(db_session, timeout=5.0)


@pytest_asyncio.fixture(scope="function")
async def seed(store: LedgerStore, clock: FakeClock) -> GovernanceSeed:
    return GovernanceSeed(store, clock)


@pytest_asyncio.fixture(scope="function")
async def client(
    session_factory: async_sessionmaker,
    clock: FakeClock,
    config_store: RecordingConfigStore,
) -> AsyncGenerator[AsyncClient, None]:
    """Create an async test client"""

    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_clock] = lambda: clock
    app.dependency_overrides[get_config_store] = lambda: config_store

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test"
    ) as ac:
        yield ac

    app.dependency_overrides.clear()
