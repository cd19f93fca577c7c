"""
Pytest fixtures for SwarmBet backend tests.
"""

import os
from collections.abc import AsyncGenerator
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional
from unittest.mock import AsyncMock

import pytest
from httpx import ASGITransport, AsyncClient

# Set test environment variables before importing app
os.environ.setdefault("SECRET_KEY", "test-secret-key-for-testing")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("ADMIN_API_KEY", "test-admin-key")
os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("DEBUG", "false")
os.environ.setdefault("ENABLE_SCHEDULER", "false")

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from core.exceptions import AdapterUnavailable  # noqa: E402
from services.polymarket_client import MarketEvent, SubMarket  # noqa: E402
from services.vocdoni_client import ElectionTally  # noqa: E402


class FakeTally:
    """In-memory anonymous tally network."""

    def __init__(self) -> None:
        self.results: dict[str, ElectionTally] = {}
        self.receipts: dict[str, Optional[int]] = {}
        self.failing_receipts: set[str] = set()
        self.cast_calls: list[tuple[str, int, Optional[str]]] = []
        self.unavailable = False
        self.cast_unavailable = False

    async def fetch_election_result(self, election_id: str) -> ElectionTally:
        if self.unavailable:
            raise AdapterUnavailable("tally down")
        return self.results.get(election_id, ElectionTally())

    async def verify_ballot_receipt(self, election_id: str, receipt_id: str) -> Optional[int]:
        if self.unavailable or receipt_id in self.failing_receipts:
            raise AdapterUnavailable("receipt lookup failed")
        return self.receipts.get(receipt_id)

    async def cast_ballot(self, election_id: str, option_index: int, voter_id: Optional[str] = None) -> str:
        if self.cast_unavailable:
            raise AdapterUnavailable("relay down")
        self.cast_calls.append((election_id, option_index, voter_id))
        receipt = f"receipt-{len(self.cast_calls)}"
        self.receipts[receipt] = option_index
        return receipt


class FakeOracle:
    """In-memory prediction market."""

    def __init__(self) -> None:
        self.events: dict[str, MarketEvent] = {}
        self.unavailable = False

    def settle(self, event_id: str, outcomes: list[str], prices: list[float], question: Optional[str] = None) -> None:
        self.events[event_id] = MarketEvent(
            closed=True,
            markets=[SubMarket(question=question, group_item_title=None, closed=True, outcomes=outcomes, prices=prices)],
        )

    async def fetch_market(self, event_id: str) -> MarketEvent:
        if self.unavailable or event_id not in self.events:
            raise AdapterUnavailable("market unavailable")
        return self.events[event_id]


@pytest.fixture(scope="session")
def anyio_backend() -> str:
    """Use asyncio backend for async tests."""
    return "asyncio"


@pytest.fixture
async def engine() -> AsyncGenerator[Any, None]:
    """Fresh in-memory database per test."""
    import models  # noqa: F401
    from db.base import Base

    test_engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield test_engine
    await test_engine.dispose()


@pytest.fixture
def session_maker(engine: Any) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest.fixture
async def db_session(session_maker: async_sessionmaker[AsyncSession]) -> AsyncGenerator[AsyncSession, None]:
    async with session_maker() as session:
        yield session


@pytest.fixture
def tally() -> FakeTally:
    return FakeTally()


@pytest.fixture
def oracle() -> FakeOracle:
    return FakeOracle()


@pytest.fixture
def now() -> datetime:
    return datetime(2025, 3, 10, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def create_user(db_session: AsyncSession) -> Callable:
    """Factory for users with zeroed statistics."""
    from repositories.user_repository import UserRepository

    counter = {"n": 0}

    async def _create(auth_uid: Optional[str] = None, **stats: Any) -> Any:
        counter["n"] += 1
        user = await UserRepository(db_session).create(
            auth_uid=auth_uid or f"auth-{counter['n']}",
            username=f"voter{counter['n']}",
        )
        for key, value in stats.items():
            setattr(user, key, value)
        await db_session.commit()
        return user

    return _create


@pytest.fixture
def create_poll(db_session: AsyncSession, now: datetime) -> Callable:
    """Factory for polls whose voting window contains `now`."""
    from models.poll import PollStatus
    from repositories.poll_repository import PollRepository

    async def _create(
        labels: tuple[str, ...] = ("Red", "Blue"),
        status: PollStatus = PollStatus.ACTIVE,
        opens_at: Optional[datetime] = None,
        closes_at: Optional[datetime] = None,
        **fields: Any,
    ) -> Any:
        poll = await PollRepository(db_session).create(
            question=fields.pop("question", "Which colour wins?"),
            options=list(labels),
            category=fields.pop("category", "test"),
            opens_at=opens_at or now - timedelta(hours=1),
            closes_at=closes_at or now + timedelta(hours=23),
            status=status,
            **fields,
        )
        await db_session.commit()
        return poll

    return _create


@pytest.fixture
def live_poll_factory(create_poll: Callable) -> Callable:
    """Polls open around the real clock, for requests that go through the API."""

    async def _create(**fields: Any) -> Any:
        current = datetime.now(timezone.utc)
        return await create_poll(
            opens_at=current - timedelta(hours=1),
            closes_at=current + timedelta(hours=1),
            **fields,
        )

    return _create


@pytest.fixture
async def live_poll(live_poll_factory: Callable) -> Any:
    return await live_poll_factory()


@pytest.fixture
def cast_votes(session_maker: async_sessionmaker[AsyncSession], create_user: Callable, now: datetime) -> Callable:
    """Submit votes through the vote service, one fresh user per choice."""
    from services.vote_service import VoteService

    async def _cast(poll: Any, choices: list[Optional[str]], tally: Any = None, **kwargs: Any) -> list[Any]:
        users = []
        for choice in choices:
            user = await create_user()
            async with session_maker() as session:
                await VoteService(session, tally).submit_vote(
                    auth_uid=user.auth_uid,
                    poll_id=poll.id,
                    option_id=choice,
                    confidence="medium",
                    now=now,
                    **kwargs,
                )
            users.append(user)
        return users

    return _cast


@pytest.fixture
async def app(session_maker: async_sessionmaker[AsyncSession], tally: FakeTally, oracle: FakeOracle) -> Any:
    """FastAPI application wired to the test database and fake adapters."""
    from db.session import get_db
    from main import app as fastapi_app

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        async with session_maker() as session:
            yield session

    fastapi_app.dependency_overrides[get_db] = override_get_db
    fastapi_app.state.tally = tally
    fastapi_app.state.oracle = oracle
    yield fastapi_app
    fastapi_app.dependency_overrides.clear()


@pytest.fixture
async def client(app: Any) -> AsyncGenerator[AsyncClient, None]:
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


@pytest.fixture
def mock_db_session() -> AsyncMock:
    """Create mock database session."""
    session = AsyncMock()
    session.commit = AsyncMock()
    session.rollback = AsyncMock()
    session.close = AsyncMock()
    session.execute = AsyncMock()
    session.flush = AsyncMock()
    return session
