import os

os.environ.setdefault("SECRET_KEY", "test-secret-key-with-at-least-32-characters")
os.environ.setdefault("CURRENT_ENVIRONMENT", "local")

from datetime import UTC, datetime, timedelta  # noqa: E402
from typing import AsyncGenerator  # noqa: E402

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from faker import Faker  # noqa: E402
from fastapi import FastAPI  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402

from app.main import create_app  # noqa: E402
from app.services.cache.bucket_store import InMemoryBucketStore  # noqa: E402
from app.services.token_service import TokenService  # noqa: E402

TEST_SECRET_KEY = "another-test-secret-key-of-32-chars-or-more"


class FrozenClock:
    """Clock returning a fixed aware datetime until advanced"""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def faker() -> Faker:
    """Create a Faker instance for generating test data."""
    return Faker()


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock(datetime(2024, 1, 1, 12, 0, 0, tzinfo=UTC))


@pytest.fixture
def token_service(clock: FrozenClock) -> TokenService:
    return TokenService(secret_key=TEST_SECRET_KEY, clock=clock)


@pytest.fixture
def bucket_store() -> InMemoryBucketStore:
    return InMemoryBucketStore(idle_ttl=3600)


@pytest.fixture
def test_app(bucket_store: InMemoryBucketStore, token_service: TokenService) -> FastAPI:
    """Create an application with process local buckets and a frozen clock."""
    return create_app(bucket_store=bucket_store, tokens=token_service)


@pytest_asyncio.fixture
async def client(test_app: FastAPI) -> AsyncGenerator[AsyncClient, None]:
    """Create an async HTTP client for testing."""
    transport = ASGITransport(app=test_app, raise_app_exceptions=False)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
