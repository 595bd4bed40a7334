"""Integration test fixtures: the FastAPI app over a per-test SQLite database."""

from collections.abc import AsyncGenerator
from uuid import uuid4

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from bookkeeping_engine.api.app import create_app
from bookkeeping_engine.api.dependencies import get_db_session


def _headers(company_id, role: str) -> dict[str, str]:
    return {
        "X-Company-ID": str(company_id),
        "X-User-ID": str(uuid4()),
        "X-User-Role": role,
    }


@pytest.fixture
def app(session_factory):
    """App whose requests each get their own session on the test database."""
    app = create_app()

    async def override_db_session() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db_session] = override_db_session
    return app


@pytest.fixture
async def client(app, session: AsyncSession, company) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client. Fixture rows are committed before the first request."""
    await session.commit()
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest.fixture
def owner_headers(company) -> dict[str, str]:
    return _headers(company.id, "owner")


@pytest.fixture
def hr_headers(company) -> dict[str, str]:
    return _headers(company.id, "hr")


@pytest.fixture
def viewer_headers(company) -> dict[str, str]:
    return _headers(company.id, "viewer")
