"""Pytest configuration and fixtures."""

from collections.abc import AsyncGenerator, Generator
from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock, patch

import pytest
from httpx import ASGITransport, AsyncClient

from transit_feed.main import app
from transit_feed.services.feed.worker import FeedWorker

from .fixtures.worker_fixture import make_worker_with_mocks


@pytest.fixture
def mock_db_connection() -> Any:
    """Mock database connection check."""
    with patch("transit_feed.main.check_database_connection", new_callable=AsyncMock) as mock:
        mock.return_value = True
        yield mock


@pytest.fixture
def feed_worker(tmp_path: Path) -> Generator[FeedWorker, None, None]:
    """A worker with mocked sources attached to the app, as the lifespan would."""
    worker, _ = make_worker_with_mocks(tmp_path)
    app.state.worker = worker
    yield worker
    app.state.worker = None


@pytest.fixture
async def client(
    mock_db_connection: Any,  # noqa: ARG001
    feed_worker: FeedWorker,  # noqa: ARG001
) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client for testing."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture
async def client_no_worker(mock_db_connection: Any) -> AsyncGenerator[AsyncClient, None]:  # noqa: ARG001
    """Async HTTP client for an app whose worker was never created."""
    app.state.worker = None
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
