"""Tests for feed and admin API endpoints."""

from unittest.mock import AsyncMock

import pytest
from google.transit import gtfs_realtime_pb2
from httpx import AsyncClient

from transit_feed.services.feed.worker import FeedWorker


class TestFeedEndpoints:
    """Tests for /feeds and /meta/last-cycle."""

    @pytest.mark.asyncio
    async def test_feed_not_published_yet(self, client: AsyncClient) -> None:
        response = await client.get("/feeds/trainUpdates.pb")
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_last_cycle_before_any_cycle(self, client: AsyncClient) -> None:
        response = await client.get("/meta/last-cycle")
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_feeds_served_after_cycle(
        self, client: AsyncClient, feed_worker: FeedWorker
    ) -> None:
        await feed_worker.run_once()

        response = await client.get("/feeds/trainUpdates.pb")
        assert response.status_code == 200
        assert response.headers["content-type"] == "application/x-protobuf"

        feed = gtfs_realtime_pb2.FeedMessage()
        feed.ParseFromString(response.content)
        assert feed.header.gtfs_realtime_version == "2.0"
        assert len(feed.entity) == 1

        response = await client.get("/feeds/tripUpdates.json")
        assert response.status_code == 200
        assert response.json()["entity"][0]["id"] == "B1_20240501"

    @pytest.mark.asyncio
    async def test_list_feeds(self, client: AsyncClient, feed_worker: FeedWorker) -> None:
        await feed_worker.run_once()

        response = await client.get("/feeds")
        assert response.status_code == 200
        names = {feed["name"] for feed in response.json()["feeds"]}
        assert names == {"trainUpdates", "tripUpdates"}

    @pytest.mark.asyncio
    async def test_last_cycle_report(self, client: AsyncClient, feed_worker: FeedWorker) -> None:
        await feed_worker.run_once()

        response = await client.get("/meta/last-cycle")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "ok"
        assert data["cycle_count"] == 1
        assert "trainUpdates" in data["feeds"]

    @pytest.mark.asyncio
    async def test_no_worker_returns_503(self, client_no_worker: AsyncClient) -> None:
        response = await client_no_worker.get("/feeds/trainUpdates.pb")
        assert response.status_code == 503


class TestAdminEndpoints:
    """Tests for /admin routes."""

    @pytest.mark.asyncio
    async def test_run_once(self, client: AsyncClient) -> None:
        response = await client.post("/admin/feed/run-once")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "ok"
        assert data["cycle_count"] == 1
        assert set(data["feeds"]) == {"trainUpdates", "tripUpdates"}

        response = await client.get("/feeds/trainUpdates.pb")
        assert response.status_code == 200

    @pytest.mark.asyncio
    async def test_run_once_unexpected_error(
        self, client: AsyncClient, feed_worker: FeedWorker
    ) -> None:
        feed_worker.run_once = AsyncMock(side_effect=RuntimeError("lock broken"))

        response = await client.post("/admin/feed/run-once")

        assert response.status_code == 500
        assert "lock broken" in response.json()["detail"]

    @pytest.mark.asyncio
    async def test_refresh_removals(self, client: AsyncClient) -> None:
        response = await client.post("/admin/removals/refresh")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "ok"
        assert data["removal_count"] == 0
        assert data["refreshed_at"] is not None
