"""Download side of the upstream feed mirror."""

from __future__ import annotations

import asyncio
import hashlib
import inspect
from typing import Optional

import httpx

from transit_feed.logging import get_logger

logger = get_logger(__name__)

DEFAULT_TIMEOUT_SEC = 30
DEFAULT_MAX_RETRIES = 3
DEFAULT_BACKOFF_BASE = 2.0


class FeedFetchError(Exception):
    """Raised when the upstream feed cannot be mirrored."""


class RemoteFeedFetcher:
    """Pulls the upstream GTFS-RT feed that is republished as ``remote.pb``.

    One HTTP client is shared by all attempts of a download. The digest of
    the last successful download is kept so an unchanged upstream feed is
    visible in the logs.
    """

    def __init__(
        self,
        timeout_sec: int = DEFAULT_TIMEOUT_SEC,
        max_retries: int = DEFAULT_MAX_RETRIES,
        backoff_base: float = DEFAULT_BACKOFF_BASE,
    ) -> None:
        self.timeout_sec = timeout_sec
        self.max_retries = max(1, max_retries)
        self.backoff_base = backoff_base
        self.last_hash: Optional[str] = None

    async def fetch(self, url: str, cycle_id: str) -> tuple[bytes, str]:
        """Download the upstream feed for one mirror run.

        Args:
            url: Upstream feed URL.
            cycle_id: Id of the feed cycle doing the mirror run.

        Returns:
            Tuple of (protobuf_bytes, sha256_hex_digest).

        Raises:
            FeedFetchError: If no attempt produced a non-empty body.
        """
        last_error: Exception | None = None

        async with httpx.AsyncClient(
            timeout=httpx.Timeout(self.timeout_sec),
            follow_redirects=True,
        ) as client:
            for attempt in range(1, self.max_retries + 1):
                try:
                    data = await self._download(client, url)
                except (httpx.HTTPStatusError, httpx.RequestError, FeedFetchError) as exc:
                    last_error = exc
                    if attempt == self.max_retries:
                        break
                    delay = self._backoff_delay(attempt)
                    logger.warning(
                        "Upstream mirror attempt failed",
                        cycle_id=cycle_id,
                        attempt=attempt,
                        delay_sec=delay,
                        error=str(exc),
                    )
                    await asyncio.sleep(delay)
                    continue

                return data, self._record(data, cycle_id, attempt)

        msg = f"Failed to fetch upstream feed after {self.max_retries} attempts"
        logger.error(msg, cycle_id=cycle_id, url=url, error=str(last_error))
        raise FeedFetchError(msg) from last_error

    async def _download(self, client: httpx.AsyncClient, url: str) -> bytes:
        response = await client.get(url)
        raise_result = response.raise_for_status()
        if inspect.isawaitable(raise_result):
            await raise_result
        if not response.content:
            raise FeedFetchError("Upstream returned an empty body")
        return response.content

    def _backoff_delay(self, attempt: int) -> float:
        return self.backoff_base**attempt

    def _record(self, data: bytes, cycle_id: str, attempt: int) -> str:
        feed_hash = hashlib.sha256(data).hexdigest()
        logger.info(
            "Upstream feed mirrored",
            cycle_id=cycle_id,
            attempt=attempt,
            size_bytes=len(data),
            feed_hash=feed_hash[:12],
            unchanged=feed_hash == self.last_hash,
        )
        self.last_hash = feed_hash
        return feed_hash
