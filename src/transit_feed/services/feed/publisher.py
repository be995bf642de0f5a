"""Atomic persistence of published feed files."""

from __future__ import annotations

import contextlib
import os
import tempfile
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional, Sequence

from transit_feed.logging import get_logger
from transit_feed.services.feed.encoder import (
    FeedEncodeError,
    encode_snapshot,
    snapshot_to_json,
)
from transit_feed.services.feed.entities import FeedSnapshot

logger = get_logger(__name__)

FORMATS = ("pb", "json")


class FeedPublishError(Exception):
    """Raised when a feed cannot be encoded or written."""


@dataclass(frozen=True)
class PreparedFeed:
    """Encoded payloads of one feed, ready to be written."""

    name: str
    payloads: dict[str, bytes]
    info: dict[str, Any] = field(default_factory=dict)


class FeedPublisher:
    """Writes feed files into one directory.

    Publishing is two-phase. Every payload of a batch is first written to a
    temporary sibling; only when all of them are on disk are they moved into
    place. A failure while encoding or staging leaves every published file
    untouched, so a cycle never publishes half of its feeds.
    """

    def __init__(self, publish_dir: str | Path) -> None:
        self.publish_dir = Path(publish_dir)
        self._published: dict[str, dict[str, Any]] = {}

    def prepare(self, snapshot: FeedSnapshot) -> PreparedFeed:
        """Encode a snapshot as protobuf and JSON without touching the disk.

        Raises:
            FeedPublishError: If the snapshot cannot be encoded.
        """
        try:
            payloads = {
                "pb": encode_snapshot(snapshot),
                "json": snapshot_to_json(snapshot),
            }
        except FeedEncodeError as exc:
            logger.error("Snapshot encoding failed", feed=snapshot.name, error=str(exc))
            raise FeedPublishError(str(exc)) from exc

        return PreparedFeed(
            name=snapshot.name,
            payloads=payloads,
            info={
                "feed_timestamp": snapshot.timestamp,
                "entity_count": snapshot.entity_count,
                "relationships": snapshot.relationship_counts(),
            },
        )

    def publish(self, feeds: Sequence[PreparedFeed]) -> list[dict[str, Any]]:
        """Write all prepared feeds, or none of them.

        Raises:
            FeedPublishError: If any file cannot be staged or moved into place.
        """
        staged = self._stage(feeds)
        self._commit(staged)

        published_at = datetime.now(timezone.utc).isoformat()
        infos = []
        for feed in feeds:
            info = {
                "name": feed.name,
                "published_at": published_at,
                "size_bytes": len(feed.payloads["pb"]),
                **feed.info,
            }
            self._published[feed.name] = info
            logger.info(
                "Feed published",
                feed=feed.name,
                entity_count=info.get("entity_count"),
                size_bytes=info["size_bytes"],
            )
            infos.append(info)
        return infos

    def publish_snapshot(self, snapshot: FeedSnapshot) -> dict[str, Any]:
        """Encode and write ``{name}.pb`` and ``{name}.json``."""
        return self.publish([self.prepare(snapshot)])[0]

    def publish_bytes(self, name: str, data: bytes) -> dict[str, Any]:
        """Write an already encoded protobuf feed as ``{name}.pb``."""
        return self.publish([PreparedFeed(name=name, payloads={"pb": data})])[0]

    def read(self, name: str, fmt: str = "pb") -> Optional[bytes]:
        """Last published bytes of a feed, or None before its first publish."""
        if fmt not in FORMATS or name not in self._published:
            return None
        path = self.publish_dir / f"{name}.{fmt}"
        try:
            return path.read_bytes()
        except FileNotFoundError:
            return None

    def published(self) -> dict[str, dict[str, Any]]:
        return dict(self._published)

    def _stage(self, feeds: Sequence[PreparedFeed]) -> list[tuple[str, Path]]:
        staged: list[tuple[str, Path]] = []
        try:
            self.publish_dir.mkdir(parents=True, exist_ok=True)
            for feed in feeds:
                for fmt, data in feed.payloads.items():
                    target = self.publish_dir / f"{feed.name}.{fmt}"
                    fd, tmp_path = tempfile.mkstemp(
                        dir=self.publish_dir, prefix=f".{target.name}.", suffix=".tmp"
                    )
                    staged.append((tmp_path, target))
                    with os.fdopen(fd, "wb") as handle:
                        handle.write(data)
                        handle.flush()
                        os.fsync(handle.fileno())
        except OSError as exc:
            self._discard(staged)
            logger.error("Feed staging failed", publish_dir=str(self.publish_dir), error=str(exc))
            raise FeedPublishError(f"Cannot stage feeds in {self.publish_dir}: {exc}") from exc
        return staged

    def _commit(self, staged: list[tuple[str, Path]]) -> None:
        for index, (tmp_path, target) in enumerate(staged):
            try:
                os.replace(tmp_path, target)
            except OSError as exc:
                self._discard(staged[index:])
                logger.error("Feed write failed", path=str(target), error=str(exc))
                raise FeedPublishError(f"Cannot write {target}: {exc}") from exc

    @staticmethod
    def _discard(staged: list[tuple[str, Path]]) -> None:
        for tmp_path, _ in staged:
            with contextlib.suppress(OSError):
                os.unlink(tmp_path)
