from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Callable
from contextlib import aclosing
from dataclasses import dataclass
from typing import Protocol

from orderbook_depth_lake.core.errors import StoreError
from orderbook_depth_lake.core.time_utils import now_ms
from orderbook_depth_lake.sources.messages import Skip, parse_depth_frame
from orderbook_depth_lake.transforms.depth_metrics import summarize_depth
from orderbook_depth_lake.writer.snapshot_writer import SnapshotWriter

logger = logging.getLogger(__name__)


class DepthFeed(Protocol):
    def frames(self) -> AsyncIterator[str | bytes]: ...

    def request_shutdown(self) -> None: ...


@dataclass(frozen=True, slots=True)
class IngestSummary:
    frames_seen: int
    records_written: int
    frames_skipped: int
    store_failures: int
    last_key: str | None


class DepthIngestLoop:
    """Feed → parse → summarize → persist, one frame at a time.

    A frame is fully skipped or fully persisted before the next one is read,
    so write order equals arrival order.
    """

    def __init__(
        self,
        *,
        feed: DepthFeed,
        writer: SnapshotWriter,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self._feed = feed
        self._writer = writer
        self._clock = clock
        self._shutdown = False

    def request_shutdown(self) -> None:
        self._shutdown = True
        self._feed.request_shutdown()

    async def handle_frame(self, raw: str | bytes) -> str | None:
        parsed = parse_depth_frame(raw)
        if isinstance(parsed, Skip):
            return None

        record = summarize_depth(parsed, timestamp_ms=self._clock())
        return await asyncio.to_thread(self._writer.write, record)

    async def run(self, max_records: int | None = None) -> IngestSummary:
        frames_seen = 0
        records_written = 0
        frames_skipped = 0
        store_failures = 0
        last_key: str | None = None

        async with aclosing(self._feed.frames()) as frames:
            async for raw in frames:
                frames_seen += 1
                try:
                    key = await self.handle_frame(raw)
                except StoreError:
                    store_failures += 1
                    logger.exception("Snapshot write failed; continuing with next frame")
                    continue

                if key is None:
                    frames_skipped += 1
                else:
                    records_written += 1
                    last_key = key

                if max_records is not None and records_written >= max_records:
                    break
                if self._shutdown:
                    break

        summary = IngestSummary(
            frames_seen=frames_seen,
            records_written=records_written,
            frames_skipped=frames_skipped,
            store_failures=store_failures,
            last_key=last_key,
        )
        logger.info(
            "Ingest loop stopped",
            extra={
                "frames_seen": summary.frames_seen,
                "records_written": summary.records_written,
                "frames_skipped": summary.frames_skipped,
                "store_failures": summary.store_failures,
            },
        )
        return summary
