from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Protocol

import httpx

from orderbook_depth_lake.core.errors import SourceFetchError, StoreError
from orderbook_depth_lake.core.time_utils import now_ms
from orderbook_depth_lake.pipeline.gap import GapCheck, GapDetector
from orderbook_depth_lake.sources.messages import Skip, levels_from_payload
from orderbook_depth_lake.transforms.depth_metrics import SnapshotRecord, summarize_depth
from orderbook_depth_lake.writer.snapshot_writer import SnapshotWriter

logger = logging.getLogger(__name__)


class DepthSnapshotSource(Protocol):
    def fetch_depth_snapshot(self, symbol: str, limit: int = 1000) -> dict[str, Any]: ...


@dataclass(frozen=True, slots=True)
class RecoverySummary:
    gap: GapCheck
    last_update_id: int | None
    record: SnapshotRecord
    written_key: str | None

    @property
    def backfilled(self) -> bool:
        return self.written_key is not None


class DepthRecoveryAgent:
    """Backfill one REST snapshot when the live record history has a gap.

    Running it twice with no new gap writes nothing the second time. Running
    it twice while a gap persists writes two independent records.
    """

    def __init__(
        self,
        *,
        source: DepthSnapshotSource,
        writer: SnapshotWriter,
        gap_detector: GapDetector,
        symbol: str,
        snapshot_limit: int = 1000,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self._source = source
        self._writer = writer
        self._gap_detector = gap_detector
        self._symbol = symbol.upper()
        self._snapshot_limit = snapshot_limit
        self._clock = clock

    def run_once(self) -> RecoverySummary:
        try:
            payload = self._source.fetch_depth_snapshot(self._symbol, limit=self._snapshot_limit)
        except (httpx.HTTPError, ValueError) as exc:
            raise SourceFetchError(f"depth snapshot fetch failed for {self._symbol}: {exc}") from exc

        levels = levels_from_payload(payload)
        if isinstance(levels, Skip):
            raise SourceFetchError(f"depth snapshot for {self._symbol} is unusable: {levels.detail}")

        captured_ms = self._clock()
        record = summarize_depth(levels, timestamp_ms=captured_ms)

        # prefer the exchange's own clock when the snapshot carries one
        reference_ms = levels.event_time if levels.event_time else captured_ms
        gap = self._gap_detector.check(reference_ms)

        if not gap.gap_detected:
            logger.info(
                "No gap detected; skipping backfill",
                extra={"symbol": self._symbol, "gap_ms": gap.gap_ms},
            )
            return RecoverySummary(gap=gap, last_update_id=levels.last_update_id, record=record, written_key=None)

        written_key = self._writer.write(record)
        logger.info(
            "Backfilled depth snapshot %s",
            written_key,
            extra={
                "symbol": self._symbol,
                "gap_ms": gap.gap_ms,
                "last_update_id": levels.last_update_id,
            },
        )
        return RecoverySummary(
            gap=gap,
            last_update_id=levels.last_update_id,
            record=record,
            written_key=written_key,
        )

    def run_daemon(self, poll_seconds: float = 60, stop_event: threading.Event | None = None) -> None:
        stop = stop_event or threading.Event()
        logger.info("Starting depth recovery daemon", extra={"poll_seconds": poll_seconds})
        while not stop.is_set():
            try:
                self.run_once()
            except (SourceFetchError, StoreError):
                logger.exception("Recovery invocation failed; retrying on next tick")
            stop.wait(poll_seconds)
