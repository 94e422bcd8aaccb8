from __future__ import annotations

import logging
from dataclasses import dataclass

from orderbook_depth_lake.core.time_utils import HOUR_MS, ms_to_utc
from orderbook_depth_lake.writer.blob_store import BlobStore
from orderbook_depth_lake.writer.partition import hour_prefix, timestamp_from_key

DEFAULT_GAP_THRESHOLD_MS = 5000

logger = logging.getLogger(__name__)


def detect_gap(
    reference_time_ms: int,
    last_persisted_ts_ms: int | None,
    threshold_ms: int = DEFAULT_GAP_THRESHOLD_MS,
) -> bool:
    # an empty store is an unbounded gap so a cold store gets bootstrapped
    if last_persisted_ts_ms is None:
        return True
    return reference_time_ms - last_persisted_ts_ms > threshold_ms


@dataclass(frozen=True, slots=True)
class GapCheck:
    gap_detected: bool
    reference_ms: int
    last_persisted_ms: int | None

    @property
    def gap_ms(self) -> int | None:
        if self.last_persisted_ms is None:
            return None
        return self.reference_ms - self.last_persisted_ms


class GapDetector:
    def __init__(
        self,
        *,
        store: BlobStore,
        prefix: str,
        extension: str,
        threshold_ms: int = DEFAULT_GAP_THRESHOLD_MS,
    ) -> None:
        self._store = store
        self._prefix = prefix
        self._extension = extension
        self._threshold_ms = threshold_ms

    @property
    def threshold_ms(self) -> int:
        return self._threshold_ms

    def last_persisted_timestamp_ms(self, reference_ms: int) -> int | None:
        """Latest record timestamp within reach of the gap threshold.

        Partitions are listed from the hour holding ``reference - threshold``
        up to the reference hour. A record older than that is already a gap,
        so it is reported as absent.
        """
        latest: int | None = None
        hours_back = self._threshold_ms // HOUR_MS + 1
        for hour_ms in range(reference_ms - hours_back * HOUR_MS, reference_ms + 1, HOUR_MS):
            prefix = hour_prefix(self._prefix, ms_to_utc(hour_ms))
            candidate = self._latest_in_partition(prefix)
            if candidate is not None and (latest is None or candidate > latest):
                latest = candidate
        return latest

    def check(self, reference_ms: int) -> GapCheck:
        last_persisted = self.last_persisted_timestamp_ms(reference_ms)
        return GapCheck(
            gap_detected=detect_gap(reference_ms, last_persisted, self._threshold_ms),
            reference_ms=reference_ms,
            last_persisted_ms=last_persisted,
        )

    def _latest_in_partition(self, prefix: str) -> int | None:
        keys = self._store.list(prefix)
        timestamps = [
            timestamp
            for timestamp in (timestamp_from_key(key, self._extension) for key in keys)
            if timestamp is not None
        ]
        if not timestamps:
            return None

        latest = max(timestamps)
        if timestamps[-1] != latest:
            logger.warning(
                "Partition listing is not ordered by record timestamp",
                extra={"prefix": prefix, "last_listed_ms": timestamps[-1], "latest_ms": latest},
            )
        return latest
