from __future__ import annotations

import logging

from orderbook_depth_lake.transforms.depth_metrics import SnapshotRecord
from orderbook_depth_lake.writer.blob_store import BlobStore
from orderbook_depth_lake.writer.codec import RecordCodec
from orderbook_depth_lake.writer.partition import partition_key

logger = logging.getLogger(__name__)


class SnapshotWriter:
    def __init__(self, store: BlobStore, codec: RecordCodec, prefix: str = "orderbook") -> None:
        self._store = store
        self._codec = codec
        self._prefix = prefix

    @property
    def store(self) -> BlobStore:
        return self._store

    @property
    def prefix(self) -> str:
        return self._prefix

    @property
    def extension(self) -> str:
        return self._codec.extension

    def key_for(self, record: SnapshotRecord) -> str:
        return partition_key(self._prefix, record.timestamp_ms, self._codec.extension)

    def write(self, record: SnapshotRecord) -> str:
        key = self.key_for(record)
        self._store.put(key, self._codec.encode(record))
        logger.debug(
            "Wrote snapshot %s",
            key,
            extra={
                "timestamp_ms": record.timestamp_ms,
                "mid_price": record.mid_price,
                "spread": record.spread,
            },
        )
        return key
