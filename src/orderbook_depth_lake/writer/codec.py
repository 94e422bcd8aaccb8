from __future__ import annotations

import io
import json
from typing import Protocol

from fastavro import parse_schema, reader, writer

from orderbook_depth_lake.core.schema import avro_schema
from orderbook_depth_lake.transforms.depth_metrics import SnapshotRecord


class RecordCodec(Protocol):
    extension: str

    def encode(self, record: SnapshotRecord) -> bytes: ...

    def decode(self, payload: bytes) -> SnapshotRecord: ...


class AvroRecordCodec:
    """One Avro object container file per record."""

    extension = "avro"

    def __init__(self, codec: str = "null") -> None:
        self._schema = parse_schema(avro_schema())
        self._codec = codec

    def encode(self, record: SnapshotRecord) -> bytes:
        buffer = io.BytesIO()
        writer(buffer, self._schema, [record.to_dict()], codec=self._codec, validator=True)
        return buffer.getvalue()

    def decode(self, payload: bytes) -> SnapshotRecord:
        records = list(reader(io.BytesIO(payload)))
        if len(records) != 1:
            raise ValueError(f"expected exactly one record per file, found {len(records)}")
        return SnapshotRecord.from_dict(records[0])


class JsonRecordCodec:
    extension = "json"

    def encode(self, record: SnapshotRecord) -> bytes:
        return json.dumps(record.to_dict(), indent=2).encode("utf-8")

    def decode(self, payload: bytes) -> SnapshotRecord:
        return SnapshotRecord.from_dict(json.loads(payload.decode("utf-8")))


def codec_for_format(record_format: str) -> RecordCodec:
    normalized = record_format.strip().lower()
    if normalized == "avro":
        return AvroRecordCodec()
    if normalized == "json":
        return JsonRecordCodec()
    raise ValueError(f"unsupported record format: {record_format!r}")
