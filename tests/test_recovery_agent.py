from __future__ import annotations

import threading
from pathlib import Path
from typing import Any

import httpx
import pytest

from orderbook_depth_lake.core.errors import SourceFetchError
from orderbook_depth_lake.pipeline.gap import GapDetector
from orderbook_depth_lake.pipeline.recovery import DepthRecoveryAgent
from orderbook_depth_lake.sources.rest import BinanceRESTClient
from orderbook_depth_lake.writer.blob_store import LocalBlobStore
from orderbook_depth_lake.writer.codec import AvroRecordCodec
from orderbook_depth_lake.writer.snapshot_writer import SnapshotWriter

# 2025-01-15T12:00:30Z
NOW_MS = 1_736_942_430_000

SNAPSHOT = {
    "lastUpdateId": 1027024,
    "bids": [["100.00000000", "1.00000000"], ["99.00000000", "2.00000000"]],
    "asks": [["101.00000000", "1.00000000"], ["102.00000000", "2.00000000"]],
}


class _StaticSource:
    def __init__(self, payload: dict[str, Any]) -> None:
        self._payload = payload
        self.calls: list[tuple[str, int]] = []

    def fetch_depth_snapshot(self, symbol: str, limit: int = 1000) -> dict[str, Any]:
        self.calls.append((symbol, limit))
        return self._payload


def _writer(root: Path) -> SnapshotWriter:
    return SnapshotWriter(store=LocalBlobStore(root), codec=AvroRecordCodec())


def _agent(root: Path, source: Any, clock_ms: int = NOW_MS) -> DepthRecoveryAgent:
    writer = _writer(root)
    return DepthRecoveryAgent(
        source=source,
        writer=writer,
        gap_detector=GapDetector(store=writer.store, prefix=writer.prefix, extension=writer.extension),
        symbol="btcusdt",
        snapshot_limit=100,
        clock=lambda: clock_ms,
    )


def _rest_source(handler: Any) -> BinanceRESTClient:
    return BinanceRESTClient(base_url="https://api.binance.test", retries=1, transport=httpx.MockTransport(handler))


def test_gap_triggers_one_backfill_and_then_none(tmp_path: Path) -> None:
    writer = _writer(tmp_path)
    seed_key = writer.key_for(_agent(tmp_path, _StaticSource(SNAPSHOT), NOW_MS - 10_000).run_once().record)
    assert (tmp_path / seed_key).exists()

    agent = _agent(tmp_path, _StaticSource(SNAPSHOT))
    first = agent.run_once()
    second = agent.run_once()

    assert first.gap.gap_ms == 10_000
    assert first.backfilled
    assert first.written_key == f"orderbook/year=2025/month=01/day=15/hour=12/{NOW_MS}.avro"
    assert first.last_update_id == 1027024
    assert second.gap.gap_ms == 0
    assert not second.backfilled
    assert writer.store.list("orderbook/year=2025/month=01/day=15/hour=12/") == [
        seed_key,
        first.written_key,
    ]


def test_backfilled_record_decodes_to_snapshot_metrics(tmp_path: Path) -> None:
    summary = _agent(tmp_path, _StaticSource(SNAPSHOT)).run_once()

    assert summary.gap.last_persisted_ms is None
    assert summary.written_key is not None
    decoded = AvroRecordCodec().decode((tmp_path / summary.written_key).read_bytes())
    assert decoded == summary.record
    assert decoded.timestamp_ms == NOW_MS
    assert decoded.mid_price == 100.5
    assert decoded.spread == 1.0


def test_rest_snapshot_is_requested_with_symbol_and_limit(tmp_path: Path) -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json=SNAPSHOT)

    with _rest_source(handler) as client:
        summary = _agent(tmp_path, client).run_once()

    assert summary.backfilled
    assert seen[0].url.path == "/api/v3/depth"
    assert seen[0].url.params["symbol"] == "BTCUSDT"
    assert seen[0].url.params["limit"] == "100"


def test_http_failure_is_a_source_error_and_writes_nothing(tmp_path: Path) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(400, json={"code": -1121, "msg": "Invalid symbol."})

    with _rest_source(handler) as client, pytest.raises(SourceFetchError):
        _agent(tmp_path, client).run_once()

    assert not (tmp_path / "orderbook").exists()


def test_snapshot_with_an_empty_side_is_a_source_error(tmp_path: Path) -> None:
    source = _StaticSource({"lastUpdateId": 1, "bids": [], "asks": [["101.0", "1.0"]]})

    with pytest.raises(SourceFetchError):
        _agent(tmp_path, source).run_once()

    assert not (tmp_path / "orderbook").exists()


def test_event_time_is_the_gap_reference_when_present(tmp_path: Path) -> None:
    _agent(tmp_path, _StaticSource(SNAPSHOT), NOW_MS - 3_000).run_once()
    payload = dict(SNAPSHOT, E=NOW_MS - 1_000)

    summary = _agent(tmp_path, _StaticSource(payload), NOW_MS + 60_000).run_once()

    assert summary.gap.reference_ms == NOW_MS - 1_000
    assert summary.gap.gap_ms == 2_000
    assert not summary.backfilled


def test_daemon_survives_failures_until_stopped(tmp_path: Path) -> None:
    stop = threading.Event()
    attempts: list[int] = []

    class _FlakySource:
        def fetch_depth_snapshot(self, symbol: str, limit: int = 1000) -> dict[str, Any]:
            attempts.append(1)
            if len(attempts) == 1:
                raise httpx.ConnectError("boom")
            stop.set()
            return SNAPSHOT

    _agent(tmp_path, _FlakySource()).run_daemon(poll_seconds=0, stop_event=stop)

    assert len(attempts) == 2
    assert len(LocalBlobStore(tmp_path).list("orderbook/")) == 1
