from __future__ import annotations

import asyncio
import signal

import typer
from rich.console import Console

from orderbook_depth_lake.core.config import Settings
from orderbook_depth_lake.core.errors import SourceFetchError, StoreError
from orderbook_depth_lake.core.logging import configure_logging
from orderbook_depth_lake.core.time_utils import ms_to_utc, now_ms
from orderbook_depth_lake.pipeline.gap import GapDetector
from orderbook_depth_lake.pipeline.ingest import DepthIngestLoop, IngestSummary
from orderbook_depth_lake.pipeline.recovery import DepthRecoveryAgent
from orderbook_depth_lake.sources.rest import BinanceRESTClient
from orderbook_depth_lake.sources.websocket import BinanceDepthFeed, ReconnectPolicy
from orderbook_depth_lake.writer.blob_store import LocalBlobStore
from orderbook_depth_lake.writer.codec import codec_for_format
from orderbook_depth_lake.writer.snapshot_writer import SnapshotWriter

app = typer.Typer(help="Order book depth lake: live capture and gap backfill")
console = Console()


def _build_writer(settings: Settings) -> SnapshotWriter:
    return SnapshotWriter(
        store=LocalBlobStore(settings.root_dir),
        codec=codec_for_format(settings.record_format),
        prefix=settings.key_prefix,
    )


def _build_gap_detector(settings: Settings, writer: SnapshotWriter) -> GapDetector:
    return GapDetector(
        store=writer.store,
        prefix=writer.prefix,
        extension=writer.extension,
        threshold_ms=settings.gap_threshold_ms,
    )


def _build_rest_client(settings: Settings) -> BinanceRESTClient:
    return BinanceRESTClient(
        base_url=settings.rest_base_url,
        timeout_seconds=settings.rest_timeout_seconds,
        retries=settings.rest_max_retries,
        depth_path=settings.depth_path,
    )


def _build_recovery_agent(settings: Settings, rest_client: BinanceRESTClient) -> DepthRecoveryAgent:
    writer = _build_writer(settings)
    return DepthRecoveryAgent(
        source=rest_client,
        writer=writer,
        gap_detector=_build_gap_detector(settings, writer),
        symbol=settings.symbol,
        snapshot_limit=settings.snapshot_limit,
    )


async def _run_ingest(settings: Settings, max_records: int | None) -> IngestSummary:
    policy = ReconnectPolicy(
        initial_backoff_seconds=settings.reconnect_initial_seconds,
        max_backoff_seconds=settings.reconnect_max_seconds,
    )
    feed = BinanceDepthFeed(
        url=settings.depth_stream_url,
        policy=policy,
        read_timeout_seconds=settings.feed_read_timeout_seconds,
    )
    loop = DepthIngestLoop(feed=feed, writer=_build_writer(settings))

    task = asyncio.current_task()
    event_loop = asyncio.get_running_loop()
    if task is not None:
        # cancelling unwinds the feed generator, which closes the socket
        event_loop.add_signal_handler(signal.SIGTERM, task.cancel)
    try:
        return await loop.run(max_records=max_records)
    finally:
        event_loop.remove_signal_handler(signal.SIGTERM)


@app.command("ingest")
def ingest(
    max_records: int | None = typer.Option(
        default=None,
        min=1,
        help="Stop after persisting this many records (default: run until interrupted)",
    ),
) -> None:
    """Stream the depth feed and persist one snapshot per update."""
    settings = Settings()
    configure_logging(settings.log_level)
    console.print(f"Streaming [bold]{settings.depth_stream_url}[/bold] into {settings.root_dir}")

    try:
        summary = asyncio.run(_run_ingest(settings, max_records))
    except (KeyboardInterrupt, asyncio.CancelledError):
        console.print("Ingest stopped")
        return

    console.print(
        "Ingest complete: "
        f"frames={summary.frames_seen}, "
        f"written={summary.records_written}, "
        f"skipped={summary.frames_skipped}, "
        f"store_failures={summary.store_failures}, "
        f"last_key={summary.last_key}"
    )


@app.command("recover")
def recover() -> None:
    """Backfill once from a REST snapshot if the live history has a gap."""
    settings = Settings()
    configure_logging(settings.log_level)

    rest_client = _build_rest_client(settings)
    try:
        summary = _build_recovery_agent(settings, rest_client).run_once()
    except (SourceFetchError, StoreError) as exc:
        console.print(f"[red]Recovery failed:[/red] {exc}")
        raise typer.Exit(code=1) from exc
    finally:
        rest_client.close()

    if summary.backfilled:
        console.print(f"[green]Backfilled[/green] gap_ms={summary.gap.gap_ms} key={summary.written_key}")
    else:
        console.print(f"No gap (gap_ms={summary.gap.gap_ms}); nothing written")


@app.command("recover-daemon")
def recover_daemon(
    poll_seconds: int | None = typer.Option(
        default=None,
        min=1,
        help="Seconds between recovery checks (default: ODL_RECOVERY_POLL_SECONDS)",
    ),
) -> None:
    settings = Settings()
    configure_logging(settings.log_level)

    rest_client = _build_rest_client(settings)
    try:
        _build_recovery_agent(settings, rest_client).run_daemon(
            poll_seconds=poll_seconds or settings.recovery_poll_seconds
        )
    except KeyboardInterrupt:
        console.print("Recovery daemon stopped")
    finally:
        rest_client.close()


@app.command("show-last")
def show_last() -> None:
    """Print the latest persisted snapshot and whether a gap is open."""
    settings = Settings()
    configure_logging(settings.log_level)

    writer = _build_writer(settings)
    reference_ms = now_ms()
    check = _build_gap_detector(settings, writer).check(reference_ms)
    if check.last_persisted_ms is None:
        console.print("No snapshot persisted in the last hour")
    else:
        console.print(
            f"Last snapshot: [bold]{ms_to_utc(check.last_persisted_ms).isoformat()}[/bold] "
            f"({check.last_persisted_ms}), age_ms={check.gap_ms}"
        )
    console.print(f"Gap open: {check.gap_detected} (threshold_ms={settings.gap_threshold_ms})")


if __name__ == "__main__":
    app()
