from __future__ import annotations

from datetime import datetime

from orderbook_depth_lake.core.time_utils import floor_to_hour, ms_to_utc


def hour_prefix(prefix: str, hour_start: datetime) -> str:
    hour = floor_to_hour(hour_start)
    return (
        f"{prefix.strip('/')}"
        f"/year={hour:%Y}"
        f"/month={hour:%m}"
        f"/day={hour:%d}"
        f"/hour={hour:%H}/"
    )


def partition_key(prefix: str, timestamp_ms: int, extension: str) -> str:
    return f"{hour_prefix(prefix, ms_to_utc(timestamp_ms))}{timestamp_ms}.{extension}"


def timestamp_from_key(key: str, extension: str) -> int | None:
    """Return the epoch-ms file stem of ``key``, or None for foreign files."""
    file_name = key.rsplit("/", maxsplit=1)[-1]
    stem, dot, suffix = file_name.rpartition(".")
    if not dot or suffix != extension:
        return None
    if not (stem.isascii() and stem.isdigit()):
        return None
    return int(stem)
