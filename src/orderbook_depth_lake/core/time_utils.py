from __future__ import annotations

from datetime import UTC, datetime, timedelta

HOUR_MS = 3_600_000
_EPOCH = datetime(1970, 1, 1, tzinfo=UTC)


def utc_now() -> datetime:
    return datetime.now(tz=UTC)


def now_ms() -> int:
    return int(utc_now().timestamp() * 1000)


def ms_to_utc(value_ms: int) -> datetime:
    return _EPOCH + timedelta(milliseconds=value_ms)


def floor_to_hour(value: datetime) -> datetime:
    return value.astimezone(UTC).replace(minute=0, second=0, microsecond=0)
