from __future__ import annotations

import json
import logging
import math
from dataclasses import dataclass
from typing import Any

from orderbook_depth_lake.core.errors import ParseError

MAX_LEVELS_PER_SIDE = 20

SKIP_PING = "ping"
SKIP_MALFORMED = "malformed"
SKIP_EMPTY_SIDE = "empty_side"

logger = logging.getLogger(__name__)

PriceLevel = tuple[float, float]


@dataclass(frozen=True, slots=True)
class DepthLevels:
    bids: tuple[PriceLevel, ...]
    asks: tuple[PriceLevel, ...]
    last_update_id: int | None = None
    event_time: int | None = None


@dataclass(frozen=True, slots=True)
class Skip:
    """A frame that is intentionally not processed. Not an error."""

    reason: str
    detail: str | None = None


def _coerce_int(value: Any) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        normalized = value.strip()
        if normalized == "":
            return None
        try:
            return int(normalized)
        except ValueError:
            return None
    return None


def _coerce_float(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str):
        value = value.strip()
        if value == "":
            return None
    elif not isinstance(value, (int, float)):
        return None
    try:
        parsed = float(value)
    except (OverflowError, ValueError):
        return None
    if not math.isfinite(parsed) or parsed < 0:
        return None
    return parsed


def _parse_depth_levels(value: Any, max_levels: int) -> tuple[PriceLevel, ...]:
    if not isinstance(value, list):
        return ()

    levels: list[PriceLevel] = []
    for level in value[:max_levels]:
        if not isinstance(level, (list, tuple)) or len(level) < 2:
            continue
        price = _coerce_float(level[0])
        quantity = _coerce_float(level[1])
        if price is None or quantity is None:
            continue
        levels.append((price, quantity))
    return tuple(levels)


def _side(payload: dict[str, Any], long_key: str, short_key: str) -> Any:
    if long_key in payload:
        return payload[long_key]
    return payload.get(short_key)


def is_ping_frame(raw_text: str) -> bool:
    return raw_text.isascii() and raw_text.isdigit()


def levels_from_payload(
    payload: dict[str, Any],
    *,
    max_levels: int = MAX_LEVELS_PER_SIDE,
) -> DepthLevels | Skip:
    """Extract up to ``max_levels`` valid levels per side from a depth payload.

    Accepts both the partial-book shape (``bids``/``asks``) and the diff shape
    (``b``/``a``). Unparseable levels are dropped one by one; the message is
    skipped only when a whole side ends up empty.
    """
    bids = _parse_depth_levels(_side(payload, "bids", "b"), max_levels)
    asks = _parse_depth_levels(_side(payload, "asks", "a"), max_levels)
    if not bids or not asks:
        logger.info(
            "Skipping depth message with an empty side",
            extra={"bid_levels": len(bids), "ask_levels": len(asks)},
        )
        return Skip(SKIP_EMPTY_SIDE, f"bids={len(bids)} asks={len(asks)}")

    last_update_id = _coerce_int(payload.get("lastUpdateId"))
    if last_update_id is None:
        last_update_id = _coerce_int(payload.get("u"))

    return DepthLevels(
        bids=bids,
        asks=asks,
        last_update_id=last_update_id,
        event_time=_coerce_int(payload.get("E")),
    )


def decode_depth_payload(raw_text: str) -> dict[str, Any]:
    try:
        payload = json.loads(raw_text)
    except json.JSONDecodeError as exc:
        raise ParseError(f"frame is not valid JSON: {exc.msg}") from exc
    except (ValueError, RecursionError) as exc:
        # oversized integer literals or nesting beyond the decoder stack
        raise ParseError(f"frame cannot be decoded: {exc.__class__.__name__}") from exc
    if not isinstance(payload, dict):
        raise ParseError(f"expected a JSON object, got {type(payload).__name__}")
    return payload


def parse_depth_frame(raw: str | bytes) -> DepthLevels | Skip:
    if isinstance(raw, bytes):
        try:
            raw_text = raw.decode("utf-8")
        except UnicodeDecodeError:
            logger.warning("Dropping non UTF-8 depth frame", extra={"size": len(raw)})
            return Skip(SKIP_MALFORMED, "non utf-8 frame")
    else:
        raw_text = raw

    if is_ping_frame(raw_text):
        return Skip(SKIP_PING)

    try:
        payload = decode_depth_payload(raw_text)
    except ParseError as exc:
        logger.warning("Dropping malformed depth frame: %s", exc, extra={"frame_prefix": raw_text[:120]})
        return Skip(SKIP_MALFORMED, str(exc))

    return levels_from_payload(payload)
