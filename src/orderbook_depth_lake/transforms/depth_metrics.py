from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from enum import StrEnum
from typing import Any, Final

from orderbook_depth_lake.core.schema import record_field_names
from orderbook_depth_lake.sources.messages import DepthLevels, PriceLevel

DEPTH_OFFSETS: Final[tuple[float, ...]] = (0.0001, 0.0005, 0.001, 0.005, 0.01)
IMBALANCE_LEVELS: Final[int] = 5

DepthBucket = tuple[float, float]


class BookSide(StrEnum):
    BID = "bid"
    ASK = "ask"


@dataclass(frozen=True, slots=True)
class LiquidityMetrics:
    mid_price: float
    spread: float
    imbalance_ratio: float
    bid_volume_top5: float
    ask_volume_top5: float


@dataclass(frozen=True, slots=True)
class SnapshotRecord:
    timestamp_ms: int
    bids: tuple[DepthBucket, ...]
    asks: tuple[DepthBucket, ...]
    spread: float
    mid_price: float
    imbalance_ratio: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp_ms": self.timestamp_ms,
            "bids": [[price, quantity] for price, quantity in self.bids],
            "asks": [[price, quantity] for price, quantity in self.asks],
            "spread": self.spread,
            "mid_price": self.mid_price,
            "imbalance_ratio": self.imbalance_ratio,
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> SnapshotRecord:
        missing = [name for name in record_field_names() if name not in payload]
        if missing:
            raise ValueError(f"snapshot record is missing fields: {', '.join(missing)}")
        return cls(
            timestamp_ms=int(payload["timestamp_ms"]),
            bids=tuple((float(price), float(quantity)) for price, quantity in payload["bids"]),
            asks=tuple((float(price), float(quantity)) for price, quantity in payload["asks"]),
            spread=float(payload["spread"]),
            mid_price=float(payload["mid_price"]),
            imbalance_ratio=float(payload["imbalance_ratio"]),
        )


def _top_volume(levels: Sequence[PriceLevel], count: int = IMBALANCE_LEVELS) -> float:
    return sum(quantity for _, quantity in levels[:count])


def compute_metrics(bids: Sequence[PriceLevel], asks: Sequence[PriceLevel]) -> LiquidityMetrics:
    if not bids or not asks:
        raise ValueError("compute_metrics requires at least one bid and one ask level")

    best_bid = bids[0][0]
    best_ask = asks[0][0]
    bid_volume = _top_volume(bids)
    ask_volume = _top_volume(asks)
    denominator = bid_volume + ask_volume
    imbalance = (bid_volume - ask_volume) / denominator if denominator != 0.0 else 0.0

    return LiquidityMetrics(
        mid_price=(best_bid + best_ask) / 2.0,
        spread=best_ask - best_bid,
        imbalance_ratio=imbalance,
        bid_volume_top5=bid_volume,
        ask_volume_top5=ask_volume,
    )


def normalize(
    levels: Sequence[PriceLevel],
    mid: float,
    side: BookSide,
    offsets: Sequence[float] = DEPTH_OFFSETS,
) -> tuple[DepthBucket, ...]:
    """Bucket one side of the book by relative distance from ``mid``.

    Every offset rescans all levels, so the quantity for a wider offset is
    never smaller than for a tighter one. A bucket with no qualifying level
    is ``0.0``.
    """
    buckets: list[DepthBucket] = []
    for offset in offsets:
        if side is BookSide.ASK:
            target = mid * (1.0 + offset)
            cumulative = sum(quantity for price, quantity in levels if price <= target)
        else:
            target = mid * (1.0 - offset)
            cumulative = sum(quantity for price, quantity in levels if price >= target)
        buckets.append((target, float(cumulative)))
    return tuple(buckets)


def build_snapshot_record(
    metrics: LiquidityMetrics,
    bids: Sequence[PriceLevel],
    asks: Sequence[PriceLevel],
    timestamp_ms: int,
) -> SnapshotRecord:
    return SnapshotRecord(
        timestamp_ms=int(timestamp_ms),
        bids=normalize(bids, metrics.mid_price, BookSide.BID),
        asks=normalize(asks, metrics.mid_price, BookSide.ASK),
        spread=metrics.spread,
        mid_price=metrics.mid_price,
        imbalance_ratio=metrics.imbalance_ratio,
    )


def summarize_depth(levels: DepthLevels, timestamp_ms: int) -> SnapshotRecord:
    metrics = compute_metrics(levels.bids, levels.asks)
    return build_snapshot_record(metrics, levels.bids, levels.asks, timestamp_ms)
