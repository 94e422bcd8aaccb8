from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Final

RECORD_NAME: Final[str] = "OrderBook"


@dataclass(frozen=True, slots=True)
class FieldSpec:
    name: str
    avro_type: Any
    description: str


_LEVEL_PAIRS: Final[dict[str, Any]] = {
    "type": "array",
    "items": {"type": "array", "items": "double"},
}

_RECORD_FIELDS: Final[tuple[FieldSpec, ...]] = (
    FieldSpec("timestamp_ms", "long", "capture time, epoch milliseconds UTC"),
    FieldSpec("bids", _LEVEL_PAIRS, "(target_price, cumulative_quantity) per depth offset"),
    FieldSpec("asks", _LEVEL_PAIRS, "(target_price, cumulative_quantity) per depth offset"),
    FieldSpec("spread", "double", "best_ask - best_bid"),
    FieldSpec("mid_price", "double", "(best_bid + best_ask) / 2"),
    FieldSpec("imbalance_ratio", "double", "top-5 volume imbalance in [-1, 1]"),
)


def record_fields() -> tuple[FieldSpec, ...]:
    return _RECORD_FIELDS


def record_field_names() -> list[str]:
    return [spec.name for spec in _RECORD_FIELDS]


def avro_schema() -> dict[str, Any]:
    return {
        "type": "record",
        "name": RECORD_NAME,
        "fields": [{"name": spec.name, "type": spec.avro_type} for spec in _RECORD_FIELDS],
    }
