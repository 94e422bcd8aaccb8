from __future__ import annotations

import json

import pytest

from orderbook_depth_lake.sources.messages import (
    SKIP_EMPTY_SIDE,
    SKIP_MALFORMED,
    SKIP_PING,
    DepthLevels,
    Skip,
    levels_from_payload,
    parse_depth_frame,
)


def _frame(**payload: object) -> str:
    return json.dumps(payload)


@pytest.mark.parametrize("raw", ["1", "0000", "1736942400000", "0" * 64, b"1736942400000"])
def test_digit_only_frames_are_pings(raw: str | bytes) -> None:
    assert parse_depth_frame(raw) == Skip(SKIP_PING)


def test_partial_book_frame_is_parsed() -> None:
    parsed = parse_depth_frame(
        _frame(
            lastUpdateId=160,
            bids=[["100.0", "1.0"], ["99.0", "2.0"]],
            asks=[["101.0", "1.0"], ["102.0", "2.0"]],
        )
    )

    assert isinstance(parsed, DepthLevels)
    assert parsed.bids == ((100.0, 1.0), (99.0, 2.0))
    assert parsed.asks == ((101.0, 1.0), (102.0, 2.0))
    assert parsed.last_update_id == 160
    assert parsed.event_time is None


def test_diff_shaped_frame_uses_short_keys() -> None:
    parsed = parse_depth_frame(
        _frame(e="depthUpdate", E=1_736_942_400_123, u=42, b=[["50.5", "3"]], a=[["50.6", "4"]])
    )

    assert isinstance(parsed, DepthLevels)
    assert parsed.bids == ((50.5, 3.0),)
    assert parsed.asks == ((50.6, 4.0),)
    assert parsed.last_update_id == 42
    assert parsed.event_time == 1_736_942_400_123


def test_only_first_twenty_levels_are_kept() -> None:
    bids = [[str(1000 - i), "1"] for i in range(30)]
    asks = [[str(1001 + i), "1"] for i in range(30)]

    parsed = parse_depth_frame(_frame(bids=bids, asks=asks))

    assert isinstance(parsed, DepthLevels)
    assert len(parsed.bids) == 20
    assert len(parsed.asks) == 20
    assert parsed.bids[-1] == (981.0, 1.0)


def test_short_and_unparseable_levels_are_dropped_individually() -> None:
    parsed = parse_depth_frame(
        _frame(
            bids=[["100.0"], ["abc", "1.0"], ["99.0", "2.0"], ["98.0", "nan"], ["97.0", "-1"]],
            asks=[["101.0", "1.0"], [], ["102.0", ""]],
        )
    )

    assert isinstance(parsed, DepthLevels)
    assert parsed.bids == ((99.0, 2.0),)
    assert parsed.asks == ((101.0, 1.0),)


def test_zero_quantity_levels_are_kept() -> None:
    parsed = parse_depth_frame(_frame(bids=[["100.0", "0.0"]], asks=[["101.0", "0.00000000"]]))

    assert isinstance(parsed, DepthLevels)
    assert parsed.bids == ((100.0, 0.0),)
    assert parsed.asks == ((101.0, 0.0),)


def test_side_emptied_by_dropped_levels_is_skipped() -> None:
    parsed = parse_depth_frame(_frame(bids=[["x", "1"]], asks=[["101.0", "1.0"]]))

    assert isinstance(parsed, Skip)
    assert parsed.reason == SKIP_EMPTY_SIDE


@pytest.mark.parametrize(
    "raw",
    [
        "",
        "not json {",
        "[1, 2, 3]",
        '"100"',
        b"\xff\xfe",
        "[" * 100_000,
        '{"bids": [[1' + "0" * 5_000 + ', 1]], "asks": [["101.0", "1.0"]]}',
    ],
)
def test_malformed_frames_are_skipped(raw: str | bytes) -> None:
    parsed = parse_depth_frame(raw)

    assert isinstance(parsed, Skip)
    assert parsed.reason == SKIP_MALFORMED


def test_missing_sides_are_skipped() -> None:
    parsed = parse_depth_frame(_frame(result=None, id=1))

    assert isinstance(parsed, Skip)
    assert parsed.reason == SKIP_EMPTY_SIDE


def test_levels_from_payload_accepts_rest_snapshot_shape() -> None:
    parsed = levels_from_payload(
        {
            "lastUpdateId": 1027024,
            "bids": [["4.00000000", "431.00000000"]],
            "asks": [["4.00000200", "12.00000000"]],
        }
    )

    assert isinstance(parsed, DepthLevels)
    assert parsed.last_update_id == 1027024
    assert parsed.bids == ((4.0, 431.0),)
    assert parsed.asks == ((4.000002, 12.0),)


def test_prices_too_large_for_a_float_are_dropped() -> None:
    parsed = parse_depth_frame(
        '{"bids": [[1' + "0" * 400 + ', 1], ["99.0", "2.0"]], "asks": [["101.0", "1e400"], ["102.0", 3]]}'
    )

    assert isinstance(parsed, DepthLevels)
    assert parsed.bids == ((99.0, 2.0),)
    assert parsed.asks == ((102.0, 3.0),)
