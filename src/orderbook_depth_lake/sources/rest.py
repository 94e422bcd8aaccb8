from __future__ import annotations

import logging
import random
import time
from typing import Any

import httpx

logger = logging.getLogger(__name__)

_RETRYABLE_STATUS = frozenset({429, 500, 502, 503, 504})
_MAX_RETRY_DELAY_SECONDS = 30.0


def _retry_after_seconds(response: httpx.Response) -> float | None:
    # Binance sends whole seconds on 429
    raw_value = response.headers.get("Retry-After", "").strip()
    try:
        return min(_MAX_RETRY_DELAY_SECONDS, max(0.0, float(raw_value)))
    except ValueError:
        return None


class BinanceRESTClient:
    """Synchronous client for the spot depth snapshot endpoint.

    Rate limits (429), gateway errors and transport failures are retried up
    to ``retries`` attempts in total; any other error status is raised at once.
    """

    def __init__(
        self,
        base_url: str,
        timeout_seconds: float = 10,
        retries: int = 3,
        *,
        depth_path: str = "/api/v3/depth",
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._client = httpx.Client(
            base_url=base_url.rstrip("/"),
            timeout=timeout_seconds,
            transport=transport,
        )
        self._depth_path = depth_path
        self._retries = max(1, retries)

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> BinanceRESTClient:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _get(self, path: str, params: dict[str, Any]) -> Any:
        attempt = 0
        while True:
            attempt += 1
            out_of_attempts = attempt >= self._retries
            try:
                response = self._client.get(path, params=params)
            except httpx.TransportError as exc:
                if out_of_attempts:
                    raise
                self._pause(attempt, path, reason=exc.__class__.__name__)
                continue

            if response.status_code in _RETRYABLE_STATUS and not out_of_attempts:
                self._pause(
                    attempt,
                    path,
                    reason=f"HTTP {response.status_code}",
                    retry_after_seconds=_retry_after_seconds(response),
                )
                continue

            response.raise_for_status()
            return response.json()

    def _pause(
        self,
        attempt: int,
        path: str,
        *,
        reason: str,
        retry_after_seconds: float | None = None,
    ) -> None:
        if retry_after_seconds is None:
            delay = min(_MAX_RETRY_DELAY_SECONDS, 2.0 ** (attempt - 1))
        else:
            delay = retry_after_seconds
        delay += random.uniform(0.0, 0.3)  # noqa: S311
        logger.warning(
            "Retrying depth snapshot request",
            extra={
                "path": path,
                "attempt": attempt,
                "max_attempts": self._retries,
                "reason": reason,
                "sleep_seconds": round(delay, 3),
            },
        )
        time.sleep(delay)

    def fetch_depth_snapshot(self, symbol: str, limit: int = 1000) -> dict[str, Any]:
        """Fetch a point-in-time order book.

        Levels are returned as delivered (string pairs) so the caller can run
        them through the same validation as stream frames.
        """
        payload = self._get(self._depth_path, {"symbol": symbol.upper(), "limit": limit})
        if not isinstance(payload, dict):
            raise ValueError(f"depth snapshot must be a JSON object, got {type(payload).__name__}")
        return payload
