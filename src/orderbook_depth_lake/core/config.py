from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    symbol: str = Field(default="BTCUSDT")

    root_dir: Path = Field(default=Path("./data"))
    key_prefix: str = Field(default="orderbook", min_length=1)
    record_format: Literal["avro", "json"] = Field(default="avro")

    websocket_base_url: str = Field(default="wss://stream.binance.us:9443/ws")
    depth_stream_suffix: str = Field(default="depth20@100ms")
    rest_base_url: str = Field(default="https://api.binance.com")
    depth_path: str = Field(default="/api/v3/depth")
    snapshot_limit: int = Field(default=1000, ge=5, le=5000)

    gap_threshold_ms: int = Field(default=5000, ge=0)
    reconnect_initial_seconds: float = Field(default=1.0, gt=0)
    reconnect_max_seconds: float = Field(default=30.0, gt=0)
    feed_read_timeout_seconds: float = Field(default=30.0, gt=0)

    rest_timeout_seconds: int = Field(default=10, ge=1)
    rest_max_retries: int = Field(default=3, ge=1)
    recovery_poll_seconds: int = Field(default=60, ge=1)

    log_level: str = Field(default="INFO")

    model_config = SettingsConfigDict(
        env_prefix="ODL_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @property
    def depth_stream_url(self) -> str:
        stream_name = f"{self.symbol.lower()}@{self.depth_stream_suffix}"
        base = self.websocket_base_url.rstrip("/")
        if base.endswith("/ws"):
            return f"{base}/{stream_name}"
        return f"{base}/ws/{stream_name}"
