"""Session configuration."""

from __future__ import annotations

from typing import Literal
from urllib.parse import urlsplit

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

ENV_PREFIX = "ESPLINK_"

WS_PATH = "/ws"


class SessionConfig(BaseSettings):
    """Connection, timing, and device-shape settings for one session.

    Timing values are in milliseconds. The defaults match the stock
    controller firmware: four motors with targets of 0-20 mm, a fixed
    3 s reconnect delay, and a 15 s staleness window checked every 5 s.

    Every field can be set from an ``ESPLINK_<FIELD>`` environment
    variable (``ESPLINK_MOTOR_COUNT=6``); keyword arguments win over the
    environment, and empty variables are ignored.
    """

    model_config = SettingsConfigDict(
        env_prefix=ENV_PREFIX,
        env_ignore_empty=True,
        case_sensitive=False,
        extra="ignore",
        frozen=True,
    )

    host: str = "192.168.4.1"
    port: int | None = Field(default=None, ge=1, le=65535)
    secure: bool = False
    path: str = WS_PATH

    motor_count: int = Field(default=4, ge=1, le=32)
    target_min: int = 0
    target_max: int = 20

    reconnect_delay_ms: int = Field(default=3000, ge=0)
    reconnect_backoff: Literal["fixed", "exponential"] = "fixed"
    max_reconnect_delay_ms: int = Field(default=30000, ge=0)

    liveness_interval_ms: int = Field(default=5000, gt=0)
    stale_after_ms: int = Field(default=15000, ge=0)
    force_reconnect_after_ms: int | None = Field(default=None, gt=0)

    notify_timeout_ms: int = Field(default=3000, ge=0)

    @model_validator(mode="after")
    def _check_ranges(self) -> SessionConfig:
        if self.target_min > self.target_max:
            raise ValueError(
                f"target_min ({self.target_min}) exceeds target_max ({self.target_max})"
            )
        if not self.path.startswith("/"):
            raise ValueError(f"path must start with '/': {self.path!r}")
        return self

    @property
    def url(self) -> str:
        """WebSocket endpoint, scheme chosen by ``secure``."""
        scheme = "wss" if self.secure else "ws"
        netloc = self.host if self.port is None else f"{self.host}:{self.port}"
        return f"{scheme}://{netloc}{self.path}"

    @classmethod
    def for_page(cls, page_url: str, **overrides: object) -> SessionConfig:
        """Build a config whose endpoint mirrors a page URL.

        ``https`` pages get ``wss``; anything else gets ``ws``. Only the
        hostname is carried over, like the device's own web page does.
        """
        parts = urlsplit(page_url)
        if not parts.hostname:
            raise ValueError(f"Page URL has no hostname: {page_url!r}")
        values: dict[str, object] = {
            "host": parts.hostname,
            "secure": parts.scheme == "https",
        }
        values.update(overrides)
        return cls(**values)
