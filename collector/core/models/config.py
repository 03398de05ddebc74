"""
Configuration models for the aggregation and scoring engine.

All timing and size knobs of the collector core live here so the engine
never hard-codes them.
"""

import os
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class CountMode(str, Enum):
    """How a burst's count behaves once it has been flushed."""
    ACCUMULATE = "accumulate"
    RESET = "reset"


class CollectorConfig(BaseModel):
    """Configuration for the aggregation store, flush scheduler and scorer."""

    model_config = ConfigDict(validate_assignment=True)

    # Aggregation windows
    aggregation_window_ms: int = Field(default=3500, ge=0, description="Quiet period before a burst is flushed")
    hold_ms: int = Field(default=12000, ge=0, description="Post-flush retention before the key is evicted")
    count_mode: CountMode = Field(default=CountMode.ACCUMULATE, description="Count behaviour across flushes")

    # Delivery
    debug_max_chars: int = Field(default=1400, ge=0, description="Max chars of the diagnostic JSON payload")
    display_timezone: str = Field(default="America/Los_Angeles", description="Timezone used in formatted messages")

    # Reverse DNS
    rdns_timeout_ms: int = Field(default=350, ge=0, description="Reverse-DNS lookup deadline")
    rdns_workers: int = Field(default=4, ge=1, description="Threads available for reverse-DNS lookups")
    dns_server: Optional[str] = Field(default=None, description="Nameserver for PTR lookups (system default if unset)")

    @property
    def aggregation_window_sec(self) -> float:
        return self.aggregation_window_ms / 1000.0

    @property
    def hold_sec(self) -> float:
        return self.hold_ms / 1000.0

    @property
    def rdns_timeout_sec(self) -> float:
        return self.rdns_timeout_ms / 1000.0

    @classmethod
    def from_env(cls) -> "CollectorConfig":
        """Load configuration from environment variables."""
        config = cls()

        if os.getenv("AGG_WINDOW_MS"):
            config.aggregation_window_ms = int(os.getenv("AGG_WINDOW_MS"))
        if os.getenv("HOLD_MS"):
            config.hold_ms = int(os.getenv("HOLD_MS"))
        if os.getenv("DEBUG_MAX_CHARS"):
            config.debug_max_chars = int(os.getenv("DEBUG_MAX_CHARS"))
        if os.getenv("RDNS_TIMEOUT_MS"):
            config.rdns_timeout_ms = int(os.getenv("RDNS_TIMEOUT_MS"))
        if os.getenv("COUNT_MODE"):
            config.count_mode = CountMode(os.getenv("COUNT_MODE").lower())
        if os.getenv("DISPLAY_TIMEZONE"):
            config.display_timezone = os.getenv("DISPLAY_TIMEZONE")
        if os.getenv("DNS_SERVER"):
            config.dns_server = os.getenv("DNS_SERVER")

        return config
