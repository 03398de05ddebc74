"""
Event data models for the visitor beacon collector.

An Event is built once per incoming beacon request and never mutated.
A Burst is the mutable aggregation record that merges repeated Events
sharing one identity key.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

KEY_SEPARATOR = "|"
PLACEHOLDER = "-"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class IdentitySeed(BaseModel):
    """Client/network attributes used to group likely-duplicate events."""

    model_config = ConfigDict(frozen=True)

    ip: str = "unknown"
    device: str = ""
    browser: str = ""
    path: str = "/"
    fp_hash: Optional[str] = None
    click_id: Optional[str] = None

    def key(self) -> str:
        """Deterministic identity key; absent components become a placeholder."""
        parts = [
            self.ip or PLACEHOLDER,
            self.device or PLACEHOLDER,
            self.browser or PLACEHOLDER,
            self.path or "/",
            self.fp_hash or PLACEHOLDER,
            self.click_id or PLACEHOLDER,
        ]
        return KEY_SEPARATOR.join(str(p) for p in parts)


class GeoInfo(BaseModel):
    """Geo/ASN facts supplied by upstream infrastructure headers."""

    model_config = ConfigDict(frozen=True)

    city: str = ""
    region: str = ""
    country_code: str = ""
    asn: str = ""
    latitude: str = ""
    longitude: str = ""


class Event(BaseModel):
    """A single decoded beacon request."""

    model_config = ConfigDict(frozen=True)

    identity: IdentitySeed = Field(default_factory=IdentitySeed)
    timestamp: datetime = Field(default_factory=_utcnow)
    geo: GeoInfo = Field(default_factory=GeoInfo)
    client_signals: Dict[str, Any] = Field(default_factory=dict)
    user_agent: str = ""

    # Diagnostics only
    raw_headers: Dict[str, str] = Field(default_factory=dict)
    raw_body: Dict[str, Any] = Field(default_factory=dict)

    @property
    def key(self) -> str:
        return self.identity.key()

    @property
    def language(self) -> str:
        return str(self.client_signals.get("language") or "")

    @property
    def timezone_name(self) -> str:
        return str(self.client_signals.get("timezone") or "")


class ScoreTier(str, Enum):
    """Coarse proxy/VPN likelihood bucket."""
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"

    @classmethod
    def for_score(cls, score: int) -> "ScoreTier":
        if score >= 70:
            return cls.HIGH
        if score >= 35:
            return cls.MEDIUM
        return cls.LOW


class ScoreResult(BaseModel):
    """Proxy/VPN likelihood score with its contributing reasons."""

    model_config = ConfigDict(frozen=True)

    score: int = Field(default=0, ge=0, le=100)
    tier: ScoreTier = ScoreTier.LOW
    reasons: List[str] = Field(default_factory=list)
    reverse_dns_hostname: str = ""
    asn: str = ""


class BurstState(str, Enum):
    """Flush lifecycle of a burst."""
    ARMED = "armed"
    FLUSHING = "flushing"
    HELD = "held"


@dataclass
class Burst:
    """Mutable aggregation record for one identity key."""
    key: str
    latest_event: Event
    latest_score: ScoreResult
    first_seen_at: datetime
    last_seen_at: datetime
    count: int = 1
    state: BurstState = BurstState.ARMED
    generation: int = 0
    flush_count: int = 0

    def snapshot(self) -> "BurstSnapshot":
        return BurstSnapshot(
            key=self.key,
            count=self.count,
            first_seen_at=self.first_seen_at,
            last_seen_at=self.last_seen_at,
            latest_event=self.latest_event,
            latest_score=self.latest_score,
            flush_count=self.flush_count,
        )


@dataclass(frozen=True)
class BurstSnapshot:
    """Read-only copy of a burst handed to the delivery path."""
    key: str
    count: int
    first_seen_at: datetime
    last_seen_at: datetime
    latest_event: Event
    latest_score: ScoreResult
    flush_count: int = 0
