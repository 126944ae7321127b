"""
Data models for the geo resolver.

This module defines the lookup request, the geographic metadata value, the
cached record wrapping it, the value handed back to callers, and the
in-memory bookkeeping the resolution queue keeps per in-flight domain.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Optional

from .enums import DomainState


UNKNOWN = "Unknown"


@dataclass
class LookupRequest:
    """A request to resolve metadata for one domain."""

    domain: str
    created_at: str  # ISO-8601 UTC


@dataclass(frozen=True)
class GeoMetadata:
    """Geographic metadata for a tracking domain."""

    country: str = UNKNOWN
    region: str = UNKNOWN
    city: str = UNKNOWN
    lat: Optional[float] = None
    lon: Optional[float] = None
    isp: Optional[str] = None
    org: Optional[str] = None

    @classmethod
    def unknown(cls) -> "GeoMetadata":
        """The sticky fallback used when a lookup cannot succeed."""
        return cls()

    @property
    def is_unknown(self) -> bool:
        return self == GeoMetadata.unknown()

    def to_dict(self) -> dict:
        return {
            "country": self.country,
            "region": self.region,
            "city": self.city,
            "lat": self.lat,
            "lon": self.lon,
            "isp": self.isp,
            "org": self.org,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "GeoMetadata":
        """Build metadata from a stored record, filling gaps with "Unknown"."""
        return cls(
            country=data.get("country") or UNKNOWN,
            region=data.get("region") or UNKNOWN,
            city=data.get("city") or UNKNOWN,
            lat=data.get("lat"),
            lon=data.get("lon"),
            isp=data.get("isp"),
            org=data.get("org"),
        )


@dataclass
class CachedMetadata:
    """A cache record: one per domain, replaced as a whole."""

    domain: str
    metadata: GeoMetadata
    cached_at: str

    def to_dict(self) -> dict:
        return {
            "domain": self.domain,
            "metadata": self.metadata.to_dict(),
            "cached_at": self.cached_at,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "CachedMetadata":
        return cls(
            domain=data["domain"],
            metadata=GeoMetadata.from_dict(data.get("metadata", {})),
            cached_at=data.get("cached_at", ""),
        )


@dataclass(frozen=True)
class ResolvedMetadata:
    """The value delivered to every caller of ``enqueue``."""

    domain: str
    metadata: GeoMetadata
    from_cache: bool

    def to_dict(self) -> dict:
        return {
            "domain": self.domain,
            **self.metadata.to_dict(),
            "from_cache": self.from_cache,
        }


@dataclass
class QueueStats:
    """Read-only snapshot of a resolution queue."""

    pending_count: int
    requests_in_last_window: int
    remaining_permits: int
    can_admit_now: bool


@dataclass
class PendingQueueEntry:
    """Callers waiting on the single in-flight lookup for one domain."""

    request: LookupRequest
    waiters: list[asyncio.Future] = field(default_factory=list)
    state: DomainState = DomainState.UNSEEN
    attempts: int = 0
