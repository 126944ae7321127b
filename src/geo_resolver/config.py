"""
Configuration dataclasses for the geo resolver.

All durations are expressed in seconds.
"""

from dataclasses import dataclass, field
from pathlib import Path


DEFAULT_LOOKUP_FIELDS = (
    "status",
    "message",
    "country",
    "regionName",
    "region",
    "city",
    "lat",
    "lon",
    "isp",
    "org",
)


@dataclass
class RateLimitConfig:
    """Sliding-window admission limit for the upstream lookup service."""

    max_requests: int = 45
    window_seconds: float = 60.0
    jitter_seconds: float = 0.1


@dataclass
class RetryConfig:
    """Retry behavior for retryable lookup failures."""

    max_attempts: int = 3
    initial_delay_seconds: float = 1.0


@dataclass
class FetcherConfig:
    """Upstream lookup service settings."""

    api_url: str = "http://ip-api.com/json/"
    timeout_seconds: float = 10.0
    fields: tuple[str, ...] = DEFAULT_LOOKUP_FIELDS


@dataclass
class QueueConfig:
    """Resolution queue settings."""

    max_concurrent_lookups: int = 45
    # Settled domains remembered for domain_state(); oldest are forgotten first
    settled_history_size: int = 1024


@dataclass
class CacheConfig:
    """Persistent metadata cache settings."""

    file_path: Path
    hmac_secret: str


@dataclass
class LoggingConfig:
    """Logging configuration."""

    level: str = "info"
    output_format: str = "text"  # 'json', 'text', 'both'


@dataclass
class ResolverConfig:
    """Main configuration combining all sub-configurations."""

    cache: CacheConfig
    rate_limit: RateLimitConfig = field(default_factory=RateLimitConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)
    fetcher: FetcherConfig = field(default_factory=FetcherConfig)
    queue: QueueConfig = field(default_factory=QueueConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
