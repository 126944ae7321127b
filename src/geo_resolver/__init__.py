"""
Geo Resolver - rate-limited geolocation lookups for tracking domains.

This package resolves geographic metadata for third-party tracking domains
exactly once per cache lifetime, coalescing concurrent requests, honoring a
sliding-window upstream rate limit, and retrying transient failures with
exponential backoff before falling back to a cached "Unknown" record.
"""

__version__ = "0.1.0"

from geo_resolver.exceptions import (
    GeoResolverError,
    ValidationError,
    CacheError,
    TamperingError,
    FetchError,
)
from geo_resolver.enums import (
    LogLevel,
    FetchOutcome,
    FailureReason,
    DomainState,
    HostnameErrorCode,
)
from geo_resolver.config import (
    RateLimitConfig,
    RetryConfig,
    FetcherConfig,
    QueueConfig,
    CacheConfig,
    LoggingConfig,
    ResolverConfig,
)
from geo_resolver.models import (
    LookupRequest,
    GeoMetadata,
    CachedMetadata,
    ResolvedMetadata,
    QueueStats,
    PendingQueueEntry,
)
from geo_resolver.audit_logger import (
    AuditLogger,
    LogEntry,
)
from geo_resolver.domain_validator import (
    DomainValidator,
    HostnameValidationResult,
    HostnameValidationError,
)
from geo_resolver.metadata_cache import (
    MetadataCache,
    InMemoryMetadataCache,
    JSONFileMetadataCache,
)
from geo_resolver.rate_limiter import RateLimiter
from geo_resolver.retry_policy import (
    RetryPolicy,
    delay_for,
    is_exhausted,
)
from geo_resolver.metadata_fetcher import (
    MetadataFetcher,
    FetchResult,
)
from geo_resolver.resolution_queue import ResolutionQueue
from geo_resolver.cli import (
    main as cli_main,
    create_parser,
    create_default_config,
    load_config_from_file,
    save_config_to_file,
    build_queue,
)

__all__ = [
    # Exceptions
    "GeoResolverError",
    "ValidationError",
    "CacheError",
    "TamperingError",
    "FetchError",
    # Enums
    "LogLevel",
    "FetchOutcome",
    "FailureReason",
    "DomainState",
    "HostnameErrorCode",
    # Configuration
    "RateLimitConfig",
    "RetryConfig",
    "FetcherConfig",
    "QueueConfig",
    "CacheConfig",
    "LoggingConfig",
    "ResolverConfig",
    # Models
    "LookupRequest",
    "GeoMetadata",
    "CachedMetadata",
    "ResolvedMetadata",
    "QueueStats",
    "PendingQueueEntry",
    # Logging
    "AuditLogger",
    "LogEntry",
    # Hostname validation
    "DomainValidator",
    "HostnameValidationResult",
    "HostnameValidationError",
    # Cache
    "MetadataCache",
    "InMemoryMetadataCache",
    "JSONFileMetadataCache",
    # Rate limiting and retries
    "RateLimiter",
    "RetryPolicy",
    "delay_for",
    "is_exhausted",
    # Fetcher
    "MetadataFetcher",
    "FetchResult",
    # Queue
    "ResolutionQueue",
    # CLI
    "cli_main",
    "create_parser",
    "create_default_config",
    "load_config_from_file",
    "save_config_to_file",
    "build_queue",
]
