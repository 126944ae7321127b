"""
Enumeration types for the geo resolver.
"""

from enum import Enum


class LogLevel(Enum):
    """Logging severity levels."""

    DEBUG = "debug"
    INFO = "info"
    WARN = "warn"
    ERROR = "error"


class FetchOutcome(Enum):
    """Classification of a single upstream lookup attempt."""

    SUCCESS = "success"
    RETRYABLE = "retryable"
    PERMANENT = "permanent"


class FailureReason(Enum):
    """Why a lookup attempt did not produce metadata."""

    NETWORK_ERROR = "network_error"
    TIMEOUT = "timeout"
    HTTP_ERROR = "http_error"
    PARSE_ERROR = "parse_error"
    RATE_LIMITED = "rate_limited"
    NO_DATA = "no_data"


class DomainState(Enum):
    """Lifecycle of a domain inside a resolution queue."""

    UNSEEN = "unseen"
    CACHED = "cached"
    IN_FLIGHT = "in_flight"
    RESOLVED = "resolved"


class HostnameErrorCode(Enum):
    """Error codes for hostname validation failures."""

    EMPTY_INPUT = "empty_input"
    FORBIDDEN_CHARS = "forbidden_chars"
    IDNA_ERROR = "idna_error"
    INVALID_LABEL = "invalid_label"
