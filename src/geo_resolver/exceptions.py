"""
Exception classes for the geo resolver.

All exceptions inherit from GeoResolverError and carry a machine-readable
code, a human-readable message, and optional structured details.
"""

from typing import Optional


class GeoResolverError(Exception):
    """Base exception for all geo resolver errors."""

    def __init__(
        self,
        code: str,
        message: str,
        details: Optional[dict] = None,
    ) -> None:
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(code={self.code!r}, message={self.message!r})"

    def to_dict(self) -> dict:
        """Convert exception to dictionary for serialization."""
        return {
            "error_type": self.__class__.__name__,
            "code": self.code,
            "message": self.message,
            "details": self.details,
        }


class ValidationError(GeoResolverError):
    """Raised when a hostname cannot be canonicalized."""

    pass


class CacheError(GeoResolverError):
    """Raised when the metadata cache cannot be read or written."""

    pass


class TamperingError(CacheError):
    """Raised when the cache file HMAC does not match its contents."""

    pass


class FetchError(GeoResolverError):
    """Raised when the lookup client is misconfigured."""

    pass
