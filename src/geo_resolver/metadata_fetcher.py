"""
Metadata fetcher: the single upstream lookup call for one domain.

Each call to ``fetch`` waits for a rate-limit admission, performs exactly
one HTTP GET against an ip-api style JSON endpoint, and classifies the
outcome as success, retryable failure, or permanent failure. Upstream
problems are reported in the result, never raised.
"""

import time
from dataclasses import dataclass
from typing import Any, Optional
from urllib.parse import urlparse

import httpx

from .audit_logger import AuditLogger
from .config import FetcherConfig
from .enums import FailureReason, FetchOutcome, LogLevel
from .exceptions import FetchError
from .models import UNKNOWN, GeoMetadata
from .rate_limiter import RateLimiter


@dataclass
class FetchResult:
    """Outcome of one lookup attempt."""

    outcome: FetchOutcome
    metadata: Optional[GeoMetadata] = None
    reason: Optional[FailureReason] = None
    message: str = ""
    http_status_code: int = 0
    response_time_ms: float = 0.0

    @classmethod
    def success(cls, metadata: GeoMetadata, **kwargs: Any) -> "FetchResult":
        return cls(outcome=FetchOutcome.SUCCESS, metadata=metadata, **kwargs)

    @classmethod
    def retryable(cls, reason: FailureReason, message: str, **kwargs: Any) -> "FetchResult":
        return cls(outcome=FetchOutcome.RETRYABLE, reason=reason, message=message, **kwargs)

    @classmethod
    def permanent(cls, reason: FailureReason, message: str, **kwargs: Any) -> "FetchResult":
        return cls(outcome=FetchOutcome.PERMANENT, reason=reason, message=message, **kwargs)


class MetadataFetcher:
    """
    Async client for the geolocation lookup service.

    Owns an httpx.AsyncClient when used as an async context manager; a
    ready-made client can be injected instead (e.g. one built on
    httpx.MockTransport).
    """

    COMPONENT = "MetadataFetcher"

    # Substring the upstream uses in its failure message when throttling
    RATE_LIMIT_MARKER = "rate limit"

    def __init__(
        self,
        config: FetcherConfig,
        rate_limiter: RateLimiter,
        client: Optional[httpx.AsyncClient] = None,
        logger: Optional[AuditLogger] = None,
    ) -> None:
        scheme = urlparse(config.api_url).scheme.lower()
        if scheme not in ("http", "https"):
            raise FetchError(
                code="invalid_url",
                message=f"Lookup URL must be http or https: {config.api_url}",
                details={"api_url": config.api_url, "scheme": scheme},
            )

        self._config = config
        self._rate_limiter = rate_limiter
        self._client = client
        self._owns_client = client is None
        self._logger = logger

    async def __aenter__(self) -> "MetadataFetcher":
        self._ensure_client()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    @property
    def rate_limiter(self) -> RateLimiter:
        return self._rate_limiter

    def _ensure_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self._config.timeout_seconds),
                follow_redirects=True,
            )
            self._owns_client = True
        return self._client

    def build_url(self, domain: str) -> str:
        return f"{self._config.api_url.rstrip('/')}/{domain}"

    async def fetch(self, domain: str) -> FetchResult:
        """
        Perform one lookup for ``domain``.

        Args:
            domain: Canonical bare hostname

        Returns:
            FetchResult describing the outcome of this single attempt
        """
        client = self._ensure_client()

        waited = await self._rate_limiter.await_admission()
        if waited > 0:
            self._log(
                LogLevel.DEBUG,
                f"Admission granted for {domain} after {waited:.3f}s",
                {"domain": domain, "waited_seconds": waited},
            )

        start_time = time.perf_counter()
        params = {"fields": ",".join(self._config.fields)} if self._config.fields else None

        try:
            response = await client.get(
                self.build_url(domain),
                params=params,
                headers={"Accept": "application/json"},
            )
        except httpx.TimeoutException:
            return self._failed(
                domain,
                FetchResult.retryable(
                    FailureReason.TIMEOUT,
                    f"Lookup timed out after {self._config.timeout_seconds}s",
                    response_time_ms=self._elapsed_ms(start_time),
                ),
            )
        except httpx.HTTPError as e:
            return self._failed(
                domain,
                FetchResult.retryable(
                    FailureReason.NETWORK_ERROR,
                    f"Transport error: {e}",
                    response_time_ms=self._elapsed_ms(start_time),
                ),
            )

        response_time_ms = self._elapsed_ms(start_time)
        status_code = response.status_code

        if not response.is_success:
            reason = FailureReason.RATE_LIMITED if status_code == 429 else FailureReason.HTTP_ERROR
            return self._failed(
                domain,
                FetchResult.retryable(
                    reason,
                    f"HTTP {status_code}: {response.reason_phrase}",
                    http_status_code=status_code,
                    response_time_ms=response_time_ms,
                ),
            )

        try:
            data = response.json()
        except ValueError as e:
            return self._failed(
                domain,
                FetchResult.retryable(
                    FailureReason.PARSE_ERROR,
                    f"Malformed JSON response: {e}",
                    http_status_code=status_code,
                    response_time_ms=response_time_ms,
                ),
            )

        if not isinstance(data, dict) or "status" not in data:
            return self._failed(
                domain,
                FetchResult.retryable(
                    FailureReason.PARSE_ERROR,
                    "Response has no status field",
                    http_status_code=status_code,
                    response_time_ms=response_time_ms,
                ),
            )

        if data["status"] == "success":
            metadata = self.parse_metadata(data)
            self._log(
                LogLevel.DEBUG,
                f"Geolocation found for {domain}",
                {"domain": domain, **metadata.to_dict()},
            )
            return FetchResult.success(
                metadata,
                http_status_code=status_code,
                response_time_ms=response_time_ms,
            )

        message = str(data.get("message") or "lookup failed")
        if self.RATE_LIMIT_MARKER in message.lower():
            result = FetchResult.retryable(
                FailureReason.RATE_LIMITED,
                message,
                http_status_code=status_code,
                response_time_ms=response_time_ms,
            )
        else:
            result = FetchResult.permanent(
                FailureReason.NO_DATA,
                message,
                http_status_code=status_code,
                response_time_ms=response_time_ms,
            )
        return self._failed(domain, result)

    @staticmethod
    def parse_metadata(data: dict) -> GeoMetadata:
        """
        Extract geographic fields from a success payload.

        ``regionName`` is preferred over the short ``region`` code. Missing
        place names become "Unknown"; missing coordinates, ISP, and
        organisation become None.
        """
        return GeoMetadata(
            country=_text(data.get("country")) or UNKNOWN,
            region=_text(data.get("regionName")) or _text(data.get("region")) or UNKNOWN,
            city=_text(data.get("city")) or UNKNOWN,
            lat=_coordinate(data.get("lat")),
            lon=_coordinate(data.get("lon")),
            isp=_text(data.get("isp")),
            org=_text(data.get("org")),
        )

    def _failed(self, domain: str, result: FetchResult) -> FetchResult:
        self._log(
            LogLevel.WARN,
            f"Lookup failed for {domain}: {result.message}",
            {
                "domain": domain,
                "outcome": result.outcome.value,
                "reason": result.reason.value if result.reason else None,
                "http_status": result.http_status_code,
            },
        )
        return result

    def _elapsed_ms(self, start_time: float) -> float:
        return (time.perf_counter() - start_time) * 1000

    def _log(self, level: LogLevel, message: str, data: dict) -> None:
        if self._logger:
            self._logger.log(level, self.COMPONENT, message, data)

    async def close(self) -> None:
        """Close the HTTP client if this fetcher created it."""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None


def _text(value: Any) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value
    return None


def _coordinate(value: Any) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return float(value)
