"""
Property-based tests for the Metadata Fetcher module.

HTTP is served by httpx.MockTransport, so every classification path is
exercised without network access.
"""

import asyncio
import json
from typing import Callable

import httpx
import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from geo_resolver.config import FetcherConfig, RateLimitConfig
from geo_resolver.enums import FailureReason, FetchOutcome
from geo_resolver.exceptions import FetchError
from geo_resolver.metadata_fetcher import FetchResult, MetadataFetcher
from geo_resolver.models import GeoMetadata
from geo_resolver.rate_limiter import RateLimiter


SUCCESS_PAYLOAD = {
    "status": "success",
    "country": "United States",
    "regionName": "California",
    "region": "CA",
    "city": "San Francisco",
    "lat": 37.7749,
    "lon": -122.4194,
    "isp": "Example ISP",
    "org": "Example Org",
}


def fetch_once(
    handler: Callable[[httpx.Request], httpx.Response],
    domain: str = "example.com",
    limiter: RateLimiter = None,
) -> FetchResult:
    """Run a single fetch against a mocked upstream."""
    limiter = limiter or RateLimiter(RateLimitConfig())

    async def run() -> FetchResult:
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            fetcher = MetadataFetcher(FetcherConfig(), limiter, client=client)
            return await fetcher.fetch(domain)

    return asyncio.run(run())


def json_handler(payload: dict, status_code: int = 200):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status_code, json=payload)
    return handler


class TestSuccessParsing:
    """Success payloads become GeoMetadata with ip-api field mapping."""

    def test_full_payload(self) -> None:
        result = fetch_once(json_handler(SUCCESS_PAYLOAD))

        assert result.outcome == FetchOutcome.SUCCESS
        assert result.metadata == GeoMetadata(
            country="United States",
            region="California",
            city="San Francisco",
            lat=37.7749,
            lon=-122.4194,
            isp="Example ISP",
            org="Example Org",
        )
        assert result.http_status_code == 200

    def test_region_name_preferred_over_region_code(self) -> None:
        result = fetch_once(json_handler({
            "status": "success",
            "country": "United States",
            "regionName": "Full Region Name",
            "region": "Short",
        }))

        assert result.metadata.region == "Full Region Name"

    def test_region_code_used_when_name_missing(self) -> None:
        result = fetch_once(json_handler({
            "status": "success",
            "country": "United States",
            "region": "CA",
        }))

        assert result.metadata.region == "CA"

    def test_missing_optional_fields(self) -> None:
        result = fetch_once(json_handler({
            "status": "success",
            "country": "United States",
            "regionName": "California",
        }))

        assert result.metadata.city == "Unknown"
        assert result.metadata.lat is None
        assert result.metadata.lon is None
        assert result.metadata.isp is None
        assert result.metadata.org is None

    def test_zero_coordinates_are_kept(self) -> None:
        result = fetch_once(json_handler({**SUCCESS_PAYLOAD, "lat": 0, "lon": 0.0}))

        assert result.metadata.lat == 0.0
        assert result.metadata.lon == 0.0


class TestFailureClassification:
    """Each upstream failure lands in the right outcome bucket."""

    def test_no_data_is_permanent(self) -> None:
        result = fetch_once(json_handler({"status": "fail", "message": "invalid query"}))

        assert result.outcome == FetchOutcome.PERMANENT
        assert result.reason == FailureReason.NO_DATA
        assert result.message == "invalid query"

    def test_upstream_rate_limit_message_is_retryable(self) -> None:
        result = fetch_once(json_handler({"status": "fail", "message": "rate limit exceeded"}))

        assert result.outcome == FetchOutcome.RETRYABLE
        assert result.reason == FailureReason.RATE_LIMITED

    @given(status_code=st.integers(min_value=300, max_value=599).filter(lambda c: c != 429))
    @settings(max_examples=50)
    def test_non_2xx_is_retryable(self, status_code: int) -> None:
        """*For any* non-2xx status, the attempt is a retryable HTTP error."""
        result = fetch_once(lambda request: httpx.Response(status_code, text="nope"))

        assert result.outcome == FetchOutcome.RETRYABLE
        assert result.reason == FailureReason.HTTP_ERROR
        assert result.http_status_code == status_code

    def test_http_429_is_rate_limited(self) -> None:
        result = fetch_once(lambda request: httpx.Response(429))

        assert result.outcome == FetchOutcome.RETRYABLE
        assert result.reason == FailureReason.RATE_LIMITED

    def test_malformed_json_is_retryable(self) -> None:
        result = fetch_once(lambda request: httpx.Response(200, text="{not json"))

        assert result.outcome == FetchOutcome.RETRYABLE
        assert result.reason == FailureReason.PARSE_ERROR

    @given(payload=st.one_of(
        st.lists(st.integers(), max_size=3),
        st.dictionaries(st.sampled_from(["country", "city", "lat"]), st.text(max_size=5)),
    ))
    @settings(max_examples=50)
    def test_missing_status_discriminator_is_retryable(self, payload) -> None:
        """*For any* JSON body without a status field, the attempt is retryable."""
        result = fetch_once(lambda request: httpx.Response(200, content=json.dumps(payload)))

        assert result.outcome == FetchOutcome.RETRYABLE
        assert result.reason == FailureReason.PARSE_ERROR

    def test_connect_error_is_retryable(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        result = fetch_once(handler)

        assert result.outcome == FetchOutcome.RETRYABLE
        assert result.reason == FailureReason.NETWORK_ERROR

    def test_timeout_is_retryable(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out", request=request)

        result = fetch_once(handler)

        assert result.outcome == FetchOutcome.RETRYABLE
        assert result.reason == FailureReason.TIMEOUT


class TestRequestShape:
    """One bodiless GET per attempt, to the configured URL."""

    def test_request_targets_domain_path(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json=SUCCESS_PAYLOAD)

        fetch_once(handler, domain="pixel.example.net")

        assert len(seen) == 1
        request = seen[0]
        assert request.method == "GET"
        assert request.url.host == "ip-api.com"
        assert request.url.path == "/json/pixel.example.net"
        assert "regionName" in request.url.params["fields"]
        assert request.content == b""

    @given(num_fetches=st.integers(min_value=1, max_value=10))
    @settings(max_examples=25, deadline=None)
    def test_one_admission_per_attempt(self, num_fetches: int) -> None:
        """*For any* number of attempts, exactly that many admissions are recorded."""
        limiter = RateLimiter(RateLimitConfig())

        async def run() -> None:
            handler = json_handler({"status": "fail", "message": "rate limit exceeded"})
            async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
                fetcher = MetadataFetcher(FetcherConfig(), limiter, client=client)
                for _ in range(num_fetches):
                    await fetcher.fetch("example.com")

        asyncio.run(run())

        assert limiter.requests_in_window() == num_fetches

    def test_rejects_non_http_url(self) -> None:
        with pytest.raises(FetchError):
            MetadataFetcher(FetcherConfig(api_url="ftp://ip-api.com/json/"), RateLimiter(RateLimitConfig()))
