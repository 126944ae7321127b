"""
Metadata cache: per-domain storage of resolved geographic metadata.

The resolution queue only depends on the MetadataCache protocol. Two
implementations are provided: an in-memory dict, and a JSON file protected
by an HMAC so that records survive process restarts and edits to the file
are detected.
"""

import asyncio
import hashlib
import hmac
import json
from abc import abstractmethod
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Protocol, runtime_checkable

from .exceptions import CacheError, TamperingError
from .models import CachedMetadata, GeoMetadata


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


@runtime_checkable
class MetadataCache(Protocol):
    """Interface the resolution queue uses to read and write cached metadata."""

    @abstractmethod
    async def get(self, domain: str) -> Optional[CachedMetadata]:
        """
        Look up the record for a domain.

        Returns:
            The cached record, or None if the domain has never been stored

        Raises:
            CacheError: If the backing store cannot be read
        """
        ...

    @abstractmethod
    async def put(self, domain: str, metadata: GeoMetadata) -> CachedMetadata:
        """
        Store (or fully replace) the record for a domain.

        Raises:
            CacheError: If the backing store cannot be written
        """
        ...

    @abstractmethod
    async def clear(self) -> None:
        """Delete every record."""
        ...


class InMemoryMetadataCache:
    """Dict-backed cache for tests and short-lived processes."""

    def __init__(self) -> None:
        self._records: dict[str, CachedMetadata] = {}

    async def get(self, domain: str) -> Optional[CachedMetadata]:
        return self._records.get(domain)

    async def put(self, domain: str, metadata: GeoMetadata) -> CachedMetadata:
        record = CachedMetadata(domain=domain, metadata=metadata, cached_at=_utc_now())
        self._records[domain] = record
        return record

    async def clear(self) -> None:
        self._records.clear()

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, domain: object) -> bool:
        return domain in self._records


class JSONFileMetadataCache:
    """
    Persistent cache stored as a single HMAC-protected JSON document.

    The file is loaded lazily on first access. Every put rewrites the file;
    the HMAC covers the version and all records so any external edit is
    reported as a TamperingError on the next load.
    """

    VERSION = 1

    def __init__(self, file_path: Path, hmac_secret: str) -> None:
        self._file_path = Path(file_path)
        self._hmac_secret = hmac_secret.encode("utf-8")
        self._records: Optional[dict[str, CachedMetadata]] = None
        self._lock = asyncio.Lock()

    @property
    def file_path(self) -> Path:
        return self._file_path

    async def get(self, domain: str) -> Optional[CachedMetadata]:
        async with self._lock:
            records = await self._ensure_loaded()
            return records.get(domain)

    async def put(self, domain: str, metadata: GeoMetadata) -> CachedMetadata:
        async with self._lock:
            records = await self._ensure_loaded()
            record = CachedMetadata(domain=domain, metadata=metadata, cached_at=_utc_now())
            updated = dict(records)
            updated[domain] = record
            await asyncio.to_thread(self._write, updated)
            self._records = updated
            return record

    async def clear(self) -> None:
        async with self._lock:
            await asyncio.to_thread(self._write, {})
            self._records = {}

    async def all_records(self) -> list[CachedMetadata]:
        async with self._lock:
            records = await self._ensure_loaded()
            return list(records.values())

    async def _ensure_loaded(self) -> dict[str, CachedMetadata]:
        if self._records is None:
            self._records = await asyncio.to_thread(self._read)
        return self._records

    def _read(self) -> dict[str, CachedMetadata]:
        """
        Load records from disk and validate the HMAC.

        Raises:
            TamperingError: If HMAC validation fails
            CacheError: If the file cannot be read or parsed
        """
        if not self._file_path.exists():
            return {}

        try:
            with open(self._file_path, "r", encoding="utf-8") as f:
                raw_data = json.load(f)
        except json.JSONDecodeError as e:
            raise CacheError(
                code="parse_error",
                message=f"Failed to parse cache file: {e}",
                details={"file_path": str(self._file_path)},
            )
        except OSError as e:
            raise CacheError(
                code="io_error",
                message=f"Failed to read cache file: {e}",
                details={"file_path": str(self._file_path)},
            )

        if not isinstance(raw_data, dict) or not isinstance(raw_data.get("hmac", ""), str):
            raise CacheError(
                code="schema_error",
                message="Cache file is not an HMAC-protected record document",
                details={"file_path": str(self._file_path)},
            )

        stored_hmac = raw_data.get("hmac", "")
        computed_hmac = self.compute_hmac({
            "version": raw_data.get("version"),
            "records": raw_data.get("records", {}),
        })

        if not hmac.compare_digest(stored_hmac.encode("utf-8"), computed_hmac.encode("utf-8")):
            raise TamperingError(
                code="hmac_mismatch",
                message="HMAC validation failed - cache file may have been tampered with",
                details={"file_path": str(self._file_path)},
            )

        try:
            return {
                domain: CachedMetadata.from_dict(record)
                for domain, record in raw_data.get("records", {}).items()
            }
        except (KeyError, TypeError, AttributeError) as e:
            raise CacheError(
                code="schema_error",
                message=f"Cache file has an unexpected layout: {e}",
                details={"file_path": str(self._file_path)},
            )

    def _write(self, records: dict[str, CachedMetadata]) -> None:
        payload = {
            "version": self.VERSION,
            "records": {domain: record.to_dict() for domain, record in records.items()},
        }
        output = {**payload, "hmac": self.compute_hmac(payload)}

        try:
            self._file_path.parent.mkdir(parents=True, exist_ok=True)
            with open(self._file_path, "w", encoding="utf-8") as f:
                json.dump(output, f, indent=2, sort_keys=True)
        except OSError as e:
            raise CacheError(
                code="io_error",
                message=f"Failed to write cache file: {e}",
                details={"file_path": str(self._file_path)},
            )

    def compute_hmac(self, data: dict) -> str:
        """HMAC-SHA256 over the canonical JSON serialization of ``data``."""
        serialized = json.dumps(data, sort_keys=True, separators=(",", ":"))
        return hmac.new(
            self._hmac_secret,
            serialized.encode("utf-8"),
            hashlib.sha256,
        ).hexdigest()
