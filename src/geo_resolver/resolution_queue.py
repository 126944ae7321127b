"""
Resolution queue: resolves geographic metadata for tracking domains.

The queue accepts domains from the detection layer and guarantees:
- Each caller gets exactly one ResolvedMetadata, never an exception
- A cached domain is answered from the cache without network activity
- Concurrent requests for one domain share a single upstream lookup
- Upstream calls go through the rate limiter, including every retry
- Retryable failures back off exponentially; once attempts run out, or on
  a permanent failure, an "Unknown" fallback is cached and delivered

A single worker task drains a FIFO of domains and fans out one lookup task
per distinct domain, bounded by ``max_concurrent_lookups``.
"""

import asyncio
from collections import OrderedDict
from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional

from .audit_logger import AuditLogger
from .config import QueueConfig
from .domain_validator import DomainValidator
from .enums import DomainState, FetchOutcome, LogLevel
from .exceptions import CacheError
from .metadata_cache import MetadataCache
from .metadata_fetcher import MetadataFetcher
from .models import (
    CachedMetadata,
    GeoMetadata,
    LookupRequest,
    PendingQueueEntry,
    QueueStats,
    ResolvedMetadata,
)
from .rate_limiter import RateLimiter
from .retry_policy import RetryPolicy


class ResolutionQueue:
    """
    Coalescing, rate-limited, retrying metadata resolver.

    All state is owned by the instance; independent queues share nothing.
    The pending map is only touched between awaits, so check-and-insert is
    atomic on the event loop.
    """

    COMPONENT = "ResolutionQueue"

    async def __aenter__(self) -> "ResolutionQueue":
        self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    def __init__(
        self,
        cache: MetadataCache,
        fetcher: MetadataFetcher,
        retry_policy: RetryPolicy,
        config: Optional[QueueConfig] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        logger: Optional[AuditLogger] = None,
    ) -> None:
        """
        Initialize the resolution queue.

        Args:
            cache: Per-domain metadata store
            fetcher: Upstream lookup client; its rate limiter backs stats()
            retry_policy: Backoff and exhaustion rules
            config: Queue settings (defaults to QueueConfig())
            sleep: Coroutine used for backoff waits
            logger: Optional logger
        """
        self._config = config or QueueConfig()
        if self._config.max_concurrent_lookups < 1:
            raise ValueError("max_concurrent_lookups must be at least 1")
        if self._config.settled_history_size < 0:
            raise ValueError("settled_history_size must not be negative")

        self._cache = cache
        self._fetcher = fetcher
        self._rate_limiter = fetcher.rate_limiter
        self._retry_policy = retry_policy
        self._sleep = sleep
        self._logger = logger
        self._validator = DomainValidator()

        self._pending: dict[str, PendingQueueEntry] = {}
        self._settled: OrderedDict[str, DomainState] = OrderedDict()
        self._inbox: asyncio.Queue[PendingQueueEntry] = asyncio.Queue()
        self._slots = asyncio.Semaphore(self._config.max_concurrent_lookups)
        self._tasks: set[asyncio.Task] = set()
        self._worker: Optional[asyncio.Task] = None

    @property
    def rate_limiter(self) -> RateLimiter:
        return self._rate_limiter

    def start(self) -> None:
        """Start the worker task if it is not already running."""
        if self._worker is None or self._worker.done():
            self._worker = asyncio.get_running_loop().create_task(self._run())

    def enqueue(self, domain: str) -> "asyncio.Future[ResolvedMetadata]":
        """
        Request metadata for ``domain`` without waiting for it.

        Must be called from a running event loop. The returned future always
        completes with a ResolvedMetadata; it is only cancelled if the queue
        is closed or cleared before the lookup settles.

        Args:
            domain: Bare hostname as observed by the detector

        Returns:
            A future for this caller's result
        """
        waiter = asyncio.get_running_loop().create_future()

        validation = self._validator.validate(domain)
        if not validation.valid:
            self._log(
                LogLevel.WARN,
                f"Rejected hostname {domain!r}: {validation.error.message}",
                {"domain": domain, "code": validation.error.code.value},
            )
            waiter.set_result(
                ResolvedMetadata(
                    domain=domain or "",
                    metadata=GeoMetadata.unknown(),
                    from_cache=False,
                )
            )
            return waiter

        canonical = validation.canonical_domain

        entry = self._pending.get(canonical)
        if entry is not None:
            entry.waiters.append(waiter)
            self._log(
                LogLevel.DEBUG,
                f"Coalesced request for {canonical}",
                {"domain": canonical, "waiters": len(entry.waiters)},
            )
            return waiter

        entry = PendingQueueEntry(
            request=LookupRequest(
                domain=canonical,
                created_at=datetime.now(timezone.utc).isoformat(),
            ),
            waiters=[waiter],
        )
        self._pending[canonical] = entry
        self._inbox.put_nowait(entry)
        self.start()
        return waiter

    async def resolve(self, domain: str) -> ResolvedMetadata:
        """Enqueue ``domain`` and wait for its result."""
        return await self.enqueue(domain)

    async def join(self) -> None:
        """Wait until every domain enqueued so far has been processed."""
        await self._inbox.join()

    def stats(self) -> QueueStats:
        """Snapshot of the queue and its rate window. Never consumes a permit."""
        return QueueStats(
            pending_count=len(self._pending),
            requests_in_last_window=self._rate_limiter.requests_in_window(),
            remaining_permits=self._rate_limiter.remaining_permits(),
            can_admit_now=self._rate_limiter.can_admit(),
        )

    def domain_state(self, domain: str) -> DomainState:
        """Where ``domain`` is in its lifecycle, as observed by this queue."""
        validation = self._validator.validate(domain)
        if not validation.valid:
            return DomainState.UNSEEN
        canonical = validation.canonical_domain
        entry = self._pending.get(canonical)
        if entry is not None:
            return entry.state
        return self._settled.get(canonical, DomainState.UNSEEN)

    def clear_pending(self) -> None:
        """Abandon every pending lookup and cancel the callers waiting on them."""
        for task in self._tasks:
            task.cancel()
        for entry in self._pending.values():
            for waiter in entry.waiters:
                if not waiter.done():
                    waiter.cancel()
        self._pending.clear()

        while not self._inbox.empty():
            self._inbox.get_nowait()
            self._inbox.task_done()

    async def close(self) -> None:
        """Stop the worker and abandon in-flight lookups."""
        worker, self._worker = self._worker, None
        if worker is not None:
            worker.cancel()
            await asyncio.gather(worker, return_exceptions=True)

        tasks = list(self._tasks)
        self.clear_pending()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def _run(self) -> None:
        while True:
            entry = await self._inbox.get()
            try:
                await self._slots.acquire()
            except asyncio.CancelledError:
                self._inbox.task_done()
                raise

            task = asyncio.get_running_loop().create_task(self._lookup(entry))
            self._tasks.add(task)
            task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        self._slots.release()
        self._inbox.task_done()

    async def _lookup(self, entry: PendingQueueEntry) -> None:
        domain = entry.request.domain
        # An entry dropped by clear_pending() may still be in the worker's hands
        if self._pending.get(domain) is not entry:
            return

        try:
            resolved = await self._resolve_entry(entry)
        except Exception as e:
            if self._logger:
                self._logger.log_error(
                    self.COMPONENT,
                    f"Unexpected failure resolving {domain}, using fallback",
                    error=e,
                    additional_data={"domain": domain},
                )
            entry.state = DomainState.RESOLVED
            resolved = ResolvedMetadata(
                domain=domain,
                metadata=GeoMetadata.unknown(),
                from_cache=False,
            )

        self._deliver(entry, resolved)

    async def _resolve_entry(self, entry: PendingQueueEntry) -> ResolvedMetadata:
        domain = entry.request.domain

        cached = await self._read_cache(domain)
        if cached is not None:
            entry.state = DomainState.CACHED
            self._log(LogLevel.DEBUG, f"Cache hit for {domain}", {"domain": domain})
            return ResolvedMetadata(domain=domain, metadata=cached.metadata, from_cache=True)

        entry.state = DomainState.IN_FLIGHT
        self._log(LogLevel.DEBUG, f"Cache miss for {domain}, fetching", {"domain": domain})

        metadata = await self._fetch_with_retry(entry)
        await self._write_cache(domain, metadata)

        entry.state = DomainState.RESOLVED
        return ResolvedMetadata(domain=domain, metadata=metadata, from_cache=False)

    async def _fetch_with_retry(self, entry: PendingQueueEntry) -> GeoMetadata:
        """
        Drive lookup attempts until success, permanent failure, or exhaustion.

        Every attempt goes back through the fetcher and therefore through
        the rate limiter; backoff never bypasses admission.
        """
        domain = entry.request.domain
        attempt = 0

        while True:
            entry.attempts = attempt + 1
            result = await self._fetcher.fetch(domain)

            if result.outcome is FetchOutcome.SUCCESS:
                self._log(
                    LogLevel.INFO,
                    f"Resolved {domain} on attempt {attempt + 1}",
                    {"domain": domain, "attempts": attempt + 1, "country": result.metadata.country},
                )
                return result.metadata

            if result.outcome is FetchOutcome.PERMANENT:
                self._log(
                    LogLevel.WARN,
                    f"No data for {domain}, caching fallback",
                    {"domain": domain, "reason": result.reason.value, "message": result.message},
                )
                return GeoMetadata.unknown()

            if self._retry_policy.is_exhausted(attempt):
                self._log(
                    LogLevel.WARN,
                    f"Retries exhausted for {domain}, caching fallback",
                    {
                        "domain": domain,
                        "attempts": attempt + 1,
                        "reason": result.reason.value,
                        "message": result.message,
                    },
                )
                return GeoMetadata.unknown()

            delay = self._retry_policy.delay_for(attempt)
            self._log(
                LogLevel.INFO,
                f"Retrying {domain} in {delay:.3f}s",
                {"domain": domain, "attempt": attempt + 1, "reason": result.reason.value},
            )
            await self._sleep(delay)
            attempt += 1

    async def _read_cache(self, domain: str) -> Optional[CachedMetadata]:
        try:
            return await self._cache.get(domain)
        except CacheError as e:
            self._log(
                LogLevel.WARN,
                f"Cache read failed for {domain}, treating as miss",
                {"domain": domain, "error_code": e.code, "error_message": e.message},
            )
            return None

    async def _write_cache(self, domain: str, metadata: GeoMetadata) -> None:
        try:
            await self._cache.put(domain, metadata)
        except CacheError as e:
            self._log(
                LogLevel.WARN,
                f"Cache write failed for {domain}, result not persisted",
                {"domain": domain, "error_code": e.code, "error_message": e.message},
            )

    def _deliver(self, entry: PendingQueueEntry, resolved: ResolvedMetadata) -> None:
        domain = entry.request.domain
        if self._pending.get(domain) is entry:
            del self._pending[domain]
        self._settled[domain] = entry.state
        self._settled.move_to_end(domain)
        while len(self._settled) > self._config.settled_history_size:
            self._settled.popitem(last=False)

        for waiter in entry.waiters:
            if not waiter.done():
                waiter.set_result(resolved)

    def _log(self, level: LogLevel, message: str, data: dict) -> None:
        if self._logger:
            self._logger.log(level, self.COMPONENT, message, data)
