"""
Command-line interface for the geo resolver.

Commands:
- resolve: Resolve metadata for one or more domains through a queue
- stats: Summarize the persistent metadata cache
- config: Configuration management
"""

import argparse
import asyncio
import json
import sys
from dataclasses import replace
from pathlib import Path
from typing import Optional

from . import __version__
from .audit_logger import AuditLogger
from .config import (
    DEFAULT_LOOKUP_FIELDS,
    CacheConfig,
    FetcherConfig,
    LoggingConfig,
    QueueConfig,
    RateLimitConfig,
    ResolverConfig,
    RetryConfig,
)
from .enums import LogLevel
from .exceptions import CacheError
from .metadata_cache import JSONFileMetadataCache
from .metadata_fetcher import MetadataFetcher
from .rate_limiter import RateLimiter
from .resolution_queue import ResolutionQueue
from .retry_policy import RetryPolicy


DEFAULT_HOME = Path.home() / ".geo_resolver"
DEFAULT_HMAC_SECRET = "default-secret-change-me"
LOG_OUTPUT_FORMATS = ("json", "text", "both")


def create_default_config(
    cache_file: Optional[Path] = None,
    hmac_secret: str = DEFAULT_HMAC_SECRET,
) -> ResolverConfig:
    """
    Create a default resolver configuration.

    Args:
        cache_file: Path to the metadata cache file
        hmac_secret: Secret for cache file HMAC protection

    Returns:
        ResolverConfig with default settings
    """
    if cache_file is None:
        cache_file = DEFAULT_HOME / "cache.json"

    return ResolverConfig(
        cache=CacheConfig(file_path=cache_file, hmac_secret=hmac_secret),
        rate_limit=RateLimitConfig(),
        retry=RetryConfig(),
        fetcher=FetcherConfig(),
        queue=QueueConfig(),
        logging=LoggingConfig(),
    )


def load_config_from_file(config_path: Path) -> Optional[ResolverConfig]:
    """
    Load configuration from a JSON file.

    Missing sections and keys fall back to their defaults.

    Returns:
        ResolverConfig if successful, None otherwise
    """
    try:
        with open(config_path, "r", encoding="utf-8") as f:
            data = json.load(f)

        cache_data = data.get("cache", {})
        cache_file = cache_data.get("file_path")
        cache = CacheConfig(
            file_path=Path(cache_file) if cache_file else DEFAULT_HOME / "cache.json",
            hmac_secret=cache_data.get("hmac_secret", DEFAULT_HMAC_SECRET),
        )

        rate_data = data.get("rate_limit", {})
        rate_limit = RateLimitConfig(
            max_requests=int(rate_data.get("max_requests", 45)),
            window_seconds=float(rate_data.get("window_seconds", 60.0)),
            jitter_seconds=float(rate_data.get("jitter_seconds", 0.1)),
        )

        retry_data = data.get("retry", {})
        retry = RetryConfig(
            max_attempts=int(retry_data.get("max_attempts", 3)),
            initial_delay_seconds=float(retry_data.get("initial_delay_seconds", 1.0)),
        )

        fetcher_data = data.get("fetcher", {})
        fetcher = FetcherConfig(
            api_url=fetcher_data.get("api_url", "http://ip-api.com/json/"),
            timeout_seconds=float(fetcher_data.get("timeout_seconds", 10.0)),
            fields=tuple(fetcher_data.get("fields", DEFAULT_LOOKUP_FIELDS)),
        )

        queue_data = data.get("queue", {})
        queue = QueueConfig(
            max_concurrent_lookups=int(queue_data.get("max_concurrent_lookups", 45)),
            settled_history_size=int(queue_data.get("settled_history_size", 1024)),
        )

        logging_data = data.get("logging", {})
        logging_config = LoggingConfig(
            level=LogLevel(logging_data.get("level", "info")).value,
            output_format=logging_data.get("output_format", "text"),
        )
        if logging_config.output_format not in LOG_OUTPUT_FORMATS:
            raise ValueError(f"Unknown log output format: {logging_config.output_format}")

        return ResolverConfig(
            cache=cache,
            rate_limit=rate_limit,
            retry=retry,
            fetcher=fetcher,
            queue=queue,
            logging=logging_config,
        )

    except (json.JSONDecodeError, KeyError, TypeError, ValueError, AttributeError) as e:
        print(f"Error loading config: {e}", file=sys.stderr)
        return None
    except FileNotFoundError:
        return None


def save_config_to_file(config: ResolverConfig, config_path: Path) -> bool:
    """
    Save configuration to a JSON file.

    Returns:
        True if successful, False otherwise
    """
    try:
        config_path.parent.mkdir(parents=True, exist_ok=True)

        data = {
            "cache": {
                "file_path": str(config.cache.file_path),
                "hmac_secret": config.cache.hmac_secret,
            },
            "rate_limit": {
                "max_requests": config.rate_limit.max_requests,
                "window_seconds": config.rate_limit.window_seconds,
                "jitter_seconds": config.rate_limit.jitter_seconds,
            },
            "retry": {
                "max_attempts": config.retry.max_attempts,
                "initial_delay_seconds": config.retry.initial_delay_seconds,
            },
            "fetcher": {
                "api_url": config.fetcher.api_url,
                "timeout_seconds": config.fetcher.timeout_seconds,
                "fields": list(config.fetcher.fields),
            },
            "queue": {
                "max_concurrent_lookups": config.queue.max_concurrent_lookups,
                "settled_history_size": config.queue.settled_history_size,
            },
            "logging": {
                "level": config.logging.level,
                "output_format": config.logging.output_format,
            },
        }

        with open(config_path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, ensure_ascii=False)

        return True

    except (OSError, TypeError) as e:
        print(f"Error saving config: {e}", file=sys.stderr)
        return False


def build_queue(
    config: ResolverConfig,
    logger: Optional[AuditLogger] = None,
) -> tuple[MetadataFetcher, ResolutionQueue]:
    """Wire a fetcher and resolution queue from configuration."""
    rate_limiter = RateLimiter(config.rate_limit, logger=logger)
    fetcher = MetadataFetcher(config.fetcher, rate_limiter, logger=logger)
    queue = ResolutionQueue(
        cache=JSONFileMetadataCache(config.cache.file_path, config.cache.hmac_secret),
        fetcher=fetcher,
        retry_policy=RetryPolicy(config.retry),
        config=config.queue,
        logger=logger,
    )
    return fetcher, queue


def read_domains_file(path: Path) -> list[str]:
    """Read one domain per line, skipping blanks and '#' comments."""
    domains = []
    with open(path, "r", encoding="utf-8") as f:
        for line in f:
            line = line.strip()
            if line and not line.startswith("#"):
                domains.append(line)
    return domains


async def resolve_domains(
    domains: list[str],
    config: ResolverConfig,
    logger: Optional[AuditLogger] = None,
) -> list[dict]:
    """Resolve all domains concurrently through one queue."""
    fetcher, queue = build_queue(config, logger)
    async with fetcher, queue:
        results = await asyncio.gather(*(queue.enqueue(domain) for domain in domains))
    return [result.to_dict() for result in results]


async def summarize_cache(cache: JSONFileMetadataCache) -> dict:
    records = await cache.all_records()
    unknown = sum(1 for record in records if record.metadata.is_unknown)
    countries: dict[str, int] = {}
    for record in records:
        if not record.metadata.is_unknown:
            countries[record.metadata.country] = countries.get(record.metadata.country, 0) + 1
    return {
        "cache_file": str(cache.file_path),
        "cached_domains": len(records),
        "unknown_domains": unknown,
        "countries": dict(sorted(countries.items())),
    }


def _load_config(args: argparse.Namespace) -> Optional[ResolverConfig]:
    config = None
    if getattr(args, "config", None):
        config = load_config_from_file(Path(args.config))
        if config is None:
            print(f"Error: Could not load config from {args.config}", file=sys.stderr)
            return None

    if config is None:
        config = create_default_config()

    if getattr(args, "cache_file", None):
        config = replace(
            config,
            cache=CacheConfig(file_path=Path(args.cache_file), hmac_secret=config.cache.hmac_secret),
        )
    return config


def cmd_resolve(args: argparse.Namespace) -> int:
    """Handle the 'resolve' command."""
    config = _load_config(args)
    if config is None:
        return 1

    domains = list(args.domains)
    if args.file:
        try:
            domains.extend(read_domains_file(Path(args.file)))
        except OSError as e:
            print(f"Error: Could not read {args.file}: {e}", file=sys.stderr)
            return 1

    if not domains:
        print("Error: No domains given", file=sys.stderr)
        return 1

    level = "debug" if args.verbose else config.logging.level
    logger = AuditLogger.from_config(level, config.logging.output_format)

    results = asyncio.run(resolve_domains(domains, config, logger))
    output = json.dumps(results, indent=2, ensure_ascii=False)

    if args.output:
        with open(args.output, "w", encoding="utf-8") as f:
            f.write(output + "\n")
    else:
        print(output)
    return 0


def cmd_stats(args: argparse.Namespace) -> int:
    """Handle the 'stats' command."""
    config = _load_config(args)
    if config is None:
        return 1

    cache = JSONFileMetadataCache(config.cache.file_path, config.cache.hmac_secret)
    try:
        summary = asyncio.run(summarize_cache(cache))
    except CacheError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        return 1

    print(json.dumps(summary, indent=2, ensure_ascii=False))
    return 0


def cmd_config(args: argparse.Namespace) -> int:
    """Handle the 'config' command."""
    config_path = Path(args.path) if args.path else DEFAULT_HOME / "config.json"

    if args.action == "show":
        config = load_config_from_file(config_path)
        if config is None:
            print(f"No configuration found at: {config_path}")
            print("Use 'config init' to create a default configuration.")
            return 1

        print(f"Configuration from: {config_path}")
        print(f"  Lookup URL: {config.fetcher.api_url}")
        print(
            f"  Rate limit: {config.rate_limit.max_requests} per "
            f"{config.rate_limit.window_seconds}s"
        )
        print(
            f"  Retry: {config.retry.max_attempts} attempts, "
            f"{config.retry.initial_delay_seconds}s initial backoff"
        )
        print(f"  Cache file: {config.cache.file_path}")
        print(f"  Log level: {config.logging.level}")
        return 0

    elif args.action == "init":
        if config_path.exists() and not args.force:
            print(f"Configuration already exists at: {config_path}")
            print("Use --force to overwrite.")
            return 1

        if save_config_to_file(create_default_config(), config_path):
            print(f"Configuration created at: {config_path}")
            return 0
        return 1

    elif args.action == "validate":
        config = load_config_from_file(config_path)
        if config is None:
            print(f"Error: Could not load config from {config_path}", file=sys.stderr)
            return 1

        print(f"Configuration at {config_path} is valid.")
        return 0

    return 1


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser for the CLI."""
    parser = argparse.ArgumentParser(
        prog="geo-resolver",
        description="Rate-limited geolocation lookups for tracking domains",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    resolve_parser = subparsers.add_parser(
        "resolve",
        help="Resolve geolocation metadata for domains",
    )
    resolve_parser.add_argument(
        "domains",
        nargs="*",
        help="Bare hostnames (e.g., pixel.example.com)",
    )
    resolve_parser.add_argument(
        "--file", "-f",
        help="Path to file containing domains (one per line)",
    )
    resolve_parser.add_argument(
        "--output", "-o",
        help="Path to write results as JSON",
    )
    resolve_parser.add_argument(
        "--config", "-c",
        help="Path to configuration file",
    )
    resolve_parser.add_argument(
        "--cache-file",
        help="Path to the metadata cache file",
    )
    resolve_parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable debug logging",
    )
    resolve_parser.set_defaults(func=cmd_resolve)

    stats_parser = subparsers.add_parser(
        "stats",
        help="Summarize the metadata cache",
    )
    stats_parser.add_argument(
        "--config", "-c",
        help="Path to configuration file",
    )
    stats_parser.add_argument(
        "--cache-file",
        help="Path to the metadata cache file",
    )
    stats_parser.set_defaults(func=cmd_stats)

    config_parser = subparsers.add_parser(
        "config",
        help="Configuration management",
    )
    config_parser.add_argument(
        "action",
        choices=["show", "init", "validate"],
        help="Configuration action",
    )
    config_parser.add_argument(
        "--path", "-p",
        help="Path to configuration file",
    )
    config_parser.add_argument(
        "--force",
        action="store_true",
        help="Force overwrite existing configuration",
    )
    config_parser.set_defaults(func=cmd_config)

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    """
    Main entry point for the CLI.

    Args:
        argv: Command line arguments (defaults to sys.argv[1:])

    Returns:
        Exit code
    """
    parser = create_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
