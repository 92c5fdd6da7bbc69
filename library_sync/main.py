"""Main entry point for the library sync command.

This module provides the application entry point with:
- Command-line argument parsing
- Application initialization and dependency injection
- Exit codes for unrecovered errors and interrupts
"""

import argparse
import asyncio
import sys
from pathlib import Path

import structlog

from library_sync.models import AppConfig, EnrichedRecord, SyncOptions, SyncReport, UpsertReport
from library_sync.services.cache_store import CacheStore
from library_sync.services.config import ConfigurationService
from library_sync.services.directus_client import DirectusClient, DirectusUpsertSink
from library_sync.services.errors import AppError, ErrorHandlingService
from library_sync.services.hltb_client import (
    AuthTokenProvider,
    HltbClient,
    PlaywrightTokenProvider,
    StaticTokenProvider,
)
from library_sync.services.http_client import HttpClientService
from library_sync.services.logging import LoggingService, setup_logging
from library_sync.services.pipeline import ReconciliationPipeline
from library_sync.services.steam_client import OwnedGamesClient, StoreDetailsClient
from library_sync.services.steamspy_client import SteamSpyClient

log = structlog.stdlib.get_logger()

VERSION = "0.1.0"


class ApplicationContext:
    """Container for application services.

    Every service is built once, on first use, and handed to the services
    that depend on it.
    """

    def __init__(
        self,
        config_path: Path | None = None,
        logging_service: LoggingService | None = None,
    ) -> None:
        """Initialize the application context.

        Args:
            config_path: Path to an optional JSON configuration file
            logging_service: Logging set up before the configuration was read
        """
        self._config_path: Path | None = config_path
        self.logging_service: LoggingService | None = logging_service

        # Services (initialized lazily)
        self._config_service: ConfigurationService | None = None
        self._error_service: ErrorHandlingService | None = None
        self._http_client: HttpClientService | None = None
        self._cache_store: CacheStore | None = None
        self._pipeline: ReconciliationPipeline | None = None
        self._upsert_sink: DirectusUpsertSink | None = None

        # Configuration
        self._config: AppConfig | None = None

    @property
    def config_service(self) -> ConfigurationService:
        """Get the configuration service (lazy initialization)."""
        if self._config_service is None:
            self._config_service = ConfigurationService(config_path=self._config_path)
        return self._config_service

    @property
    def config(self) -> AppConfig:
        """Get the current application configuration."""
        if self._config is None:
            self._config = self.config_service.load_config()
        return self._config

    @property
    def error_service(self) -> ErrorHandlingService:
        if self._error_service is None:
            self._error_service = ErrorHandlingService()
        return self._error_service

    @property
    def http_client(self) -> HttpClientService:
        """Get the HTTP client service (lazy initialization)."""
        if self._http_client is None:
            self._http_client = HttpClientService()
        return self._http_client

    @property
    def cache_store(self) -> CacheStore:
        if self._cache_store is None:
            self._cache_store = CacheStore(self.config.cache_directory)
        return self._cache_store

    @property
    def token_provider(self) -> AuthTokenProvider:
        """A configured token if there is one, otherwise a browser capture."""
        if self.config.hltb_auth_token:
            return StaticTokenProvider(self.config.hltb_auth_token)
        return PlaywrightTokenProvider(timeout=self.config.auth_capture_timeout)

    @property
    def pipeline(self) -> ReconciliationPipeline:
        """Get the reconciliation pipeline (lazy initialization)."""
        if self._pipeline is None:
            config = self.config
            self._pipeline = ReconciliationPipeline(
                cache_store=self.cache_store,
                owned_client=OwnedGamesClient(self.http_client, config.steam_api_key),
                store_client=StoreDetailsClient(self.http_client, request_delay=config.store_request_delay),
                statistics_client=SteamSpyClient(self.http_client, request_delay=config.statistics_request_delay),
                estimate_client=HltbClient(
                    self.http_client,
                    self.token_provider,
                    request_delay=config.estimate_request_delay,
                    failure_delay_step=config.estimate_failure_delay_step,
                    recapture_delay=config.estimate_recapture_delay,
                    max_failures=config.estimate_max_failures,
                ),
            )
        return self._pipeline

    @property
    def upsert_sink(self) -> DirectusUpsertSink:
        """Get the remote upsert sink.

        Raises:
            ConfigurationError: If the Directus endpoint or token is missing
        """
        if self._upsert_sink is None:
            self.config_service.require(self.config, "directus_endpoint", "directus_token")
            client = DirectusClient(
                self.http_client,
                endpoint=self.config.directus_endpoint or "",
                token=self.config.directus_token or "",
                collection=self.config.directus_collection,
            )
            self._upsert_sink = DirectusUpsertSink(client)
        return self._upsert_sink

    async def cleanup(self) -> None:
        """Clean up resources and close connections."""
        if self._http_client is not None:
            await self._http_client.close()
        log.info("Application cleanup complete")


class ParsedArgs:
    """Type-safe container for parsed command-line arguments."""

    def __init__(
        self,
        accounts: list[str],
        primary: str | None,
        use_cache: bool,
        skip_fetch: bool,
        skip_statistics: bool,
        skip_estimates: bool,
        upload: bool,
        language: str | None,
        verbose: bool,
        config: Path | None,
        log_dir: Path | None,
    ) -> None:
        self.accounts: list[str] = accounts
        self.primary: str | None = primary
        self.use_cache: bool = use_cache
        self.skip_fetch: bool = skip_fetch
        self.skip_statistics: bool = skip_statistics
        self.skip_estimates: bool = skip_estimates
        self.upload: bool = upload
        self.language: str | None = language
        self.verbose: bool = verbose
        self.config: Path | None = config
        self.log_dir: Path | None = log_dir

    @property
    def log_level(self) -> str:
        return "DEBUG" if self.verbose else "INFO"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="library-sync",
        description="Synchronize owned Steam games, enriched from several catalog sources, into Directus",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  library-sync 76561198000000000                      Sync one account
  library-sync 7656119800000000A 7656119800000000B    Sync two accounts, the first one is primary
  library-sync 76561198000000000 --no-upload          Only refresh the local cache
  library-sync 76561198000000000 --skip-fetch         Work from the cache, no store lookups
        """
    )

    _ = parser.add_argument(
        "accounts",
        nargs="+",
        metavar="ACCOUNT",
        help="Steam account id (64-bit) to sync; may be given several times"
    )

    _ = parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {VERSION}"
    )

    _ = parser.add_argument(
        "--primary",
        default=None,
        metavar="ACCOUNT",
        help="Account whose playtime wins when several accounts own a game (default: the first account)"
    )

    _ = parser.add_argument(
        "--no-cache",
        action="store_true",
        help="Ignore cached records and fetch everything again"
    )

    _ = parser.add_argument(
        "--skip-fetch",
        action="store_true",
        help="Reuse cached owned lists and never look up store details"
    )

    _ = parser.add_argument(
        "--skip-statistics",
        action="store_true",
        help="Do not fetch SteamSpy statistics"
    )

    _ = parser.add_argument(
        "--skip-estimates",
        action="store_true",
        help="Do not fetch HowLongToBeat estimates"
    )

    _ = parser.add_argument(
        "--no-upload",
        action="store_true",
        help="Do not push the records to Directus"
    )

    _ = parser.add_argument(
        "--language",
        default=None,
        help="Store language for names and descriptions (default: english)"
    )

    _ = parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable debug logging"
    )

    _ = parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to a JSON configuration file"
    )

    _ = parser.add_argument(
        "--log-dir",
        type=Path,
        default=None,
        help="Directory for log files (default: console only)"
    )

    return parser


def parse_arguments(argv: list[str] | None = None) -> ParsedArgs:
    """Parse command-line arguments.

    Returns:
        Parsed arguments container
    """
    ns = build_parser().parse_args(argv)

    return ParsedArgs(
        accounts=list(ns.accounts),
        primary=ns.primary,
        use_cache=not ns.no_cache,
        skip_fetch=bool(ns.skip_fetch),
        skip_statistics=bool(ns.skip_statistics),
        skip_estimates=bool(ns.skip_estimates),
        upload=not ns.no_upload,
        language=ns.language,
        verbose=bool(ns.verbose),
        config=ns.config,
        log_dir=ns.log_dir,
    )


def build_options(args: ParsedArgs, config: AppConfig) -> SyncOptions:
    return SyncOptions(
        use_cache=args.use_cache,
        skip_fetch=args.skip_fetch,
        language=args.language or config.language,
        primary_account_id=args.primary,
        skip_statistics=args.skip_statistics,
        skip_estimates=args.skip_estimates,
    )


async def run_sync(
    context: ApplicationContext,
    args: ParsedArgs,
) -> tuple[list[EnrichedRecord], SyncReport, UpsertReport | None]:
    """Run the pipeline and, unless disabled, upload its records.

    Raises:
        AppError: On missing configuration or a failed upload
    """
    config = context.config
    if not args.verbose and context.logging_service is not None:
        context.logging_service.set_level(config.log_level)
    if not args.skip_fetch:
        context.config_service.require(config, "steam_api_key")
    # Resolved up front so missing credentials fail before hours of fetching
    sink = context.upsert_sink if args.upload else None

    records, report = await context.pipeline.run(args.accounts, build_options(args, config))

    upsert_report = None
    if sink is not None:
        upsert_report = await sink.upsert_all(records)

    return records, report, upsert_report


async def run(context: ApplicationContext, args: ParsedArgs) -> int:
    """Run one sync and turn its outcome into an exit code."""
    try:
        records, report, upsert_report = await run_sync(context, args)
    except AppError as e:
        user_error = context.error_service.handle_error(e, operation="sync", component="main")
        print(context.error_service.create_user_message(user_error), file=sys.stderr)
        return 1
    finally:
        await context.cleanup()

    log.info(
        "Sync complete",
        accounts=len(report.accounts),
        records=len(records),
        failed=len(report.failed_ids),
        created=upsert_report.created if upsert_report else None,
        updated=upsert_report.updated if upsert_report else None,
    )
    return 0


def main(argv: list[str] | None = None) -> None:
    """Main entry point for the application."""
    args = parse_arguments(argv)

    logging_service = setup_logging(
        log_level=args.log_level,
        log_dir=args.log_dir
    )

    log.info(
        "Starting library sync",
        version=VERSION,
        accounts=args.accounts,
        config_path=str(args.config) if args.config else "default"
    )

    context = ApplicationContext(config_path=args.config, logging_service=logging_service)

    try:
        exit_code = asyncio.run(run(context, args))

    except KeyboardInterrupt:
        log.info("Interrupted by user")
        exit_code = 130  # Standard exit code for SIGINT

    except Exception as e:
        log.error("Unhandled exception", error=str(e), exc_info=True)
        print(f"Fatal error: {e}", file=sys.stderr)
        exit_code = 1

    log.info("Exiting", exit_code=exit_code)
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
