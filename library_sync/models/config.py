"""Configuration data models."""

from dataclasses import dataclass
from pathlib import Path


@dataclass(frozen=True)
class AppConfig:
    """Application configuration settings."""
    cache_directory: Path
    language: str = "english"
    log_level: str = "INFO"

    # Per-source inter-request delays, in seconds
    store_request_delay: float = 3.0
    statistics_request_delay: float = 1.5
    estimate_request_delay: float = 1.5
    estimate_failure_delay_step: float = 1.0  # Added per consecutive failure
    estimate_recapture_delay: float = 5.0
    estimate_max_failures: int = 10
    auth_capture_timeout: float = 30.0

    # Credentials, usually provided through the environment
    steam_api_key: str | None = None
    directus_endpoint: str | None = None
    directus_token: str | None = None
    directus_collection: str = "Game"
    hltb_auth_token: str | None = None  # Skips browser capture when set


@dataclass(frozen=True)
class SyncOptions:
    """Per-run switches for the reconciliation pipeline."""
    use_cache: bool = True
    skip_fetch: bool = False  # Reuse cached owned lists, never hit the store
    language: str = "english"
    primary_account_id: str | None = None
    skip_statistics: bool = False
    skip_estimates: bool = False
