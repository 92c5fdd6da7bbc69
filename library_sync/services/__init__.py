"""Service layer for business logic and external integrations."""

from .cache_store import CacheStore
from .config import ConfigurationService, ValidationResult
from .directus_client import DirectusClient, DirectusUpsertSink, project_record
from .errors import (
    AppError,
    AuthCaptureTimeout,
    CacheError,
    ConfigurationError,
    ErrorCategory,
    ErrorHandlingService,
    ErrorSeverity,
    FailureReason,
    NetworkError,
    RemoteStoreError,
    UserFriendlyError,
    classify_exception,
)
from .hltb_client import AuthTokenProvider, HltbClient, PlaywrightTokenProvider, StaticTokenProvider
from .http_client import HttpClientService
from .name_matching import HeuristicNameMatcher, NameMatcher
from .pipeline import ReconciliationPipeline, merge_accounts
from .reviews import determine_review_category
from .schemas import SourceResult
from .steam_client import OwnedGamesClient, StoreDetailsClient
from .steamspy_client import SteamSpyClient

__all__ = [
    "AppError",
    "AuthCaptureTimeout",
    "AuthTokenProvider",
    "CacheError",
    "CacheStore",
    "ConfigurationError",
    "ConfigurationService",
    "DirectusClient",
    "DirectusUpsertSink",
    "ErrorCategory",
    "ErrorHandlingService",
    "ErrorSeverity",
    "FailureReason",
    "HeuristicNameMatcher",
    "HltbClient",
    "HttpClientService",
    "NameMatcher",
    "NetworkError",
    "OwnedGamesClient",
    "PlaywrightTokenProvider",
    "ReconciliationPipeline",
    "RemoteStoreError",
    "SourceResult",
    "StaticTokenProvider",
    "SteamSpyClient",
    "StoreDetailsClient",
    "UserFriendlyError",
    "ValidationResult",
    "classify_exception",
    "determine_review_category",
    "merge_accounts",
    "project_record",
]
