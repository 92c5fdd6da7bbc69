"""Data models for the library sync application."""

from .config import AppConfig, SyncOptions
from .game import EnrichedRecord, MismatchVerdict, NameMismatch, OwnedItemRef, TagScore, now_millis
from .progress import LayerSummary, SyncReport, UpsertReport

__all__ = [
    "AppConfig",
    "EnrichedRecord",
    "LayerSummary",
    "MismatchVerdict",
    "NameMismatch",
    "OwnedItemRef",
    "SyncOptions",
    "SyncReport",
    "TagScore",
    "UpsertReport",
    "now_millis",
]
