"""Progress and run summary data models."""

from dataclasses import dataclass, field


@dataclass
class LayerSummary:
    """Outcome of one enrichment layer for one account."""
    layer: str
    account_id: str
    processed: int = 0
    fetched: int = 0
    cached: int = 0
    no_data: int = 0
    failed_ids: list[int] = field(default_factory=list)
    skipped_ids: list[int] = field(default_factory=list)  # Not attempted, not a failure
    denylisted_ids: list[int] = field(default_factory=list)
    aborted: bool = False  # Source exhausted, layer stopped early


@dataclass
class SyncReport:
    """Everything the pipeline learned in one run, besides the records themselves."""
    accounts: list[str] = field(default_factory=list)
    layers: list[LayerSummary] = field(default_factory=list)
    total_records: int = 0

    @property
    def failed_ids(self) -> list[int]:
        """Every id that failed in any layer, deduplicated and sorted."""
        return sorted({external_id for layer in self.layers for external_id in layer.failed_ids})


@dataclass(frozen=True)
class UpsertReport:
    """Result of pushing records to the remote store."""
    created: int
    updated: int
    existing_remote_items: int
