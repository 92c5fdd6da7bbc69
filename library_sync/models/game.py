"""Game-related data models."""

from dataclasses import asdict, dataclass, field, fields
from datetime import datetime, timezone
from enum import Enum
from typing import Any


@dataclass(frozen=True)
class OwnedItemRef:
    """One owned game as seen from a single account on a single run."""
    external_id: int
    owner_account_id: str
    hours_played: float = 0.0
    last_played_at: datetime | None = None
    is_primary_account: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "external_id": self.external_id,
            "owner_account_id": self.owner_account_id,
            "hours_played": self.hours_played,
            "last_played_at": self.last_played_at.isoformat() if self.last_played_at else None,
            "is_primary_account": self.is_primary_account,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "OwnedItemRef":
        last_played_raw = data.get("last_played_at")
        return cls(
            external_id=int(data["external_id"]),
            owner_account_id=str(data["owner_account_id"]),
            hours_played=float(data.get("hours_played") or 0.0),
            last_played_at=datetime.fromisoformat(last_played_raw) if last_played_raw else None,
            is_primary_account=bool(data.get("is_primary_account", False)),
        )


@dataclass(frozen=True)
class TagScore:
    """A community tag with its vote weight."""
    name: str
    score: int


@dataclass
class EnrichedRecord:
    """The durable, cached unit of the library, keyed by ``external_id``.

    Fields accumulate in layers: identity (store details), statistics
    (SteamSpy), estimate (HowLongToBeat). A layer whose timestamp is unset has
    never run for this id. ``owned`` is the per-run view of the requesting
    account and is never written to the record cache.
    """
    external_id: int
    name: str = ""

    # Identity layer
    query: str | None = None
    detailed_description: str = ""
    about_the_game: str = ""
    short_description: str = ""
    header_image: str = ""
    capsule_image: str = ""
    capsule_imagev5: str = ""
    background: str = ""
    background_raw: str = ""
    movies: list[str] = field(default_factory=list)
    screenshots: list[str] = field(default_factory=list)
    developers: list[str] = field(default_factory=list)
    publishers: list[str] = field(default_factory=list)
    categories: list[str] = field(default_factory=list)
    genres: list[str] = field(default_factory=list)
    metacritic_score: int | None = None
    release_date_string: str | None = None
    release_date_timestamp: int | None = None  # epoch milliseconds

    # Statistics layer
    total_positive_reviews: int | None = None
    total_negative_reviews: int | None = None
    total_reviews: int | None = None
    review_category: str | None = None
    spy_average_forever: int | None = None
    spy_average_2weeks: int | None = None
    spy_median_forever: int | None = None
    spy_median_2weeks: int | None = None
    spy_tags: list[TagScore] = field(default_factory=list)
    spy_update_timestamp: int | None = None

    # Estimate layer
    hltb_name: str | None = None
    hltb_hours: int | None = None
    hltb_hours_extra: int | None = None
    hltb_hours_completionist: int | None = None
    hltb_url: str | None = None
    last_hltb_update_timestamp: int | None = None

    # Transient per-run layer
    owned: OwnedItemRef | None = None

    def to_cache_dict(self) -> dict[str, Any]:
        """Serialize for the record cache, without the per-run layer."""
        data = asdict(self)
        data.pop("owned", None)
        return data

    def carry_enrichment_from(self, previous: "EnrichedRecord") -> None:
        """Copy the statistics and estimate layers of an older copy of this record.

        Used when the identity layer is fetched again, so a refresh never
        loses layers that this run does not redo.
        """
        for name in ENRICHMENT_FIELDS:
            value = getattr(previous, name)
            setattr(self, name, list(value) if isinstance(value, list) else value)

    @classmethod
    def from_cache_dict(cls, data: dict[str, Any]) -> "EnrichedRecord":
        """Rebuild a record from a cache entry, ignoring unknown keys."""
        known = {f.name for f in fields(cls)} - {"owned", "spy_tags"}
        kwargs = {key: value for key, value in data.items() if key in known}
        kwargs["external_id"] = int(data["external_id"])
        kwargs["spy_tags"] = [
            TagScore(name=str(tag["name"]), score=int(tag["score"]))
            for tag in data.get("spy_tags") or []
        ]
        return cls(**kwargs)


STATISTICS_FIELDS = (
    "total_positive_reviews",
    "total_negative_reviews",
    "total_reviews",
    "review_category",
    "spy_average_forever",
    "spy_average_2weeks",
    "spy_median_forever",
    "spy_median_2weeks",
    "spy_tags",
    "spy_update_timestamp",
)
ESTIMATE_FIELDS = (
    "hltb_name",
    "hltb_hours",
    "hltb_hours_extra",
    "hltb_hours_completionist",
    "hltb_url",
    "last_hltb_update_timestamp",
)
ENRICHMENT_FIELDS = STATISTICS_FIELDS + ESTIMATE_FIELDS

class MismatchVerdict(Enum):
    """A human's answer to "is this matched name really the same game?"."""
    YES = "yes"
    NO = "no"
    UNCONFIRMED = "unconfirmed"


@dataclass(frozen=True)
class NameMismatch:
    """One entry of the hand-editable name mismatch ledger."""
    external_id: int
    matched_name: str
    record_name: str
    verdict: MismatchVerdict = MismatchVerdict.UNCONFIRMED


def now_millis() -> int:
    """Current time as epoch milliseconds, the unit of every layer timestamp."""
    return int(datetime.now(timezone.utc).timestamp() * 1000)
