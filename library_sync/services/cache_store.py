"""On-disk JSON cache for owned lists, enriched records, the denylist and the name mismatch ledger.

Loads never fail: a missing, unreadable or malformed file reads as empty.
Saves never raise: a failed write is logged and reported through the return
value, since the in-memory results are still usable downstream.

The cache assumes a single writer. Two runs sharing a cache directory race
on every file and the result is undefined.
"""

import asyncio
import json
import re
from collections.abc import Iterable
from pathlib import Path
from typing import Any

import structlog

from ..models.game import EnrichedRecord, MismatchVerdict, NameMismatch, OwnedItemRef
from .errors import CacheError

log = structlog.stdlib.get_logger()

RECORDS_FILENAME = "game-info-cache.json"
OWNED_FILENAME_TEMPLATE = "owned-games-cache-{account_id}.json"
DENYLIST_FILENAME = "known-deleted-games-cache.json"
MISMATCH_LEDGER_FILENAME = "hltb-name-mismatches.txt"

LEDGER_LINE_PATTERN = re.compile(r"^\((\d+)\) Is (.*?) really (.*)\? \[([A-Za-z]+)\]\s*$")


class CacheStore:
    """Durable key-value persistence for the reconciliation pipeline."""

    def __init__(self, cache_directory: Path) -> None:
        self.cache_directory = cache_directory
        log.info("Cache store initialized", cache_directory=str(cache_directory))

    @property
    def records_path(self) -> Path:
        return self.cache_directory / RECORDS_FILENAME

    @property
    def denylist_path(self) -> Path:
        return self.cache_directory / DENYLIST_FILENAME

    @property
    def ledger_path(self) -> Path:
        return self.cache_directory / MISMATCH_LEDGER_FILENAME

    def owned_path(self, account_id: str) -> Path:
        safe_account_id = re.sub(r"[^A-Za-z0-9_-]", "_", account_id)
        return self.cache_directory / OWNED_FILENAME_TEMPLATE.format(account_id=safe_account_id)

    # Enriched records

    async def load_records(self) -> dict[int, EnrichedRecord]:
        """Load every cached record, keyed by external id."""
        records: dict[int, EnrichedRecord] = {}
        for entry in await self._read_json_array(self.records_path):
            if not isinstance(entry, dict):
                log.warning("Skipping malformed cached record", entry=entry)
                continue
            try:
                record = EnrichedRecord.from_cache_dict(entry)
            except (KeyError, TypeError, ValueError) as e:
                log.warning("Skipping malformed cached record", entry_id=_entry_id(entry), error=str(e))
                continue
            records[record.external_id] = record

        log.info("Loaded records from cache", count=len(records))
        return records

    async def save_records(self, records: Iterable[EnrichedRecord]) -> bool:
        """Merge ``records`` into the record cache and write it back.

        Fresh records replace cached entries with the same id; cached entries
        without a fresh counterpart are kept as they are. The per-run layer is
        never written.
        """
        merged: dict[int, dict[str, Any]] = {}
        for entry in await self._read_json_array(self.records_path):
            entry_id = _entry_id(entry)
            if entry_id is not None:
                merged[entry_id] = entry

        fresh_count = 0
        for record in records:
            merged[record.external_id] = record.to_cache_dict()
            fresh_count += 1

        ordered = [merged[external_id] for external_id in sorted(merged)]
        saved = await self._write_json(self.records_path, ordered)
        if saved:
            log.info("Wrote records to cache", fresh=fresh_count, total=len(ordered))
        return saved

    # Owned lists

    async def load_owned(self, account_id: str) -> list[OwnedItemRef]:
        """Load the owned list last fetched for ``account_id``."""
        refs: list[OwnedItemRef] = []
        for entry in await self._read_json_array(self.owned_path(account_id)):
            try:
                refs.append(OwnedItemRef.from_dict(entry))
            except (KeyError, TypeError, ValueError) as e:
                log.warning("Skipping malformed owned entry", account_id=account_id, error=str(e))

        log.info("Loaded owned list from cache", account_id=account_id, count=len(refs))
        return refs

    async def save_owned(self, account_id: str, refs: Iterable[OwnedItemRef]) -> bool:
        """Replace the owned list of ``account_id``. Owned lists are snapshots, not merged."""
        ordered = [ref.to_dict() for ref in sorted(refs, key=lambda ref: ref.external_id)]
        saved = await self._write_json(self.owned_path(account_id), ordered)
        if saved:
            log.info("Wrote owned list to cache", account_id=account_id, count=len(ordered))
        return saved

    # Denylist

    async def load_denylist(self) -> set[int]:
        """Load the ids known to be permanently unavailable."""
        denylist: set[int] = set()
        for entry in await self._read_json_array(self.denylist_path):
            try:
                denylist.add(int(entry))
            except (TypeError, ValueError):
                log.warning("Skipping malformed denylist entry", entry=entry)

        log.info("Loaded denylist from cache", count=len(denylist))
        return denylist

    async def save_denylist(self, external_ids: Iterable[int]) -> bool:
        """Union ``external_ids`` with the cached denylist and write it back."""
        merged = await self.load_denylist()
        merged.update(external_ids)
        saved = await self._write_json(self.denylist_path, sorted(merged))
        if saved:
            log.info("Wrote denylist to cache", count=len(merged))
        return saved

    # Name mismatch ledger

    async def load_mismatch_ledger(self) -> dict[int, NameMismatch]:
        """Parse the hand-editable ledger. Unreadable lines are skipped."""
        try:
            text = await asyncio.to_thread(self.ledger_path.read_text, encoding="utf-8")
        except FileNotFoundError:
            log.info("No name mismatch ledger found, starting empty", path=str(self.ledger_path))
            return {}
        except (OSError, UnicodeDecodeError) as e:
            self._report(CacheError("Could not read name mismatch ledger", e, str(self.ledger_path)))
            return {}

        ledger: dict[int, NameMismatch] = {}
        for line_number, line in enumerate(text.splitlines(), start=1):
            if not line.strip():
                continue
            entry = parse_ledger_line(line)
            if entry is None:
                log.warning("Skipping malformed ledger line", line_number=line_number, line=line)
                continue
            ledger[entry.external_id] = entry

        log.info("Loaded name mismatch ledger", count=len(ledger))
        return ledger

    async def save_mismatch_ledger(self, entries: Iterable[NameMismatch]) -> bool:
        """Merge ``entries`` into the ledger file; new entries win on the same id."""
        merged = await self.load_mismatch_ledger()
        for entry in entries:
            merged[entry.external_id] = entry

        lines = [format_ledger_line(merged[external_id]) for external_id in sorted(merged)]
        content = "\n".join(lines) + ("\n" if lines else "")
        saved = await self._write_text(self.ledger_path, content)
        if saved:
            log.info("Wrote name mismatch ledger", count=len(lines))
        return saved

    # File helpers

    async def _read_json_array(self, path: Path) -> list[Any]:
        """Read a JSON array, treating every failure as an empty cache."""
        try:
            text = await asyncio.to_thread(path.read_text, encoding="utf-8")
        except FileNotFoundError:
            log.info("No cache file found, will create new cache", path=str(path))
            return []
        except (OSError, UnicodeDecodeError) as e:
            self._report(CacheError("Could not read cache file", e, str(path)))
            return []

        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            self._report(CacheError("Cache file is not valid JSON", e, str(path)))
            return []

        if not isinstance(data, list):
            log.warning("Cache file does not hold a JSON array, ignoring it", path=str(path), type=type(data).__name__)
            return []
        return data

    async def _write_json(self, path: Path, data: list[Any]) -> bool:
        try:
            content = json.dumps(data, indent=2, ensure_ascii=False)
        except (TypeError, ValueError) as e:
            self._report(CacheError("Cannot serialize cache data to JSON", e, str(path)))
            return False
        return await self._write_text(path, content)

    async def _write_text(self, path: Path, content: str) -> bool:
        """Write through a temporary file so a crash never leaves a torn cache file."""
        temp_path = path.with_suffix(path.suffix + ".tmp")
        try:
            await asyncio.to_thread(_replace_file, path, temp_path, content)
        except OSError as e:
            self._report(CacheError("Failed to write cache file", e, str(path)))
            try:
                temp_path.unlink(missing_ok=True)
            except OSError:
                log.warning("Failed to clean up temporary cache file", path=str(temp_path))
            return False
        return True

    @staticmethod
    def _report(error: CacheError) -> None:
        log.error(
            error.message,
            path=error.path,
            technical_details=error.technical_details,
        )


def _replace_file(path: Path, temp_path: Path, content: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    temp_path.write_text(content, encoding="utf-8")
    temp_path.replace(path)


def _entry_id(entry: Any) -> int | None:
    if not isinstance(entry, dict):
        return None
    try:
        return int(entry["external_id"])
    except (KeyError, TypeError, ValueError):
        return None


def parse_ledger_line(line: str) -> NameMismatch | None:
    """Parse ``(<id>) Is <a> really <b>? [yes|no|unconfirmed]``."""
    match = LEDGER_LINE_PATTERN.match(line.strip())
    if match is None:
        return None

    try:
        verdict = MismatchVerdict(match.group(4).lower())
    except ValueError:
        verdict = MismatchVerdict.UNCONFIRMED

    return NameMismatch(
        external_id=int(match.group(1)),
        matched_name=match.group(2),
        record_name=match.group(3),
        verdict=verdict,
    )


def format_ledger_line(entry: NameMismatch) -> str:
    return f"({entry.external_id}) Is {entry.matched_name} really {entry.record_name}? [{entry.verdict.value}]"
