"""Reconciliation pipeline: owned lists, cached records and catalog sources into one record set."""

from collections.abc import Sequence
from dataclasses import replace

import structlog

from ..models.config import SyncOptions
from ..models.game import EnrichedRecord, MismatchVerdict, NameMismatch, OwnedItemRef, now_millis
from ..models.progress import LayerSummary, SyncReport
from .cache_store import CacheStore
from .errors import AuthCaptureTimeout, FailureReason
from .hltb_client import HltbClient, apply_estimate, discard_estimate
from .logging import log_progress
from .name_matching import HeuristicNameMatcher, NameMatcher
from .steam_client import OwnedGamesClient, StoreDetailsClient, map_app_details
from .steamspy_client import SteamSpyClient, apply_statistics

log = structlog.stdlib.get_logger()

# Warn before an identity pass expected to take longer than this, in seconds
LONG_RUN_WARNING_THRESHOLD = 30.0

IDENTITY_LAYER = "identity"
STATISTICS_LAYER = "statistics"
ESTIMATE_LAYER = "estimate"


class ReconciliationPipeline:
    """Runs every account through the identity, statistics and estimate layers.

    Accounts and items are processed strictly one at a time so each source's
    request spacing holds. The cache is written after every layer, so an
    interrupted run keeps everything gathered before the interruption.
    """

    def __init__(
        self,
        cache_store: CacheStore,
        owned_client: OwnedGamesClient,
        store_client: StoreDetailsClient,
        statistics_client: SteamSpyClient,
        estimate_client: HltbClient,
        name_matcher: NameMatcher | None = None,
        long_run_warning_threshold: float = LONG_RUN_WARNING_THRESHOLD,
    ) -> None:
        self.cache_store = cache_store
        self.owned_client = owned_client
        self.store_client = store_client
        self.statistics_client = statistics_client
        self.estimate_client = estimate_client
        self.name_matcher = name_matcher or HeuristicNameMatcher()
        self.long_run_warning_threshold = long_run_warning_threshold

    async def run(
        self,
        account_ids: Sequence[str],
        options: SyncOptions = SyncOptions(),
    ) -> tuple[list[EnrichedRecord], SyncReport]:
        """Reconcile every account and merge the results.

        Args:
            account_ids: Accounts to process, in order
            options: Per-run switches

        Returns:
            The merged records sorted by external id, and a report of the run

        Raises:
            ConfigurationError: If a required credential is missing
        """
        report = SyncReport(accounts=list(account_ids))
        if not account_ids:
            log.warning("No accounts given, nothing to do")
            return [], report

        if options.skip_fetch and not options.use_cache:
            log.error("Skipping fetches without the cache yields no records", skip_fetch=True, use_cache=False)

        primary_account_id = options.primary_account_id or account_ids[0]
        per_account: list[list[EnrichedRecord]] = []

        for position, account_id in enumerate(account_ids, start=1):
            log.info(
                "Processing account",
                account_id=account_id,
                position=position,
                total=len(account_ids),
                primary=account_id == primary_account_id,
            )
            records = await self.sync_account(account_id, account_id == primary_account_id, options, report)
            per_account.append(records)

        merged = merge_accounts(per_account)
        report.total_records = len(merged)
        log.info("Unique records across all accounts", count=len(merged), failed=len(report.failed_ids))
        return merged, report

    async def sync_account(
        self,
        account_id: str,
        is_primary_account: bool,
        options: SyncOptions,
        report: SyncReport,
    ) -> list[EnrichedRecord]:
        owned = await self.load_owned(account_id, is_primary_account, options)

        records, summary = await self.identity_pass(account_id, owned, options)
        report.layers.append(summary)

        if options.skip_statistics:
            log.info("Skipping statistics layer", account_id=account_id)
        else:
            report.layers.append(await self.statistics_layer(account_id, records, options))
            await self.cache_store.save_records(records)

        if options.skip_estimates:
            log.info("Skipping estimate layer", account_id=account_id)
        else:
            report.layers.append(await self.estimate_layer(account_id, records, options))
            await self.cache_store.save_records(records)

        return records

    async def load_owned(self, account_id: str, is_primary_account: bool, options: SyncOptions) -> list[OwnedItemRef]:
        """Fetch the account's owned list, or reuse the cached one.

        A failed fetch falls back to the cached list when the cache is in use.
        """
        if options.skip_fetch:
            if not options.use_cache:
                return []
            cached = await self.cache_store.load_owned(account_id)
            return [replace(ref, owner_account_id=account_id, is_primary_account=is_primary_account) for ref in cached]

        result = await self.owned_client.fetch(account_id, is_primary_account)
        if result.ok and result.payload is not None:
            await self.cache_store.save_owned(account_id, result.payload)
            return result.payload

        log.error(
            "Ownership source unavailable for account",
            account_id=account_id,
            reason=result.reason.value if result.reason else None,
            fallback="cached owned list" if options.use_cache else "none",
        )
        if not options.use_cache:
            return []
        cached = await self.cache_store.load_owned(account_id)
        return [replace(ref, is_primary_account=is_primary_account) for ref in cached]

    async def identity_pass(
        self,
        account_id: str,
        owned: Sequence[OwnedItemRef],
        options: SyncOptions,
    ) -> tuple[list[EnrichedRecord], LayerSummary]:
        """Resolve every owned item to a record, from the cache or the store."""
        summary = LayerSummary(layer=IDENTITY_LAYER, account_id=account_id)
        # Read even without the cache so a refetched record keeps its enrichment layers
        stored = await self.cache_store.load_records()
        cached = stored if options.use_cache else {}
        denylist = await self.cache_store.load_denylist()

        expected_fetches = len({ref.external_id for ref in owned} - cached.keys() - denylist)
        expected_seconds = expected_fetches * self.store_client.request_delay
        if not options.skip_fetch and expected_seconds > self.long_run_warning_threshold:
            log.warning(
                "Fetching store details may take a long time",
                items=expected_fetches,
                delay=self.store_client.request_delay,
                estimated_seconds=round(expected_seconds),
            )

        log.info("Resolving owned items", account_id=account_id, count=len(owned))

        results: dict[int, EnrichedRecord] = {}
        seen: set[int] = set()
        new_denylist: list[int] = []

        for index, ref in enumerate(owned, start=1):
            if not options.skip_fetch:
                log_progress(log, index, len(owned), "store details")

            external_id = ref.external_id
            if external_id in seen:
                log.debug("Duplicate owned item, keeping the first", external_id=external_id)
                continue
            seen.add(external_id)
            summary.processed += 1

            record = cached.get(external_id)
            if record is not None:
                record.owned = ref
                results[external_id] = record
                summary.cached += 1
                continue

            if external_id in denylist:
                log.debug("Skipping denylisted item", external_id=external_id)
                summary.failed_ids.append(external_id)
                continue

            if options.skip_fetch:
                summary.skipped_ids.append(external_id)
                continue

            result = await self.store_client.fetch(external_id, options.language)
            if not result.ok or result.payload is None:
                if result.reason is FailureReason.NOT_FOUND:
                    log.warning("Item is no longer available, adding to denylist", external_id=external_id)
                    denylist.add(external_id)
                    new_denylist.append(external_id)
                    summary.denylisted_ids.append(external_id)
                else:
                    log.warning(
                        "Could not fetch store details",
                        external_id=external_id,
                        reason=result.reason.value if result.reason else None,
                    )
                summary.failed_ids.append(external_id)
                continue

            record = map_app_details(external_id, result.payload, self.store_client.lookup_url(external_id, options.language))
            previous = stored.get(external_id)
            if previous is not None:
                record.carry_enrichment_from(previous)
            record.owned = ref
            results[external_id] = record
            summary.fetched += 1

        _log_layer_summary(summary)

        records = list(results.values())
        await self.cache_store.save_records(records)
        if new_denylist:
            await self.cache_store.save_denylist(new_denylist)

        return records, summary

    async def statistics_layer(
        self,
        account_id: str,
        records: Sequence[EnrichedRecord],
        options: SyncOptions,
    ) -> LayerSummary:
        """Fill review counts, playtime statistics and tags."""
        summary = LayerSummary(layer=STATISTICS_LAYER, account_id=account_id)
        log.info("Fetching statistics", account_id=account_id, count=len(records))

        for index, record in enumerate(records, start=1):
            log_progress(log, index, len(records), "statistics")
            summary.processed += 1

            if options.use_cache and record.spy_update_timestamp:
                summary.cached += 1
                continue

            result = await self.statistics_client.fetch(record.external_id)
            if not result.ok:
                log.warning(
                    "Could not fetch statistics",
                    external_id=record.external_id,
                    name=record.name,
                    reason=result.reason.value if result.reason else None,
                )
                summary.failed_ids.append(record.external_id)
                continue

            if result.payload is None:
                log.info("No statistics found", external_id=record.external_id, name=record.name)
                record.spy_update_timestamp = now_millis()
                summary.no_data += 1
                continue

            apply_statistics(record, result.payload)
            summary.fetched += 1

        _log_layer_summary(summary)
        return summary

    async def estimate_layer(
        self,
        account_id: str,
        records: Sequence[EnrichedRecord],
        options: SyncOptions,
    ) -> LayerSummary:
        """Fill time-to-beat estimates.

        Each failure lengthens the delay and re-captures the session token;
        reaching the consecutive failure ceiling, or failing to capture a
        token, stops this layer only.
        """
        summary = LayerSummary(layer=ESTIMATE_LAYER, account_id=account_id)
        pending = [record for record in records if not (options.use_cache and record.last_hltb_update_timestamp)]
        summary.processed = len(records)
        summary.cached = len(records) - len(pending)

        if not pending:
            log.info("Every estimate is cached", account_id=account_id, count=len(records))
            return summary

        log.info("Fetching estimates", account_id=account_id, count=len(pending))

        try:
            await self.estimate_client.start()
        except AuthCaptureTimeout as e:
            log.error("Could not capture estimate source token, skipping estimates", error=e.message)
            summary.aborted = True
            return summary

        ledger = await self.cache_store.load_mismatch_ledger()
        new_mismatches: list[NameMismatch] = []

        for index, record in enumerate(pending, start=1):
            log_progress(log, index, len(pending), "estimates")

            result = await self.estimate_client.fetch(record.name)
            if not result.ok:
                summary.failed_ids.append(record.external_id)
                if self.estimate_client.exhausted:
                    log.error(
                        "Estimate source failed too often, skipping the remaining estimates",
                        consecutive_failures=self.estimate_client.consecutive_failures,
                        remaining=len(pending) - index,
                    )
                    summary.aborted = True
                    break
                try:
                    await self.estimate_client.recover()
                except AuthCaptureTimeout as e:
                    log.error("Could not re-capture estimate source token, skipping the remaining estimates", error=e.message)
                    summary.aborted = True
                    break
                continue

            if result.payload is None:
                log.debug("No estimate found", external_id=record.external_id, name=record.name)
                record.last_hltb_update_timestamp = now_millis()
                summary.no_data += 1
                continue

            apply_estimate(record, result.payload)
            summary.fetched += 1
            mismatch = self.review_match(record, ledger)
            if mismatch is not None:
                new_mismatches.append(mismatch)

        if new_mismatches:
            await self.cache_store.save_mismatch_ledger(new_mismatches)

        _log_layer_summary(summary)
        return summary

    def review_match(self, record: EnrichedRecord, ledger: dict[int, NameMismatch]) -> NameMismatch | None:
        """Apply a human verdict to a doubtful estimate match.

        Returns:
            A new unconfirmed ledger entry, if the match needs a human to look at it
        """
        if record.hltb_name is None or self.name_matcher.matches(record.hltb_name, record.name):
            return None

        entry = ledger.get(record.external_id)
        if entry is not None and entry.verdict is MismatchVerdict.YES:
            return None
        if entry is not None and entry.verdict is MismatchVerdict.NO:
            log.info("Discarding estimate rejected in the ledger", external_id=record.external_id, matched_name=record.hltb_name)
            discard_estimate(record)
            return None

        log.warning(
            "Estimate matched a different name, please confirm in the ledger",
            external_id=record.external_id,
            name=record.name,
            matched_name=record.hltb_name,
            ledger=str(self.cache_store.ledger_path),
        )
        return NameMismatch(
            external_id=record.external_id,
            matched_name=record.hltb_name,
            record_name=record.name,
            verdict=MismatchVerdict.UNCONFIRMED,
        )


def merge_accounts(per_account: Sequence[Sequence[EnrichedRecord]]) -> list[EnrichedRecord]:
    """Collapse per-account record lists into one, sorted by external id.

    A record from the primary account always wins; otherwise the later account wins.
    """
    merged: dict[int, EnrichedRecord] = {}
    for records in per_account:
        for record in records:
            existing = merged.get(record.external_id)
            if existing is not None and _is_primary(existing) and not _is_primary(record):
                continue
            merged[record.external_id] = record
    return [merged[external_id] for external_id in sorted(merged)]


def _is_primary(record: EnrichedRecord) -> bool:
    return record.owned is not None and record.owned.is_primary_account


def _log_layer_summary(summary: LayerSummary) -> None:
    log.info(
        "Layer complete",
        layer=summary.layer,
        account_id=summary.account_id,
        processed=summary.processed,
        fetched=summary.fetched,
        cached=summary.cached,
        no_data=summary.no_data,
        failed=len(summary.failed_ids),
        aborted=summary.aborted,
    )
    if summary.failed_ids:
        log.warning(
            "Could not process or skipped items",
            layer=summary.layer,
            account_id=summary.account_id,
            count=len(summary.failed_ids),
            external_ids=summary.failed_ids,
        )
    if summary.skipped_ids:
        log.info(
            "Items not in the cache were not fetched",
            layer=summary.layer,
            account_id=summary.account_id,
            count=len(summary.skipped_ids),
            external_ids=summary.skipped_ids,
        )
