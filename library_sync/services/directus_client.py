"""Directus REST client and the remote upsert sink built on it."""

from collections.abc import Sequence
from datetime import datetime, timezone
from typing import Any

import httpx
import pydantic
import structlog

from ..models.game import EnrichedRecord
from ..models.progress import UpsertReport
from .errors import RemoteStoreError
from .http_client import HttpClientService
from .logging import log_progress
from .schemas import DirectusItemResponse, DirectusItemsPage

log = structlog.stdlib.get_logger()

DIRECTUS_COLLECTION = "Game"
DIRECTUS_KEY_FIELD = "Steam_ID"
DIRECTUS_PAGE_SIZE = 1000
DIRECTUS_MAX_PAGES = 999

MARKETPLACE = "Steam"


class DirectusClient:
    """Minimal client for one Directus collection, authenticated with a static token."""

    def __init__(
        self,
        http_client: HttpClientService,
        endpoint: str,
        token: str,
        collection: str = DIRECTUS_COLLECTION,
    ) -> None:
        self.http_client = http_client
        self.endpoint = endpoint.rstrip("/")
        self.token = token
        self.collection = collection

    @property
    def items_url(self) -> str:
        return f"{self.endpoint}/items/{self.collection}"

    @property
    def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.token}"}

    async def read_page(self, offset: int, limit: int, fields: Sequence[str] = ("id", DIRECTUS_KEY_FIELD)) -> list[dict[str, Any]]:
        """Read one page of items.

        Raises:
            httpx.HTTPStatusError: On an error response
            httpx.RequestError: If the request could not be sent
            pydantic.ValidationError: If the response has no item list
        """
        params = {"offset": str(offset), "limit": str(limit), "fields": ",".join(fields)}
        response = await self.http_client.get(self.items_url, headers=self._headers, params=params, rate_limit_key="directus")
        return DirectusItemsPage.model_validate(response.json()).data

    async def create(self, fields: dict[str, Any]) -> dict[str, Any]:
        response = await self.http_client.post(
            self.items_url, json=fields, headers=self._headers, rate_limit_key="directus", max_retries=0
        )
        return _item_data(response)

    async def update(self, item_id: Any, fields: dict[str, Any]) -> dict[str, Any]:
        response = await self.http_client.patch(
            f"{self.items_url}/{item_id}", json=fields, headers=self._headers, rate_limit_key="directus", max_retries=0
        )
        return _item_data(response)


class DirectusUpsertSink:
    """Creates or updates one remote item per record, matched on the external id field."""

    def __init__(
        self,
        client: DirectusClient,
        key_field: str = DIRECTUS_KEY_FIELD,
        page_size: int = DIRECTUS_PAGE_SIZE,
        max_pages: int = DIRECTUS_MAX_PAGES,
    ) -> None:
        self.client = client
        self.key_field = key_field
        self.page_size = page_size
        self.max_pages = max_pages

    async def build_index(self) -> dict[int, Any]:
        """Map external id to remote item id across every page.

        Raises:
            RemoteStoreError: If a page cannot be read
        """
        index: dict[int, Any] = {}

        for page in range(self.max_pages):
            offset = page * self.page_size
            try:
                items = await self.client.read_page(offset, self.page_size, fields=("id", self.key_field))
            except (httpx.HTTPError, pydantic.ValidationError, ValueError) as e:
                raise RemoteStoreError("Failed to read remote items", original_error=e) from e

            if not items:
                break

            for item in items:
                key = item.get(self.key_field)
                if key is None or item.get("id") is None:
                    continue
                try:
                    index[int(key)] = item["id"]
                except (TypeError, ValueError):
                    log.warning("Remote item has a non-numeric key", item_id=item["id"], key=key)
        else:
            log.warning("Stopped reading remote items at the page cap", max_pages=self.max_pages)

        log.info("Built remote item index", count=len(index))
        return index

    async def upsert_all(self, records: Sequence[EnrichedRecord]) -> UpsertReport:
        """Create or update every record, in order.

        The first failed write aborts the batch; later records are not attempted.

        Raises:
            RemoteStoreError: On the first failed read or write
        """
        index = await self.build_index()
        existing_remote_items = len(index)
        created = 0
        updated = 0

        for position, record in enumerate(records, start=1):
            fields = project_record(record)
            item_id = index.get(record.external_id)
            try:
                if item_id is None:
                    result = await self.client.create(fields)
                    if result.get("id") is not None:
                        index[record.external_id] = result["id"]
                    created += 1
                else:
                    await self.client.update(item_id, fields)
                    updated += 1
            except (httpx.HTTPError, pydantic.ValidationError, ValueError) as e:
                log.error(
                    "Remote write failed, aborting upload",
                    external_id=record.external_id,
                    item_id=item_id,
                    position=position,
                    remaining=len(records) - position,
                )
                raise RemoteStoreError(
                    f"Failed to {'create' if item_id is None else 'update'} remote item for {record.external_id}",
                    external_id=record.external_id,
                    item_id=item_id,
                    original_error=e,
                ) from e

            log_progress(log, position, len(records), "records uploaded")

        log.info("Upload complete", created=created, updated=updated)
        return UpsertReport(created=created, updated=updated, existing_remote_items=existing_remote_items)


def project_record(record: EnrichedRecord) -> dict[str, Any]:
    """Remote fields for ``record``. Keys whose value is unknown are left out."""
    release_date = None
    if record.release_date_timestamp is not None:
        release_date = datetime.fromtimestamp(record.release_date_timestamp / 1000, tz=timezone.utc).date().isoformat()

    spy_tags = sorted(record.spy_tags, key=lambda tag: tag.score, reverse=True)

    fields: dict[str, Any] = {
        "Steam_ID": record.external_id,
        "Name": record.name or None,
        "Description": record.short_description or None,
        "Cover_Image": record.header_image or None,
        "Screenshots": "\n".join(record.screenshots) or None,
        "Developers": list(record.developers) or None,
        "Publishers": list(record.publishers) or None,
        "Genres": list(record.genres) or None,
        "Tags": list(record.categories) or None,
        "Metacritic_Score": record.metacritic_score,
        "Release_Date": release_date,
        "Steam_Positive_Reviews": record.total_positive_reviews,
        "Steam_Negative_Reviews": record.total_negative_reviews,
        "Steam_Total_Reviews": record.total_reviews,
        "Review_Category": record.review_category,
        "Spy_Tags": [tag.name for tag in spy_tags] or None,
        "HLTB_Hours": record.hltb_hours,
        "HLTB_Extra": record.hltb_hours_extra,
        "HLTB_Completionist": record.hltb_hours_completionist,
        "HLTB_URL": record.hltb_url,
        "Marketplace": MARKETPLACE,
    }

    owned = record.owned
    if owned is not None and owned.is_primary_account:
        fields["Hours_Played"] = owned.hours_played
        fields["Last_Played"] = owned.last_played_at.isoformat() if owned.last_played_at else None

    return {key: value for key, value in fields.items() if value is not None}


def _item_data(response: httpx.Response) -> dict[str, Any]:
    # Directus answers 204 without a body when the item is not returned
    if response.status_code == 204 or not response.content:
        return {}
    return DirectusItemResponse.model_validate(response.json()).data
