"""Tests for the Directus client and the remote upsert sink."""

from datetime import datetime, timezone
from typing import Any
from unittest.mock import AsyncMock, call

import httpx
import pytest

from library_sync.models import EnrichedRecord, OwnedItemRef, TagScore
from library_sync.services.directus_client import DirectusClient, DirectusUpsertSink, project_record
from library_sync.services.errors import RemoteStoreError
from library_sync.services.http_client import HttpClientService


def make_records(count: int) -> list[EnrichedRecord]:
    return [EnrichedRecord(external_id=index, name=f"Game {index}") for index in range(1, count + 1)]


def write_failure() -> httpx.HTTPStatusError:
    request = httpx.Request("POST", "https://directus.example/items/Game")
    return httpx.HTTPStatusError("Forbidden", request=request, response=httpx.Response(403, request=request))


def make_sink(pages: list[list[dict[str, Any]]], page_size: int = 2, max_pages: int = 999) -> tuple[DirectusUpsertSink, AsyncMock]:
    client = AsyncMock(spec=DirectusClient)
    client.read_page.side_effect = pages + [[]]
    client.create.side_effect = lambda fields: {"id": 1000 + fields["Steam_ID"], **fields}
    client.update.side_effect = lambda item_id, fields: {"id": item_id, **fields}
    return DirectusUpsertSink(client, page_size=page_size, max_pages=max_pages), client


class TestDirectusUpsertSink:
    """Test cases for index building and upserts."""

    @pytest.mark.asyncio
    async def test_existing_item_is_updated_never_created(self) -> None:
        sink, client = make_sink([[{"id": 77, "Steam_ID": 1}]])

        report = await sink.upsert_all(make_records(1))

        client.update.assert_awaited_once()
        assert client.update.await_args.args[0] == 77
        client.create.assert_not_awaited()
        assert (report.created, report.updated, report.existing_remote_items) == (0, 1, 1)

    @pytest.mark.asyncio
    async def test_new_items_are_created(self) -> None:
        sink, client = make_sink([[{"id": 77, "Steam_ID": 1}]])

        report = await sink.upsert_all(make_records(3))

        assert client.create.await_count == 2
        assert [c.args[0]["Steam_ID"] for c in client.create.await_args_list] == [2, 3]
        assert (report.created, report.updated) == (2, 1)

    @pytest.mark.asyncio
    async def test_write_failure_aborts_the_remaining_batch(self) -> None:
        sink, client = make_sink([])
        attempted: list[int] = []

        def create(fields: dict[str, Any]) -> dict[str, Any]:
            attempted.append(fields["Steam_ID"])
            if fields["Steam_ID"] == 3:
                raise write_failure()
            return {"id": fields["Steam_ID"]}

        client.create.side_effect = create

        with pytest.raises(RemoteStoreError) as exc_info:
            await sink.upsert_all(make_records(5))

        assert attempted == [1, 2, 3]
        assert exc_info.value.external_id == 3
        assert exc_info.value.recoverable is False

    @pytest.mark.asyncio
    async def test_index_reads_pages_until_an_empty_one(self) -> None:
        sink, client = make_sink([
            [{"id": 1, "Steam_ID": "10"}, {"id": 2, "Steam_ID": 20}],
            [{"id": 3, "Steam_ID": 30}, {"id": 4, "Steam_ID": None}],
        ])

        index = await sink.build_index()

        assert index == {10: 1, 20: 2, 30: 3}
        assert client.read_page.await_args_list == [
            call(0, 2, fields=("id", "Steam_ID")),
            call(2, 2, fields=("id", "Steam_ID")),
            call(4, 2, fields=("id", "Steam_ID")),
        ]

    @pytest.mark.asyncio
    async def test_index_stops_at_the_page_cap(self) -> None:
        client = AsyncMock(spec=DirectusClient)
        client.read_page.return_value = [{"id": 1, "Steam_ID": 1}]
        sink = DirectusUpsertSink(client, page_size=1, max_pages=5)

        await sink.build_index()

        assert client.read_page.await_count == 5

    @pytest.mark.asyncio
    async def test_index_read_failure_is_fatal(self) -> None:
        client = AsyncMock(spec=DirectusClient)
        client.read_page.side_effect = httpx.ConnectError("unreachable")
        sink = DirectusUpsertSink(client)

        with pytest.raises(RemoteStoreError):
            await sink.upsert_all(make_records(2))

        client.create.assert_not_awaited()


class TestDirectusClient:
    """Test cases for the REST calls."""

    @pytest.mark.asyncio
    async def test_requests_carry_the_bearer_token(self) -> None:
        requests: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            if request.method == "GET":
                return httpx.Response(200, json={"data": [{"id": 5, "Steam_ID": 620}]})
            if request.method == "PATCH":
                return httpx.Response(204)
            return httpx.Response(200, json={"data": {"id": 6}})

        http_client = HttpClientService(
            max_retries=0,
            client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        )
        client = DirectusClient(http_client, endpoint="https://directus.example/", token="t0ken")

        items = await client.read_page(0, 1000)
        created = await client.create({"Steam_ID": 1})
        updated = await client.update(5, {"Name": "Portal 2"})

        assert items == [{"id": 5, "Steam_ID": 620}]
        assert created == {"id": 6}
        assert updated == {}
        assert [request.method for request in requests] == ["GET", "POST", "PATCH"]
        assert str(requests[2].url) == "https://directus.example/items/Game/5"
        assert all(request.headers["Authorization"] == "Bearer t0ken" for request in requests)
        assert requests[0].url.params["limit"] == "1000"


class TestProjectRecord:
    """Test cases for the remote field projection."""

    def test_fields_are_projected(self) -> None:
        record = EnrichedRecord(
            external_id=620,
            name="Portal 2",
            short_description="Puzzles.",
            header_image="header.jpg",
            screenshots=["a.jpg", "b.jpg"],
            genres=["Puzzle"],
            categories=["Single-player"],
            release_date_timestamp=1303084800000,
            total_positive_reviews=80,
            total_negative_reviews=20,
            total_reviews=100,
            review_category="Very Positive",
            spy_tags=[TagScore("Co-op", 10), TagScore("Puzzle", 50)],
            hltb_hours=8,
        )

        fields = project_record(record)

        assert fields["Steam_ID"] == 620
        assert fields["Description"] == "Puzzles."
        assert fields["Cover_Image"] == "header.jpg"
        assert fields["Screenshots"] == "a.jpg\nb.jpg"
        assert fields["Tags"] == ["Single-player"]
        assert fields["Release_Date"] == "2011-04-18"
        assert fields["Spy_Tags"] == ["Puzzle", "Co-op"]
        assert fields["HLTB_Hours"] == 8
        assert fields["Marketplace"] == "Steam"

    def test_unknown_values_are_left_out(self) -> None:
        fields = project_record(EnrichedRecord(external_id=1, name="Bare"))

        assert fields == {"Steam_ID": 1, "Name": "Bare", "Marketplace": "Steam"}

    def test_playtime_only_from_the_primary_account(self) -> None:
        last_played = datetime(2024, 5, 1, tzinfo=timezone.utc)
        record = EnrichedRecord(external_id=1, name="Owned")

        record.owned = OwnedItemRef(1, "secondary", hours_played=9.0, last_played_at=last_played)
        assert "Hours_Played" not in project_record(record)

        record.owned = OwnedItemRef(1, "primary", hours_played=9.0, last_played_at=last_played, is_primary_account=True)
        fields = project_record(record)
        assert fields["Hours_Played"] == 9.0
        assert fields["Last_Played"] == last_played.isoformat()
