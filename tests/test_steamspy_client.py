"""Tests for the SteamSpy statistics source."""

from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from library_sync.models import EnrichedRecord, TagScore
from library_sync.services.errors import FailureReason
from library_sync.services.http_client import HttpClientService
from library_sync.services.schemas import SteamSpyAppDetails
from library_sync.services.steamspy_client import SteamSpyClient, apply_statistics


def json_response(payload: object) -> MagicMock:
    response = MagicMock(spec=httpx.Response)
    response.json.return_value = payload
    return response


class TestSteamSpyClient:
    """Test cases for SteamSpyClient.fetch."""

    @pytest.mark.asyncio
    async def test_statistics_are_parsed(self) -> None:
        http_client = AsyncMock(spec=HttpClientService)
        http_client.get.return_value = json_response({
            "appid": 620,
            "name": "Portal 2",
            "positive": 300,
            "negative": 10,
            "average_forever": 900,
            "average_2weeks": 0,
            "median_forever": 600,
            "median_2weeks": None,
            "tags": {"Puzzle": 500, "Co-op": 400},
        })

        result = await SteamSpyClient(http_client, request_delay=0.0).fetch(620)

        assert result.ok
        assert result.payload is not None
        assert result.payload.median_2weeks == 0
        assert result.payload.tags == {"Puzzle": 500, "Co-op": 400}
        http_client.get.assert_awaited_once()
        assert http_client.get.await_args.kwargs["params"] == {"request": "appdetails", "appid": "620"}

    @pytest.mark.asyncio
    async def test_answer_without_name_is_no_data(self) -> None:
        http_client = AsyncMock(spec=HttpClientService)
        http_client.get.return_value = json_response({"appid": 999, "name": None, "tags": []})

        result = await SteamSpyClient(http_client, request_delay=0.0).fetch(999)

        assert result.ok
        assert result.payload is None

    @pytest.mark.asyncio
    async def test_http_error_is_transient(self) -> None:
        request = httpx.Request("GET", "https://steamspy.com/api.php")
        http_client = AsyncMock(spec=HttpClientService)
        http_client.get.side_effect = httpx.HTTPStatusError(
            "Server error", request=request, response=httpx.Response(500, request=request)
        )

        result = await SteamSpyClient(http_client, request_delay=0.0).fetch(620)

        assert result.reason is FailureReason.TRANSIENT

    @pytest.mark.asyncio
    async def test_wrong_types_are_malformed(self) -> None:
        http_client = AsyncMock(spec=HttpClientService)
        http_client.get.return_value = json_response({"name": "Portal 2", "positive": "lots"})

        result = await SteamSpyClient(http_client, request_delay=0.0).fetch(620)

        assert result.reason is FailureReason.MALFORMED


class TestApplyStatistics:
    """Test cases for filling the statistics layer."""

    def test_layer_is_filled_and_stamped(self) -> None:
        record = EnrichedRecord(external_id=620, name="Portal 2")
        details = SteamSpyAppDetails.model_validate({
            "name": "Portal 2",
            "positive": 80,
            "negative": 20,
            "average_forever": 100,
            "tags": {"Puzzle": 50},
        })

        apply_statistics(record, details)

        assert record.total_positive_reviews == 80
        assert record.total_negative_reviews == 20
        assert record.total_reviews == 100
        assert record.review_category == "Very Positive"
        assert record.spy_average_forever == 100
        assert record.spy_tags == [TagScore("Puzzle", 50)]
        assert record.spy_update_timestamp is not None

    def test_empty_tag_list_means_no_tags(self) -> None:
        details = SteamSpyAppDetails.model_validate({"name": "Tiny", "positive": 1, "negative": 0, "tags": []})
        record = EnrichedRecord(external_id=1, name="Tiny")

        apply_statistics(record, details)

        assert record.spy_tags == []
        assert record.review_category is None
