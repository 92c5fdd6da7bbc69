"""Tests for the HowLongToBeat estimate source."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest
from hypothesis import given, strategies as st

from library_sync.models import EnrichedRecord
from library_sync.services.errors import AuthCaptureTimeout, FailureReason
from library_sync.services.hltb_client import (
    HltbClient,
    StaticTokenProvider,
    apply_estimate,
    build_search_body,
    discard_estimate,
    seconds_to_hours,
)
from library_sync.services.http_client import HttpClientService
from library_sync.services.schemas import HltbGame


class RecordingSleep:
    """Stands in for asyncio.sleep and remembers every requested delay."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


def json_response(payload: object) -> MagicMock:
    response = MagicMock(spec=httpx.Response)
    response.json.return_value = payload
    return response


def server_error() -> httpx.HTTPStatusError:
    request = httpx.Request("POST", "https://howlongtobeat.com/api/search")
    return httpx.HTTPStatusError("Forbidden", request=request, response=httpx.Response(403, request=request))


def make_client(http_client: HttpClientService, sleep: RecordingSleep, provider: object | None = None) -> HltbClient:
    return HltbClient(
        http_client,
        provider or StaticTokenProvider("token-1"),
        request_delay=1.5,
        failure_delay_step=1.0,
        recapture_delay=5.0,
        max_failures=3,
        sleep=sleep,
    )


class TestDurations:
    """Durations are whole hours, rounded to nearest."""

    def test_rounds_to_nearest_not_floor(self) -> None:
        assert seconds_to_hours(7199) == 2
        assert seconds_to_hours(1800) == 0
        assert seconds_to_hours(5400) == 2
        assert seconds_to_hours(0) == 0

    @given(seconds=st.integers(min_value=0, max_value=10_000_000))
    def test_never_further_than_half_an_hour(self, seconds: int) -> None:
        """
        **Feature: library-sync, Property: duration rounding**

        The whole-hour figure is never more than half an hour away from the source value.
        """
        assert abs(seconds_to_hours(seconds) * 3600 - seconds) <= 1800


class TestSearchBody:
    """Test cases for the search request body."""

    def test_trademarks_are_stripped_from_search_terms(self) -> None:
        body = build_search_body("DOOM™ Eternal®")

        assert body["searchTerms"] == ["DOOM Eternal"]
        assert body["searchType"] == "games"
        assert body["size"] == 20


class TestHltbClient:
    """Test cases for searches, the delay policy and token recapture."""

    @pytest.mark.asyncio
    async def test_first_match_is_returned_with_the_token(self) -> None:
        http_client = AsyncMock(spec=HttpClientService)
        http_client.post.return_value = json_response({
            "data": [
                {"game_id": 7231, "game_name": "Portal 2", "comp_main": 30600, "comp_plus": 48600, "comp_100": 79200},
                {"game_id": 1, "game_name": "Portal 2 Fan Mod"},
            ]
        })
        sleep = RecordingSleep()
        client = make_client(http_client, sleep)

        await client.start()
        result = await client.fetch("Portal 2")

        assert result.ok
        assert result.payload is not None
        assert result.payload.game_id == 7231
        assert sleep.delays == [1.5]
        assert http_client.post.await_args.kwargs["headers"]["x-auth-token"] == "token-1"

    @pytest.mark.asyncio
    async def test_empty_result_is_no_data(self) -> None:
        http_client = AsyncMock(spec=HttpClientService)
        http_client.post.return_value = json_response({"data": []})
        client = make_client(http_client, RecordingSleep())

        result = await client.fetch("Nothing Matches This")

        assert result.ok
        assert result.payload is None
        assert client.consecutive_failures == 0

    @pytest.mark.asyncio
    async def test_delay_grows_per_consecutive_failure_and_resets(self) -> None:
        http_client = AsyncMock(spec=HttpClientService)
        http_client.post.side_effect = [server_error(), server_error(), json_response({"data": []}), server_error()]
        sleep = RecordingSleep()
        client = make_client(http_client, sleep)

        results = [await client.fetch(f"Game {index}") for index in range(4)]

        assert [result.ok for result in results] == [False, False, True, False]
        assert results[0].reason is FailureReason.TRANSIENT
        assert sleep.delays == [1.5, 2.5, 3.5, 1.5]
        assert client.consecutive_failures == 1

    @pytest.mark.asyncio
    async def test_exhausted_at_the_failure_ceiling(self) -> None:
        http_client = AsyncMock(spec=HttpClientService)
        http_client.post.side_effect = server_error()
        client = make_client(http_client, RecordingSleep())

        for _ in range(3):
            assert not client.exhausted
            await client.fetch("Game")

        assert client.exhausted

    @pytest.mark.asyncio
    async def test_malformed_response_counts_as_failure(self) -> None:
        http_client = AsyncMock(spec=HttpClientService)
        http_client.post.return_value = json_response({"data": [{"game_name": "No id"}]})
        client = make_client(http_client, RecordingSleep())

        result = await client.fetch("Game")

        assert result.reason is FailureReason.MALFORMED
        assert client.consecutive_failures == 1

    @pytest.mark.asyncio
    async def test_recover_waits_then_recaptures(self) -> None:
        provider = AsyncMock()
        provider.capture.side_effect = ["token-1", "token-2"]
        sleep = RecordingSleep()
        client = make_client(AsyncMock(spec=HttpClientService), sleep, provider)

        await client.start()
        await client.recover()

        assert client.token == "token-2"
        assert sleep.delays == [5.0]

    @pytest.mark.asyncio
    async def test_capture_timeout_propagates(self) -> None:
        provider = AsyncMock()
        provider.capture.side_effect = AuthCaptureTimeout("no token", timeout=30.0)
        client = make_client(AsyncMock(spec=HttpClientService), RecordingSleep(), provider)

        with pytest.raises(AuthCaptureTimeout):
            await client.start()

    def test_static_provider_returns_its_token(self) -> None:
        assert asyncio.run(StaticTokenProvider("abc").capture()) == "abc"


class TestEstimateLayer:
    """Test cases for filling and discarding the estimate layer."""

    def test_apply_estimate(self) -> None:
        record = EnrichedRecord(external_id=620, name="Portal 2")

        apply_estimate(record, HltbGame(game_id=7231, game_name="Portal 2", comp_main=30600, comp_plus=48600, comp_100=7199))

        assert record.hltb_name == "Portal 2"
        assert record.hltb_hours == 8
        assert record.hltb_hours_extra == 14
        assert record.hltb_hours_completionist == 2
        assert record.hltb_url == "https://howlongtobeat.com/game/7231"
        assert record.last_hltb_update_timestamp is not None

    def test_discard_keeps_the_timestamp(self) -> None:
        record = EnrichedRecord(external_id=620, name="Portal 2")
        apply_estimate(record, HltbGame(game_id=1, game_name="Portal", comp_main=3600))

        discard_estimate(record)

        assert record.hltb_hours is None
        assert record.hltb_url is None
        assert record.last_hltb_update_timestamp is not None
