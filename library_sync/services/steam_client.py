"""Steam Web API ownership source and Steam Store details source."""

from datetime import datetime, timezone

import httpx
import pydantic
import structlog

from ..models.game import EnrichedRecord, OwnedItemRef
from .errors import ConfigurationError, FailureReason, classify_exception
from .http_client import HttpClientService
from .schemas import APP_DETAILS_ADAPTER, AppDetailsData, OwnedGamesResponse, SourceResult

log = structlog.stdlib.get_logger()

STEAM_API_ENDPOINT = "https://api.steampowered.com"
STEAM_STORE_API_ENDPOINT = "https://store.steampowered.com/api"

STEAM_API_GET_OWNED_GAMES_METHOD = "IPlayerService/GetOwnedGames/v0001"
STEAM_STORE_API_APP_DETAILS_METHOD = "appdetails"

# Steam does not publish Store API limits and bans for minutes to hours when
# they are exceeded; 3 seconds between requests has held up in practice.
STEAM_STORE_REQUEST_DELAY = 3.0

RELEASE_DATE_FORMATS = (
    "%d %b, %Y",
    "%b %d, %Y",
    "%d %B, %Y",
    "%B %d, %Y",
    "%Y-%m-%d",
    "%d %b %Y",
    "%b %Y",
    "%B %Y",
)


class OwnedGamesClient:
    """Fetches the owned games of one account from the Steam Web API."""

    def __init__(self, http_client: HttpClientService, api_key: str | None) -> None:
        self.http_client = http_client
        self.api_key = api_key

    async def fetch(self, account_id: str, is_primary_account: bool = False) -> SourceResult[list[OwnedItemRef]]:
        """Fetch the owned list of ``account_id``.

        Raises:
            ConfigurationError: If no Steam API key is configured
        """
        if not self.api_key:
            raise ConfigurationError("Missing Steam Web API key", setting="STEAM_API_KEY")

        url = f"{STEAM_API_ENDPOINT}/{STEAM_API_GET_OWNED_GAMES_METHOD}/"
        params = {
            "key": self.api_key,
            "steamid": account_id,
            "format": "json",
            "include_played_free_games": "1",
            "include_appinfo": "0",
        }

        log.info("Fetching owned games", account_id=account_id)

        try:
            response = await self.http_client.get(url, params=params, rate_limit_key="steam_web")
        except (httpx.HTTPStatusError, httpx.RequestError) as e:
            reason = classify_exception(e)
            log.error("Failed to fetch owned games", account_id=account_id, reason=reason.value, error=str(e))
            return SourceResult.failure(reason, str(e))

        try:
            payload = OwnedGamesResponse.model_validate(response.json())
        except (ValueError, pydantic.ValidationError) as e:
            log.error("Owned games response is malformed", account_id=account_id, error=str(e))
            return SourceResult.failure(FailureReason.MALFORMED, str(e))

        refs = [
            OwnedItemRef(
                external_id=game.appid,
                owner_account_id=account_id,
                hours_played=round(game.playtime_forever / 60, 1),
                last_played_at=(
                    datetime.fromtimestamp(game.rtime_last_played, tz=timezone.utc)
                    if game.rtime_last_played
                    else None
                ),
                is_primary_account=is_primary_account,
            )
            for game in payload.response.games
        ]

        log.info(
            "Fetched owned games",
            account_id=account_id,
            game_count=payload.response.game_count,
            parsed=len(refs),
        )
        return SourceResult.success(refs)


class StoreDetailsClient:
    """Looks up catalog details for one app in the Steam Store API."""

    def __init__(
        self,
        http_client: HttpClientService,
        request_delay: float = STEAM_STORE_REQUEST_DELAY,
    ) -> None:
        self.http_client = http_client
        self.request_delay = request_delay

    @staticmethod
    def lookup_url(external_id: int, language: str) -> str:
        return str(
            httpx.URL(
                f"{STEAM_STORE_API_ENDPOINT}/{STEAM_STORE_API_APP_DETAILS_METHOD}/",
                params={"appids": str(external_id), "l": language},
            )
        )

    async def fetch(self, external_id: int, language: str) -> SourceResult[AppDetailsData]:
        """Fetch store details for ``external_id``.

        ``success: false`` from the store means the app was removed and is
        reported as ``NOT_FOUND``; HTTP 429 is ``RATE_LIMITED``.
        """
        url = self.lookup_url(external_id, language)
        log.debug("Fetching store details", external_id=external_id, url=url)

        try:
            response = await self.http_client.get(
                url,
                rate_limit_key="steam_store",
                min_interval=self.request_delay,
                max_retries=1,
            )
        except (httpx.HTTPStatusError, httpx.RequestError) as e:
            reason = classify_exception(e)
            if reason is FailureReason.RATE_LIMITED:
                log.error("Rate limited by Steam Store API", external_id=external_id)
            return SourceResult.failure(reason, str(e))

        try:
            envelopes = APP_DETAILS_ADAPTER.validate_python(response.json())
        except (ValueError, pydantic.ValidationError) as e:
            log.warning("Store details response is malformed", external_id=external_id, error=str(e))
            return SourceResult.failure(FailureReason.MALFORMED, str(e))

        envelope = envelopes.get(str(external_id))
        if envelope is None:
            return SourceResult.failure(FailureReason.MALFORMED, f"response has no entry for {external_id}")
        if not envelope.success:
            return SourceResult.failure(FailureReason.NOT_FOUND, "store reports success: false")
        if envelope.data is None:
            return SourceResult.failure(FailureReason.MALFORMED, "successful response without data")

        return SourceResult.success(envelope.data)


def parse_release_date(value: str | None) -> int | None:
    """Epoch milliseconds for a store release date string, or None if it is not a date."""
    if not value:
        return None
    for date_format in RELEASE_DATE_FORMATS:
        try:
            parsed = datetime.strptime(value.strip(), date_format)
        except ValueError:
            continue
        return int(parsed.replace(tzinfo=timezone.utc).timestamp() * 1000)
    return None


def map_app_details(external_id: int, data: AppDetailsData, query: str) -> EnrichedRecord:
    """Build the identity layer of a record from store details.

    The id always comes from the owned list, never from the store payload:
    the store sometimes answers for a different (reused or remapped) app.
    """
    release_date_string = data.release_date.date if data.release_date and data.release_date.date else None

    return EnrichedRecord(
        external_id=external_id,
        name=data.name,
        query=query,
        detailed_description=data.detailed_description,
        about_the_game=data.about_the_game,
        short_description=data.short_description,
        header_image=data.header_image,
        capsule_image=data.capsule_image,
        capsule_imagev5=data.capsule_imagev5,
        background=data.background,
        background_raw=data.background_raw,
        movies=[url for url in (movie.best_url for movie in data.movies) if url],
        screenshots=[screenshot.path_full for screenshot in data.screenshots if screenshot.path_full],
        developers=list(data.developers),
        publishers=list(data.publishers),
        categories=[category.description for category in data.categories],
        genres=[genre.description for genre in data.genres],
        metacritic_score=data.metacritic.score if data.metacritic else None,
        release_date_string=release_date_string,
        release_date_timestamp=parse_release_date(release_date_string),
    )
