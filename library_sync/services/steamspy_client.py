"""SteamSpy statistics source."""

import httpx
import pydantic
import structlog

from ..models.game import EnrichedRecord, TagScore, now_millis
from .errors import FailureReason, classify_exception
from .http_client import HttpClientService
from .reviews import determine_review_category
from .schemas import SourceResult, SteamSpyAppDetails

log = structlog.stdlib.get_logger()

STEAMSPY_API_ENDPOINT = "https://steamspy.com/api.php"

# SteamSpy documents a limit of 4 requests per second; be well below it.
STEAMSPY_REQUEST_DELAY = 1.5


class SteamSpyClient:
    """Looks up review counts, playtime statistics and tags for one app."""

    def __init__(
        self,
        http_client: HttpClientService,
        request_delay: float = STEAMSPY_REQUEST_DELAY,
    ) -> None:
        self.http_client = http_client
        self.request_delay = request_delay

    async def fetch(self, external_id: int) -> SourceResult[SteamSpyAppDetails]:
        """Fetch statistics for ``external_id``.

        SteamSpy answers unknown apps with an entry that has no name; that is
        a successful lookup without data, not a failure.
        """
        params = {"request": "appdetails", "appid": str(external_id)}

        try:
            response = await self.http_client.get(
                STEAMSPY_API_ENDPOINT,
                params=params,
                rate_limit_key="steamspy",
                min_interval=self.request_delay,
                max_retries=1,
            )
        except (httpx.HTTPStatusError, httpx.RequestError) as e:
            reason = classify_exception(e)
            log.warning("Failed to fetch SteamSpy statistics", external_id=external_id, reason=reason.value)
            return SourceResult.failure(reason, str(e))

        try:
            details = SteamSpyAppDetails.model_validate(response.json())
        except (ValueError, pydantic.ValidationError) as e:
            log.warning("SteamSpy response is malformed", external_id=external_id, error=str(e))
            return SourceResult.failure(FailureReason.MALFORMED, str(e))

        if not details.name:
            return SourceResult.success(None)
        return SourceResult.success(details)


def apply_statistics(record: EnrichedRecord, details: SteamSpyAppDetails) -> None:
    """Fill the statistics layer of ``record`` and stamp it with the current time."""
    record.total_positive_reviews = details.positive
    record.total_negative_reviews = details.negative
    record.total_reviews = details.positive + details.negative
    record.review_category = determine_review_category(details.positive, details.negative)
    record.spy_average_forever = details.average_forever
    record.spy_average_2weeks = details.average_2weeks
    record.spy_median_forever = details.median_forever
    record.spy_median_2weeks = details.median_2weeks
    record.spy_tags = [TagScore(name=name, score=score) for name, score in details.tags.items()]
    record.spy_update_timestamp = now_millis()
