"""Pydantic models describing catalog source payloads, and the adapter result type."""

from dataclasses import dataclass
from typing import Any, Generic, TypeVar

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator

from .errors import FailureReason

T = TypeVar("T")


@dataclass(frozen=True)
class SourceResult(Generic[T]):
    """Outcome of one adapter fetch.

    ``reason`` is None on success. A successful result may still carry a None
    payload, meaning the source answered but had no data for the key.
    """
    payload: T | None = None
    reason: FailureReason | None = None
    message: str = ""

    @property
    def ok(self) -> bool:
        return self.reason is None

    @classmethod
    def success(cls, payload: T | None) -> "SourceResult[T]":
        return cls(payload=payload)

    @classmethod
    def failure(cls, reason: FailureReason, message: str = "") -> "SourceResult[T]":
        return cls(reason=reason, message=message)


class SourceModel(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


def _none_to_empty(value: object) -> object:
    return "" if value is None else value


# Steam Web API: IPlayerService/GetOwnedGames

class SteamOwnedGame(SourceModel):
    appid: int
    playtime_forever: int = 0  # minutes
    rtime_last_played: int = 0  # Unix seconds, 0 when never played


class OwnedGamesBody(SourceModel):
    game_count: int = 0
    games: list[SteamOwnedGame] = Field(default_factory=list)


class OwnedGamesResponse(SourceModel):
    response: OwnedGamesBody


# Steam Store API: appdetails

class Described(SourceModel):
    description: str


class Metacritic(SourceModel):
    score: int | None = None


class ReleaseDate(SourceModel):
    coming_soon: bool = False
    date: str = ""


class Screenshot(SourceModel):
    path_full: str = ""
    path_thumbnail: str = ""


class Movie(SourceModel):
    name: str = ""
    thumbnail: str = ""
    mp4: dict[str, str] | None = None
    webm: dict[str, str] | None = None
    hls_h264: str | None = None
    dash_h264: str | None = None

    @property
    def best_url(self) -> str:
        for variants in (self.mp4, self.webm):
            if variants:
                return variants.get("max") or variants.get("480") or next(iter(variants.values()), "")
        return self.hls_h264 or self.dash_h264 or self.thumbnail


class AppDetailsData(SourceModel):
    name: str
    detailed_description: str = ""
    about_the_game: str = ""
    short_description: str = ""
    header_image: str = ""
    capsule_image: str = ""
    capsule_imagev5: str = ""
    background: str = ""
    background_raw: str = ""
    movies: list[Movie] = Field(default_factory=list)
    screenshots: list[Screenshot] = Field(default_factory=list)
    developers: list[str] = Field(default_factory=list)
    publishers: list[str] = Field(default_factory=list)
    metacritic: Metacritic | None = None
    categories: list[Described] = Field(default_factory=list)
    genres: list[Described] = Field(default_factory=list)
    release_date: ReleaseDate | None = None

    _empty_strings = field_validator(
        "detailed_description",
        "about_the_game",
        "short_description",
        "header_image",
        "capsule_image",
        "capsule_imagev5",
        "background",
        "background_raw",
        mode="before",
    )(_none_to_empty)


class AppDetailsEnvelope(SourceModel):
    success: bool
    data: AppDetailsData | None = None


APP_DETAILS_ADAPTER: TypeAdapter[dict[str, AppDetailsEnvelope]] = TypeAdapter(dict[str, AppDetailsEnvelope])


# SteamSpy: appdetails

class SteamSpyAppDetails(SourceModel):
    appid: int | None = None
    name: str | None = None
    owners: str | None = None
    positive: int = 0
    negative: int = 0
    average_forever: int = 0
    average_2weeks: int = 0
    median_forever: int = 0
    median_2weeks: int = 0
    tags: dict[str, int] = Field(default_factory=dict)

    @field_validator("tags", mode="before")
    @classmethod
    def _empty_list_is_no_tags(cls, value: object) -> object:
        # SteamSpy serializes an empty PHP array as [] instead of {}
        if value is None or value == []:
            return {}
        return value

    @field_validator(
        "positive",
        "negative",
        "average_forever",
        "average_2weeks",
        "median_forever",
        "median_2weeks",
        mode="before",
    )
    @classmethod
    def _null_is_zero(cls, value: object) -> object:
        return 0 if value in (None, "") else value


# HowLongToBeat: api/search

class HltbGame(SourceModel):
    game_id: int
    game_name: str
    comp_main: int = 0  # seconds
    comp_plus: int = 0
    comp_100: int = 0


class HltbSearchResponse(SourceModel):
    data: list[HltbGame] = Field(default_factory=list)


# Directus: items

class DirectusItemsPage(SourceModel):
    data: list[dict[str, Any]] = Field(default_factory=list)


class DirectusItemResponse(SourceModel):
    data: dict[str, Any]
