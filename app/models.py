"""Pydantic models describing catalog, profile and configuration payloads."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Annotated, Any, ClassVar, Literal, Union

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)

from .utils import parse_query_string, split_item_id

MediaType = Literal["tv", "movie"]
SeriesStatus = Literal["Airing", "Ended"]
Role = Literal["ADMIN", "USER"]
RatingCategory = Literal["daily-tv", "weekly-tv", "weekly-movies"]
Trend = Literal["up", "down", "stable"]

RATING_CATEGORIES: tuple[str, ...] = ("daily-tv", "weekly-tv", "weekly-movies")

PLACEHOLDER_POSTER_URL = "https://via.placeholder.com/300x450?text=No+Poster"
PLACEHOLDER_BANNER_URL = "https://via.placeholder.com/1200x600?text=No+Image"
PLACEHOLDER_PHOTO_URL = "https://via.placeholder.com/150x150?text=No+Img"
UNTITLED = "Untitled"
NO_SYNOPSIS = "No synopsis available."


class Episode(BaseModel):
    """A single aired or scheduled episode."""

    model_config = ConfigDict(frozen=True)

    id: int = 0
    name: str = ""
    episode_number: int = 0
    season_number: int = 0
    air_date: str | None = None
    overview: str = ""
    still_path: str | None = None
    vote_average: float | None = None


class Season(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    name: str
    season_number: int
    episode_count: int = 0
    air_date: str | None = None
    poster_path: str | None = None
    overview: str | None = None


class Review(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    author: str
    content: str
    created_at: str | None = None
    rating: float | None = None
    avatar_path: str | None = None


class CastMember(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    role_type: Literal["Lead", "Supporting"] = "Supporting"
    photo_url: str = PLACEHOLDER_PHOTO_URL
    character_name: str = ""


class CatalogItem(BaseModel):
    """A catalog title as mapped from the primary provider."""

    model_config = ConfigDict(frozen=True)

    # Fields the enrichment merge never takes from a secondary source.
    IDENTITY_FIELDS: ClassVar[tuple[str, ...]] = (
        "id",
        "media_type",
        "title",
        "original_title",
        "episodes_aired",
        "episodes_total",
    )

    kind: Literal["base"] = "base"
    id: str
    media_type: MediaType | None = None
    title: str = UNTITLED
    original_title: str = UNTITLED
    original_language: str | None = None
    synopsis: str = NO_SYNOPSIS
    status: SeriesStatus = "Airing"
    network: str = "TMDb"
    poster_url: str = PLACEHOLDER_POSTER_URL
    banner_url: str = PLACEHOLDER_BANNER_URL
    score: float = 0.0
    episodes_aired: int = Field(default=0, ge=0)
    episodes_total: int = Field(default=0, ge=0)
    is_featured: bool = False
    release_year: int | None = None

    genres: tuple[str, ...] = ()
    runtime: str | None = None
    trailer_url: str | None = None
    latest_episode: Episode | None = None
    next_episode: Episode | None = None
    seasons: tuple[Season, ...] = ()
    reviews: tuple[Review, ...] = ()
    imdb_id: str | None = None

    @model_validator(mode="after")
    def _check_episode_counts(self) -> "CatalogItem":
        if self.episodes_total and self.episodes_aired > self.episodes_total:
            raise ValueError("episodes_aired cannot exceed episodes_total")
        return self

    @property
    def raw_id(self) -> str:
        """Return the provider id without the media type prefix."""

        return split_item_id(self.id)[1]

    def resolved_media_type(self) -> MediaType:
        """Return the media kind, inferring it when the mapping left it blank."""

        if self.media_type is not None:
            return self.media_type
        prefix, _ = split_item_id(self.id)
        if prefix is not None:
            return prefix  # type: ignore[return-value]
        return "tv" if self.episodes_total > 0 else "movie"

    def display_title(self) -> str:
        title = (self.title or "").strip()
        if title and title != UNTITLED:
            return title
        original = (self.original_title or "").strip()
        return original or UNTITLED


class EnrichedCatalogItem(CatalogItem):
    """A catalog title carrying critical reception from the secondary provider."""

    kind: Literal["enriched"] = "enriched"  # type: ignore[assignment]

    awards: str | None = None
    director: str | None = None
    writer: str | None = None
    metascore: str | None = None
    imdb_rating: str | None = None
    imdb_votes: str | None = None


AnyCatalogItem = Annotated[
    Union[CatalogItem, EnrichedCatalogItem], Field(discriminator="kind")
]


class CriticalReception(BaseModel):
    """Partial attribute record returned by the secondary provider."""

    model_config = ConfigDict(frozen=True)

    FIELDS: ClassVar[tuple[str, ...]] = (
        "awards",
        "director",
        "writer",
        "metascore",
        "imdb_rating",
        "imdb_votes",
    )

    awards: str | None = None
    director: str | None = None
    writer: str | None = None
    metascore: str | None = None
    imdb_rating: str | None = None
    imdb_votes: str | None = None

    def is_empty(self) -> bool:
        return all(getattr(self, name) is None for name in self.FIELDS)


def merge_enrichment(
    item: CatalogItem, reception: CriticalReception | None
) -> CatalogItem:
    """Merge secondary-provider attributes onto ``item``.

    Precedence, highest first: identity fields of ``item``; reception fields
    already present on ``item``; fields from ``reception``. The result is
    ``item`` itself when nothing new is contributed.
    """

    if reception is None or reception.is_empty():
        return item

    merged: dict[str, Any] = {}
    changed = not isinstance(item, EnrichedCatalogItem)
    for name in CriticalReception.FIELDS:
        current = getattr(item, name, None)
        incoming = getattr(reception, name)
        if current is None and incoming is not None:
            changed = True
            merged[name] = incoming
        else:
            merged[name] = current
    if not changed:
        return item

    payload = item.model_dump()
    payload.update(merged)
    for name in CatalogItem.IDENTITY_FIELDS:
        payload[name] = getattr(item, name)
    payload["kind"] = "enriched"
    return EnrichedCatalogItem.model_validate(payload)


class SeriesDetail(BaseModel):
    """Full detail view of a title with its billed cast."""

    model_config = ConfigDict(frozen=True)

    item: AnyCatalogItem
    cast: tuple[CastMember, ...] = ()


class StreamingSource(BaseModel):
    model_config = ConfigDict(frozen=True)

    source_id: int
    name: str
    type: str
    region: str = "US"
    web_url: str | None = None
    ios_url: str | None = None
    android_url: str | None = None
    format: str | None = None
    price: float | None = None
    seasons: int | None = None
    episodes: int | None = None


class DiscoveryQuery(BaseModel):
    """A provider discovery request: endpoint, filters and page."""

    model_config = ConfigDict(frozen=True)

    endpoint: str
    params: dict[str, str] = Field(default_factory=dict)
    page: int = Field(default=1, ge=1, le=500)

    @classmethod
    def from_strings(
        cls, endpoint: str, params: str | None = None, page: int = 1
    ) -> "DiscoveryQuery":
        return cls(endpoint=endpoint, params=parse_query_string(params), page=page)

    @field_validator("endpoint")
    @classmethod
    def _normalise_endpoint(cls, value: str) -> str:
        endpoint = value.strip().strip("/")
        if not endpoint or ".." in endpoint.split("/"):
            raise ValueError("Discovery endpoint must be a relative provider path")
        return endpoint

    @field_validator("params", mode="before")
    @classmethod
    def _stringify_params(cls, value: object) -> object:
        if value is None:
            return {}
        if isinstance(value, str):
            return parse_query_string(value)
        if isinstance(value, dict):
            return {str(key): str(item) for key, item in value.items()}
        return value

    @property
    def media_type(self) -> MediaType:
        return "movie" if "movie" in self.endpoint else "tv"


class DiscoveryPage(BaseModel):
    model_config = ConfigDict(frozen=True)

    results: tuple[AnyCatalogItem, ...] = ()
    total_pages: int = 0


class SocialLinks(BaseModel):
    model_config = ConfigDict(frozen=True)

    facebook: str | None = None
    instagram: str | None = None
    twitter: str | None = None
    youtube: str | None = None


class ApiProvider(BaseModel):
    """Credential and enablement flag for one external data provider."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    api_key: str = Field(default="", validation_alias=AliasChoices("api_key", "apiKey"))
    is_enabled: bool = Field(
        default=True, validation_alias=AliasChoices("is_enabled", "isEnabled")
    )
    description: str = ""


class SiteConfiguration(BaseModel):
    """Process-wide site record owned by the remote store."""

    model_config = ConfigDict(frozen=True)

    site_name: str = Field(validation_alias=AliasChoices("site_name", "siteName"))
    site_name_part2: str = Field(
        default="",
        validation_alias=AliasChoices("site_name_part2", "siteNamePart2"),
    )
    logo_url: str | None = Field(
        default=None, validation_alias=AliasChoices("logo_url", "logoUrl")
    )
    contact_email: str = Field(
        default="", validation_alias=AliasChoices("contact_email", "contactEmail")
    )
    contact_phone: str = Field(
        default="", validation_alias=AliasChoices("contact_phone", "contactPhone")
    )
    address: str = ""
    social_links: SocialLinks = Field(
        default_factory=SocialLinks,
        validation_alias=AliasChoices("social_links", "socialLinks"),
    )
    api_providers: tuple[ApiProvider, ...] = Field(
        default=(), validation_alias=AliasChoices("api_providers", "apiProviders")
    )

    def provider(self, provider_id: str) -> ApiProvider | None:
        for provider in self.api_providers:
            if provider.id == provider_id:
                return provider
        return None

    def display_name(self) -> str:
        return f"{self.site_name}{self.site_name_part2}"

    def to_document(self) -> dict[str, Any]:
        return self.model_dump(mode="json")


class Identity(BaseModel):
    """The signed-in principal handed to us by the external auth layer."""

    model_config = ConfigDict(frozen=True)

    user_id: str = Field(min_length=1, max_length=128)
    name: str = "User"
    email: str = ""
    role: Role = "USER"
    avatar_url: str | None = None


class UserProfile(BaseModel):
    """Per-identity profile document, including the watchlist set."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str = "User"
    email: str = ""
    role: Role = "USER"
    avatar_url: str | None = None
    bio: str | None = None
    location: str | None = None
    created_at: str | None = None
    watchlist: tuple[str, ...] = ()

    @field_validator("watchlist", mode="before")
    @classmethod
    def _unique_watchlist(cls, value: object) -> object:
        if value is None:
            return ()
        if isinstance(value, (list, tuple)):
            seen: list[str] = []
            for entry in value:
                entry_id = str(entry)
                if entry_id not in seen:
                    seen.append(entry_id)
            return tuple(seen)
        return value

    @classmethod
    def from_identity(cls, identity: Identity) -> "UserProfile":
        return cls(
            id=identity.user_id,
            name=identity.name,
            email=identity.email,
            role=identity.role,
            avatar_url=identity.avatar_url,
            created_at=datetime.now(timezone.utc).isoformat(),
        )

    def has_in_watchlist(self, item_id: str) -> bool:
        return item_id in self.watchlist


class RatingRecord(BaseModel):
    """One row of a ratings table."""

    model_config = ConfigDict(frozen=True)

    id: str
    rank: int = Field(ge=1)
    previous_rank: int | None = None
    series_id: str
    category: RatingCategory
    rating: float
    share: float = 0.0
    trend: Trend = "stable"
    date: str | None = None
    title: str | None = None
    poster_url: str | None = None
