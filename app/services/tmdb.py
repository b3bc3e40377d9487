"""Client for the primary catalog provider, The Movie Database (TMDb)."""

from __future__ import annotations

import asyncio
import logging
from datetime import date, timedelta
from typing import Any, Mapping

import httpx

from ..config import Settings
from ..models import (
    PLACEHOLDER_BANNER_URL,
    PLACEHOLDER_PHOTO_URL,
    PLACEHOLDER_POSTER_URL,
    AnyCatalogItem,
    CastMember,
    CatalogItem,
    DiscoveryPage,
    DiscoveryQuery,
    Episode,
    MediaType,
    Review,
    Season,
    SeriesDetail,
)
from ..utils import clean_text, parse_year, split_item_id

logger = logging.getLogger(__name__)

IMAGE_BASE_URL = "https://image.tmdb.org/t/p/w780"
IMAGE_ORIGINAL_URL = "https://image.tmdb.org/t/p/original"

DETAIL_APPENDS = "credits,videos,reviews,external_ids"
CAST_LIMIT = 20
LEAD_BILLING_CUTOFF = 3
CALENDAR_WINDOW_DAYS = 30
CALENDAR_RESULT_LIMIT = 50


def map_tmdb_item(
    payload: Mapping[str, Any], media_type: MediaType | None = None
) -> CatalogItem | None:
    """Map a TMDb list or detail record onto a :class:`CatalogItem`.

    Every display field has a fallback, so any record carrying an ``id``
    yields a renderable item. Records without an id return ``None``.
    """

    raw_id = payload.get("id")
    if raw_id is None or isinstance(raw_id, bool) or str(raw_id).strip() == "":
        return None

    is_movie = media_type == "movie" or (
        media_type is None
        and (payload.get("media_type") == "movie" or "title" in payload)
    )
    resolved_type: MediaType = "movie" if is_movie else "tv"
    title = clean_text(payload.get("title" if is_movie else "name"))
    original_title = clean_text(
        payload.get("original_title" if is_movie else "original_name")
    )
    release = payload.get("release_date" if is_movie else "first_air_date")

    last_episode = _map_episode(payload.get("last_episode_to_air"))
    next_episode = _map_episode(payload.get("next_episode_to_air"))
    episodes_aired = max(last_episode.episode_number, 0) if last_episode else 0
    episodes_total = episodes_aired + 1 if last_episode and next_episode else episodes_aired

    score = _as_float(payload.get("vote_average"))
    status = "Ended" if payload.get("status") in {"Ended", "Canceled"} else "Airing"

    return CatalogItem(
        id=f"{resolved_type}_{raw_id}",
        media_type=resolved_type,
        title=title or "Untitled",
        original_title=original_title or "Untitled",
        original_language=clean_text(payload.get("original_language")),
        synopsis=clean_text(payload.get("overview")) or "No synopsis available.",
        status=status,
        network=_network(payload),
        poster_url=_image(payload.get("poster_path"), IMAGE_BASE_URL)
        or PLACEHOLDER_POSTER_URL,
        banner_url=_image(payload.get("backdrop_path"), IMAGE_ORIGINAL_URL)
        or PLACEHOLDER_BANNER_URL,
        score=score,
        episodes_aired=episodes_aired,
        episodes_total=episodes_total,
        is_featured=score > 8.0,
        release_year=parse_year(release),
        genres=tuple(
            str(genre["name"])
            for genre in _as_list(payload.get("genres"))
            if isinstance(genre, dict) and genre.get("name")
        ),
        runtime=_runtime(payload),
        trailer_url=_trailer(payload),
        latest_episode=last_episode,
        next_episode=next_episode,
        seasons=tuple(
            season
            for season in (_map_season(entry) for entry in _as_list(payload.get("seasons")))
            if season is not None and season.season_number > 0
        ),
        reviews=tuple(
            review
            for review in (
                _map_review(entry)
                for entry in _as_list(_as_dict(payload.get("reviews")).get("results"))
            )
            if review is not None
        ),
        imdb_id=clean_text(
            payload.get("imdb_id") or _as_dict(payload.get("external_ids")).get("imdb_id")
        ),
    )


class TMDBClient:
    """Client responsible for catalog listings and title details from TMDb."""

    def __init__(self, settings: Settings, http_client: httpx.AsyncClient):
        self._client = http_client
        self._api_key = settings.tmdb_api_key or ""
        self._enabled = True
        self._semaphore = asyncio.Semaphore(8)

    @property
    def enabled(self) -> bool:
        return self._enabled and bool(self._api_key)

    def configure(self, api_key: str | None, enabled: bool) -> None:
        """Swap the credential and enablement flag pushed by the site configuration."""

        if api_key:
            self._api_key = api_key
        self._enabled = enabled

    async def discover(self, query: DiscoveryQuery) -> DiscoveryPage:
        """Run a discovery query and map its results in provider order."""

        if not self.enabled:
            return DiscoveryPage()
        payload = await self._get_json(
            f"/{query.endpoint}", {**query.params, "page": query.page}
        )
        if not isinstance(payload, dict) or not isinstance(payload.get("results"), list):
            logger.warning("TMDb discovery %s returned no results field", query.endpoint)
            return DiscoveryPage()
        results = self._map_results(payload["results"], query.media_type)
        return DiscoveryPage(
            results=tuple(results), total_pages=_as_int(payload.get("total_pages")) or 1
        )

    async def trending(
        self, media_type: MediaType = "tv", window: str = "day"
    ) -> list[CatalogItem]:
        if not self.enabled:
            return []
        payload = await self._get_json(f"/trending/{media_type}/{window}", {})
        if not isinstance(payload, dict):
            return []
        return self._map_results(_as_list(payload.get("results")), media_type)

    async def search(self, text: str, page: int = 1) -> DiscoveryPage:
        """Search movies and series; people and other result kinds are dropped."""

        if not self.enabled or not text.strip():
            return DiscoveryPage()
        payload = await self._get_json(
            "/search/multi", {"query": text.strip(), "page": page}
        )
        if not isinstance(payload, dict):
            return DiscoveryPage()
        entries = [
            entry
            for entry in _as_list(payload.get("results"))
            if isinstance(entry, dict) and entry.get("media_type") in {"movie", "tv"}
        ]
        items: list[CatalogItem] = []
        for entry in entries:
            item = map_tmdb_item(entry, entry["media_type"])
            if item is not None:
                items.append(item)
        return DiscoveryPage(
            results=tuple(items), total_pages=_as_int(payload.get("total_pages")) or 1
        )

    async def get_details(
        self, item_id: str, media_type: MediaType = "tv"
    ) -> SeriesDetail | None:
        """Fetch the full title record with cast, videos, reviews and external ids."""

        if not self.enabled:
            return None
        _, raw_id = split_item_id(item_id)
        payload = await self._get_json(
            f"/{media_type}/{raw_id}", {"append_to_response": DETAIL_APPENDS}
        )
        if not isinstance(payload, dict):
            return None
        item = map_tmdb_item(payload, media_type)
        if item is None:
            return None
        cast_entries = _as_list(_as_dict(payload.get("credits")).get("cast"))
        cast = tuple(
            member
            for member in (_map_cast(entry) for entry in cast_entries[:CAST_LIMIT])
            if member is not None
        )
        return SeriesDetail(item=item, cast=cast)

    async def get_season_episodes(self, item_id: str, season_number: int) -> list[Episode]:
        if not self.enabled:
            return []
        _, raw_id = split_item_id(item_id)
        payload = await self._get_json(f"/tv/{raw_id}/season/{season_number}", {})
        if not isinstance(payload, dict):
            return []
        episodes = (_map_episode(entry) for entry in _as_list(payload.get("episodes")))
        return [episode for episode in episodes if episode is not None]

    async def resolve_imdb_id(self, item_id: str, media_type: MediaType) -> str | None:
        """Return the IMDb identifier used to join the secondary providers."""

        if not self.enabled:
            return None
        _, raw_id = split_item_id(item_id)
        payload = await self._get_json(f"/{media_type}/{raw_id}/external_ids", {})
        if not isinstance(payload, dict):
            return None
        return clean_text(payload.get("imdb_id"))

    async def upcoming(
        self, media_type: MediaType = "tv", language: str = "all"
    ) -> list[CatalogItem]:
        """Return titles with an episode or release due in the next thirty days."""

        if not self.enabled:
            return []
        today = date.today()
        range_end = today + timedelta(days=CALENDAR_WINDOW_DAYS)
        params: dict[str, Any]
        if media_type == "tv":
            params = {
                "air_date.gte": today.isoformat(),
                "air_date.lte": range_end.isoformat(),
                "sort_by": "popularity.desc",
            }
        else:
            params = {
                "primary_release_date.gte": today.isoformat(),
                "primary_release_date.lte": range_end.isoformat(),
                "sort_by": "primary_release_date.asc",
            }
        if language != "all":
            params["with_original_language"] = language

        payload = await self._get_json(f"/discover/{media_type}", params)
        if not isinstance(payload, dict):
            return []
        raw_ids = [
            entry["id"]
            for entry in _as_list(payload.get("results"))[:CALENDAR_RESULT_LIMIT]
            if isinstance(entry, dict) and entry.get("id") is not None
        ]

        async def _detail(raw_id: Any) -> Any:
            async with self._semaphore:
                return await self._get_json(f"/{media_type}/{raw_id}", {})

        details = await asyncio.gather(*(_detail(raw_id) for raw_id in raw_ids))
        scheduled: list[CatalogItem] = []
        for detail in details:
            if not isinstance(detail, dict):
                continue
            item = map_tmdb_item(detail, media_type)
            if item is None:
                continue
            if media_type == "movie" and item.next_episode is None and detail.get("release_date"):
                item = item.model_copy(
                    update={
                        "next_episode": Episode(
                            name="Theatrical Release",
                            episode_number=1,
                            season_number=1,
                            air_date=str(detail["release_date"]),
                            overview=item.synopsis,
                        )
                    }
                )
            if item.next_episode is not None:
                scheduled.append(item)
        return scheduled

    def _map_results(
        self, entries: list[Any], media_type: MediaType
    ) -> list[AnyCatalogItem]:
        items: list[AnyCatalogItem] = []
        for entry in entries:
            if not isinstance(entry, dict):
                continue
            entry_type = entry.get("media_type")
            item = map_tmdb_item(
                entry, entry_type if entry_type in {"movie", "tv"} else media_type
            )
            if item is None:
                logger.debug("Skipping TMDb record without an id")
                continue
            items.append(item)
        return items

    async def _get_json(self, path: str, params: Mapping[str, Any]) -> Any | None:
        """GET ``path`` with the credential attached; ``None`` on any failure."""

        query = {**params, "api_key": self._api_key}
        try:
            response = await self._client.get(path, params=query)
        except httpx.HTTPError as exc:
            logger.warning("TMDb request %s failed: %s", path, exc)
            return None
        if response.status_code >= 400:
            logger.warning(
                "TMDb request %s failed with status %s", path, response.status_code
            )
            return None
        try:
            return response.json()
        except ValueError:
            logger.warning("TMDb request %s returned malformed JSON", path)
            return None


def _map_episode(entry: Any) -> Episode | None:
    if not isinstance(entry, dict):
        return None
    return Episode(
        id=_as_int(entry.get("id")),
        name=clean_text(entry.get("name")) or "",
        episode_number=_as_int(entry.get("episode_number")),
        season_number=_as_int(entry.get("season_number")),
        air_date=clean_text(entry.get("air_date")),
        overview=clean_text(entry.get("overview")) or "",
        still_path=_image(entry.get("still_path"), IMAGE_BASE_URL),
        vote_average=_as_float(entry.get("vote_average")),
    )


def _map_season(entry: Any) -> Season | None:
    if not isinstance(entry, dict) or entry.get("id") is None:
        return None
    return Season(
        id=_as_int(entry.get("id")),
        name=clean_text(entry.get("name")) or "",
        season_number=_as_int(entry.get("season_number")),
        episode_count=_as_int(entry.get("episode_count")),
        air_date=clean_text(entry.get("air_date")),
        poster_path=_image(entry.get("poster_path"), IMAGE_BASE_URL),
        overview=clean_text(entry.get("overview")),
    )


def _map_review(entry: Any) -> Review | None:
    if not isinstance(entry, dict) or not entry.get("id"):
        return None
    details = _as_dict(entry.get("author_details"))
    avatar = details.get("avatar_path")
    avatar_url: str | None = None
    if isinstance(avatar, str) and avatar:
        # Gravatar avatars arrive as "/https://..." absolute URLs.
        avatar_url = avatar[1:] if avatar.startswith("/http") else f"{IMAGE_BASE_URL}{avatar}"
    rating = details.get("rating")
    return Review(
        id=str(entry["id"]),
        author=clean_text(entry.get("author")) or "Anonymous",
        content=str(entry.get("content") or ""),
        created_at=clean_text(entry.get("created_at")),
        rating=_as_float(rating) if rating else None,
        avatar_path=avatar_url,
    )


def _map_cast(entry: Any) -> CastMember | None:
    if not isinstance(entry, dict) or entry.get("id") is None:
        return None
    order = entry.get("order")
    return CastMember(
        id=str(entry["id"]),
        name=clean_text(entry.get("name")) or "Unknown",
        role_type="Lead"
        if isinstance(order, int) and order < LEAD_BILLING_CUTOFF
        else "Supporting",
        photo_url=_image(entry.get("profile_path"), IMAGE_BASE_URL) or PLACEHOLDER_PHOTO_URL,
        character_name=clean_text(entry.get("character")) or "",
    )


def _network(payload: Mapping[str, Any]) -> str:
    for network in _as_list(payload.get("networks")):
        if isinstance(network, dict) and network.get("name"):
            return str(network["name"])
    countries = _as_list(payload.get("origin_country"))
    if countries and isinstance(countries[0], str) and countries[0]:
        return countries[0]
    return "TMDb"


def _runtime(payload: Mapping[str, Any]) -> str | None:
    runtime = _as_int(payload.get("runtime"))
    if runtime:
        return f"{runtime} min"
    episode_runtimes = _as_list(payload.get("episode_run_time"))
    if episode_runtimes and _as_int(episode_runtimes[0]):
        return f"{_as_int(episode_runtimes[0])} min"
    return None


def _trailer(payload: Mapping[str, Any]) -> str | None:
    for video in _as_list(_as_dict(payload.get("videos")).get("results")):
        if (
            isinstance(video, dict)
            and video.get("type") == "Trailer"
            and video.get("site") == "YouTube"
            and video.get("key")
        ):
            return f"https://www.youtube.com/watch?v={video['key']}"
    return None


def _image(path: Any, base_url: str) -> str | None:
    if not isinstance(path, str) or not path:
        return None
    if path.startswith("http"):
        return path
    return f"{base_url}{path}"


def _as_list(value: Any) -> list[Any]:
    return value if isinstance(value, list) else []


def _as_dict(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _as_int(value: Any) -> int:
    if isinstance(value, bool):
        return 0
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


def _as_float(value: Any) -> float:
    if isinstance(value, bool):
        return 0.0
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0
