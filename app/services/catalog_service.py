"""High level orchestration behind the HTTP API."""

from __future__ import annotations

import asyncio
import logging
from contextlib import suppress

from pydantic import TypeAdapter, ValidationError
from sqlalchemy.exc import SQLAlchemyError

from ..categories import CATEGORIES, CATEGORY_MAP, SEED_RATINGS, SEED_SERIES, CategoryDefinition
from ..config import Settings
from ..models import (
    AnyCatalogItem,
    CatalogItem,
    DiscoveryPage,
    DiscoveryQuery,
    Episode,
    Identity,
    MediaType,
    RatingRecord,
    SeriesDetail,
    SiteConfiguration,
    StreamingSource,
    UserProfile,
    merge_enrichment,
)
from ..utils import split_item_id
from .enrichment import CategoryFeed, CategoryLoad, EnrichmentOrchestrator
from .local_cache import LocalCache, RecentSearches
from .omdb import OMDbClient
from .ratings import RatingAggregator
from .store import DocumentStore, StoreError
from .sync import (
    ConfigurationChannel,
    ProfileChannel,
    Subscription,
    apply_provider_configuration,
    build_default_configuration,
)
from .tmdb import TMDBClient
from .watchlist import ToggleResult, WatchlistMutator
from .watchmode import WatchmodeClient

logger = logging.getLogger(__name__)

HOME_CACHE_KEY = "home_series"
CURATED_COLLECTION = "series"
HOME_QUERY = DiscoveryQuery(endpoint="trending/tv/day")

_CATALOG_ITEM = TypeAdapter(AnyCatalogItem)


class TitleNotFoundError(LookupError):
    """Raised when no provider knows the requested title."""


class CatalogService:
    """Coordinates providers, the document store and the local cache."""

    def __init__(
        self,
        settings: Settings,
        tmdb_client: TMDBClient,
        omdb_client: OMDbClient,
        watchmode_client: WatchmodeClient,
        store: DocumentStore,
        cache: LocalCache,
    ):
        self._settings = settings
        self._tmdb = tmdb_client
        self._omdb = omdb_client
        self._watchmode = watchmode_client
        self._store = store
        self._cache = cache
        self._orchestrator = EnrichmentOrchestrator(
            tmdb_client, omdb_client, head_size=settings.enrichment_head_size
        )
        self._ratings = RatingAggregator(
            tmdb_client, display_size=settings.rating_display_size
        )
        self._recent = RecentSearches(cache, limit=settings.recent_search_limit)
        self._configuration = ConfigurationChannel(
            store, cache, build_default_configuration(settings)
        )
        self._config_subscription: Subscription | None = None
        self._profiles: dict[str, ProfileChannel] = {}
        self._watchlist = WatchlistMutator(store, self.profile)
        self._home_feed: CategoryFeed | None = None
        self._background: set[asyncio.Task[list[CatalogItem]]] = set()

    async def start(self) -> None:
        """Load the local cache and follow the site configuration."""

        if not self._cache.initialised:
            self._cache.init()
        self._apply_configuration(self._configuration.snapshot())
        self._home_feed = CategoryFeed(
            self._orchestrator,
            fallback=SEED_SERIES,
            cache=self._cache,
            cache_key=HOME_CACHE_KEY,
        )
        if self._config_subscription is None:
            self._config_subscription = self._configuration.subscribe(
                self._apply_configuration
            )

    async def stop(self) -> None:
        if self._config_subscription is not None:
            self._config_subscription.unsubscribe()
            self._config_subscription = None
        for channel in self._profiles.values():
            channel.clear()
        self._profiles.clear()
        if self._home_feed is not None:
            self._home_feed.close()
        for task in list(self._background):
            task.cancel()
            with suppress(asyncio.CancelledError):
                await task
        await self._store.wait_idle()
        await self._configuration.settle()

    # Configuration -----------------------------------------------------

    def configuration(self) -> SiteConfiguration:
        return self._configuration.snapshot()

    async def refresh_configuration(self) -> SiteConfiguration:
        config = await self._configuration.load()
        self._apply_configuration(config)
        return config

    def _apply_configuration(self, config: SiteConfiguration) -> None:
        apply_provider_configuration(
            config, tmdb=self._tmdb, omdb=self._omdb, watchmode=self._watchmode
        )

    # Catalog -------------------------------------------------------------

    def categories(self) -> tuple[CategoryDefinition, ...]:
        return CATEGORIES

    def category(self, key: str) -> CategoryDefinition | None:
        return CATEGORY_MAP.get(key)

    async def home(self, *, wait_for_enrichment: bool = False) -> list[CatalogItem]:
        """Return the home lane, never empty thanks to the cached/seed list.

        Curated titles kept in the document store lead, followed by the
        trending list.
        """

        if self._home_feed is None:
            raise RuntimeError("Catalog service not started")
        curated = await self.curated_series()
        load = await self._home_feed.show(HOME_QUERY, leading=curated)
        await self._settle(load, wait=wait_for_enrichment)
        return list(self._home_feed.items)

    async def curated_series(self) -> list[CatalogItem]:
        """Read the curated titles; an unreadable store yields none."""

        try:
            snapshots = await self._store.list_documents(CURATED_COLLECTION)
        except StoreError as exc:
            logger.warning("Curated series unavailable: %s", exc)
            return []

        items: list[CatalogItem] = []
        for snapshot in snapshots:
            data = dict(snapshot.data or {})
            data.setdefault("id", snapshot.document_id)
            data.setdefault("kind", "base")
            try:
                items.append(_CATALOG_ITEM.validate_python(data))
            except ValidationError as exc:
                logger.warning(
                    "Skipping unreadable curated series %s: %s",
                    snapshot.document_id,
                    exc,
                )
        return items

    async def browse(
        self, query: DiscoveryQuery, *, wait_for_enrichment: bool = False
    ) -> DiscoveryPage:
        load = await self._orchestrator.load_category(query)
        items = load.immediate
        if wait_for_enrichment:
            items = await load.enriched() or items
        else:
            self._track(load)
        return DiscoveryPage(results=tuple(items), total_pages=load.total_pages)

    async def search(self, text: str, page: int = 1) -> DiscoveryPage:
        result = await self._tmdb.search(text, page)
        try:
            self._recent.record(text)
        except SQLAlchemyError as exc:
            logger.warning("Could not remember search term: %s", exc)
        return result

    def recent_searches(self) -> list[str]:
        return self._recent.terms()

    def forget_search(self, term: str) -> list[str]:
        return self._recent.remove(term)

    def clear_searches(self) -> None:
        self._recent.clear()

    async def title_detail(
        self, item_id: str, media_type: MediaType | None = None
    ) -> SeriesDetail:
        """Return a title with cast, merged with its critical reception."""

        prefix, _ = split_item_id(item_id)
        candidates: tuple[MediaType, ...]
        if media_type is not None:
            candidates = (media_type,)
        elif prefix is not None:
            candidates = (prefix,)  # type: ignore[assignment]
        else:
            candidates = ("tv", "movie")

        detail: SeriesDetail | None = None
        for candidate in candidates:
            detail = await self._tmdb.get_details(item_id, candidate)
            if detail is not None:
                break
        if detail is None:
            raise TitleNotFoundError(f"Title {item_id} not found")

        if not detail.item.imdb_id:
            return detail
        reception = await self._omdb.get_reception(detail.item.imdb_id)
        merged = merge_enrichment(detail.item, reception)
        if merged is detail.item:
            return detail
        return detail.model_copy(update={"item": merged})

    async def season_episodes(self, item_id: str, season_number: int) -> list[Episode]:
        if season_number < 0:
            raise ValueError("Season number must not be negative")
        return await self._tmdb.get_season_episodes(item_id, season_number)

    async def streaming_sources(self, imdb_id: str) -> list[StreamingSource]:
        return await self._watchmode.get_streaming_sources(imdb_id)

    async def calendar(
        self, media_type: MediaType = "tv", language: str = "all"
    ) -> list[CatalogItem]:
        return await self._tmdb.upcoming(media_type, language)

    async def ratings(self, category: str) -> list[RatingRecord]:
        return await self._ratings.get_ratings(category, SEED_RATINGS)

    # Sessions ------------------------------------------------------------

    async def sign_in(self, identity: Identity) -> UserProfile | None:
        """Bind the profile channel for ``identity``, creating the profile if new."""

        channel = self._profiles.get(identity.user_id)
        if channel is None:
            channel = ProfileChannel(self._store)
            self._profiles[identity.user_id] = channel
        return await channel.bind(identity)

    def sign_out(self, user_id: str) -> bool:
        channel = self._profiles.pop(user_id, None)
        if channel is None:
            return False
        channel.clear()
        return True

    def identity(self, user_id: str | None) -> Identity | None:
        if not user_id:
            return None
        channel = self._profiles.get(user_id)
        return channel.identity if channel is not None else None

    def profile(self, user_id: str) -> UserProfile | None:
        channel = self._profiles.get(user_id)
        return channel.profile if channel is not None else None

    async def toggle_watchlist(self, user_id: str | None, item_id: str) -> ToggleResult:
        return await self._watchlist.toggle(self.identity(user_id), item_id)

    def in_watchlist(self, user_id: str, item_id: str) -> bool:
        return self._watchlist.is_in_watchlist(user_id, item_id)

    # Background enrichment -------------------------------------------------

    async def _settle(self, load: CategoryLoad, *, wait: bool) -> None:
        if wait:
            await load.enriched()
        else:
            self._track(load)

    def _track(self, load: CategoryLoad) -> None:
        task = load.enrichment
        if task is None or task.done():
            return
        self._background.add(task)
        task.add_done_callback(self._background.discard)
