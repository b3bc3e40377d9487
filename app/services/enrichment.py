"""Two-phase catalog loading with bounded background enrichment."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Callable, Iterable, Sequence

from pydantic import TypeAdapter, ValidationError
from sqlalchemy.exc import SQLAlchemyError

from ..models import (
    AnyCatalogItem,
    CatalogItem,
    DiscoveryQuery,
    EnrichedCatalogItem,
    merge_enrichment,
)
from .local_cache import LocalCache
from .omdb import OMDbClient
from .tmdb import TMDBClient

logger = logging.getLogger(__name__)

Publisher = Callable[[list[CatalogItem]], None]

_ITEM_LIST = TypeAdapter(list[AnyCatalogItem])


class LivenessToken:
    """Says whether the consumer behind a load still wants its result."""

    __slots__ = ("_alive",)

    def __init__(self) -> None:
        self._alive = True

    @property
    def alive(self) -> bool:
        return self._alive

    def invalidate(self) -> None:
        self._alive = False


class ConsumerScope:
    """Lifecycle of one consumer: at most one live token at a time.

    Issuing a new token invalidates the previous one, and closing the scope
    invalidates the current one, so results of superseded or abandoned
    loads are never published.
    """

    def __init__(self) -> None:
        self._current: LivenessToken | None = None
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def issue(self) -> LivenessToken:
        if self._closed:
            raise RuntimeError("Consumer scope is closed")
        if self._current is not None:
            self._current.invalidate()
        self._current = LivenessToken()
        return self._current

    def close(self) -> None:
        if self._current is not None:
            self._current.invalidate()
        self._current = None
        self._closed = True


@dataclass(slots=True)
class CategoryLoad:
    """Result of ``load_category``: the coarse list plus the pending merge."""

    query: DiscoveryQuery
    immediate: list[CatalogItem]
    total_pages: int
    token: LivenessToken
    enrichment: asyncio.Task[list[CatalogItem]] | None = None

    async def enriched(self) -> list[CatalogItem] | None:
        """Wait for phase two; ``None`` when the consumer lost interest."""

        if self.enrichment is None:
            return list(self.immediate) if self.token.alive else None
        result = await self.enrichment
        return result if self.token.alive else None


class EnrichmentOrchestrator:
    """Coordinates discovery (phase one) with OMDb enrichment (phase two)."""

    def __init__(
        self, tmdb_client: TMDBClient, omdb_client: OMDbClient, *, head_size: int = 4
    ) -> None:
        self._tmdb = tmdb_client
        self._omdb = omdb_client
        self._head_size = max(head_size, 0)

    @property
    def head_size(self) -> int:
        return self._head_size

    async def load_category(
        self,
        query: DiscoveryQuery,
        *,
        token: LivenessToken | None = None,
        on_publish: Publisher | None = None,
        leading: Sequence[CatalogItem] = (),
    ) -> CategoryLoad:
        """Return the discovery results now and schedule their enrichment.

        ``leading`` items are placed ahead of the discovery results; a
        discovered title sharing an id with one of them is dropped.
        ``on_publish`` receives the phase-one list before this coroutine
        returns and the merged list once phase two settles, each time only
        while ``token`` is alive.
        """

        token = token or LivenessToken()
        page = await self._tmdb.discover(query)
        seen = {item.id for item in leading}
        immediate = [
            *leading,
            *(item for item in page.results if item.id not in seen),
        ]
        load = CategoryLoad(query, immediate, page.total_pages, token)
        if not token.alive:
            logger.debug("Dropping superseded discovery for %s", query.endpoint)
            return load

        if on_publish is not None:
            on_publish(list(immediate))
        if not immediate or self._head_size == 0:
            return load

        load.enrichment = asyncio.create_task(
            self._run_phase_two(immediate, token, on_publish)
        )
        return load

    async def enrich(self, items: Sequence[CatalogItem]) -> list[CatalogItem]:
        """Merge critical reception into the head of ``items``; keep the tail."""

        head = list(items[: self._head_size])
        tail = list(items[self._head_size :])
        merged_head = await asyncio.gather(*(self._enrich_item(item) for item in head))
        return [*merged_head, *tail]

    async def _run_phase_two(
        self,
        items: list[CatalogItem],
        token: LivenessToken,
        on_publish: Publisher | None,
    ) -> list[CatalogItem]:
        enriched = await self.enrich(items)
        if not token.alive:
            logger.debug("Discarding enrichment for a superseded load")
            return enriched
        if on_publish is not None:
            on_publish(list(enriched))
        return enriched

    async def _enrich_item(self, item: CatalogItem) -> CatalogItem:
        if isinstance(item, EnrichedCatalogItem):
            return item
        try:
            imdb_id = item.imdb_id or await self._tmdb.resolve_imdb_id(
                item.id, item.resolved_media_type()
            )
            if not imdb_id:
                return item
            reception = await self._omdb.get_reception(imdb_id)
        except Exception as exc:  # pragma: no cover - per-item safety net
            logger.warning("Enrichment failed for %s: %s", item.id, exc)
            return item

        merged = merge_enrichment(item, reception)
        if merged is not item and merged.imdb_id is None:
            merged = merged.model_copy(update={"imdb_id": imdb_id})
        return merged


class CategoryFeed:
    """Consumer holding one lane's list; the latest request always wins.

    The feed starts from the cached list (or the static fallback) so it is
    never blank and swaps in each published list wholesale. An empty load
    keeps the list only when that list was bootstrapped or belongs to the
    same query; a list left over from another query gives way to the
    fallback.
    """

    def __init__(
        self,
        orchestrator: EnrichmentOrchestrator,
        *,
        on_change: Callable[[tuple[CatalogItem, ...]], None] | None = None,
        fallback: Iterable[CatalogItem] = (),
        cache: LocalCache | None = None,
        cache_key: str | None = None,
    ) -> None:
        self._orchestrator = orchestrator
        self._on_change = on_change
        self._fallback = tuple(fallback)
        self._cache = cache
        self._cache_key = cache_key
        self._scope = ConsumerScope()
        self._query: DiscoveryQuery | None = None
        # Query whose results are on display; None while showing the bootstrap list.
        self._shown_for: DiscoveryQuery | None = None
        self._items: tuple[CatalogItem, ...] = self._bootstrap()

    @property
    def items(self) -> tuple[CatalogItem, ...]:
        return self._items

    @property
    def query(self) -> DiscoveryQuery | None:
        return self._query

    async def show(
        self, query: DiscoveryQuery, *, leading: Sequence[CatalogItem] = ()
    ) -> CategoryLoad:
        """Load ``query``, superseding any load still in flight."""

        token = self._scope.issue()
        self._query = query

        def _publish(items: list[CatalogItem]) -> None:
            if not token.alive:
                return
            if items:
                self._shown_for = query
                self._replace(tuple(items), persist=True)
            elif self._shown_for is not None and self._shown_for != query:
                self._shown_for = None
                self._replace(self._fallback, persist=False)

        return await self._orchestrator.load_category(
            query, token=token, on_publish=_publish, leading=leading
        )

    def close(self) -> None:
        self._scope.close()

    def _replace(self, items: tuple[CatalogItem, ...], *, persist: bool) -> None:
        self._items = items
        if persist and self._cache is not None and self._cache_key:
            try:
                self._cache.write_json(
                    self._cache_key, [item.model_dump(mode="json") for item in items]
                )
            except SQLAlchemyError as exc:
                logger.warning("Could not cache list %s: %s", self._cache_key, exc)
        if self._on_change is not None:
            self._on_change(items)

    def _bootstrap(self) -> tuple[CatalogItem, ...]:
        if self._cache is None or not self._cache_key or not self._cache.initialised:
            return self._fallback
        cached = self._cache.read_json(self._cache_key)
        if not isinstance(cached, list) or not cached:
            return self._fallback
        try:
            return tuple(_ITEM_LIST.validate_python(cached))
        except ValidationError:
            logger.warning("Ignoring unreadable cached list %s", self._cache_key)
            return self._fallback
