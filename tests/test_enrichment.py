"""Two-phase loading, bounded enrichment and last-request-wins feeds."""

from __future__ import annotations

import asyncio

import pytest
from sqlalchemy.exc import SQLAlchemyError

from app.categories import SEED_SERIES
from app.models import (
    CatalogItem,
    CriticalReception,
    DiscoveryPage,
    DiscoveryQuery,
    EnrichedCatalogItem,
    MediaType,
)
from app.services.enrichment import (
    CategoryFeed,
    ConsumerScope,
    EnrichmentOrchestrator,
    LivenessToken,
)
from app.services.local_cache import LocalCache
from app.services.omdb import OMDbClient
from app.services.tmdb import TMDBClient


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


def make_items(count: int, prefix: str = "tv") -> list[CatalogItem]:
    return [
        CatalogItem(id=f"{prefix}_{index}", media_type="tv", title=f"Title {index}")
        for index in range(1, count + 1)
    ]


class StubTMDBClient(TMDBClient):
    """TMDb stub serving canned discovery pages keyed by genre."""

    def __init__(self, pages: dict[str, list[CatalogItem]]) -> None:
        # Deliberately skip super().__init__ to avoid touching the network.
        self.pages = pages
        self.gates: dict[str, asyncio.Event] = {}
        self.resolved: list[tuple[str, MediaType]] = []

    async def discover(self, query: DiscoveryQuery) -> DiscoveryPage:  # type: ignore[override]
        key = query.params.get("with_genres", "")
        gate = self.gates.get(key)
        if gate is not None:
            await gate.wait()
        items = self.pages.get(key, [])
        return DiscoveryPage(results=tuple(items), total_pages=1 if items else 0)

    async def resolve_imdb_id(  # type: ignore[override]
        self, item_id: str, media_type: MediaType
    ) -> str | None:
        self.resolved.append((item_id, media_type))
        return f"tt{item_id.split('_')[-1]}"


class StubOMDbClient(OMDbClient):
    """OMDb stub: known ids get a rating, others are "not found"."""

    def __init__(
        self, *, missing: set[str] | None = None, broken: set[str] | None = None
    ) -> None:
        self.missing = missing or set()
        self.broken = broken or set()
        self.calls: list[str] = []

    async def get_reception(self, imdb_id: str) -> CriticalReception | None:  # type: ignore[override]
        self.calls.append(imdb_id)
        if imdb_id in self.broken:
            raise RuntimeError("provider exploded")
        if imdb_id in self.missing:
            return None
        return CriticalReception(imdb_rating="8.0", awards=f"Awards for {imdb_id}")


def _query(genre: str) -> DiscoveryQuery:
    return DiscoveryQuery(endpoint="discover/tv", params={"with_genres": genre})


@pytest.mark.anyio("asyncio")
async def test_phase_one_is_published_before_bounded_enrichment() -> None:
    items = make_items(20)
    tmdb = StubTMDBClient({"18": items})
    omdb = StubOMDbClient()
    orchestrator = EnrichmentOrchestrator(tmdb, omdb, head_size=6)
    published: list[list[CatalogItem]] = []

    load = await orchestrator.load_category(_query("18"), on_publish=published.append)

    assert len(published) == 1
    assert published[0] == items
    assert load.immediate == items

    enriched = await load.enriched()

    assert enriched is not None
    assert len(published) == 2
    assert [item.id for item in enriched] == [item.id for item in items]
    assert all(isinstance(item, EnrichedCatalogItem) for item in enriched[:6])
    assert enriched[6:] == items[6:]
    assert enriched[0].imdb_id == "tt1"
    assert enriched[0].title == "Title 1"
    assert len(omdb.calls) == 6


@pytest.mark.anyio("asyncio")
async def test_not_found_item_stays_untouched() -> None:
    items = make_items(5)
    orchestrator = EnrichmentOrchestrator(
        StubTMDBClient({"18": items}), StubOMDbClient(missing={"tt2"}), head_size=4
    )

    load = await orchestrator.load_category(_query("18"))
    enriched = await load.enriched()

    assert enriched is not None
    assert enriched[1] is items[1]
    assert isinstance(enriched[0], EnrichedCatalogItem)
    assert isinstance(enriched[2], EnrichedCatalogItem)


@pytest.mark.anyio("asyncio")
async def test_per_item_failures_keep_the_original() -> None:
    items = make_items(3)
    orchestrator = EnrichmentOrchestrator(
        StubTMDBClient({}), StubOMDbClient(broken={"tt3"}), head_size=4
    )

    enriched = await orchestrator.enrich(items)

    assert enriched[2] is items[2]
    assert isinstance(enriched[0], EnrichedCatalogItem)


@pytest.mark.anyio("asyncio")
async def test_enrichment_is_idempotent() -> None:
    items = make_items(6)
    tmdb = StubTMDBClient({})
    omdb = StubOMDbClient()
    orchestrator = EnrichmentOrchestrator(tmdb, omdb, head_size=4)

    once = await orchestrator.enrich(items)
    calls_after_first = len(omdb.calls)
    twice = await orchestrator.enrich(once)

    assert twice == once
    assert len(omdb.calls) == calls_after_first


@pytest.mark.anyio("asyncio")
async def test_known_imdb_id_skips_the_lookup() -> None:
    item = CatalogItem(id="tv_7", media_type="tv", imdb_id="tt7777")
    tmdb = StubTMDBClient({})
    omdb = StubOMDbClient()

    enriched = await EnrichmentOrchestrator(tmdb, omdb).enrich([item])

    assert tmdb.resolved == []
    assert omdb.calls == ["tt7777"]
    assert enriched[0].imdb_id == "tt7777"


@pytest.mark.anyio("asyncio")
async def test_media_kind_is_inferred_for_the_lookup() -> None:
    item = CatalogItem(id="55", episodes_aired=0, episodes_total=0)
    tmdb = StubTMDBClient({})

    await EnrichmentOrchestrator(tmdb, StubOMDbClient()).enrich([item])

    assert tmdb.resolved == [("55", "movie")]


@pytest.mark.anyio("asyncio")
async def test_dead_token_suppresses_phase_two() -> None:
    items = make_items(4)
    orchestrator = EnrichmentOrchestrator(
        StubTMDBClient({"18": items}), StubOMDbClient(), head_size=4
    )
    published: list[list[CatalogItem]] = []
    token = LivenessToken()

    load = await orchestrator.load_category(
        _query("18"), token=token, on_publish=published.append
    )
    token.invalidate()

    assert await load.enriched() is None
    assert len(published) == 1


@pytest.mark.anyio("asyncio")
async def test_empty_discovery_schedules_nothing() -> None:
    omdb = StubOMDbClient()
    orchestrator = EnrichmentOrchestrator(StubTMDBClient({}), omdb)
    published: list[list[CatalogItem]] = []

    load = await orchestrator.load_category(_query("99"), on_publish=published.append)

    assert load.immediate == []
    assert load.enrichment is None
    assert published == [[]]
    assert await load.enriched() == []
    assert omdb.calls == []


def test_scope_invalidates_previous_tokens() -> None:
    scope = ConsumerScope()
    first = scope.issue()
    second = scope.issue()

    assert first.alive is False
    assert second.alive is True

    scope.close()
    assert second.alive is False
    with pytest.raises(RuntimeError):
        scope.issue()


@pytest.mark.anyio("asyncio")
async def test_latest_query_wins_in_feed() -> None:
    drama = make_items(3, prefix="tv")
    comedy = [
        CatalogItem(id=f"tv_{index}", media_type="tv", title=f"Comedy {index}")
        for index in range(100, 103)
    ]
    tmdb = StubTMDBClient({"18": drama, "35": comedy})
    tmdb.gates["18"] = asyncio.Event()
    orchestrator = EnrichmentOrchestrator(tmdb, StubOMDbClient(), head_size=2)
    changes: list[tuple[CatalogItem, ...]] = []
    feed = CategoryFeed(orchestrator, on_change=changes.append)

    slow = asyncio.create_task(feed.show(_query("18")))
    await asyncio.sleep(0)
    fast = await feed.show(_query("35"))
    await fast.enriched()
    tmdb.gates["18"].set()
    stale = await slow

    assert await stale.enriched() is None
    assert [item.id for item in feed.items] == [item.id for item in comedy]
    assert all(item.title.startswith("Comedy") for change in changes for item in change)
    assert isinstance(feed.items[0], EnrichedCatalogItem)


@pytest.mark.anyio("asyncio")
async def test_unreachable_provider_keeps_seed_list() -> None:
    orchestrator = EnrichmentOrchestrator(StubTMDBClient({}), StubOMDbClient())
    feed = CategoryFeed(orchestrator, fallback=SEED_SERIES)

    assert feed.items == SEED_SERIES
    load = await feed.show(_query("18"))

    assert load.immediate == []
    assert feed.items == SEED_SERIES


@pytest.mark.anyio("asyncio")
async def test_feed_bootstraps_from_cache(tmp_path) -> None:
    cache = LocalCache(f"sqlite:///{tmp_path / 'cache.db'}")
    cache.init()
    items = make_items(3)
    orchestrator = EnrichmentOrchestrator(
        StubTMDBClient({"18": items}), StubOMDbClient(), head_size=1
    )
    try:
        feed = CategoryFeed(
            orchestrator, fallback=SEED_SERIES, cache=cache, cache_key="home_series"
        )
        load = await feed.show(_query("18"))
        await load.enriched()

        restarted = CategoryFeed(
            orchestrator, fallback=SEED_SERIES, cache=cache, cache_key="home_series"
        )
        assert restarted.items == feed.items
        assert isinstance(restarted.items[0], EnrichedCatalogItem)
    finally:
        cache.dispose()


@pytest.mark.anyio("asyncio")
async def test_empty_result_for_a_new_query_falls_back_to_seed() -> None:
    drama = make_items(3)
    orchestrator = EnrichmentOrchestrator(
        StubTMDBClient({"18": drama}), StubOMDbClient(), head_size=0
    )
    feed = CategoryFeed(orchestrator, fallback=SEED_SERIES)

    await feed.show(_query("18"))
    assert [item.id for item in feed.items] == [item.id for item in drama]

    await feed.show(_query("18"))
    await feed.show(_query("35"))

    assert feed.query == _query("35")
    assert feed.items == SEED_SERIES


@pytest.mark.anyio("asyncio")
async def test_empty_reload_of_the_same_query_keeps_its_list() -> None:
    drama = make_items(3)
    tmdb = StubTMDBClient({"18": drama})
    orchestrator = EnrichmentOrchestrator(tmdb, StubOMDbClient(), head_size=0)
    feed = CategoryFeed(orchestrator, fallback=SEED_SERIES)

    await feed.show(_query("18"))
    tmdb.pages["18"] = []
    await feed.show(_query("18"))

    assert [item.id for item in feed.items] == [item.id for item in drama]


@pytest.mark.anyio("asyncio")
async def test_leading_items_come_first_without_duplicates() -> None:
    curated = CatalogItem(id="tv_2", media_type="tv", title="Curated")
    orchestrator = EnrichmentOrchestrator(
        StubTMDBClient({"18": make_items(3)}), StubOMDbClient(), head_size=0
    )

    load = await orchestrator.load_category(_query("18"), leading=[curated])

    assert [item.id for item in load.immediate] == ["tv_2", "tv_1", "tv_3"]
    assert load.immediate[0].title == "Curated"


class BrokenCache(LocalCache):
    def write(self, key: str, value: str) -> None:
        raise SQLAlchemyError("disk full")


@pytest.mark.anyio("asyncio")
async def test_cache_write_failure_still_publishes(tmp_path) -> None:
    cache = BrokenCache(f"sqlite:///{tmp_path / 'cache.db'}")
    cache.init()
    items = make_items(3)
    orchestrator = EnrichmentOrchestrator(
        StubTMDBClient({"18": items}), StubOMDbClient(), head_size=1
    )
    try:
        feed = CategoryFeed(
            orchestrator, fallback=SEED_SERIES, cache=cache, cache_key="home_series"
        )
        load = await feed.show(_query("18"))
        enriched = await load.enriched()

        assert enriched is not None
        assert isinstance(feed.items[0], EnrichedCatalogItem)
        assert [item.id for item in feed.items] == [item.id for item in items]
    finally:
        cache.dispose()
