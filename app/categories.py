"""Curated catalog lanes and the static seed used when providers are down."""

from __future__ import annotations

from dataclasses import dataclass

from .models import CatalogItem, DiscoveryQuery, RatingRecord
from .utils import parse_query_string, slugify


@dataclass(frozen=True)
class CategoryDefinition:
    """Describes a fixed browse lane shown on the home screen."""

    key: str
    title: str
    endpoint: str
    params: str

    def to_query(self, page: int = 1) -> DiscoveryQuery:
        return DiscoveryQuery(
            endpoint=self.endpoint, params=parse_query_string(self.params), page=page
        )


CATEGORIES: tuple[CategoryDefinition, ...] = (
    CategoryDefinition(
        key="trending-anime",
        title="Trending Anime",
        endpoint="discover/tv",
        params="with_original_language=ja&with_genres=16&sort_by=popularity.desc",
    ),
    CategoryDefinition(
        key="spanish-language-hits",
        title="Spanish Language Hits",
        endpoint="discover/tv",
        params="with_original_language=es&sort_by=popularity.desc",
    ),
    CategoryDefinition(
        key="mind-bending-sci-fi",
        title="Mind-Bending Sci-Fi",
        endpoint="discover/movie",
        params="with_genres=878&sort_by=vote_average.desc&vote_count.gte=200",
    ),
    CategoryDefinition(
        key="wholesome-family-night",
        title="Wholesome Family Night",
        endpoint="discover/movie",
        params="with_genres=10751,16&sort_by=popularity.desc",
    ),
    CategoryDefinition(
        key="imdb-top-250",
        title="IMDb Top 250",
        endpoint="movie/top_rated",
        params="",
    ),
)

CATEGORY_MAP: dict[str, CategoryDefinition] = {
    definition.key: definition for definition in CATEGORIES
}


def genre_category(genre_name: str, genre_id: int) -> CategoryDefinition:
    """Return the browse lane for a TV genre picked from the menu."""

    return CategoryDefinition(
        key=f"genre-{slugify(genre_name)}-{genre_id}",
        title=f"{genre_name} Series",
        endpoint="discover/tv",
        params=f"with_genres={genre_id}&sort_by=popularity.desc",
    )


SEED_SERIES: tuple[CatalogItem, ...] = (
    CatalogItem(
        id="tv_114479",
        media_type="tv",
        title="Yalı Çapkını",
        original_title="Golden Boy",
        synopsis=(
            "Ferit, the son of a wealthy family, is famous for his debauchery. "
            "His grandfather Halis Agha decides to marry him off to a girl from "
            "Gaziantep to discipline him."
        ),
        status="Airing",
        network="Star TV",
        score=8.5,
        episodes_total=60,
        episodes_aired=58,
        is_featured=True,
    ),
    CatalogItem(
        id="tv_152345",
        media_type="tv",
        title="Kızılcık Şerbeti",
        original_title="Cranberry Sorbet",
        synopsis=(
            "A love story between two extreme families with the same truth but "
            "different methods."
        ),
        status="Airing",
        network="Show TV",
        score=9.1,
        episodes_total=55,
        episodes_aired=55,
        is_featured=True,
    ),
    CatalogItem(
        id="tv_133604",
        media_type="tv",
        title="Yargı",
        original_title="Family Secrets",
        synopsis=(
            "A lawyer and a prosecutor, whose paths cross with a murder case, "
            "will have to work together to find the murderer."
        ),
        status="Ended",
        network="Kanal D",
        score=8.8,
        episodes_total=95,
        episodes_aired=95,
    ),
    CatalogItem(
        id="tv_241517",
        media_type="tv",
        title="Bahar",
        original_title="Bahar",
        synopsis=(
            "Bahar faces a serious illness and wakes up to a new life, realizing "
            "her \"perfect\" family isn't what it seems."
        ),
        status="Airing",
        network="Show TV",
        score=9.5,
        episodes_total=10,
        episodes_aired=8,
        is_featured=True,
    ),
)

SEED_RATINGS: tuple[RatingRecord, ...] = (
    RatingRecord(
        id="1", rank=1, previous_rank=1, series_id="tv_152345",
        category="daily-tv", rating=9.85, share=22.40, trend="stable",
    ),
    RatingRecord(
        id="2", rank=2, previous_rank=3, series_id="tv_241517",
        category="daily-tv", rating=8.90, share=19.10, trend="up",
    ),
    RatingRecord(
        id="3", rank=3, previous_rank=2, series_id="tv_114479",
        category="daily-tv", rating=7.20, share=16.50, trend="down",
    ),
)
