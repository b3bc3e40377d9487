"""Ratings tables built from seed records or live trending lists."""

from __future__ import annotations

import logging
from datetime import date
from typing import Iterable

from ..models import RATING_CATEGORIES, CatalogItem, RatingRecord, Trend
from .tmdb import TMDBClient

logger = logging.getLogger(__name__)


def classify_trend(rank: int, size: int) -> Trend:
    """Approximate a trend from table position alone.

    The providers expose no history, so this is a display heuristic and
    not a measurement: the top three rows read as rising, the bottom three
    as falling and everything else as stable.
    """

    if rank <= 3:
        return "up"
    if rank > size - 3:
        return "down"
    return "stable"


def _share(score: float, total: float) -> float:
    if total <= 0:
        return 0.0
    return round(score / total * 100, 2)


class RatingAggregator:
    def __init__(self, tmdb_client: TMDBClient, *, display_size: int = 10) -> None:
        self._tmdb = tmdb_client
        self._display_size = display_size

    async def get_ratings(
        self, category: str, seed: Iterable[RatingRecord] = ()
    ) -> list[RatingRecord]:
        """Return at most ``display_size`` ranked rows for ``category``.

        ``daily-tv`` prefers the seed records when there are any; every
        other case reads the matching trending list.
        """

        if category not in RATING_CATEGORIES:
            raise ValueError(f"Unknown ratings category: {category}")

        seed_rows = sorted(
            (record for record in seed if record.category == category),
            key=lambda record: record.rank,
        )
        if category == "daily-tv" and seed_rows:
            return self._from_seed(seed_rows[: self._display_size])

        if category == "daily-tv":
            items = await self._tmdb.trending("tv", "day")
        elif category == "weekly-tv":
            items = await self._tmdb.trending("tv", "week")
        else:
            items = await self._tmdb.trending("movie", "week")
        return self._from_items(category, items[: self._display_size])

    def _from_seed(self, rows: list[RatingRecord]) -> list[RatingRecord]:
        total = sum(row.rating for row in rows)
        size = len(rows)
        return [
            row.model_copy(
                update={
                    "rank": position,
                    "previous_rank": row.rank,
                    "share": _share(row.rating, total),
                    "trend": classify_trend(position, size),
                }
            )
            for position, row in enumerate(rows, start=1)
        ]

    def _from_items(
        self, category: str, items: list[CatalogItem]
    ) -> list[RatingRecord]:
        if not items:
            logger.info("No live rows available for ratings category %s", category)
            return []
        total = sum(item.score for item in items)
        today = date.today().isoformat()
        size = len(items)
        return [
            RatingRecord(
                id=f"{category}-{position}",
                rank=position,
                previous_rank=position,
                series_id=item.id,
                category=category,
                rating=item.score,
                share=_share(item.score, total),
                trend=classify_trend(position, size),
                date=today,
                title=item.display_title(),
                poster_url=item.poster_url,
            )
            for position, item in enumerate(items, start=1)
        ]
