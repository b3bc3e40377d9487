"""Local durable key/value cache read synchronously at process start."""

from __future__ import annotations

import json
import logging
from typing import Any

from sqlalchemy import create_engine, delete, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..db_models import CacheEntry

logger = logging.getLogger(__name__)

SEARCH_HISTORY_KEY = "search_history"


class LocalCache:
    """String slots persisted in a local SQLite file and mirrored in memory.

    ``init()`` loads every slot once; reads are then served from memory and
    every write goes straight through to disk. Each key has a single owner
    that writes it, so no multi-key transactions are needed.
    """

    def __init__(self, cache_url: str):
        self._engine: Engine = create_engine(cache_url, future=True)
        self._values: dict[str, str] = {}
        self._initialised = False

    @property
    def initialised(self) -> bool:
        return self._initialised

    def init(self) -> None:
        """Create the cache table if needed and load all slots into memory."""

        CacheEntry.metadata.create_all(self._engine)
        with Session(self._engine) as session:
            rows = session.execute(select(CacheEntry.key, CacheEntry.value)).all()
        self._values = {key: value for key, value in rows}
        self._initialised = True

    def read(self, key: str) -> str | None:
        self._require_init()
        return self._values.get(key)

    def write(self, key: str, value: str) -> None:
        self._require_init()
        try:
            with Session(self._engine) as session:
                entry = session.get(CacheEntry, key)
                if entry is None:
                    session.add(CacheEntry(key=key, value=value))
                else:
                    entry.value = value
                session.commit()
        except SQLAlchemyError:
            logger.exception("Failed to persist local cache slot %s", key)
            raise
        self._values[key] = value

    def remove(self, key: str) -> None:
        self._require_init()
        with Session(self._engine) as session:
            session.execute(delete(CacheEntry).where(CacheEntry.key == key))
            session.commit()
        self._values.pop(key, None)

    def read_json(self, key: str) -> Any | None:
        """Return the decoded slot, or ``None`` when absent or corrupt."""

        raw = self.read(key)
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Ignoring corrupt local cache slot %s", key)
            return None

    def write_json(self, key: str, value: Any) -> None:
        self.write(key, json.dumps(value, ensure_ascii=False))

    def dispose(self) -> None:
        self._engine.dispose()

    def _require_init(self) -> None:
        if not self._initialised:
            raise RuntimeError("Local cache not initialised")


class RecentSearches:
    """Bounded most-recent-first list of search terms kept in the local cache."""

    def __init__(
        self, cache: LocalCache, *, limit: int = 10, key: str = SEARCH_HISTORY_KEY
    ) -> None:
        self._cache = cache
        self._limit = limit
        self._key = key

    def terms(self) -> list[str]:
        stored = self._cache.read_json(self._key)
        if not isinstance(stored, list):
            return []
        return [term for term in stored if isinstance(term, str)]

    def record(self, term: str) -> list[str]:
        """Move ``term`` to the front, dropping duplicates and overflow."""

        if not isinstance(term, str):
            return self.terms()
        clean = term.strip()
        if not clean:
            return self.terms()
        history = [clean, *(entry for entry in self.terms() if entry != clean)]
        history = history[: self._limit]
        self._cache.write_json(self._key, history)
        return history

    def remove(self, term: str) -> list[str]:
        history = [entry for entry in self.terms() if entry != term]
        self._cache.write_json(self._key, history)
        return history

    def clear(self) -> None:
        self._cache.remove(self._key)
