"""Watchlist toggles expressed as set mutations."""

from __future__ import annotations

import asyncio
from typing import Any

import pytest

from app.database import Database
from app.models import Identity, UserProfile
from app.services.store import DocumentSnapshot, DocumentStore
from app.services.sync import ProfileChannel
from app.services.watchlist import ToggleStatus, WatchlistMutator

ADA = Identity(user_id="u1", name="Ada")


class GatedStore(DocumentStore):
    """Document store whose array mutations wait for a gate to open."""

    def __init__(self, session_factory: Any) -> None:
        super().__init__(session_factory)
        self.gate = asyncio.Event()
        self.gate.set()

    async def array_union(self, *args: Any) -> DocumentSnapshot:  # type: ignore[override]
        await self.gate.wait()
        return await super().array_union(*args)


async def _setup(tmp_path) -> tuple[Database, GatedStore, ProfileChannel, WatchlistMutator]:
    database = Database(f"sqlite+aiosqlite:///{tmp_path / 'store.db'}")
    await database.create_all()
    store = GatedStore(database.session_factory)
    channel = ProfileChannel(store)
    await channel.bind(ADA)

    def lookup(user_id: str) -> UserProfile | None:
        return channel.profile if user_id == ADA.user_id else None

    return database, store, channel, WatchlistMutator(store, lookup)


def test_toggle_twice_restores_the_set(tmp_path) -> None:
    async def runner() -> None:
        database, store, channel, mutator = await _setup(tmp_path)
        try:
            added = await mutator.toggle(ADA, "42")
            assert added.status is ToggleStatus.ADDED
            assert added.in_watchlist is True
            assert channel.profile is not None
            assert channel.profile.watchlist == ("42",)

            removed = await mutator.toggle(ADA, "42")
            assert removed.status is ToggleStatus.REMOVED
            assert channel.profile.watchlist == ()
            await store.wait_idle()
        finally:
            await database.dispose()

    asyncio.run(runner())


def test_rapid_double_toggle_issues_one_mutation(tmp_path) -> None:
    async def runner() -> None:
        database, store, channel, mutator = await _setup(tmp_path)
        try:
            store.gate.clear()
            first = asyncio.create_task(mutator.toggle(ADA, "42"))
            await asyncio.sleep(0)

            assert mutator.is_pending("u1", "42")
            assert mutator.is_in_watchlist("u1", "42") is True
            second = await mutator.toggle(ADA, "42")
            assert second.status is ToggleStatus.PENDING

            store.gate.set()
            result = await first
            assert result.status is ToggleStatus.ADDED
            assert not mutator.is_pending("u1", "42")

            snapshot = await store.get("users", "u1")
            assert snapshot.data["watchlist"].count("42") == 1
            await store.wait_idle()
        finally:
            await database.dispose()

    asyncio.run(runner())


def test_adding_a_present_id_keeps_one_copy(tmp_path) -> None:
    """A stale snapshot that misses the id still cannot duplicate it."""

    async def runner() -> None:
        database, store, channel, _ = await _setup(tmp_path)
        stale = UserProfile(id="u1")
        mutator = WatchlistMutator(store, lambda user_id: stale)
        try:
            await store.array_union("users", "u1", "watchlist", "42")
            result = await mutator.toggle(ADA, "42")

            assert result.status is ToggleStatus.ADDED
            snapshot = await store.get("users", "u1")
            assert snapshot.data["watchlist"] == ["42"]
            await store.wait_idle()
        finally:
            await database.dispose()

    asyncio.run(runner())


def test_missing_profile_document_fails_without_optimistic_state(tmp_path) -> None:
    async def runner() -> None:
        database, store, _, _ = await _setup(tmp_path)
        ghost = Identity(user_id="ghost")
        mutator = WatchlistMutator(store, lambda user_id: None)
        try:
            result = await mutator.toggle(ghost, "42")

            assert result.status is ToggleStatus.FAILED
            assert result.message
            assert not mutator.is_pending("ghost", "42")
            assert mutator.is_in_watchlist("ghost", "42") is False
            assert not (await store.get("users", "ghost")).exists
            await store.wait_idle()
        finally:
            await database.dispose()

    asyncio.run(runner())


def test_unauthenticated_toggle_writes_nothing(tmp_path) -> None:
    async def runner() -> None:
        database, store, channel, mutator = await _setup(tmp_path)
        try:
            result = await mutator.toggle(None, "42")

            assert result.status is ToggleStatus.UNAUTHENTICATED
            assert result.ok is False
            assert (await store.get("users", "u1")).data["watchlist"] == []

            with pytest.raises(ValueError):
                await mutator.toggle(ADA, " ")
            await store.wait_idle()
        finally:
            await database.dispose()

    asyncio.run(runner())
