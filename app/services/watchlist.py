"""Watchlist add/remove expressed as set mutations on the profile document."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable

from ..models import Identity, UserProfile
from .store import DocumentStore, StoreError
from .sync import PROFILE_COLLECTION

logger = logging.getLogger(__name__)

WATCHLIST_FIELD = "watchlist"

ProfileLookup = Callable[[str], UserProfile | None]


class ToggleStatus(str, Enum):
    ADDED = "added"
    REMOVED = "removed"
    PENDING = "pending"
    UNAUTHENTICATED = "unauthenticated"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class ToggleResult:
    status: ToggleStatus
    item_id: str
    in_watchlist: bool | None = None
    message: str | None = None

    @property
    def ok(self) -> bool:
        return self.status in (ToggleStatus.ADDED, ToggleStatus.REMOVED)


class WatchlistMutator:
    """Flips watchlist membership with ``array_union``/``array_remove``.

    Membership is judged from the latest profile snapshot returned by
    ``profile_lookup``. The desired state of an in-flight toggle is kept as
    an optimistic overlay until the write settles; the authoritative state
    then arrives through the profile channel.
    """

    def __init__(self, store: DocumentStore, profile_lookup: ProfileLookup) -> None:
        self._store = store
        self._profile_lookup = profile_lookup
        self._pending: dict[tuple[str, str], bool] = {}

    def is_in_watchlist(self, user_id: str, item_id: str) -> bool:
        key = (user_id, item_id)
        if key in self._pending:
            return self._pending[key]
        profile = self._profile_lookup(user_id)
        return profile is not None and profile.has_in_watchlist(item_id)

    def is_pending(self, user_id: str, item_id: str) -> bool:
        return (user_id, item_id) in self._pending

    async def toggle(self, identity: Identity | None, item_id: str) -> ToggleResult:
        if not item_id or not item_id.strip():
            raise ValueError("Watchlist item id must not be empty")
        if identity is None:
            return ToggleResult(
                ToggleStatus.UNAUTHENTICATED,
                item_id,
                message="Sign in to manage your watchlist",
            )

        key = (identity.user_id, item_id)
        if key in self._pending:
            return ToggleResult(
                ToggleStatus.PENDING, item_id, in_watchlist=self._pending[key]
            )

        profile = self._profile_lookup(identity.user_id)
        member = profile is not None and profile.has_in_watchlist(item_id)
        self._pending[key] = not member
        try:
            if member:
                await self._store.array_remove(
                    PROFILE_COLLECTION, identity.user_id, WATCHLIST_FIELD, item_id
                )
            else:
                await self._store.array_union(
                    PROFILE_COLLECTION, identity.user_id, WATCHLIST_FIELD, item_id
                )
        except StoreError as exc:
            logger.warning(
                "Watchlist update for %s failed: %s", identity.user_id, exc
            )
            return ToggleResult(
                ToggleStatus.FAILED, item_id, in_watchlist=member, message=str(exc)
            )
        finally:
            self._pending.pop(key, None)

        return ToggleResult(
            ToggleStatus.REMOVED if member else ToggleStatus.ADDED,
            item_id,
            in_watchlist=not member,
        )
