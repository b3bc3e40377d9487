"""JSON document store with atomic set mutations and live listeners."""

from __future__ import annotations

import asyncio
import copy
import logging
from dataclasses import dataclass
from typing import Any, Callable, Mapping

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..db_models import DocumentRecord

logger = logging.getLogger(__name__)

DocumentPath = tuple[str, str]


class StoreError(Exception):
    """Raised when a document read or write cannot be completed."""


class DocumentNotFoundError(StoreError):
    """Raised when a field mutation targets a document that does not exist."""


@dataclass(frozen=True, slots=True)
class DocumentSnapshot:
    """Full contents of a document at a given version."""

    collection: str
    document_id: str
    data: dict[str, Any] | None
    version: int = 0

    @property
    def exists(self) -> bool:
        return self.data is not None


SnapshotHandler = Callable[[DocumentSnapshot], None]
ErrorHandler = Callable[[Exception], None]


class ListenerRegistration:
    """Handle for one live listener; ``remove()`` detaches it."""

    def __init__(
        self,
        store: "DocumentStore",
        path: DocumentPath,
        on_snapshot: SnapshotHandler,
        on_error: ErrorHandler | None,
    ) -> None:
        self._store = store
        self.path = path
        self._on_snapshot = on_snapshot
        self._on_error = on_error
        self._last_version = -1
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    def remove(self) -> None:
        if not self._active:
            return
        self._active = False
        self._store._detach(self)

    def deliver(self, snapshot: DocumentSnapshot) -> None:
        # Versions only move forward; an initial read that lost the race
        # against a write is dropped.
        if not self._active or snapshot.version <= self._last_version:
            return
        self._last_version = snapshot.version
        try:
            self._on_snapshot(snapshot)
        except Exception:  # pragma: no cover - listener safety net
            logger.exception(
                "Listener for %s/%s raised while handling version %s",
                snapshot.collection,
                snapshot.document_id,
                snapshot.version,
            )

    def fail(self, exc: Exception) -> None:
        if not self._active:
            return
        if self._on_error is None:
            logger.warning("Listener for %s/%s failed: %s", *self.path, exc)
            return
        self._on_error(exc)


class DocumentStore:
    """Remote document store backed by the SQLAlchemy async engine.

    Writes to one document are serialised by a per-document lock, so the
    read-modify-write inside ``array_union``/``array_remove`` is atomic for
    every writer sharing this store. Listeners receive the full document
    once on registration and again after every committed change.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory
        self._locks: dict[DocumentPath, asyncio.Lock] = {}
        self._listeners: dict[DocumentPath, list[ListenerRegistration]] = {}
        self._initial_deliveries: set[asyncio.Task[None]] = set()

    async def get(self, collection: str, document_id: str) -> DocumentSnapshot:
        """Return a point-in-time snapshot of the document."""

        try:
            async with self._session_factory() as session:
                record = await self._load(session, collection, document_id)
                if record is None:
                    return DocumentSnapshot(collection, document_id, None, 0)
                return DocumentSnapshot(
                    collection,
                    document_id,
                    copy.deepcopy(dict(record.data)),
                    record.version,
                )
        except SQLAlchemyError as exc:
            raise StoreError(
                f"Failed to read document {collection}/{document_id}"
            ) from exc

    async def list_documents(self, collection: str) -> list[DocumentSnapshot]:
        """Return every document of ``collection`` in insertion order."""

        stmt = (
            select(DocumentRecord)
            .where(DocumentRecord.collection == collection)
            .order_by(DocumentRecord.id)
        )
        try:
            async with self._session_factory() as session:
                records = (await session.execute(stmt)).scalars().all()
        except SQLAlchemyError as exc:
            raise StoreError(f"Failed to read collection {collection}") from exc
        return [
            DocumentSnapshot(
                collection,
                record.document_id,
                copy.deepcopy(dict(record.data)),
                record.version,
            )
            for record in records
        ]

    async def set(
        self,
        collection: str,
        document_id: str,
        data: Mapping[str, Any],
        *,
        merge: bool = False,
    ) -> DocumentSnapshot:
        """Write the document; with ``merge`` only the given top-level fields change."""

        def _apply(current: dict[str, Any] | None) -> dict[str, Any]:
            if merge and current is not None:
                return {**current, **copy.deepcopy(dict(data))}
            return copy.deepcopy(dict(data))

        return await self._mutate(collection, document_id, _apply)

    async def create(
        self, collection: str, document_id: str, data: Mapping[str, Any]
    ) -> bool:
        """Create the document only when absent; return whether it was created."""

        created = False

        def _apply(current: dict[str, Any] | None) -> dict[str, Any] | None:
            nonlocal created
            if current is not None:
                return None
            created = True
            return copy.deepcopy(dict(data))

        await self._mutate(collection, document_id, _apply)
        return created

    async def update(
        self, collection: str, document_id: str, fields: Mapping[str, Any]
    ) -> DocumentSnapshot:
        """Change fields of an existing document."""

        def _apply(current: dict[str, Any] | None) -> dict[str, Any]:
            return {**(current or {}), **copy.deepcopy(dict(fields))}

        return await self._mutate(collection, document_id, _apply, must_exist=True)

    async def array_union(
        self, collection: str, document_id: str, field: str, *values: Any
    ) -> DocumentSnapshot:
        """Add each value to the array field unless already present."""

        def _apply(current: dict[str, Any] | None) -> dict[str, Any]:
            current = current or {}
            existing = _as_list(current.get(field))
            for value in values:
                if value not in existing:
                    existing.append(value)
            return {**current, field: existing}

        return await self._mutate(collection, document_id, _apply, must_exist=True)

    async def array_remove(
        self, collection: str, document_id: str, field: str, *values: Any
    ) -> DocumentSnapshot:
        """Remove every occurrence of each value from the array field."""

        def _apply(current: dict[str, Any] | None) -> dict[str, Any]:
            current = current or {}
            remaining = [
                entry for entry in _as_list(current.get(field)) if entry not in values
            ]
            return {**current, field: remaining}

        return await self._mutate(collection, document_id, _apply, must_exist=True)

    def listen(
        self,
        collection: str,
        document_id: str,
        on_snapshot: SnapshotHandler,
        on_error: ErrorHandler | None = None,
    ) -> ListenerRegistration:
        """Attach a live listener; must be called from a running event loop."""

        loop = asyncio.get_running_loop()
        path = (collection, document_id)
        registration = ListenerRegistration(self, path, on_snapshot, on_error)
        self._listeners.setdefault(path, []).append(registration)

        task = loop.create_task(self._deliver_initial(registration))
        self._initial_deliveries.add(task)
        task.add_done_callback(self._initial_deliveries.discard)
        return registration

    def listener_count(self, collection: str, document_id: str) -> int:
        return len(self._listeners.get((collection, document_id), ()))

    async def wait_idle(self) -> None:
        """Wait until every pending initial delivery has run."""

        while True:
            pending = [task for task in self._initial_deliveries if not task.done()]
            if not pending:
                return
            await asyncio.gather(*pending)

    async def _deliver_initial(self, registration: ListenerRegistration) -> None:
        try:
            snapshot = await self.get(*registration.path)
        except StoreError as exc:
            registration.fail(exc)
            return
        registration.deliver(snapshot)

    def _detach(self, registration: ListenerRegistration) -> None:
        listeners = self._listeners.get(registration.path)
        if not listeners:
            return
        if registration in listeners:
            listeners.remove(registration)
        if not listeners:
            self._listeners.pop(registration.path, None)

    def _dispatch(self, snapshot: DocumentSnapshot) -> None:
        path = (snapshot.collection, snapshot.document_id)
        for registration in list(self._listeners.get(path, ())):
            registration.deliver(
                DocumentSnapshot(
                    snapshot.collection,
                    snapshot.document_id,
                    copy.deepcopy(snapshot.data),
                    snapshot.version,
                )
            )

    async def _mutate(
        self,
        collection: str,
        document_id: str,
        apply: Callable[[dict[str, Any] | None], dict[str, Any] | None],
        *,
        must_exist: bool = False,
    ) -> DocumentSnapshot:
        path = (collection, document_id)
        lock = self._locks.setdefault(path, asyncio.Lock())
        async with lock:
            try:
                async with self._session_factory() as session:
                    record = await self._load(session, collection, document_id)
                    if record is None and must_exist:
                        raise DocumentNotFoundError(
                            f"Document {collection}/{document_id} does not exist"
                        )
                    current = dict(record.data) if record is not None else None
                    version = record.version if record is not None else 0
                    updated = apply(copy.deepcopy(current))
                    if updated is None or updated == current:
                        return DocumentSnapshot(
                            collection, document_id, copy.deepcopy(current), version
                        )
                    version += 1
                    if record is None:
                        session.add(
                            DocumentRecord(
                                collection=collection,
                                document_id=document_id,
                                data=updated,
                                version=version,
                            )
                        )
                    else:
                        record.data = updated
                        record.version = version
                    await session.commit()
            except SQLAlchemyError as exc:
                raise StoreError(
                    f"Failed to write document {collection}/{document_id}"
                ) from exc

            snapshot = DocumentSnapshot(collection, document_id, updated, version)
            self._dispatch(snapshot)
        return snapshot

    @staticmethod
    async def _load(
        session: AsyncSession, collection: str, document_id: str
    ) -> DocumentRecord | None:
        stmt = select(DocumentRecord).where(
            DocumentRecord.collection == collection,
            DocumentRecord.document_id == document_id,
        )
        result = await session.execute(stmt)
        return result.scalar_one_or_none()


def _as_list(value: Any) -> list[Any]:
    if isinstance(value, (list, tuple)):
        return list(value)
    return []
