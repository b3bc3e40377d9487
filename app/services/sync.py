"""Live configuration and profile channels fed by the document store."""

from __future__ import annotations

import asyncio
import logging
from typing import Callable

from pydantic import ValidationError

from ..config import Settings
from ..models import ApiProvider, Identity, SiteConfiguration, UserProfile
from .local_cache import LocalCache
from .omdb import OMDbClient
from .store import DocumentSnapshot, DocumentStore, ListenerRegistration, StoreError
from .tmdb import TMDBClient
from .watchmode import WatchmodeClient

logger = logging.getLogger(__name__)

CONFIG_COLLECTION = "settings"
CONFIG_DOCUMENT = "global"
CONFIG_CACHE_KEY = "site_configuration"
PROFILE_COLLECTION = "users"


class ChannelBusyError(RuntimeError):
    """Raised when a channel that already has a live listener is subscribed again."""


class Subscription:
    """Handle returned by ``subscribe``; ``unsubscribe()`` may be called repeatedly."""

    def __init__(self, release: Callable[[], None]) -> None:
        self._release = release
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    def unsubscribe(self) -> None:
        if not self._active:
            return
        self._active = False
        self._release()


def build_default_configuration(settings: Settings) -> SiteConfiguration:
    """Return the record written upstream when no site configuration exists."""

    return SiteConfiguration(
        site_name=settings.site_name,
        site_name_part2=settings.site_name_part2,
        contact_email=settings.contact_email,
        contact_phone="+90 212 000 00 00",
        address="Levent, Istanbul, Turkey",
        api_providers=(
            ApiProvider(
                id="tmdb",
                name="TMDb",
                api_key=settings.tmdb_api_key or "",
                description="Main database for series and movies.",
            ),
            ApiProvider(
                id="omdb",
                name="OMDb",
                api_key=settings.omdb_api_key or "",
                description="Enriches data with IMDb ratings and awards.",
            ),
            ApiProvider(
                id="watchmode",
                name="Watchmode",
                api_key=settings.watchmode_api_key or "",
                description="Provides streaming availability info.",
            ),
        ),
    )


def apply_provider_configuration(
    config: SiteConfiguration,
    *,
    tmdb: TMDBClient | None = None,
    omdb: OMDbClient | None = None,
    watchmode: WatchmodeClient | None = None,
) -> None:
    """Push provider credentials and enablement flags into the clients."""

    clients = {"tmdb": tmdb, "omdb": omdb, "watchmode": watchmode}
    for provider_id, client in clients.items():
        if client is None:
            continue
        provider = config.provider(provider_id)
        if provider is None:
            continue
        client.configure(provider.api_key or None, provider.is_enabled)


class ConfigurationChannel:
    """Keeps the site configuration current from cache, default and live pushes.

    ``snapshot()`` never blocks: it answers with the last live value, else
    the cached one, else the default record. When the upstream document is
    missing the default is pushed once and created with create-if-absent
    semantics, so a record written concurrently by someone else wins.
    """

    def __init__(
        self,
        store: DocumentStore,
        cache: LocalCache | None,
        default: SiteConfiguration,
    ) -> None:
        self._store = store
        self._cache = cache
        self._default = default
        self._value: SiteConfiguration | None = None
        self._on_update: Callable[[SiteConfiguration], None] | None = None
        self._registration: ListenerRegistration | None = None
        self._default_pushed = False
        self._pending: set[asyncio.Task[None]] = set()

    def snapshot(self) -> SiteConfiguration:
        if self._value is not None:
            return self._value
        cached = self._read_cache()
        if cached is not None:
            return cached
        return self._default

    def subscribe(self, on_update: Callable[[SiteConfiguration], None]) -> Subscription:
        """Attach the live listener; only one may be active at a time."""

        if self._registration is not None:
            raise ChannelBusyError("Configuration channel already has a live listener")
        self._on_update = on_update
        self._registration = self._store.listen(
            CONFIG_COLLECTION,
            CONFIG_DOCUMENT,
            self._handle_snapshot,
            self._handle_error,
        )
        return Subscription(self._release)

    async def load(self) -> SiteConfiguration:
        """Read the document now, creating the default upstream if it is missing."""

        snapshot = await self._store.get(CONFIG_COLLECTION, CONFIG_DOCUMENT)
        if not snapshot.exists:
            await self._store.create(
                CONFIG_COLLECTION, CONFIG_DOCUMENT, self._default.to_document()
            )
            snapshot = await self._store.get(CONFIG_COLLECTION, CONFIG_DOCUMENT)
        config = self._parse(snapshot)
        if config is None:
            return self.snapshot()
        self._remember(config)
        return config

    async def settle(self) -> None:
        """Wait for any upstream creation of the default record."""

        if self._pending:
            await asyncio.gather(*list(self._pending))

    def _release(self) -> None:
        if self._registration is not None:
            self._registration.remove()
        self._registration = None
        self._on_update = None

    def _handle_snapshot(self, snapshot: DocumentSnapshot) -> None:
        if not snapshot.exists:
            if self._default_pushed:
                return
            self._default_pushed = True
            self._accept(self._default)
            task = asyncio.get_running_loop().create_task(self._create_default())
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)
            return
        config = self._parse(snapshot)
        if config is not None:
            self._accept(config)

    def _handle_error(self, exc: Exception) -> None:
        logger.warning("Site configuration listener failed, keeping last value: %s", exc)

    def _accept(self, config: SiteConfiguration) -> None:
        if config == self._value:
            return
        self._remember(config)
        if self._on_update is not None:
            self._on_update(config)

    def _remember(self, config: SiteConfiguration) -> None:
        self._value = config
        if self._cache is not None and self._cache.initialised:
            self._cache.write_json(CONFIG_CACHE_KEY, config.to_document())

    async def _create_default(self) -> None:
        try:
            created = await self._store.create(
                CONFIG_COLLECTION, CONFIG_DOCUMENT, self._default.to_document()
            )
        except StoreError:
            logger.exception("Failed to create the default site configuration")
            return
        if created:
            logger.info("Created default site configuration")

    def _read_cache(self) -> SiteConfiguration | None:
        if self._cache is None or not self._cache.initialised:
            return None
        cached = self._cache.read_json(CONFIG_CACHE_KEY)
        if not isinstance(cached, dict):
            return None
        try:
            return SiteConfiguration.model_validate(cached)
        except ValidationError:
            logger.warning("Ignoring unreadable cached site configuration")
            return None

    @staticmethod
    def _parse(snapshot: DocumentSnapshot) -> SiteConfiguration | None:
        try:
            return SiteConfiguration.model_validate(snapshot.data or {})
        except ValidationError as exc:
            logger.warning("Ignoring unreadable site configuration document: %s", exc)
            return None


class ProfileChannel:
    """Mirrors the signed-in user's profile document."""

    def __init__(self, store: DocumentStore) -> None:
        self._store = store
        self._identity: Identity | None = None
        self._profile: UserProfile | None = None
        self._version = -1
        self._registration: ListenerRegistration | None = None
        self._on_update: Callable[[UserProfile | None], None] | None = None

    @property
    def identity(self) -> Identity | None:
        return self._identity

    @property
    def profile(self) -> UserProfile | None:
        return self._profile

    def subscribe(
        self, on_update: Callable[[UserProfile | None], None]
    ) -> Subscription:
        if self._on_update is not None:
            raise ChannelBusyError("Profile channel already has a live listener")
        self._on_update = on_update

        def _release() -> None:
            self._on_update = None

        return Subscription(_release)

    async def bind(self, identity: Identity) -> UserProfile | None:
        """Ensure the profile document exists and follow it for ``identity``."""

        if self._identity is not None and self._identity.user_id == identity.user_id:
            return self._profile
        self._detach()
        self._identity = identity
        self._profile = None
        self._version = -1

        profile = UserProfile.from_identity(identity)
        created = await self._store.create(
            PROFILE_COLLECTION, identity.user_id, profile.model_dump(mode="json")
        )
        if created:
            logger.info("Created profile for user %s", identity.user_id)
        snapshot = await self._store.get(PROFILE_COLLECTION, identity.user_id)
        # A sign-out or a newer bind during the awaits owns the channel now.
        if self._identity is not identity:
            logger.debug("Dropping superseded profile bind for %s", identity.user_id)
            return None
        self._apply(snapshot)
        self._registration = self._store.listen(
            PROFILE_COLLECTION,
            identity.user_id,
            self._apply,
            self._handle_error,
        )
        return self._profile

    def clear(self) -> None:
        """Stop following the profile and forget it (sign-out)."""

        self._detach()
        self._identity = None
        self._version = -1
        if self._profile is not None:
            self._profile = None
            self._notify()

    def _detach(self) -> None:
        if self._registration is not None:
            self._registration.remove()
            self._registration = None

    def _apply(self, snapshot: DocumentSnapshot) -> None:
        if self._identity is None or snapshot.document_id != self._identity.user_id:
            return
        if snapshot.version <= self._version:
            return
        self._version = snapshot.version
        if not snapshot.exists:
            self._profile = None
            self._notify()
            return
        data = dict(snapshot.data or {})
        data.setdefault("id", snapshot.document_id)
        try:
            self._profile = UserProfile.model_validate(data)
        except ValidationError as exc:
            logger.warning(
                "Ignoring unreadable profile %s: %s", snapshot.document_id, exc
            )
            return
        self._notify()

    def _handle_error(self, exc: Exception) -> None:
        logger.warning("Profile listener failed, keeping last value: %s", exc)

    def _notify(self) -> None:
        if self._on_update is not None:
            self._on_update(self._profile)
