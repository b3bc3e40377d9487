"""Helper client for critical-reception metadata from OMDb."""

from __future__ import annotations

import logging

import httpx

from ..config import Settings
from ..models import CriticalReception
from ..utils import clean_text

logger = logging.getLogger(__name__)


class OMDbClient:
    """Wrapper around the OMDb title lookup keyed by IMDb id."""

    def __init__(self, settings: Settings, http_client: httpx.AsyncClient) -> None:
        self._client = http_client
        self._api_key = settings.omdb_api_key or ""
        self._enabled = True
        self._timeout = httpx.Timeout(settings.omdb_timeout_seconds)

    @property
    def enabled(self) -> bool:
        return self._enabled and bool(self._api_key)

    def configure(self, api_key: str | None, enabled: bool) -> None:
        if api_key:
            self._api_key = api_key
        self._enabled = enabled

    async def get_reception(self, imdb_id: str) -> CriticalReception | None:
        """Return awards, credits and ratings for the title, if OMDb knows it.

        A "not found" answer, a timeout or any transport failure all mean
        "no enrichment" and yield ``None``.
        """

        normalized_id = (imdb_id or "").strip()
        if not normalized_id or not self.enabled:
            return None

        try:
            response = await self._client.get(
                "/",
                params={"apikey": self._api_key, "i": normalized_id},
                timeout=self._timeout,
            )
            response.raise_for_status()
        except httpx.TimeoutException:
            logger.debug("OMDb lookup for %s timed out", normalized_id)
            return None
        except httpx.HTTPError as exc:
            logger.warning("OMDb enrichment skipped for %s: %s", normalized_id, exc)
            return None

        try:
            payload = response.json()
        except ValueError:
            logger.warning("OMDb returned malformed JSON for %s", normalized_id)
            return None
        if not isinstance(payload, dict) or payload.get("Response") == "False":
            return None

        reception = CriticalReception(
            awards=clean_text(payload.get("Awards")),
            director=clean_text(payload.get("Director")),
            writer=clean_text(payload.get("Writer")),
            metascore=clean_text(payload.get("Metascore")),
            imdb_rating=clean_text(payload.get("imdbRating")),
            imdb_votes=clean_text(payload.get("imdbVotes")),
        )
        if reception.is_empty():
            return None
        return reception
