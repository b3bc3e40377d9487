"""Tests for the OMDb critical-reception client."""

from __future__ import annotations

from typing import Callable

import httpx
import pytest

from app.config import Settings
from app.services.omdb import OMDbClient


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


def build_client(
    handler: Callable[[httpx.Request], httpx.Response],
) -> tuple[OMDbClient, httpx.AsyncClient]:
    settings = Settings(_env_file=None, OMDB_API_KEY="omdb-key")
    http_client = httpx.AsyncClient(
        base_url=str(settings.omdb_api_url), transport=httpx.MockTransport(handler)
    )
    return OMDbClient(settings, http_client), http_client


@pytest.mark.anyio("asyncio")
async def test_reception_fields_are_mapped_and_cleaned() -> None:
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(
            200,
            json={
                "Response": "True",
                "Awards": "3 wins & 5 nominations",
                "Director": "N/A",
                "Writer": "Writer One",
                "Metascore": "N/A",
                "imdbRating": "8.1",
                "imdbVotes": "12,345",
            },
        )

    client, http_client = build_client(handler)
    async with http_client:
        reception = await client.get_reception("tt123")

    assert reception is not None
    assert reception.awards == "3 wins & 5 nominations"
    assert reception.director is None
    assert reception.metascore is None
    assert reception.imdb_rating == "8.1"
    assert requests[0].url.params["i"] == "tt123"
    assert requests[0].url.params["apikey"] == "omdb-key"


@pytest.mark.anyio("asyncio")
async def test_not_found_and_failures_yield_none() -> None:
    responses = iter(
        [
            httpx.Response(200, json={"Response": "False", "Error": "Movie not found!"}),
            httpx.Response(401, json={"Error": "Invalid API key!"}),
            httpx.Response(200, json={"Response": "True", "Awards": "N/A"}),
        ]
    )

    def handler(request: httpx.Request) -> httpx.Response:
        return next(responses)

    client, http_client = build_client(handler)
    async with http_client:
        assert await client.get_reception("tt1") is None
        assert await client.get_reception("tt2") is None
        assert await client.get_reception("tt3") is None
        assert await client.get_reception("  ") is None


@pytest.mark.anyio("asyncio")
async def test_timeout_yields_none() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("slow", request=request)

    client, http_client = build_client(handler)
    async with http_client:
        assert await client.get_reception("tt9") is None


@pytest.mark.anyio("asyncio")
async def test_disabled_provider_skips_lookups() -> None:
    def handler(request: httpx.Request) -> httpx.Response:  # pragma: no cover - must not run
        raise AssertionError("unexpected request")

    client, http_client = build_client(handler)
    client.configure(None, False)
    async with http_client:
        assert await client.get_reception("tt1") is None
