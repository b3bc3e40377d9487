"""Entry point for the FastAPI-powered IzleNext catalog API."""

from __future__ import annotations
import json
import logging
from contextlib import AsyncExitStack, asynccontextmanager
from typing import Any

import httpx
from fastapi import FastAPI, Header, HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from .config import settings
from .database import Database
from .models import DiscoveryQuery, Identity, MediaType
from .services.catalog_service import CatalogService, TitleNotFoundError
from .services.local_cache import LocalCache
from .services.omdb import OMDbClient
from .services.store import DocumentStore, StoreError
from .services.tmdb import TMDBClient
from .services.watchlist import ToggleStatus
from .services.watchmode import WatchmodeClient

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

app: FastAPI


@asynccontextmanager
async def lifespan(_: FastAPI):
    exit_stack = AsyncExitStack()
    tmdb_http = await exit_stack.enter_async_context(
        httpx.AsyncClient(
            base_url=str(settings.tmdb_api_url),
            timeout=httpx.Timeout(20.0, connect=10.0),
        )
    )
    omdb_http = await exit_stack.enter_async_context(
        httpx.AsyncClient(
            base_url=str(settings.omdb_api_url),
            timeout=httpx.Timeout(15.0, connect=5.0),
        )
    )
    watchmode_http = await exit_stack.enter_async_context(
        httpx.AsyncClient(
            base_url=str(settings.watchmode_api_url),
            timeout=httpx.Timeout(15.0, connect=5.0),
        )
    )
    database = Database(settings.database_url)
    await database.create_all()
    cache = LocalCache(settings.local_cache_url)

    catalog_service = CatalogService(
        settings,
        TMDBClient(settings, tmdb_http),
        OMDbClient(settings, omdb_http),
        WatchmodeClient(settings, watchmode_http),
        DocumentStore(database.session_factory),
        cache,
    )

    app.state.catalog_service = catalog_service
    app.state.database = database
    await catalog_service.start()

    try:
        yield
    finally:  # pragma: no cover - teardown path exercised at runtime
        await catalog_service.stop()
        cache.dispose()
        await database.dispose()
        await exit_stack.aclose()


def create_app() -> FastAPI:
    fastapi_app = FastAPI(
        title=settings.app_name,
        description="Series and movie catalog with progressive enrichment",
        version="1.0.0",
        lifespan=lifespan,
    )

    fastapi_app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "DELETE"],
        allow_headers=["*"],
    )

    register_routes(fastapi_app)
    return fastapi_app


def get_catalog_service(app: FastAPI) -> CatalogService:
    service = getattr(app.state, "catalog_service", None)
    if not isinstance(service, CatalogService):
        raise RuntimeError("Catalog service not initialised")
    return service


def _parse_media_type(value: str | None) -> MediaType | None:
    if value is None or value == "":
        return None
    if value not in {"tv", "movie"}:
        raise HTTPException(status_code=400, detail="Unsupported media type")
    return value  # type: ignore[return-value]


def _coerce_bool(value: str | None) -> bool:
    if value is None:
        return False
    return value.lower() in {"1", "true", "yes", "on"}


def _errors(exc: ValidationError) -> list[dict[str, Any]]:
    # Validator contexts may hold exception objects, which are not JSON.
    return jsonable_encoder(exc.errors(include_url=False, include_context=False))


def _dump(items: Any) -> list[dict[str, Any]]:
    return [item.model_dump(mode="json") for item in items]


def register_routes(fastapi_app: FastAPI) -> None:
    @fastapi_app.get("/healthz")
    async def healthcheck() -> dict[str, str]:
        return {"status": "ok"}

    @fastapi_app.get("/api/config")
    async def config_endpoint() -> JSONResponse:
        service = get_catalog_service(fastapi_app)
        config = service.configuration()
        payload = config.to_document()
        payload["display_name"] = config.display_name()
        return JSONResponse(payload)

    @fastapi_app.get("/api/categories")
    async def categories_endpoint() -> JSONResponse:
        service = get_catalog_service(fastapi_app)
        return JSONResponse(
            [
                {
                    "key": definition.key,
                    "title": definition.title,
                    "endpoint": definition.endpoint,
                    "params": definition.params,
                }
                for definition in service.categories()
            ]
        )

    @fastapi_app.get("/api/home")
    async def home_endpoint(enrich: str | None = None) -> JSONResponse:
        service = get_catalog_service(fastapi_app)
        items = await service.home(wait_for_enrichment=_coerce_bool(enrich))
        return JSONResponse({"items": _dump(items)})

    @fastapi_app.get("/api/catalog")
    async def catalog_endpoint(
        endpoint: str | None = None,
        params: str | None = None,
        page: int = 1,
        category: str | None = None,
        enrich: str | None = None,
    ) -> JSONResponse:
        service = get_catalog_service(fastapi_app)
        try:
            if category is not None:
                definition = service.category(category)
                if definition is None:
                    raise HTTPException(status_code=404, detail="Unknown category")
                query = definition.to_query(page)
            elif endpoint:
                query = DiscoveryQuery.from_strings(endpoint, params, page)
            else:
                raise HTTPException(
                    status_code=400, detail="Either endpoint or category is required"
                )
        except ValidationError as exc:
            raise HTTPException(status_code=400, detail=_errors(exc)) from exc

        result = await service.browse(query, wait_for_enrichment=_coerce_bool(enrich))
        return JSONResponse(
            {
                "endpoint": query.endpoint,
                "page": query.page,
                "total_pages": result.total_pages,
                "items": _dump(result.results),
            }
        )

    @fastapi_app.get("/api/search")
    async def search_endpoint(q: str = "", page: int = 1) -> JSONResponse:
        service = get_catalog_service(fastapi_app)
        if not q.strip():
            raise HTTPException(status_code=400, detail="Search text is required")
        if page < 1:
            raise HTTPException(status_code=400, detail="Page must be positive")
        result = await service.search(q, page)
        return JSONResponse(
            {
                "query": q.strip(),
                "total_pages": result.total_pages,
                "items": _dump(result.results),
            }
        )

    @fastapi_app.get("/api/search/recent")
    async def recent_searches_endpoint() -> dict[str, list[str]]:
        service = get_catalog_service(fastapi_app)
        return {"terms": service.recent_searches()}

    @fastapi_app.delete("/api/search/recent")
    async def clear_recent_searches_endpoint() -> dict[str, list[str]]:
        service = get_catalog_service(fastapi_app)
        service.clear_searches()
        return {"terms": []}

    @fastapi_app.delete("/api/search/recent/{term}")
    async def forget_search_endpoint(term: str) -> dict[str, list[str]]:
        service = get_catalog_service(fastapi_app)
        return {"terms": service.forget_search(term)}

    @fastapi_app.get("/api/titles/{item_id}")
    async def title_endpoint(item_id: str, media_type: str | None = None) -> JSONResponse:
        service = get_catalog_service(fastapi_app)
        try:
            detail = await service.title_detail(item_id, _parse_media_type(media_type))
        except TitleNotFoundError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        return JSONResponse(detail.model_dump(mode="json"))

    @fastapi_app.get("/api/titles/{item_id}/seasons/{season}")
    async def season_endpoint(item_id: str, season: int) -> JSONResponse:
        service = get_catalog_service(fastapi_app)
        try:
            episodes = await service.season_episodes(item_id, season)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        return JSONResponse({"season": season, "episodes": _dump(episodes)})

    @fastapi_app.get("/api/streaming/{imdb_id}")
    async def streaming_endpoint(imdb_id: str) -> JSONResponse:
        service = get_catalog_service(fastapi_app)
        sources = await service.streaming_sources(imdb_id)
        return JSONResponse({"imdb_id": imdb_id, "sources": _dump(sources)})

    @fastapi_app.get("/api/calendar")
    async def calendar_endpoint(
        media_type: str | None = None, language: str = "all"
    ) -> JSONResponse:
        service = get_catalog_service(fastapi_app)
        items = await service.calendar(_parse_media_type(media_type) or "tv", language)
        return JSONResponse({"items": _dump(items)})

    @fastapi_app.get("/api/ratings/{category}")
    async def ratings_endpoint(category: str) -> JSONResponse:
        service = get_catalog_service(fastapi_app)
        try:
            records = await service.ratings(category)
        except ValueError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        return JSONResponse({"category": category, "records": _dump(records)})

    @fastapi_app.post("/api/session")
    async def sign_in_endpoint(request: Request) -> JSONResponse:
        service = get_catalog_service(fastapi_app)
        try:
            payload = await request.json()
        except json.JSONDecodeError:
            payload = {}
        if not isinstance(payload, dict):
            raise HTTPException(status_code=400, detail="Invalid payload")
        try:
            identity = Identity.model_validate(payload)
        except ValidationError as exc:
            raise HTTPException(status_code=400, detail=_errors(exc)) from exc
        try:
            profile = await service.sign_in(identity)
        except StoreError as exc:
            raise HTTPException(status_code=502, detail=str(exc)) from exc
        return JSONResponse(
            {"profile": profile.model_dump(mode="json") if profile else None}
        )

    @fastapi_app.delete("/api/session")
    async def sign_out_endpoint(
        x_user_id: str | None = Header(default=None),
    ) -> dict[str, bool]:
        service = get_catalog_service(fastapi_app)
        if not x_user_id:
            raise HTTPException(status_code=401, detail="Not signed in")
        return {"signed_out": service.sign_out(x_user_id)}

    @fastapi_app.get("/api/profile")
    async def profile_endpoint(
        x_user_id: str | None = Header(default=None),
    ) -> JSONResponse:
        service = get_catalog_service(fastapi_app)
        if service.identity(x_user_id) is None:
            raise HTTPException(status_code=401, detail="Not signed in")
        profile = service.profile(x_user_id or "")
        if profile is None:
            raise HTTPException(status_code=404, detail="Profile not found")
        return JSONResponse(profile.model_dump(mode="json"))

    @fastapi_app.post("/api/watchlist/{item_id}")
    async def watchlist_endpoint(
        item_id: str,
        x_user_id: str | None = Header(default=None),
    ) -> JSONResponse:
        service = get_catalog_service(fastapi_app)
        try:
            result = await service.toggle_watchlist(x_user_id, item_id)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc

        if result.status is ToggleStatus.UNAUTHENTICATED:
            raise HTTPException(status_code=401, detail=result.message)
        if result.status is ToggleStatus.PENDING:
            raise HTTPException(
                status_code=409, detail="A watchlist update for this title is in progress"
            )
        if result.status is ToggleStatus.FAILED:
            raise HTTPException(status_code=502, detail=result.message)
        return JSONResponse(
            {
                "item_id": result.item_id,
                "status": result.status.value,
                "in_watchlist": result.in_watchlist,
            }
        )


app = create_app()
