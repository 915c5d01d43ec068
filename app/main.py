"""Entry point for the FastAPI-powered aggregation service."""

from __future__ import annotations

import logging
from contextlib import AsyncExitStack, asynccontextmanager
from typing import Any

import httpx
from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from .config import settings
from .database import Database
from .services.aggregation import (
    AggregationService,
    SearchParams,
    SiteNotFoundError,
    VideoListParams,
)
from .services.site_registry import SiteRegistry
from .services.upstream import UpstreamClient
from .services.user_settings import UserSettingsStore

logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)

app: FastAPI


@asynccontextmanager
async def lifespan(_: FastAPI):
    exit_stack = AsyncExitStack()
    upstream_http_client = await exit_stack.enter_async_context(
        httpx.AsyncClient(
            timeout=httpx.Timeout(settings.video_timeout_seconds, connect=5.0),
            follow_redirects=True,
        )
    )
    database = Database(settings.database_url)
    await database.create_all()

    registry = SiteRegistry.from_settings(settings)
    user_settings = UserSettingsStore(database.session_factory)
    aggregation_service = AggregationService(
        settings,
        UpstreamClient(settings, upstream_http_client),
        registry,
        user_settings,
    )

    app.state.aggregation_service = aggregation_service
    app.state.database = database

    try:
        yield
    finally:  # pragma: no cover - teardown path exercised at runtime
        await database.dispose()
        await exit_stack.aclose()


def create_app() -> FastAPI:
    fastapi_app = FastAPI(
        title=settings.app_name,
        description="Aggregated search and browsing across upstream catalog sites",
        version="1.0.0",
        lifespan=lifespan,
    )

    fastapi_app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "OPTIONS"],
        allow_headers=["*"],
    )

    register_routes(fastapi_app)
    return fastapi_app


def get_aggregation_service(app: FastAPI) -> AggregationService:
    service = getattr(app.state, "aggregation_service", None)
    if not isinstance(service, AggregationService):
        raise RuntimeError("Aggregation service not initialised")
    return service


def register_routes(fastapi_app: FastAPI) -> None:
    @fastapi_app.get("/healthz")
    async def healthcheck() -> dict[str, str]:
        return {"status": "ok"}

    @fastapi_app.get("/api/search")
    async def search(request: Request) -> JSONResponse:
        service = get_aggregation_service(fastapi_app)
        try:
            params = SearchParams.from_request(
                request.query_params, user_id=_bearer_user(request)
            )
        except ValidationError as exc:
            raise HTTPException(status_code=400, detail=exc.errors()) from exc

        try:
            result = await service.search(params)
        except Exception:
            logger.exception("Search failed for %r", params.query)
            return JSONResponse(
                {"regular_results": [], "adult_results": [], "error": "search_failed"},
                status_code=500,
            )
        return JSONResponse(result.to_payload(aggregate=params.aggregate))

    @fastapi_app.get("/api/search/resources")
    async def search_resources(request: Request) -> JSONResponse:
        service = get_aggregation_service(fastapi_app)
        try:
            params = SearchParams.from_request(
                request.query_params, user_id=_bearer_user(request)
            )
        except ValidationError as exc:
            raise HTTPException(status_code=400, detail=exc.errors()) from exc
        sites = await service.available_sites(
            user_id=params.user_id, include_adult=params.include_adult
        )
        return JSONResponse([site.model_dump(exclude_none=True) for site in sites])

    @fastapi_app.get("/api/sources/{source}/categories")
    async def categories(source: str) -> JSONResponse:
        service = get_aggregation_service(fastapi_app)
        try:
            listing = await service.list_categories(source)
        except SiteNotFoundError as exc:
            raise HTTPException(status_code=404, detail=_site_not_found(source)) from exc
        return JSONResponse(listing.to_payload())

    @fastapi_app.get("/api/sources/{source}/videos")
    async def videos(request: Request, source: str) -> JSONResponse:
        service = get_aggregation_service(fastapi_app)
        try:
            params = VideoListParams.model_validate(dict(request.query_params))
        except ValidationError as exc:
            raise HTTPException(status_code=400, detail=exc.errors()) from exc
        try:
            page = await service.list_videos(
                source,
                category_id=params.category,
                page=params.page or 1,
                page_size=params.limit,
            )
        except SiteNotFoundError as exc:
            raise HTTPException(status_code=404, detail=_site_not_found(source)) from exc
        return JSONResponse(page.to_payload())


def _site_not_found(source: str) -> dict[str, Any]:
    return {
        "error": "site_not_found",
        "description": f"No upstream site is registered as {source!r}.",
    }


def _bearer_user(request: Request) -> str | None:
    header = request.headers.get("authorization")
    if not header or not header.startswith("Bearer "):
        return None
    value = header[len("Bearer ") :].strip()
    return value or None


app = create_app()


if __name__ == "__main__":  # pragma: no cover - manual execution
    import uvicorn

    uvicorn.run(
        "app.main:app",
        host=settings.server_host,
        port=settings.server_port,
        reload=settings.environment == "development",
    )
