"""Entry point for the FastAPI-powered PeerTube feed service."""

from __future__ import annotations
import json
import logging
from contextlib import AsyncExitStack, asynccontextmanager
from typing import Any

import httpx
from fastapi import FastAPI, HTTPException, Query, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import settings
from .database import Database
from .services.feed import FeedService
from .services.health import InstanceHealthCache
from .services.peertube import PeerTubeClient
from .services.retry import RetryPolicy
from .services.state_repository import StateRepository

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

FEED_TYPES = {"mixed", "videos", "streams"}

app: FastAPI


@asynccontextmanager
async def lifespan(fastapi_app: FastAPI):
    exit_stack = AsyncExitStack()
    http_client = await exit_stack.enter_async_context(
        httpx.AsyncClient(
            timeout=httpx.Timeout(settings.request_timeout_seconds, connect=5.0),
            follow_redirects=True,
        )
    )
    database = Database(settings.database_url)
    await database.create_all()
    repository = StateRepository(database.session_factory)

    health = InstanceHealthCache(settings.health_cooldown_seconds)
    client = PeerTubeClient(
        http_client,
        health,
        page_size=settings.host_page_size,
        timeout=settings.request_timeout_seconds,
        user_agent=settings.app_name,
    )
    feed_service = FeedService(settings, client)

    retry = RetryPolicy.from_milliseconds(
        settings.settings_retry_attempts, settings.settings_retry_delay_ms
    )
    stored = await repository.load_with_retry(retry)
    raw_settings = stored.settings if stored else None
    if not raw_settings and settings.feed_settings:
        raw_settings = settings.feed_settings
    state_blob = stored.state_blob if stored else None

    normalized = await feed_service.enable(raw_settings, state_blob)
    await repository.save_settings(normalized)

    fastapi_app.state.feed_service = feed_service
    fastapi_app.state.state_repository = repository
    fastapi_app.state.database = database

    try:
        yield
    finally:  # pragma: no cover - teardown path exercised at runtime
        try:
            await repository.save_state_blob(feed_service.save_state())
        finally:
            await database.dispose()
            await exit_stack.aclose()


def create_app() -> FastAPI:
    fastapi_app = FastAPI(
        title=settings.app_name,
        description="Aggregated, deduplicated video feeds across PeerTube instances",
        version="1.0.0",
        lifespan=lifespan,
    )

    fastapi_app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "PUT"],
        allow_headers=["*"],
    )

    register_routes(fastapi_app)
    return fastapi_app


def get_feed_service(app: FastAPI) -> FeedService:
    service = getattr(app.state, "feed_service", None)
    if not isinstance(service, FeedService):
        raise RuntimeError("Feed service not initialised")
    return service


def get_state_repository(app: FastAPI) -> StateRepository | None:
    return getattr(app.state, "state_repository", None)


def register_routes(fastapi_app: FastAPI) -> None:
    async def _persist_state(service: FeedService) -> str:
        blob = service.save_state()
        repository = get_state_repository(fastapi_app)
        if repository is not None:
            await repository.save_state_blob(blob)
        return blob

    @fastapi_app.get("/healthz")
    async def healthcheck() -> dict[str, str]:
        return {"status": "ok"}

    @fastapi_app.get("/feed/home.json")
    async def home_feed() -> JSONResponse:
        service = get_feed_service(fastapi_app)
        result = await service.get_home()
        return JSONResponse(result.to_payload())

    @fastapi_app.get("/feed/search.json")
    async def search_feed(
        q: str = Query(default=""),
        feed_type: str | None = Query(default=None, alias="type"),
        order: str | None = Query(default=None),
    ) -> JSONResponse:
        service = get_feed_service(fastapi_app)
        if feed_type is not None and feed_type not in FEED_TYPES:
            raise HTTPException(status_code=400, detail=f"Unsupported feed type: {feed_type}")
        try:
            result = await service.search(q, feed_type, order)  # type: ignore[arg-type]
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        return JSONResponse(result.to_payload())

    @fastapi_app.get("/api/settings")
    async def read_settings() -> dict[str, Any]:
        service = get_feed_service(fastapi_app)
        return service.settings.model_dump(mode="json")

    @fastapi_app.put("/api/settings")
    async def update_settings(request: Request) -> dict[str, Any]:
        service = get_feed_service(fastapi_app)
        body = await request.body()
        try:
            payload: Any = json.loads(body) if body.strip() else {}
        except ValueError:
            payload = body.decode("utf-8", "replace")
        normalized = service.update_settings(payload)
        repository = get_state_repository(fastapi_app)
        if repository is not None:
            await repository.save_settings(normalized)
        return normalized.model_dump(mode="json")

    @fastapi_app.get("/api/state")
    async def read_state() -> Response:
        service = get_feed_service(fastapi_app)
        return Response(content=service.save_state(), media_type="application/json")

    @fastapi_app.post("/api/state/checkpoint")
    async def checkpoint_state() -> dict[str, Any]:
        service = get_feed_service(fastapi_app)
        blob = await _persist_state(service)
        return {"status": "saved", "bytes": len(blob.encode("utf-8"))}

    @fastapi_app.get("/api/instances")
    async def list_instances() -> dict[str, Any]:
        service = get_feed_service(fastapi_app)
        return {
            "instances": [status.to_payload() for status in service.instance_statuses()],
            "selected": service.select_instances(),
        }

    @fastapi_app.post("/api/instances/probe")
    async def probe_instances() -> dict[str, Any]:
        service = get_feed_service(fastapi_app)
        statuses = await service.probe_instances()
        return {"instances": [status.to_payload() for status in statuses]}

    @fastapi_app.post("/api/views")
    async def report_view(request: Request) -> dict[str, bool]:
        service = get_feed_service(fastapi_app)
        try:
            payload = await request.json()
        except json.JSONDecodeError:
            payload = {}
        if not isinstance(payload, dict) or not payload.get("url"):
            raise HTTPException(status_code=400, detail="A video url is required")

        current_time = _coerce_int(payload.get("currentTime"), default=0)
        seek = _coerce_bool(payload.get("seek"))
        try:
            reported = await service.report_view(str(payload["url"]), current_time, seek=seek)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        return {"reported": reported}


def _coerce_int(value: Any, *, default: int) -> int:
    try:
        return max(0, int(value))
    except (TypeError, ValueError):
        return default


def _coerce_bool(value: object) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.lower() in {"1", "true", "yes", "on"}
    if isinstance(value, (int, float)):
        return bool(value)
    return False


app = create_app()


if __name__ == "__main__":  # pragma: no cover - manual execution
    import uvicorn

    uvicorn.run(
        "app.main:app",
        host=settings.server_host,
        port=settings.server_port,
        reload=settings.environment == "development",
    )
