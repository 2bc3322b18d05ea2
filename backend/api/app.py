"""
FastAPI application factory for the Matchcenter API service.

Creates the app with:
- REST routes (matches, teams)
- WebSocket endpoint for live match views
- Middleware stack
- Health check endpoints
- Lifespan management (service container startup/shutdown)
"""
from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Awaitable, Callable, Dict, Union

from fastapi import FastAPI, WebSocket
from redis.exceptions import RedisError

from shared.config import get_settings
from shared.utils.logging import get_logger, setup_logging
from shared.utils.metrics import start_metrics_server

from api.container import ServiceContainer
from api.dependencies import get_container, init_dependencies
from api.middleware import setup_middleware
from api.routes.matches import router as matches_router
from api.routes.teams import router as teams_router
from api.ws.manager import WebSocketManager

logger = get_logger(__name__)

# Module-level reference for the WS manager (accessed by the ws endpoint)
_ws_manager: WebSocketManager | None = None

_CONNECT_RETRY_ATTEMPTS = 10
_CONNECT_RETRY_BASE_DELAY_S = 2.0


async def _connect_with_retry(connect_fn: Callable[[], Awaitable[None]], name: str) -> None:
    """Call async connect_fn(); retry with exponential backoff on failure."""
    for attempt in range(1, _CONNECT_RETRY_ATTEMPTS + 1):
        try:
            await connect_fn()
            return
        except (RedisError, OSError, asyncio.TimeoutError) as exc:
            if attempt == _CONNECT_RETRY_ATTEMPTS:
                raise
            delay = _CONNECT_RETRY_BASE_DELAY_S * (2 ** (attempt - 1))
            logger.warning(
                "connect_retry",
                name=name,
                attempt=attempt,
                max_attempts=_CONNECT_RETRY_ATTEMPTS,
                delay_s=delay,
                error=str(exc),
            )
            await asyncio.sleep(delay)


@asynccontextmanager
async def _noop_lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """No-op lifespan for testing; tests install their own container."""
    yield


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application lifespan manager.
    Builds and starts the service container on startup, then stops live
    views and closes upstream clients on shutdown.
    """
    global _ws_manager

    settings = get_settings()
    setup_logging("api", settings=settings)
    if settings.metrics_enabled:
        start_metrics_server(settings.metrics_port)

    container = ServiceContainer(settings)
    await _connect_with_retry(container.start, "ServiceContainer")
    init_dependencies(container)

    _ws_manager = WebSocketManager(container)

    logger.info(
        "api_service_started",
        host=settings.api_host,
        port=settings.api_port,
        cache_backend=settings.cache_backend.value,
    )

    yield

    # Shutdown
    if _ws_manager:
        await _ws_manager.stop()
        _ws_manager = None
    await container.close()
    init_dependencies(None)
    logger.info("api_service_stopped")


def create_app(*, use_lifespan: bool = True) -> FastAPI:
    """Create and configure the FastAPI application. Set use_lifespan=False for testing."""
    app = FastAPI(
        title="Matchcenter API",
        description="Resolved match data, live timelines and team pages",
        version="1.0.0",
        lifespan=lifespan if use_lifespan else _noop_lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
    )

    # Middleware
    setup_middleware(app)

    # REST routes
    app.include_router(matches_router)
    app.include_router(teams_router)

    # Health check
    @app.get("/health", tags=["system"])
    async def health() -> dict[str, str]:
        return {"status": "ok", "service": "api"}

    @app.get("/ready", tags=["system"])
    async def readiness() -> Dict[str, Union[str, bool]]:
        """Readiness probe: checks the container and its shared infrastructure."""
        checks = await get_container().ready()
        status = "ok" if all(checks.values()) else "degraded"
        return {"status": status, **checks}

    # WebSocket endpoint
    @app.websocket("/v1/ws/matches")
    async def websocket_endpoint(ws: WebSocket) -> None:
        """
        WebSocket endpoint for live match views.

        Client operations:
        - subscribe: {"op": "subscribe", "cms_id": "..."} or
                     {"op": "subscribe", "league_id": "...", "match_id": "..."}
        - unsubscribe: {"op": "unsubscribe"}
        - ping: {"op": "ping"}

        Server messages (``{"type", "generation", "timestamp", "data"}``):
        - snapshot: Live snapshot for the current view
        - not_found: The subscribed match does not resolve
        - stopped: Polling ended (finished, not_found or unsubscribed)
        - pong: Response to ping
        - error: Error notification
        """
        if _ws_manager is None:
            await ws.close(code=1013, reason="service_unavailable")
            return
        await _ws_manager.handle_connection(ws)

    return app


def install_ws_manager(manager: WebSocketManager | None) -> None:
    """Install the WS manager without running the lifespan (tests)."""
    global _ws_manager
    _ws_manager = manager


# For running with uvicorn directly
app = create_app()
