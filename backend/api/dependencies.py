"""
Dependency injection for the API service.
Provides the service container and a per-request resolution scope to route
handlers.
"""
from __future__ import annotations

from fastapi import Request

from api.container import ServiceContainer
from resolver.scope import RequestScope

# Module-level singleton, initialized at startup
_container: ServiceContainer | None = None


def init_dependencies(container: ServiceContainer | None) -> None:
    """Install (or clear) the container. Called once at startup and at shutdown."""
    global _container
    _container = container


def get_container() -> ServiceContainer:
    """FastAPI dependency: returns the shared ServiceContainer."""
    if _container is None:
        raise RuntimeError("ServiceContainer not initialized; call init_dependencies first")
    return _container


def get_request_scope(request: Request) -> RequestScope:
    """FastAPI dependency: a fresh memo scope keyed by the request id."""
    return RequestScope(getattr(request.state, "request_id", None))
