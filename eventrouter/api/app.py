"""FastAPI application factory for eventrouter.

Usage::

    from eventrouter.api.app import create_app

    app = create_app(router=router, metrics=metrics)

Serves liveness, readiness and, when metrics are enabled, the Prometheus
exposition of the router's counters.
"""

from __future__ import annotations

from typing import Any

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from prometheus_client import make_asgi_app

from eventrouter.observability.metrics import MetricRegistry
from eventrouter.router.controller import ControllerState

_log = structlog.get_logger(component="api.app")


def create_app(router: Any, metrics: MetricRegistry) -> FastAPI:
    """Create the health and metrics application.

    Args:
        router:  EventRouter whose state drives ``/readyz``.
        metrics: Registry exposed under ``/metrics`` when enabled.
    """
    from eventrouter import __version__

    app = FastAPI(
        title="eventrouter",
        summary="Kubernetes event router health and metrics",
        version=__version__,
        docs_url=None,
        redoc_url=None,
    )
    app.state.router = router
    app.state.metrics = metrics

    @app.get("/healthz")
    async def healthz() -> dict[str, str]:
        return {"status": "ok"}

    @app.get("/readyz")
    async def readyz(request: Request) -> JSONResponse:
        state = request.app.state.router.state
        ready = state == ControllerState.RUNNING
        return JSONResponse(
            status_code=200 if ready else 503,
            content={"status": "ready" if ready else "not_ready", "state": str(state)},
        )

    if metrics.enabled:
        app.mount("/metrics", make_asgi_app(registry=metrics.registry))

    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Catch-all for unhandled exceptions; never expose stack traces."""
        _log.error(
            "unhandled_exception",
            path=str(request.url.path),
            method=request.method,
            error=str(exc),
        )
        return JSONResponse(status_code=500, content={"error": "INTERNAL_ERROR"})

    return app
