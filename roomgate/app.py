from __future__ import annotations

import asyncio
import contextlib
from contextlib import asynccontextmanager
from typing import Any, Dict

from fastapi import FastAPI

from roomgate.api.error_handling import register_exception_handlers
from roomgate.api.routes import router
from roomgate.logging import get_logger, set_correlation_id

logger = get_logger(__name__)

__version__ = "0.1.0"

_sweeper_task: asyncio.Task | None = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start the expired-session sweeper and stop it on shutdown."""
    global _sweeper_task
    from roomgate.service.runtime import get_runtime

    runtime = get_runtime()
    _sweeper_task = asyncio.create_task(
        runtime.sessions.run_sweeper(runtime.settings.session_sweep_interval_seconds)
    )
    logger.info(
        "session_sweeper_started",
        interval_seconds=runtime.settings.session_sweep_interval_seconds,
    )

    yield

    if _sweeper_task:
        _sweeper_task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await _sweeper_task
        _sweeper_task = None
    if runtime.cache is not None:
        await runtime.cache.close()
    logger.info("runtime_cleanup_complete")


app = FastAPI(title="Roomgate", version=__version__, lifespan=lifespan)


@app.middleware("http")
async def add_correlation_id(request, call_next):
    """Tag each request with the caller's X-Request-ID or a fresh UUID."""
    client_request_id = request.headers.get("X-Request-ID")
    correlation_id = set_correlation_id(client_request_id)
    response = await call_next(request)
    response.headers["X-Request-ID"] = correlation_id
    return response


@app.middleware("http")
async def add_security_headers(request, call_next):
    response = await call_next(request)
    response.headers.setdefault("X-Content-Type-Options", "nosniff")
    response.headers.setdefault("X-Frame-Options", "DENY")
    if request.url.path.startswith("/v1/"):
        response.headers.setdefault("Cache-Control", "no-store")
    return response


register_exception_handlers(app)
app.include_router(router)


@app.get("/healthz")
async def health() -> Dict[str, Any]:
    from roomgate.service.runtime import get_runtime

    runtime = get_runtime()
    checks: Dict[str, Dict[str, Any]] = {"store": {"status": "healthy", "type": "memory"}}
    healthy = True
    if runtime.cache is not None:
        try:
            await asyncio.wait_for(asyncio.to_thread(runtime.cache.verify_connection), 3)
            checks["redis"] = {"status": "healthy"}
        except Exception as exc:
            logger.warning("health_check_failed", check="redis", error=str(exc))
            checks["redis"] = {"status": "unhealthy"}
            healthy = False
    else:
        checks["redis"] = {"status": "not_configured"}
    return {
        "status": "healthy" if healthy else "degraded",
        "version": __version__,
        "checks": checks,
    }


def create_app() -> FastAPI:
    return app
