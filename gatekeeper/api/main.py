from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException

from gatekeeper.api.exception_handlers import (
    http_exception_handler,
    unhandled_exception_handler,
    validation_exception_handler,
)
from gatekeeper.api.middleware import RateLimitMiddleware, RequestLoggingMiddleware
from gatekeeper.api.schemas import (
    ErrorResponse,
    HealthResponse,
    RateLimitedResponse,
    WelcomeResponse,
)
from gatekeeper.config import Settings, settings
from gatekeeper.logging_config import setup_logging
from gatekeeper.services.metrics import metrics
from gatekeeper.services.rate_limiter import DualWindowRateLimiter, build_rate_limiter

logger = logging.getLogger("gatekeeper")

_DESCRIPTION = """\
Per-client HTTP admission control.

Every request is counted against two rolling windows keyed by the
client address: a short **burst** window and a long **sustained** window.
A request that would exceed either window is rejected with `429` before
it is counted, so rejected traffic never eats into future quota.

Every counted response carries `X-RateLimit-Limit`,
`X-RateLimit-Remaining` and `X-RateLimit-Reset` (epoch seconds) headers.
"""


def _limiter(request: Request) -> DualWindowRateLimiter:
    return request.app.state.rate_limiter


def create_app(
    app_settings: Settings | None = None,
    limiter: DualWindowRateLimiter | None = None,
) -> FastAPI:
    """Build the application around its own limiter instance."""
    app_settings = app_settings or settings
    limiter = limiter or build_rate_limiter(app_settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        setup_logging(app_settings.log_level, app_settings.log_format)
        cfg = limiter.config
        logger.info(
            "Rate limiting: %d req / %d ms burst, %d req / %d ms sustained",
            cfg.short_window_max,
            cfg.short_window_ms,
            cfg.long_window_max,
            cfg.long_window_ms,
        )
        yield

    app = FastAPI(
        title="Gatekeeper",
        version="0.1.0",
        summary="Dual-window per-client rate limiting",
        description=_DESCRIPTION,
        lifespan=lifespan,
    )
    app.state.rate_limiter = limiter

    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    # Innermost first: logging wraps CORS, which wraps the limiter
    app.add_middleware(
        RateLimitMiddleware,
        limiter=limiter,
        exempt_paths=app_settings.exempt_paths(),
        trust_forwarded_for=app_settings.trust_forwarded_for,
    )
    origins = [o.strip() for o in app_settings.cors_origins.split(",")]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=[
            "X-RateLimit-Limit",
            "X-RateLimit-Remaining",
            "X-RateLimit-Reset",
            "X-Request-ID",
        ],
    )
    app.add_middleware(RequestLoggingMiddleware)

    @app.get(
        "/",
        tags=["system"],
        summary="Welcome",
        response_model=WelcomeResponse,
        responses={
            400: {"model": ErrorResponse, "description": "Client address unavailable"},
            429: {"model": RateLimitedResponse, "description": "Rate limit exceeded"},
        },
    )
    async def index():
        return {"message": "Welcome to Gatekeeper"}

    @app.get(
        "/health",
        tags=["system"],
        summary="Health check",
        description="Limiter status and uptime. Not rate limited by default.",
        response_model=HealthResponse,
    )
    async def health(request: Request):
        rl = _limiter(request)
        cfg = rl.config
        return {
            "status": "ok",
            "rate_limiter": {
                "active_keys": rl.store.active_keys,
                "short_window": {
                    "duration_ms": cfg.short_window_ms,
                    "max_requests": cfg.short_window_max,
                },
                "long_window": {
                    "duration_ms": cfg.long_window_ms,
                    "max_requests": cfg.long_window_max,
                },
            },
            "uptime_seconds": metrics.uptime_seconds(),
        }

    @app.get(
        "/metrics",
        tags=["system"],
        summary="Application metrics",
        description="Request counters, admission outcomes and latency percentiles.",
    )
    async def get_metrics(request: Request):
        snap = metrics.snapshot()
        snap["rate_limiter"] = {"active_keys": _limiter(request).store.active_keys}
        return snap

    return app


app = create_app()
