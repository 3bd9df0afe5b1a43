"""Request logging and rate limiting middleware (pure ASGI)."""

from __future__ import annotations

import logging
import time

from starlette.responses import JSONResponse
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from gatekeeper.services.metrics import metrics
from gatekeeper.services.rate_limiter import (
    DualWindowRateLimiter,
    InvalidClientKeyError,
)
from gatekeeper.services.request_context import (
    client_key_var,
    generate_request_id,
    get_request_id,
    request_id_var,
)

logger = logging.getLogger("gatekeeper.access")
ratelimit_logger = logging.getLogger("gatekeeper.ratelimit")


def _header(scope: Scope, name: bytes) -> str:
    for header_name, header_value in scope.get("headers", []):
        if header_name == name:
            return header_value.decode("latin-1")
    return ""


def resolve_client_key(scope: Scope, trust_forwarded_for: bool = False) -> str | None:
    """Return the address the request should be counted against.

    With *trust_forwarded_for* the left-most ``X-Forwarded-For`` hop wins,
    which is only safe behind a proxy that overwrites the header.
    """
    if trust_forwarded_for:
        forwarded = _header(scope, b"x-forwarded-for").split(",")[0].strip()
        if forwarded:
            return forwarded
    client = scope.get("client")
    return client[0] if client else None


class RequestLoggingMiddleware:
    """Log ``method path status_code latency_ms`` for every request.

    Adds ``X-Response-Time-Ms`` and ``X-Request-ID`` headers to every
    response, including 429 rejections, and records request metrics.
    """

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        rid = _header(scope, b"x-request-id") or generate_request_id()
        token = request_id_var.set(rid)

        start = time.perf_counter()
        status_code = 500  # if the app never starts a response

        async def send_wrapper(message: Message) -> None:
            nonlocal status_code
            if message["type"] == "http.response.start":
                status_code = message["status"]
                elapsed_ms = round((time.perf_counter() - start) * 1000, 2)

                headers = list(message.get("headers", []))
                headers.append((b"x-response-time-ms", str(elapsed_ms).encode()))
                headers.append((b"x-request-id", rid.encode()))
                message = {**message, "headers": headers}

            await send(message)

        try:
            await self.app(scope, receive, send_wrapper)
        finally:
            elapsed_ms = round((time.perf_counter() - start) * 1000, 2)
            logger.info(
                "%s %s %s %.2fms [%s]",
                scope.get("method", ""),
                scope.get("path", ""),
                status_code,
                elapsed_ms,
                get_request_id()[:12],
            )
            metrics.inc_request(status_code)
            metrics.record_latency(elapsed_ms)
            request_id_var.reset(token)


class RateLimitMiddleware:
    """Admit or reject each HTTP request through a :class:`DualWindowRateLimiter`.

    Rejected requests get a 429 JSON body carrying the window's message.
    Admitted requests continue to the app and their response gains the
    ``X-RateLimit-*`` headers. Paths in *exempt_paths* are not counted.
    """

    def __init__(
        self,
        app: ASGIApp,
        limiter: DualWindowRateLimiter,
        exempt_paths: frozenset[str] = frozenset(),
        trust_forwarded_for: bool = False,
    ) -> None:
        self.app = app
        self.limiter = limiter
        self.exempt_paths = exempt_paths
        self.trust_forwarded_for = trust_forwarded_for

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http" or scope.get("path", "") in self.exempt_paths:
            await self.app(scope, receive, send)
            return

        key = resolve_client_key(scope, self.trust_forwarded_for)
        try:
            decision = self.limiter.check(key)
        except InvalidClientKeyError:
            metrics.inc_invalid_client_key()
            ratelimit_logger.error(
                "Cannot identify client for %s %s; refusing request",
                scope.get("method", ""),
                scope.get("path", ""),
            )
            response = JSONResponse(
                status_code=400,
                content={
                    "error": True,
                    "status_code": 400,
                    "detail": "Unable to identify client",
                },
            )
            await response(scope, receive, send)
            return

        token = client_key_var.set(key)
        try:
            if not decision.admitted:
                metrics.inc_rejected(decision.reject_kind)
                response = JSONResponse(
                    status_code=429,
                    content={
                        "error": True,
                        "status_code": 429,
                        "message": decision.message,
                    },
                    headers=decision.headers,
                )
                await response(scope, receive, send)
                return

            metrics.inc_admitted()
            rl_headers = [
                (name.lower().encode(), value.encode())
                for name, value in decision.headers.items()
            ]

            async def send_wrapper(message: Message) -> None:
                if message["type"] == "http.response.start":
                    headers = list(message.get("headers", []))
                    present = {name.lower() for name, _ in headers}
                    # Headers set by the app itself take precedence
                    headers.extend(h for h in rl_headers if h[0] not in present)
                    message = {**message, "headers": headers}
                await send(message)

            await self.app(scope, receive, send_wrapper)
        finally:
            client_key_var.reset(token)
