"""Correlation ID middleware.

Generates or propagates a correlation ID per request and logs request
start/completion with method, path and client IP.

Pure ASGI middleware, so responses are not buffered.
"""

import re
import time
import uuid

from starlette.types import ASGIApp, Message, Receive, Scope, Send

from recovery_api.logging_config import correlation_id_ctx, get_logger

logger = get_logger(__name__)

CORRELATION_ID_HEADER = "X-Correlation-ID"

# Incoming IDs end up in every log line
_CORRELATION_ID_PATTERN = re.compile(r"[A-Za-z0-9._:-]{1,128}")


def _correlation_id(headers: dict[bytes, bytes]) -> str:
    incoming = headers.get(b"x-correlation-id", b"").decode("latin-1")
    if _CORRELATION_ID_PATTERN.fullmatch(incoming):
        return incoming
    return str(uuid.uuid4())


def _client_ip(scope: Scope, headers: dict[bytes, bytes]) -> str | None:
    forwarded_for = headers.get(b"x-forwarded-for", b"").decode()
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()
    client = scope.get("client")
    return client[0] if client else None


class CorrelationIdMiddleware:
    """Pure ASGI middleware that adds correlation IDs to requests.

    A well-formed incoming X-Correlation-ID header is reused; otherwise a
    UUID4 is generated. The ID is set in the logging context and echoed in the
    response headers.
    """

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        headers = dict(scope.get("headers", []))
        correlation_id = _correlation_id(headers)
        token = correlation_id_ctx.set(correlation_id)

        start_time = time.perf_counter()
        status_code: int | None = None
        method = scope.get("method", "")
        path = scope.get("path", "")

        logger.info(
            "Request started",
            method=method,
            path=path,
            client_ip=_client_ip(scope, headers),
        )

        async def send_wrapper(message: Message) -> None:
            nonlocal status_code

            if message["type"] == "http.response.start":
                status_code = message.get("status")
                response_headers = list(message.get("headers", []))
                response_headers.append(
                    (CORRELATION_ID_HEADER.lower().encode(), correlation_id.encode())
                )
                message = {**message, "headers": response_headers}

            await send(message)

        try:
            await self.app(scope, receive, send_wrapper)
            logger.info(
                "Request completed",
                method=method,
                path=path,
                status_code=status_code,
                duration_ms=round((time.perf_counter() - start_time) * 1000, 2),
            )
        except Exception:
            logger.exception(
                "Request failed",
                method=method,
                path=path,
                duration_ms=round((time.perf_counter() - start_time) * 1000, 2),
            )
            raise
        finally:
            correlation_id_ctx.reset(token)
