"""FastAPI middleware for request/response logging and correlation."""

import time
import uuid
from typing import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from photo_entitlements.logging_config import bind_context, clear_context, get_logger, short_id

logger = get_logger(__name__)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Middleware for logging HTTP requests and responses with correlation IDs.

    Features:
    - Generates unique request_id for each request
    - Logs request method, path, client IP
    - Logs response status code and duration
    - Binds request_id to all logs within request context
    """

    def __init__(self, app: ASGIApp, include_request_details: bool = True):
        """Initialize middleware.

        Args:
            app: ASGI application
            include_request_details: If True, log client and user agent too
        """
        super().__init__(app)
        self.include_request_details = include_request_details

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        bind_context(request_id=request_id)

        # Query strings carry session ids, so only the path is logged
        if self.include_request_details:
            client_host = request.client.host if request.client else "unknown"
            logger.info(
                "request_started",
                method=request.method,
                path=request.url.path,
                client_host=client_host,
                user_agent=request.headers.get("user-agent"),
            )
        else:
            logger.info("request_started", method=request.method, path=request.url.path)

        start_time = time.time()

        try:
            response = await call_next(request)

            duration_ms = (time.time() - start_time) * 1000
            logger.info(
                "request_completed",
                method=request.method,
                path=request.url.path,
                status_code=response.status_code,
                duration_ms=round(duration_ms, 2),
            )

            response.headers["X-Request-ID"] = request_id
            return response

        except Exception as exc:
            duration_ms = (time.time() - start_time) * 1000
            logger.error(
                "request_failed",
                method=request.method,
                path=request.url.path,
                duration_ms=round(duration_ms, 2),
                error=str(exc),
                error_type=type(exc).__name__,
                exc_info=True,
            )
            raise

        finally:
            clear_context()


class ContextMiddleware(BaseHTTPMiddleware):
    """Binds purchase context from the request to the logging context.

    - session_id (query parameter or /purchases/{session_id}), shortened
    - product_id (query parameter)
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        params = request.query_params
        session_id = params.get("session_id") or params.get("sessionId")
        if not session_id and "purchases" in request.url.path:
            parts = request.url.path.split("/")
            try:
                index = parts.index("purchases")
                if len(parts) > index + 1:
                    session_id = parts[index + 1]
            except ValueError:
                session_id = None

        if session_id:
            bind_context(session_id=short_id(session_id))

        product_id = params.get("product_id") or params.get("productId")
        if product_id:
            bind_context(product_id=product_id)

        return await call_next(request)
