"""
Middleware for FastAPI: request logging and response timing.
"""
import time
import logging
from typing import Callable, Dict, Optional
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from cartsync.session import hash_identifier

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

SESSION_HEADER = "X-Session-ID"


def request_context(request: Request) -> Dict[str, Optional[str]]:
    """Log fields shared by every line about one request (session id hashed)"""
    session_id = request.headers.get(SESSION_HEADER)
    return {
        "method": request.method,
        "path": request.url.path,
        "hashed_session_id": hash_identifier(session_id) if session_id else None,
    }


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Logs each request and stamps the response with its latency"""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        started = time.perf_counter()
        context = request_context(request)
        logger.info(
            f"Request: {request.method} {request.url.path}",
            extra={**context, "remote_addr": request.client.host if request.client else None}
        )

        try:
            response = await call_next(request)
        except Exception as e:
            logger.error(
                f"Error: {request.method} {request.url.path}",
                extra={**context, "error": str(e), "error_type": type(e).__name__},
                exc_info=True
            )
            raise

        latency_ms = (time.perf_counter() - started) * 1000
        logger.info(
            f"Response: {request.method} {request.url.path} {response.status_code}",
            extra={**context, "status_code": response.status_code, "latency_ms": round(latency_ms, 2)}
        )
        response.headers["X-Response-Time-Ms"] = f"{latency_ms:.2f}"
        return response
