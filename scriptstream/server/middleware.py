"""
MODULE OVERVIEW:
FastAPI middleware to track request timings.
Where it fits: Middleware runs on *every* HTTP request, wrapping our endpoints.

WHAT IS HAPPENING HERE:
We add an `X-Process-Time-Ms` header so a client retrying with backoff can tell
server-side slowness apart from network latency. Requests slower than the
client's own high-latency threshold are logged as warnings.
"""

import time
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from loguru import logger

from scriptstream.shared.config import settings

QUIET_PATHS = ("/healthz", "/stats")

class TimingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        start_time = time.perf_counter()
        response = await call_next(request)
        elapsed_ms = (time.perf_counter() - start_time) * 1000

        response.headers["X-Process-Time-Ms"] = f"{elapsed_ms:.2f}"

        line = f"method={request.method} path={request.url.path} status={response.status_code} elapsed_ms={elapsed_ms:.2f}"
        if elapsed_ms > settings.WS_HIGH_LATENCY_MS:
            logger.warning(f"{line} event=slow_request")
        elif request.url.path not in QUIET_PATHS:
            logger.debug(line)

        return response
