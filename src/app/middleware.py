# src/app/middleware.py
from fastapi import FastAPI, Request
import time
import logging

logger = logging.getLogger(__name__)

# Polled every few seconds by dashboards and load balancers
QUIET_PATHS = ("/health",)
QUIET_SUFFIXES = ("/analysis",)


def register_middleware(app: FastAPI):

    @app.middleware("http")
    async def log_request_time(request: Request, call_next):
        start = time.perf_counter()
        response = await call_next(request)
        duration = (time.perf_counter() - start) * 1000
        response.headers["X-Process-Time-Ms"] = f"{duration:.2f}"

        path = request.url.path
        if path in QUIET_PATHS or (request.method == "GET" and path.endswith(QUIET_SUFFIXES)):
            logger.debug(f"{request.method} {path} | {response.status_code} | {duration:.2f} ms")
        else:
            logger.info(f"{request.method} {path} | {response.status_code} | {duration:.2f} ms")
        return response

    return app
