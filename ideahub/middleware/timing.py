"""
Request id and duration tracking.

Each request gets ``g.request_id`` (taken from ``X-Request-ID`` when the
gateway sets one) and both the id and the elapsed time are echoed in response
headers. Slow requests and 5xx responses are logged at warning / error level.
"""

import logging
import time
import uuid

from flask import Flask, g, request

logger = logging.getLogger(__name__)

SLOW_REQUEST_MS = 1000
QUIET_PATHS = frozenset({"/api/v1/health/live", "/api/v1/health/ready"})


def _level_for(status_code, elapsed_ms):
    if status_code >= 500:
        return logging.ERROR
    if elapsed_ms > SLOW_REQUEST_MS:
        return logging.WARNING
    return logging.DEBUG


def init_request_timing(app: Flask):
    @app.before_request
    def _begin():
        g.request_started = time.perf_counter()
        g.request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex[:12]

    @app.after_request
    def _finish(response):
        started = g.get("request_started")
        if started is None:
            return response

        elapsed_ms = (time.perf_counter() - started) * 1000
        response.headers["X-Request-ID"] = g.request_id
        response.headers["X-Request-Duration-Ms"] = f"{elapsed_ms:.1f}"

        if request.path not in QUIET_PATHS:
            logger.log(
                _level_for(response.status_code, elapsed_ms),
                "%s %s -> %d in %.0fms",
                request.method, request.path, response.status_code, elapsed_ms,
                extra={
                    "method": request.method,
                    "path": request.path,
                    "status": response.status_code,
                    "duration_ms": round(elapsed_ms, 1),
                    "remote_addr": request.remote_addr,
                },
            )
        return response
