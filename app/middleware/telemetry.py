"""Telemetry middleware for request instrumentation."""

from __future__ import annotations

import time
from typing import Any

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import Response

from app.telemetry import observe_request

UNMATCHED_ROUTE = "unmatched"


class TelemetryMiddleware(BaseHTTPMiddleware):
    """Collect request metrics for Prometheus, labelled by route template."""

    async def dispatch(
        self,
        request: Request,
        call_next: RequestResponseEndpoint,
    ) -> Response:
        start_time = time.perf_counter()
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
            return response
        finally:
            observe_request(
                request.method,
                self._resolve_route(request),
                status_code,
                time.perf_counter() - start_time,
            )

    @staticmethod
    def _resolve_route(request: Request) -> str:
        """Return the matched template, e.g. ``/scripts/{run_id}``, never a concrete run id."""

        scope_route: Any = request.scope.get("route")
        path = getattr(scope_route, "path", None)
        return path or UNMATCHED_ROUTE
