"""Request metrics for the pipeline API."""

from __future__ import annotations

import time
from typing import Any

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import Response

from app.telemetry import observe_request

UNMATCHED_ROUTE = "unmatched"


class TelemetryMiddleware(BaseHTTPMiddleware):
    """Count and time requests, labelled by route template."""

    async def dispatch(
        self,
        request: Request,
        call_next: RequestResponseEndpoint,
    ) -> Response:
        started = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception:
            observe_request(
                request.method,
                route_template(request),
                500,
                time.perf_counter() - started,
            )
            raise

        observe_request(
            request.method,
            route_template(request),
            response.status_code,
            time.perf_counter() - started,
        )
        return response


def route_template(request: Request) -> str:
    """Matched path template such as ``/jobs/{job_id}``.

    The router records the match on the shared scope, so this is only
    meaningful once the request has been handled. Unmatched paths share one
    label to keep metric cardinality bounded.
    """

    route: Any = request.scope.get("route")
    path = getattr(route, "path", None)
    return path or UNMATCHED_ROUTE


__all__ = ["TelemetryMiddleware", "route_template"]
