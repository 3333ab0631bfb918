from __future__ import annotations

import logging
import time
from contextvars import ContextVar

from fastapi.routing import APIRoute
from starlette.requests import Request


current_endpoint: ContextVar[str] = ContextVar('current_endpoint', default='library')
logger = logging.getLogger('compliance.request')


class EndpointNameRoute(APIRoute):
    """Labels every request with its route template so slow SQL can be traced back to an endpoint."""

    def get_route_handler(self):
        original_handler = super().get_route_handler()
        route_path = self.path

        async def custom_handler(request: Request):
            endpoint_label = f"{request.method} {route_path}"
            token = current_endpoint.set(endpoint_label)
            started = time.perf_counter()
            try:
                return await original_handler(request)
            finally:
                duration_ms = (time.perf_counter() - started) * 1000.0
                logger.debug('route_done endpoint=%s duration_ms=%.2f', endpoint_label, duration_ms)
                current_endpoint.reset(token)

        return custom_handler
