"""
Per-request correlation id.

Accepts a caller-supplied `x-request-id` when it looks sane, otherwise mints
one. The id is bound for the duration of the request, exposed on
`request.state.request_id`, echoed on the response and logged once per
request together with its duration.
"""
import re
import time
from uuid import uuid4

from starlette.middleware.base import BaseHTTPMiddleware

from obsidian_pm.core.logging import bind_request_id, get_logger, unbind_request_id

REQUEST_ID_HEADER = "x-request-id"
_ACCEPTABLE_ID = re.compile(r"^[A-Za-z0-9._:-]{1,128}$")


def resolve_request_id(incoming):
    if incoming and _ACCEPTABLE_ID.match(incoming):
        return incoming
    return uuid4().hex


class RequestIdMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request, call_next):
        request_id = resolve_request_id(request.headers.get(REQUEST_ID_HEADER))
        request.state.request_id = request_id

        started = time.perf_counter()
        token = bind_request_id(request_id)
        try:
            response = await call_next(request)
        finally:
            unbind_request_id(token)

        response.headers[REQUEST_ID_HEADER] = request_id
        get_logger().info(
            "http.request",
            extra={
                "request_id": request_id,
                "method": request.method,
                "path": request.url.path,
                "status": response.status_code,
                "duration_ms": round((time.perf_counter() - started) * 1000, 1),
            },
        )
        return response
