"""Request ID middleware.

Tags every request with an ID (taken from X-Request-ID or generated) and,
for learner routes (`/users/{user_id}/<operation>`), with the learner and
the engine operation, so engine log lines can be traced back to both.
"""

import re
import time
import uuid
from typing import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from mastery_engine.core.logging import bind_request_context, get_logger, reset_request_context

logger = get_logger(__name__)

LEARNER_PATH = re.compile(r"/users/(?P<user_id>[^/]+)(?:/(?P<operation>[^/]+))?")


def learner_route(path: str) -> tuple[str | None, str | None]:
    """(user_id, operation) for learner routes, (None, None) otherwise."""
    match = LEARNER_PATH.search(path)
    if match is None:
        return None, None
    return match.group("user_id"), match.group("operation")


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Assigns request IDs and logs request start/completion."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        user_id, operation = learner_route(request.url.path)
        request.state.request_id = request_id

        fields = {"method": request.method, "path": request.url.path}
        if operation is not None:
            fields["operation"] = operation

        token = bind_request_context(request_id, user_id)
        start = time.perf_counter()
        logger.info("Request started", extra=fields)

        try:
            response = await call_next(request)
        except Exception as e:
            logger.error(
                "Request failed",
                extra={
                    **fields,
                    "status_code": 500,
                    "latency_ms": int((time.perf_counter() - start) * 1000),
                    "error": str(e),
                },
                exc_info=True,
            )
            raise
        finally:
            reset_request_context(token)

        response.headers["X-Request-ID"] = request_id
        logger.info(
            "Request completed",
            extra={
                **fields,
                "request_id": request_id,
                "user_id": user_id,
                "status_code": response.status_code,
                "latency_ms": int((time.perf_counter() - start) * 1000),
            },
        )
        return response
