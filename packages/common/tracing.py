"""Request tracing and learning-event telemetry.

- `trace_middleware` binds an `X-Request-ID` to the request context, echoes it
  on the response and logs one access line per request.
- `xapi_event` writes an xAPI-style learning statement (actor, verb, object,
  result) to the `quiz_completion.events` logger.
"""

import logging
import time
import uuid
from typing import Any, Awaitable, Callable, Dict

from fastapi import Request, Response

from .logging import set_request_id

REQUEST_ID_HEADER = "X-Request-ID"

access_log = logging.getLogger("quiz_completion.access")
events_log = logging.getLogger("quiz_completion.events")


async def trace_middleware(request: Request, call_next: Callable[[Request], Awaitable[Response]]) -> Response:
    """Attach a correlation id to the request and its log lines.

    The incoming `X-Request-ID` is reused when present, otherwise a UUIDv4 is
    generated. The id is cleared from the context once the response is built.
    """
    rid = request.headers.get(REQUEST_ID_HEADER) or str(uuid.uuid4())
    set_request_id(rid)
    t0 = time.perf_counter()
    try:
        response = await call_next(request)
        access_log.info(
            "%s %s -> %d",
            request.method,
            request.url.path,
            response.status_code,
            extra={"duration_ms": round((time.perf_counter() - t0) * 1000, 1)},
        )
    finally:
        set_request_id(None)
    response.headers[REQUEST_ID_HEADER] = rid
    return response


def xapi_event(actor_id: str, verb: str, obj: str, **result: Any) -> Dict[str, Any]:
    """Log a learning statement and return it.

    Args:
        actor_id: The learner.
        verb: What happened, e.g. "completed".
        obj: What it happened to, e.g. a quiz slug.
        **result: Outcome fields such as `score` or `course_progress`.
    """
    statement: Dict[str, Any] = {
        "actor": {"id": actor_id},
        "verb": verb,
        "object": {"id": obj},
        "result": result,
        "timestamp": round(time.time(), 3),
    }
    events_log.info("xAPI %s %s", verb, obj, extra={"statement": statement})
    return statement
