import contextlib
import contextvars
import logging
import time
import uuid
from typing import Any, Callable, Dict, Optional, Set

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from app.core.config import settings
from app.models.allowlist import REQUEST_ID_MAX_LENGTH

logger = logging.getLogger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"

# Correlation id of the request being served; read by the log filter and audit trail
_request_id_ctx: contextvars.ContextVar[str] = contextvars.ContextVar(
    "request_id", default=""
)


def generate_request_id(prefix: Optional[str] = None) -> str:
    """Returns ids shaped like ``allowlist_3f9c0a1b2c4d``."""
    suffix = uuid.uuid4().hex[:12]
    return f"{prefix or settings.REQUEST_ID_PREFIX}_{suffix}"


def accept_request_id(value: Optional[str]) -> str:
    """
    Caller-supplied id if it fits the audit column, otherwise a generated one.
    """
    candidate = (value or "").strip()
    if candidate and len(candidate) <= REQUEST_ID_MAX_LENGTH:
        return candidate
    if candidate:
        logger.warning(
            f"Ignoring {REQUEST_ID_HEADER} of {len(candidate)} characters "
            f"(max {REQUEST_ID_MAX_LENGTH})"
        )
    return generate_request_id()


def get_request_id() -> str:
    return _request_id_ctx.get()


def set_request_id(request_id: str) -> contextvars.Token:
    return _request_id_ctx.set(request_id)


def reset_request_id(token: contextvars.Token) -> None:
    _request_id_ctx.reset(token)


def resolve_request_id(request: Request) -> str:
    """
    Finds the correlation id for ``request``.
    Order: context variable, request state, a freshly generated one
    (stored on the state so later lookups agree).
    """
    request_id = get_request_id()
    if request_id:
        return request_id

    request_id = getattr(request.state, "request_id", None)
    if not request_id:
        request_id = generate_request_id()
        request.state.request_id = request_id
    return request_id


class CloudRunLoggingMiddleware(BaseHTTPMiddleware):
    """
    Binds a correlation id to every request and logs it with GCP Trace Context.
    """

    # Paths to exclude from access logging to prevent noise
    SKIP_PATHS: Set[str] = {"/health", "/docs", "/openapi.json", "/favicon.ico"}

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        # 1. Caller-supplied or generated correlation id
        request_id = accept_request_id(request.headers.get(REQUEST_ID_HEADER))
        request.state.request_id = request_id
        token = set_request_id(request_id)

        try:
            if request.url.path in self.SKIP_PATHS:
                skipped_response: Response = await call_next(request)
                skipped_response.headers[REQUEST_ID_HEADER] = request_id
                return skipped_response

            return await self._dispatch_logged(request, call_next, request_id)
        finally:
            reset_request_id(token)

    async def _dispatch_logged(
        self, request: Request, call_next: Callable, request_id: str
    ) -> Response:
        start_time = time.time()

        # 2. Extract Trace Context
        trace_header = request.headers.get("X-Cloud-Trace-Context", "")
        trace_id = None
        span_id = None

        if trace_header:
            with contextlib.suppress(Exception):
                # Header format: "TRACE_ID/SPAN_ID;o=TRACE_TRUE"
                parts = trace_header.split("/")
                if len(parts) > 0:
                    trace_id = parts[0]
                if len(parts) > 1:
                    span_id = parts[1].split(";")[0]

        log_context: Dict[str, Any] = {
            "http_method": request.method,
            "path": request.url.path,
            "trace_id": trace_id,
            "span_id": span_id,
        }

        try:
            response: Response = await call_next(request)

            process_time = (time.time() - start_time) * 1000
            log_context["status_code"] = response.status_code
            log_context["process_time_ms"] = round(process_time, 2)

            logger.info(
                f"Request finished: {request.method} {request.url.path}",
                extra=log_context,
            )
            response.headers[REQUEST_ID_HEADER] = request_id
            return response

        except Exception as e:
            logger.error(
                f"Request failed: {request.method} {request.url.path}",
                exc_info=True,
                extra=log_context,
            )
            raise e
