"""Request body size limit middleware for RiskGate.

Enforces MAX_REQUEST_BODY_BYTES by declared ``Content-Length``:
  - HTTP 413 is returned for a declared size over the cap, before
    authentication, scoring or any backend connection.
  - A non-integer Content-Length is rejected with HTTP 400.

Bodies without Content-Length (chunked) are not buffered here; the dispatcher
streams them to the backend. The public credential routes and task creation,
which are buffered for validation, apply their own smaller cap
(MAX_VALIDATED_BODY_BYTES) while reading.
"""

from __future__ import annotations

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from app.constants import MAX_REQUEST_BODY_BYTES
from app.utils.logger import get_logger

logger = get_logger(__name__)

_PAYLOAD_TOO_LARGE_BODY: dict = {"error": "Request body too large"}

_INVALID_CONTENT_LENGTH_BODY: dict = {"error": "Invalid Content-Length header"}


class BodySizeLimitMiddleware(BaseHTTPMiddleware):
    """Starlette middleware rejecting oversized declared request bodies.

    Registration (in create_app() in app/main.py):
        application.add_middleware(BodySizeLimitMiddleware, max_bytes=...)
    """

    def __init__(self, app, max_bytes: int = MAX_REQUEST_BODY_BYTES) -> None:
        super().__init__(app)
        self.max_bytes = max_bytes

    async def dispatch(self, request: Request, call_next) -> Response:  # type: ignore[override]
        content_length_header = request.headers.get("content-length")
        if content_length_header is None:
            return await call_next(request)

        try:
            declared_size = int(content_length_header)
        except ValueError:
            logger.warning(
                "invalid_content_length",
                value=content_length_header,
                path=request.url.path,
            )
            return JSONResponse(status_code=400, content=_INVALID_CONTENT_LENGTH_BODY)

        if declared_size > self.max_bytes:
            logger.warning(
                "request_body_too_large",
                declared_size=declared_size,
                limit=self.max_bytes,
                path=request.url.path,
            )
            recorder = getattr(request.app.state, "recorder", None)
            if recorder is not None:
                recorder.request_rejected("body_too_large")
            return JSONResponse(status_code=413, content=_PAYLOAD_TOO_LARGE_BODY)

        return await call_next(request)
