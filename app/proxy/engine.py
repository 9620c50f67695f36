"""Gateway request pipeline and backend dispatcher for RiskGate.

Every request under the public prefix (``/api`` by default) goes through:

  1. Route classification (app/proxy/routes.py)
       PUBLIC    POST /login, /register: body validated, rate limited, forwarded
                 without authentication or risk gating.
       PROTECTED everything else: steps 2-6.
  2. Authentication of the bearer credential (app/auth).
  3. Structural body validation on mutation routes, authenticated requests only.
  4. Risk scoring of a RequestContext (app/risk/engine.py).
  5. Admission decision (app/risk/admission.py). Auth failure beats any score.
  6. Dispatch to the backend on ALLOW / ALLOW_FLAGGED, or a 401/403 response.

Every gated response (denials included) carries ``x-risk-score``. The pipeline
reports each stage to the injected observer at ``app.state.recorder``.

Dispatch properties:
  - Shared httpx.AsyncClient at app.state.http_client, never per-request.
  - Path rewrite: ``<prefix>/<path>`` → ``<backend.url>/<path>``, query string
    forwarded verbatim.
  - Request bodies are streamed (``request.stream()``) unless they were
    already buffered for validation.
  - Backend responses are relayed byte-for-byte (``aiter_raw``), status and
    headers (minus hop-by-hop) preserved. Backend 4xx/5xx pass through. A
    response whose body the transport already read is sent from memory,
    decoded, without ``content-encoding``.
  - ConnectError / TimeoutException / RemoteProtocolError / other network
    errors → HTTP 502. InvalidURL / UnsupportedProtocol → HTTP 500. Failure
    detail is logged, never returned.
  - No retries. A client disconnect while the backend call is pending cancels
    the call; a disconnect while relaying closes the backend response.
"""

from __future__ import annotations

import asyncio
import time
from datetime import datetime, timezone
from typing import AsyncIterator, Optional, Union

import httpx
from fastapi import APIRouter, Request, Response
from fastapi.responses import JSONResponse, StreamingResponse
from slowapi.errors import RateLimitExceeded
from starlette.background import BackgroundTask
from starlette.requests import ClientDisconnect

from app.auth.limiter import PUBLIC_AUTH_RATE_LIMIT, limiter
from app.auth.middleware import authenticate_request
from app.config import Config
from app.constants import REQUEST_ID_HEADER, RISK_SCORE_HEADER
from app.models.responses import (
    build_auth_failure_response,
    build_config_error_response,
    build_denied_response,
    build_not_found_response,
    build_upstream_unavailable_response,
    build_validation_error_response,
)
from app.proxy.headers import build_backend_headers, build_client_response_headers
from app.proxy.routes import RouteKind, classify_route
from app.proxy.validation import BodyTooLarge, read_bounded_body, schema_for, validate_body
from app.risk.admission import Decision, DecisionOutcome, DecisionReason
from app.risk.engine import build_request_context
from app.risk.models import RiskAssessment
from app.utils.logger import clear_request_id, get_logger, set_request_id
from app.utils.ulid import generate_ulid

logger = get_logger(__name__)

# ─── Router ───────────────────────────────────────────────────────────────────

router = APIRouter(tags=["proxy"])

# ─── Constants ────────────────────────────────────────────────────────────────

POOL_MAX_CONNECTIONS: int = 100
POOL_MAX_KEEPALIVE: int = 100
POOL_KEEPALIVE_EXPIRY: float = 30.0  # seconds
PROXY_TIMEOUT: float = 30.0  # total request timeout

# HTTP status used when the client went away before a response could be sent.
CLIENT_CLOSED_REQUEST: int = 499

_PAYLOAD_TOO_LARGE = {"error": "Request body too large"}

# ─── httpx.AsyncClient factory ────────────────────────────────────────────────


def create_http_client(timeout_s: float = PROXY_TIMEOUT) -> httpx.AsyncClient:
    """Create the shared httpx.AsyncClient with connection pooling configured.

    Created once at lifespan startup and stored in app.state.http_client.
    Pool size matches uvicorn's --limit-concurrency 100 (app/run.py).
    """
    return httpx.AsyncClient(
        limits=httpx.Limits(
            max_connections=POOL_MAX_CONNECTIONS,
            max_keepalive_connections=POOL_MAX_KEEPALIVE,
            keepalive_expiry=POOL_KEEPALIVE_EXPIRY,
        ),
        timeout=httpx.Timeout(timeout_s),
        follow_redirects=False,  # pass 3xx through to the client; do not resolve
    )


# ─── Request helpers ──────────────────────────────────────────────────────────


def client_address(request: Request, trust_forwarded_for: bool) -> str:
    """Origin address used for scoring.

    With ``trust_forwarded_for`` the first ``X-Forwarded-For`` entry wins;
    otherwise the socket peer is used.
    """
    if trust_forwarded_for:
        forwarded = request.headers.get("x-forwarded-for")
        if forwarded:
            first = forwarded.split(",")[0].strip()
            if first:
                return first
    return request.client.host if request.client else ""


@limiter.limit(PUBLIC_AUTH_RATE_LIMIT)
async def _enforce_public_rate_limit(request: Request) -> None:
    """Raises RateLimitExceeded once a client exceeds the credential-route cap."""
    return None


def _log_decision(decision: Decision, assessment: RiskAssessment, method: str, path: str) -> None:
    if decision.outcome is DecisionOutcome.DENY:
        logger.warning(
            "request_denied",
            score=decision.score,
            threshold=decision.threshold,
            origin=assessment.origin,
            factors=assessment.factor_names,
            method=method,
            path=path,
        )
    elif decision.outcome is DecisionOutcome.ALLOW_FLAGGED:
        # Heightened logging: full factor detail for flagged requests.
        logger.warning(
            "request_flagged",
            score=decision.score,
            threshold=decision.threshold,
            origin=assessment.origin,
            factors=[
                {"name": f.name, "weight": f.weight, "rationale": f.rationale}
                for f in assessment.factors
            ],
            method=method,
            path=path,
        )
    else:
        logger.info("request_admitted", score=decision.score, method=method, path=path)


# ─── Gateway handler ──────────────────────────────────────────────────────────


@router.api_route(
    "/{full_path:path}",
    methods=["GET", "POST", "PUT", "DELETE", "PATCH", "OPTIONS", "HEAD"],
    include_in_schema=False,
)
async def gateway_handler(request: Request, full_path: str) -> Response:
    """Catch-all gateway route.

    Readiness gate is enforced as a router-level dependency (``require_ready``)
    registered in create_app(). ``/check`` and ``/metrics`` are matched first.
    """
    request_id = generate_ulid()
    set_request_id(request_id)
    try:
        return await _handle(request, request_id)
    finally:
        clear_request_id()


async def _handle(request: Request, request_id: str) -> Response:
    config: Config = request.app.state.config
    recorder = request.app.state.recorder
    method = request.method

    route = classify_route(method, request.url.path, config.backend.public_prefix)
    if route.kind is RouteKind.NOT_FOUND:
        return build_not_found_response()

    backend_path: str = route.backend_path or "/"
    recorder.request_received(method, backend_path)

    # ── Public credential routes ──────────────────────────────────────────
    if route.kind is RouteKind.PUBLIC:
        try:
            await _enforce_public_rate_limit(request=request)
        except RateLimitExceeded:
            recorder.request_rejected("rate_limited")
            logger.warning("public_route_rate_limited", path=backend_path)
            raise

        public_body, rejection = await _read_and_validate(request, method, backend_path, request_id)
        if rejection is not None:
            return rejection
        return await dispatch_to_backend(request, backend_path, request_id, body=public_body)

    # ── Protected routes ──────────────────────────────────────────────────
    auth = authenticate_request(request, request.app.state.authenticator)

    body: Optional[bytes] = None
    if auth.ok:
        body, rejection = await _read_and_validate(request, method, backend_path, request_id)
        if rejection is not None:
            return rejection

    ctx = build_request_context(
        origin=client_address(request, config.proxy.trust_forwarded_for),
        descriptor=request.headers.get("user-agent"),
        method=method,
        path=backend_path,
        timestamp=datetime.now(timezone.utc),
    )
    assessment = request.app.state.risk_engine.score(ctx)
    recorder.score_recorded(assessment.origin, assessment.score)

    decision: Decision = request.app.state.admission.decide(assessment, auth)
    recorder.decision_made(decision)

    if decision.reason is DecisionReason.AUTH_FAILED and decision.auth_failure is not None:
        recorder.auth_failed(decision.auth_failure)
        return build_auth_failure_response(decision.auth_failure, assessment.score, request_id)

    _log_decision(decision, assessment, method, backend_path)

    if decision.outcome is DecisionOutcome.DENY:
        return build_denied_response(assessment.score, request_id)

    return await dispatch_to_backend(
        request, backend_path, request_id, body=body, score=assessment.score
    )


async def _read_and_validate(
    request: Request, method: str, backend_path: str, request_id: str
) -> tuple[Optional[bytes], Optional[Response]]:
    """Buffer and validate the body when the route has a schema.

    Returns ``(body, None)`` to proceed or ``(None, response)`` to reject.
    ``body`` is None for routes without a schema (the body is streamed later).
    """
    schema = schema_for(method, backend_path)
    if schema is None:
        return None, None

    recorder = request.app.state.recorder
    try:
        body = await read_bounded_body(request)
    except BodyTooLarge as exc:
        recorder.request_rejected("body_too_large")
        logger.warning("validated_body_too_large", limit=exc.limit, path=backend_path)
        return None, JSONResponse(
            status_code=413,
            content=_PAYLOAD_TOO_LARGE,
            headers={REQUEST_ID_HEADER: request_id},
        )

    errors = validate_body(schema, body)
    if errors:
        recorder.request_rejected("validation")
        logger.info(
            "request_body_invalid",
            path=backend_path,
            fields=[e["field"] for e in errors],
        )
        return None, build_validation_error_response(errors, request_id)
    return body, None


# ─── Dispatcher ───────────────────────────────────────────────────────────────


def _has_body(request: Request) -> bool:
    return (
        request.headers.get("content-length") not in (None, "0")
        or "transfer-encoding" in request.headers
    )


async def _wait_for_disconnect(request: Request) -> None:
    while True:
        message = await request.receive()
        if message["type"] == "http.disconnect":
            return


async def _send_unless_disconnected(
    http_client: httpx.AsyncClient, backend_request: httpx.Request, request: Request
) -> Optional[httpx.Response]:
    """Send ``backend_request``; cancel it and return None if the client disconnects.

    Only used once the inbound body has been fully consumed, so the receive
    channel carries nothing but the eventual disconnect.
    """
    send_task = asyncio.ensure_future(http_client.send(backend_request, stream=True))
    disconnect_task = asyncio.ensure_future(_wait_for_disconnect(request))
    try:
        await asyncio.wait({send_task, disconnect_task}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        disconnect_task.cancel()

    if send_task.done():
        return send_task.result()

    send_task.cancel()
    try:
        response = await send_task
    except asyncio.CancelledError:
        return None
    # The send finished in the same tick as the disconnect.
    await response.aclose()
    return None


async def dispatch_to_backend(
    request: Request,
    backend_path: str,
    request_id: str,
    body: Optional[bytes] = None,
    score: Optional[int] = None,
) -> Response:
    """Forward ``request`` to the backend and relay the response.

    Args:
        request:      Inbound request.
        backend_path: Path with the public prefix already removed.
        request_id:   ULID injected as ``X-Request-ID``.
        body:         Buffered body, or None to stream ``request.stream()``.
        score:        Risk score to expose as ``x-risk-score`` (gated routes).
    """
    config: Config = request.app.state.config
    http_client: httpx.AsyncClient = request.app.state.http_client
    recorder = request.app.state.recorder

    backend_url = f"{config.backend.url}{backend_path}"
    if request.url.query:
        backend_url = f"{backend_url}?{request.url.query}"

    headers = build_backend_headers(
        request.headers.items(),
        request_id,
        client_address=request.client.host if request.client else None,
    )

    content: Union[bytes, AsyncIterator[bytes], None]
    streaming_body = False
    if body is not None:
        content = body
    elif _has_body(request):
        content = request.stream()
        streaming_body = True
        declared = request.headers.get("content-length")
        if declared is not None:
            headers["Content-Length"] = declared
    else:
        content = None

    started = time.perf_counter()
    try:
        backend_request = http_client.build_request(
            method=request.method,
            url=backend_url,
            headers=headers,
            content=content,
        )
        if streaming_body:
            backend_response: Optional[httpx.Response] = await http_client.send(
                backend_request, stream=True
            )
        else:
            backend_response = await _send_unless_disconnected(http_client, backend_request, request)
    except httpx.TimeoutException as exc:
        return _upstream_failure(recorder, "timeout", exc, backend_url, request_id, score)
    except (httpx.NetworkError, httpx.RemoteProtocolError) as exc:
        reason = "connect" if isinstance(exc, httpx.ConnectError) else "protocol"
        return _upstream_failure(recorder, reason, exc, backend_url, request_id, score)
    except (httpx.InvalidURL, httpx.UnsupportedProtocol) as exc:
        recorder.upstream_failed("config")
        logger.error(
            "invalid_backend_url",
            backend_url=config.backend.url,
            error=str(exc),
        )
        return build_config_error_response(request_id, score)
    except ClientDisconnect:
        logger.info("client_disconnected", stage="request_body", path=backend_path)
        return Response(status_code=CLIENT_CLOSED_REQUEST)

    if backend_response is None:
        logger.info("client_disconnected", stage="awaiting_backend", path=backend_path)
        return Response(status_code=CLIENT_CLOSED_REQUEST)

    logger.info(
        "request_proxied",
        method=request.method,
        path=backend_path,
        status_code=backend_response.status_code,
        duration_ms=round((time.perf_counter() - started) * 1000, 2),
    )

    client_headers = build_client_response_headers(backend_response.headers)
    response: Response
    if backend_response.is_stream_consumed:
        # Body already read by the transport; .content is decoded.
        content = backend_response.content
        await backend_response.aclose()
        response = Response(content=content, status_code=backend_response.status_code)
        client_headers = [
            (name, value) for name, value in client_headers if name.lower() != "content-encoding"
        ]
    else:
        response = StreamingResponse(
            content=backend_response.aiter_raw(),
            status_code=backend_response.status_code,
            background=BackgroundTask(backend_response.aclose),
        )
    response.raw_headers.extend(
        (name.lower().encode("latin-1"), value.encode("latin-1"))
        for name, value in client_headers
    )
    response.headers[REQUEST_ID_HEADER] = request_id
    if score is not None:
        response.headers[RISK_SCORE_HEADER] = str(score)
    return response


def _upstream_failure(
    recorder,
    reason: str,
    exc: Exception,
    backend_url: str,
    request_id: str,
    score: Optional[int],
) -> Response:
    recorder.upstream_failed(reason)
    logger.warning(
        "upstream_unavailable",
        reason=reason,
        backend_url=backend_url,
        error_type=type(exc).__name__,
        error=str(exc),
    )
    return build_upstream_unavailable_response(request_id, score)
