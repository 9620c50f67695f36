"""Client-facing response builders for every terminal path of the gateway.

  build_denied_response():               403, risk score at or above the deny threshold
  build_auth_failure_response():         401 (no token) / 403 (invalid or expired)
  build_validation_error_response():     400, field-level detail
  build_upstream_unavailable_response(): 502, backend unreachable
  build_config_error_response():         500, backend URL misconfigured
  build_not_found_response():            404, unknown route

Every gated response (auth failures and risk denials included) carries the
``x-risk-score`` header so a client can see why it was rejected. Upstream
failure detail is never placed in a body; it is logged by the caller.
"""

from __future__ import annotations

from typing import Any, Optional

from fastapi.responses import JSONResponse

from app.auth.authenticator import AuthFailure
from app.auth.middleware import auth_failure_status
from app.constants import REQUEST_ID_HEADER, RISK_SCORE_HEADER

DENIED_MESSAGE = "Access denied due to high risk score."
NO_TOKEN_MESSAGE = "No token provided"
INVALID_TOKEN_MESSAGE = "Invalid token"
UPSTREAM_UNAVAILABLE_MESSAGE = "API service unavailable"
CONFIG_ERROR_MESSAGE = "Gateway configuration error"
NOT_FOUND_MESSAGE = "Route not found"
VALIDATION_MESSAGE = "Invalid request body"


def _with_headers(
    response: JSONResponse, request_id: Optional[str], score: Optional[int] = None
) -> JSONResponse:
    if score is not None:
        response.headers[RISK_SCORE_HEADER] = str(score)
    if request_id:
        response.headers[REQUEST_ID_HEADER] = request_id
    return response


def build_denied_response(score: int, request_id: Optional[str] = None) -> JSONResponse:
    """HTTP 403 for a DENY decision by risk score."""
    response = JSONResponse(
        status_code=403,
        content={"error": DENIED_MESSAGE, "risk_score": score},
    )
    return _with_headers(response, request_id, score)


def build_auth_failure_response(
    failure: AuthFailure, score: int, request_id: Optional[str] = None
) -> JSONResponse:
    """HTTP 401/403 for a DENY caused by a failed credential.

    The body never distinguishes expired from bad-signature tokens.
    """
    message = NO_TOKEN_MESSAGE if failure is AuthFailure.NO_TOKEN else INVALID_TOKEN_MESSAGE
    response = JSONResponse(status_code=auth_failure_status(failure), content={"error": message})
    return _with_headers(response, request_id, score)


def build_validation_error_response(
    details: list[dict[str, Any]], request_id: Optional[str] = None
) -> JSONResponse:
    """HTTP 400 with one ``{"field", "message"}`` entry per problem."""
    response = JSONResponse(
        status_code=400,
        content={"error": VALIDATION_MESSAGE, "details": details},
    )
    return _with_headers(response, request_id)


def build_upstream_unavailable_response(
    request_id: Optional[str] = None, score: Optional[int] = None
) -> JSONResponse:
    """HTTP 502 for ConnectError / TimeoutException / RemoteProtocolError."""
    response = JSONResponse(status_code=502, content={"error": UPSTREAM_UNAVAILABLE_MESSAGE})
    return _with_headers(response, request_id, score)


def build_config_error_response(
    request_id: Optional[str] = None, score: Optional[int] = None
) -> JSONResponse:
    response = JSONResponse(status_code=500, content={"error": CONFIG_ERROR_MESSAGE})
    return _with_headers(response, request_id, score)


def build_not_found_response() -> JSONResponse:
    return JSONResponse(status_code=404, content={"error": NOT_FOUND_MESSAGE})
