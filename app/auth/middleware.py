"""Request-level authentication for protected gateway routes.

Provides ``authenticate_request()``: reads the ``Authorization`` header, hands
the bearer token to the shared ``Authenticator`` and returns the ``AuthResult``.
It does not raise; the admission controller turns a failed result into a DENY
before the risk score is considered.

Header format:
  Authorization: Bearer <jwt>       (scheme matched case-insensitively)

Anything else in the Authorization header counts as "no token".

Failure → status mapping (``auth_failure_status``):
  NO_TOKEN                     → 401 {"error": "No token provided"}
  INVALID_SIGNATURE / EXPIRED  → 403 {"error": "Invalid token"}
"""

from __future__ import annotations

import re
from typing import Optional

from fastapi import Request

from app.auth.authenticator import AuthFailure, AuthResult, Authenticator
from app.utils.logger import get_logger

logger = get_logger(__name__)

_BEARER_RE = re.compile(r"^Bearer\s+(\S+)", re.IGNORECASE)


def extract_bearer_token(authorization: Optional[str]) -> Optional[str]:
    """Return the token from an ``Authorization: Bearer <token>`` value, else None."""
    if not authorization:
        return None
    m = _BEARER_RE.match(authorization.strip())
    return m.group(1) if m else None


def auth_failure_status(failure: AuthFailure) -> int:
    return 401 if failure is AuthFailure.NO_TOKEN else 403


def authenticate_request(request: Request, authenticator: Authenticator) -> AuthResult:
    """Authenticate the bearer credential carried by ``request``."""
    token = extract_bearer_token(request.headers.get("Authorization"))
    result = authenticator.authenticate(token)

    if not result.ok:
        # Token value intentionally absent from the log entry.
        logger.warning(
            "auth_failed",
            reason=result.failure.value if result.failure else None,
            path=request.url.path,
            method=request.method,
        )
    return result
