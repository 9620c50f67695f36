"""Bearer credential authentication for RiskGate.

Public API:
  - Authenticator          verifies signature and expiry, extracts identity claims
  - AuthResult             identity or typed failure, one per protected request
  - AuthFailure            NO_TOKEN / INVALID_SIGNATURE / EXPIRED
  - Identity               user id, email, display name, token expiry
  - authenticate_request() reads the Authorization header of a request
  - extract_bearer_token() parses ``Bearer <token>``
"""

from __future__ import annotations

from app.auth.authenticator import AuthFailure, AuthResult, Authenticator, Identity
from app.auth.middleware import auth_failure_status, authenticate_request, extract_bearer_token

__all__ = [
    "AuthFailure",
    "AuthResult",
    "Authenticator",
    "Identity",
    "auth_failure_status",
    "authenticate_request",
    "extract_bearer_token",
]
