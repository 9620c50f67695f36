"""Bearer credential verification.

The ``Authenticator`` holds a verification key that is loaded once at startup
and never mutated, so a single instance is shared by every in-flight request
without locking. ``authenticate()`` never raises for bad input: every failure
comes back as an ``AuthResult`` carrying an ``AuthFailure``.

The distinction between ``INVALID_SIGNATURE`` and ``EXPIRED`` is advisory.
Callers treat any failure as "deny, require re-authentication".

SECURITY: the token value is never logged or echoed in a response.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional, Union

import jwt

from app.utils.logger import get_logger

logger = get_logger(__name__)

DEFAULT_ALGORITHM = "HS256"


class AuthFailure(str, Enum):
    NO_TOKEN = "no_token"
    INVALID_SIGNATURE = "invalid_signature"
    EXPIRED = "expired"


@dataclass(frozen=True)
class Identity:
    """Identity claims carried by a valid token. Opaque to the scoring engine."""

    user_id: Union[int, str, None]
    email: Optional[str]
    name: Optional[str]
    expires_at: Optional[datetime]


@dataclass(frozen=True)
class AuthResult:
    identity: Optional[Identity] = None
    failure: Optional[AuthFailure] = None

    @property
    def ok(self) -> bool:
        return self.identity is not None and self.failure is None

    @classmethod
    def success(cls, identity: Identity) -> "AuthResult":
        return cls(identity=identity)

    @classmethod
    def failed(cls, failure: AuthFailure) -> "AuthResult":
        return cls(failure=failure)


class Authenticator:
    """Validate a bearer token's signature and expiry; extract identity claims.

    Args:
        key:       HMAC secret (HS*) or PEM public key (RS*/ES*).
        algorithm: JWT algorithm the key is used with.
        leeway_s:  Clock-skew tolerance for ``exp``/``nbf`` in seconds.
    """

    def __init__(self, key: Union[str, bytes], algorithm: str = DEFAULT_ALGORITHM, leeway_s: float = 0) -> None:
        if not key:
            raise ValueError("Authenticator requires a non-empty verification key")
        self._key = key
        self._algorithms = [algorithm]
        self._leeway = leeway_s

    @property
    def algorithm(self) -> str:
        return self._algorithms[0]

    def authenticate(self, token: Optional[str]) -> AuthResult:
        if not token:
            return AuthResult.failed(AuthFailure.NO_TOKEN)

        try:
            claims = jwt.decode(
                token,
                self._key,
                algorithms=self._algorithms,
                leeway=self._leeway,
                options={"require": ["exp"]},
            )
        except jwt.ExpiredSignatureError:
            return AuthResult.failed(AuthFailure.EXPIRED)
        except jwt.InvalidTokenError as exc:
            logger.debug("token_rejected", error_type=type(exc).__name__)
            return AuthResult.failed(AuthFailure.INVALID_SIGNATURE)

        return AuthResult.success(_identity_from_claims(claims))


def _identity_from_claims(claims: dict[str, Any]) -> Identity:
    exp = claims.get("exp")
    expires_at = (
        datetime.fromtimestamp(exp, tz=timezone.utc)
        if isinstance(exp, (int, float))
        else None
    )
    return Identity(
        user_id=claims.get("id", claims.get("sub")),
        email=claims.get("email"),
        name=claims.get("name"),
        expires_at=expires_at,
    )
