"""Route classification for inbound gateway requests.

Classification happens before any authentication or scoring:

  outside the public prefix          → NOT_FOUND (404 {"error": "Route not found"})
  POST <prefix>/login, /register     → PUBLIC    (validated, rate limited, forwarded)
  any other <prefix>/...             → PROTECTED (full pipeline)

``/check`` and ``/metrics`` are served by their own routers and never reach here.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from app.constants import PUBLIC_BACKEND_PATHS


class RouteKind(str, Enum):
    PUBLIC = "public"
    PROTECTED = "protected"
    NOT_FOUND = "not_found"


@dataclass(frozen=True)
class RouteMatch:
    kind: RouteKind
    backend_path: Optional[str] = None


def backend_path_for(request_path: str, public_prefix: str) -> Optional[str]:
    """Strip ``public_prefix`` from ``request_path``; None if it is not under the prefix.

    >>> backend_path_for("/api/secure/tasks", "/api")
    '/secure/tasks'
    >>> backend_path_for("/apix/tasks", "/api") is None
    True
    """
    if request_path == public_prefix:
        return "/"
    if request_path.startswith(public_prefix + "/"):
        return request_path[len(public_prefix):]
    return None


def classify_route(method: str, request_path: str, public_prefix: str) -> RouteMatch:
    backend_path = backend_path_for(request_path, public_prefix)
    if backend_path is None:
        return RouteMatch(RouteKind.NOT_FOUND)
    if method.upper() == "POST" and backend_path.rstrip("/") in PUBLIC_BACKEND_PATHS:
        return RouteMatch(RouteKind.PUBLIC, backend_path)
    return RouteMatch(RouteKind.PROTECTED, backend_path)
