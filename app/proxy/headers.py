"""HTTP header processing for the RiskGate dispatcher.

Implements the header rules for backend-bound requests and client-facing
responses:

  - build_backend_headers(): strips hop-by-hop headers, injects X-Request-ID,
    appends the client address to X-Forwarded-For, forwards everything else
    (Authorization included) unchanged.

  - build_client_response_headers(): strips hop-by-hop headers from the
    backend response and forwards the rest unchanged.

RFC 7230 §6.1: hop-by-hop headers MUST NOT be forwarded by intermediaries.
"""

from __future__ import annotations

from typing import Iterable, Optional

import httpx

from app.constants import REQUEST_ID_HEADER

# ─── Constants ────────────────────────────────────────────────────────────────

# Hop-by-hop headers MUST be stripped before forwarding (RFC 7230 §6.1).
# host is derived from the backend URL. content-length is set by httpx from the
# body, or re-added by the dispatcher for streamed bodies of known size.
HOP_BY_HOP_HEADERS: frozenset[str] = frozenset(
    {
        "connection",
        "keep-alive",
        "proxy-authenticate",
        "proxy-authorization",
        "te",
        "trailers",
        "transfer-encoding",
        "upgrade",
        "host",
        "content-length",
    }
)

_FORWARDED_FOR = "x-forwarded-for"


def connection_listed_headers(headers: Iterable[tuple[str, str]]) -> frozenset[str]:
    """Lower-cased header names nominated as hop-by-hop by ``Connection`` (RFC 7230 §6.1)."""
    return frozenset(
        token.strip().lower()
        for name, value in headers
        if name.lower() == "connection"
        for token in value.split(",")
        if token.strip()
    )


# ─── Public API ───────────────────────────────────────────────────────────────


def build_backend_headers(
    request_headers: Iterable[tuple[str, str]],
    request_id: str,
    client_address: Optional[str] = None,
) -> dict[str, str]:
    """Build the header dict to send to the backend.

    Rules applied (in order):
      1. Strip hop-by-hop headers, including any named in ``Connection``.
      2. Drop any client-supplied ``X-Request-ID``; the gateway's ID replaces it.
      3. Append ``client_address`` to ``X-Forwarded-For`` (creating it if absent).
      4. Inject ``X-Request-ID: <request_id>``.

    ``Authorization`` passes through: the backend re-verifies the bearer token
    for user-scoped routes.

    Args:
        request_headers: ``request.headers.items()`` from the inbound request.
        request_id:      ULID generated at handler entry.
        client_address:  Socket peer address, or None if unknown.
    """
    pairs = list(request_headers)
    dropped = HOP_BY_HOP_HEADERS | connection_listed_headers(pairs)
    headers: dict[str, str] = {}
    forwarded_for: list[str] = []

    for name, value in pairs:
        lower_name = name.lower()
        if lower_name in dropped:
            continue
        if lower_name == REQUEST_ID_HEADER.lower():
            continue
        if lower_name == _FORWARDED_FOR:
            forwarded_for.append(value)
            continue
        headers[name] = value

    if client_address:
        forwarded_for.append(client_address)
    if forwarded_for:
        headers["X-Forwarded-For"] = ", ".join(forwarded_for)

    headers[REQUEST_ID_HEADER] = request_id
    return headers


def build_client_response_headers(backend_headers: httpx.Headers) -> list[tuple[str, str]]:
    """Backend response headers minus hop-by-hop ones (fixed set plus ``Connection`` tokens).

    Returned as a list of pairs so repeated headers (``set-cookie``) survive.
    ``content-length`` is dropped with the hop-by-hop set; bodies are relayed
    as a stream.
    """
    pairs = backend_headers.multi_items()
    dropped = HOP_BY_HOP_HEADERS | connection_listed_headers(pairs)
    return [(name, value) for name, value in pairs if name.lower() not in dropped]
