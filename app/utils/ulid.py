"""ULID generation for RiskGate request identifiers.

Every request entering the gateway gets one ULID, used as:
  - the ``X-Request-ID`` header forwarded to the backend
  - the ``request_id`` field bound into every structured log entry

ULIDs are 26 Crockford Base32 characters, sortable by creation time.
Uses the ``python-ulid`` library; do NOT hand-roll ULID generation.
"""

from __future__ import annotations

from ulid import ULID


def generate_ulid() -> str:
    """Generate a new ULID as a 26-character uppercase string.

    Returns:
        str: A 26-character ULID string (e.g., ``"01KJ0JRVHYA7KX32VPN5ZSCTMV"``).
    """
    return str(ULID())
