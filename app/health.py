"""Liveness endpoint for RiskGate.

GET /check always answers 200 once the process is serving; it does not look at
the readiness gate, the backend or the geo database. It is never authenticated,
scored or counted.
"""

from __future__ import annotations

from fastapi import APIRouter

router = APIRouter(tags=["health"])

CHECK_MESSAGE = "Gateway accepted your request."


@router.get("/check")
async def check() -> dict[str, str]:
    return {"message": CHECK_MESSAGE}
