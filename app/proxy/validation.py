"""Structural validation of request bodies on credential and mutation routes.

Runs before risk scoring. A malformed body never reaches the backend; the
client gets HTTP 400 with one ``{"field", "message"}`` entry per problem.

  POST /login          email (address format), password (>= 6 chars)
  POST /register       email, password, name (>= 2 chars after trimming)
  POST /secure/tasks   title (non-empty string)

Bodies on these routes are small JSON documents, so they are buffered (up to
MAX_VALIDATED_BODY_BYTES) and the same bytes are forwarded unchanged.
"""

from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, StrictStr, ValidationError, field_validator
from starlette.requests import Request

from app.constants import MAX_VALIDATED_BODY_BYTES

_EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"


class BodyTooLarge(Exception):
    """Raised when a buffered body exceeds its cap while being read."""

    def __init__(self, limit: int) -> None:
        super().__init__(f"request body exceeds {limit} bytes")
        self.limit = limit


class LoginBody(BaseModel):
    model_config = ConfigDict(extra="allow")

    email: StrictStr = Field(pattern=_EMAIL_PATTERN)
    password: StrictStr = Field(min_length=6)


class RegisterBody(LoginBody):
    name: StrictStr

    @field_validator("name")
    @classmethod
    def _name_length(cls, value: str) -> str:
        if len(value.strip()) < 2:
            raise ValueError("name must be at least 2 characters")
        return value


class TaskCreateBody(BaseModel):
    model_config = ConfigDict(extra="allow")

    title: StrictStr = Field(min_length=1)


_BODY_SCHEMAS: dict[tuple[str, str], type[BaseModel]] = {
    ("POST", "/login"): LoginBody,
    ("POST", "/register"): RegisterBody,
    ("POST", "/secure/tasks"): TaskCreateBody,
}


def schema_for(method: str, backend_path: str) -> Optional[type[BaseModel]]:
    """Return the body model for a route, or None when the body is not validated."""
    return _BODY_SCHEMAS.get((method.upper(), backend_path.rstrip("/") or "/"))


def validate_body(schema: type[BaseModel], body: bytes) -> list[dict[str, Any]]:
    """Validate ``body`` as JSON against ``schema``; return field errors (empty when valid)."""
    try:
        schema.model_validate_json(body or b"{}")
    except ValidationError as exc:
        return [
            {
                "field": ".".join(str(part) for part in err["loc"]) or "body",
                "message": err["msg"],
            }
            for err in exc.errors()
        ]
    return []


async def read_bounded_body(request: Request, limit: int = MAX_VALIDATED_BODY_BYTES) -> bytes:
    """Read the whole request body, raising ``BodyTooLarge`` past ``limit`` bytes."""
    declared = request.headers.get("content-length")
    if declared is not None and declared.isdigit() and int(declared) > limit:
        raise BodyTooLarge(limit)

    chunks: list[bytes] = []
    total = 0
    async for chunk in request.stream():
        total += len(chunk)
        if total > limit:
            raise BodyTooLarge(limit)
        chunks.append(chunk)

    return b"".join(chunks)
