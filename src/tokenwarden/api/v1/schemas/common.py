# Common API response schemas.
# Created: 2026-03-02

from __future__ import annotations

from pydantic import BaseModel


class APIResponse(BaseModel):
    """Base response wrapper."""

    model_config = {"from_attributes": True}


class OAuthErrorResponse(APIResponse):
    """RFC 6749 section 5.2 error body."""

    error: str
    error_description: str | None = None


class StatusResponse(APIResponse):
    status: str = "ok"
