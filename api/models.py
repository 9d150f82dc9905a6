"""
API request and response models for authsvc REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Error bodies are a flat {"error": "<message>"} so OAuth clients can read the
failure reason without knowing the status code.
"""

from pydantic import BaseModel, Field


class BearerResponse(BaseModel):
    """Response body for POST {oauth_root}token."""

    access_token: str
    token_type: str = "Bearer"


class ErrorResponse(BaseModel):
    error: str


class UserInfo(BaseModel):
    """Response body for GET {user_root}. Never includes the password."""

    id: int
    username: str
    login: str
    email: str = ""
    name: str = ""


class DebugEcho(BaseModel):
    """Response body for unmatched GETs under the OAuth root."""

    url: str
    query_keys: list[str] = Field(default_factory=list)
    values: dict[str, list[str]] = Field(default_factory=dict)


class HealthResponse(BaseModel):
    status: str = "ok"
    version: str
    storage: str
