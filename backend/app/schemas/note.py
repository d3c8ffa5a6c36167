"""
Noterverse Backend — Pydantic Request/Response Schemas
========================================================

What:  Pydantic models defining the API contract between frontend and backend.
Why:   Strict input validation, automatic serialization, and OpenAPI docs.
How:   FastAPI validates request bodies against these and serializes responses.

Security Boundary:
    No schema carries a user id as input. Ownership comes only from the
    authenticated request context; a `user_id` field in a body is ignored
    (extra fields are forbidden on write models, so it is rejected outright).
    Response models carry decrypted content but never envelope bytes.
"""

import uuid
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

MAX_TAGS = 32
MAX_TAG_LENGTH = 64


def normalize_tags(tags: Optional[List[str]]) -> Optional[List[str]]:
    """Trim, drop empties, dedupe preserving first occurrence."""
    if tags is None:
        return None
    seen = []
    for raw in tags:
        tag = raw.strip()
        if not tag:
            continue
        if len(tag) > MAX_TAG_LENGTH:
            raise ValueError(f"Tags must be at most {MAX_TAG_LENGTH} characters")
        if tag not in seen:
            seen.append(tag)
    if len(seen) > MAX_TAGS:
        raise ValueError(f"A note can have at most {MAX_TAGS} tags")
    return seen


# ══════════════════════════════════════════════════════════════════════════
# Request Models
# ══════════════════════════════════════════════════════════════════════════


class NoteCreate(BaseModel):
    """Body of POST /api/notes."""

    content: str = Field(description="Note body (UTF-8 text); stored encrypted")
    tags: List[str] = Field(default_factory=list, description="Plaintext tags for filtering")

    model_config = {"extra": "forbid"}

    @field_validator("tags")
    @classmethod
    def validate_tags(cls, v: List[str]) -> List[str]:
        return normalize_tags(v)


class NoteUpdate(BaseModel):
    """
    Body of PATCH /api/notes/{id}. Omitted fields are left unchanged.
    Changing content re-encrypts it under a new nonce.
    """

    content: Optional[str] = Field(default=None, description="Replacement note body")
    tags: Optional[List[str]] = Field(default=None, description="Replacement tag list")

    model_config = {"extra": "forbid"}

    @field_validator("tags")
    @classmethod
    def validate_tags(cls, v: Optional[List[str]]) -> Optional[List[str]]:
        return normalize_tags(v)


# ══════════════════════════════════════════════════════════════════════════
# Response Models
# ══════════════════════════════════════════════════════════════════════════


class NoteResponse(BaseModel):
    """A decrypted note as returned to its owner."""

    id: uuid.UUID = Field(description="Unique note identifier (UUID)")
    content: str = Field(description="Decrypted note body")
    tags: List[str] = Field(default_factory=list, description="Plaintext tags")
    created_at: datetime = Field(description="When the note was created (UTC ISO 8601)")
    updated_at: datetime = Field(description="When the note was last changed (UTC ISO 8601)")


class NoteListResponse(BaseModel):
    """
    Paginated response wrapper for the notes list endpoint.

    Cursor-based: next_cursor is the created_at of the last item; the client
    sends it back as `cursor` for the next page.
    """

    notes: List[NoteResponse] = Field(description="Decrypted notes for this page")
    total_count: int = Field(description="Total number of the user's notes matching filters")
    next_cursor: Optional[str] = Field(
        default=None,
        description="Cursor for next page (ISO datetime). Null if no more pages.",
    )
    has_more: bool = Field(description="Whether more pages are available")


class UserResponse(BaseModel):
    """The authenticated user's profile (GET /api/me)."""

    id: uuid.UUID
    email: Optional[str] = None
    name: Optional[str] = None


class ErrorResponse(BaseModel):
    """
    Standardized error response format for all API errors.

    Example:
        {
            "error": "invalid_token",
            "message": "The provided credentials are invalid or expired",
            "request_id": "a1b2c3d4"
        }
    """

    error: str = Field(description="Machine-readable error code")
    message: str = Field(description="Human-readable error description")
    details: Optional[dict] = Field(default=None, description="Additional error context")
    request_id: Optional[str] = Field(default=None, description="Request correlation ID")


class HealthResponse(BaseModel):
    """Health check response showing service and dependency status."""

    status: str = Field(description="Overall service status: healthy, degraded, unhealthy")
    version: str = Field(description="Application version")
    database: str = Field(description="Database connectivity: connected, disconnected")
    identity_provider: str = Field(
        description="Signing key status: available, not_loaded, circuit_open, unavailable"
    )
    uptime_seconds: float = Field(description="Seconds since service started")
