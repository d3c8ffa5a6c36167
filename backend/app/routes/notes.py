"""
Noterverse Backend — Notes Route Handlers
===========================================

What:  CRUD endpoints for the authenticated user's notes.
Why:   The frontend's note list, editor and delete actions.
How:   Each handler depends on require_auth and passes the resulting
       AuthContext to NoteService. Handlers never read a user id from the
       path, query or body.

Caching Strategy:
    Every response here contains decrypted note content, so all of them are
    sent with `Cache-Control: no-store`.
"""

import logging
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db_session
from app.dependencies import require_auth
from app.schemas.note import (
    ErrorResponse,
    NoteCreate,
    NoteListResponse,
    NoteResponse,
    NoteUpdate,
)
from app.services.auth_gate import AuthContext
from app.services.note_service import note_service

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api",
    tags=["Notes"],
    responses={
        401: {"description": "Missing or invalid token", "model": ErrorResponse},
        503: {"description": "Identity provider unavailable", "model": ErrorResponse},
    },
)

NO_STORE = "no-store"


@router.get(
    "/notes",
    response_model=NoteListResponse,
    summary="List the caller's notes",
    description=(
        "Returns a page of the authenticated user's notes, decrypted. Supports "
        "cursor-based pagination, a tag filter and sort direction."
    ),
)
async def list_notes(
    response: Response,
    limit: int = Query(default=20, ge=1, le=100, description="Items per page (max 100)"),
    cursor: Optional[str] = Query(
        default=None,
        description="Pagination cursor (next_cursor from the previous page). Omit for the first page.",
    ),
    tag: Optional[str] = Query(default=None, max_length=64, description="Only notes carrying this tag"),
    sort: str = Query(
        default="created_at_desc",
        pattern="^created_at_(asc|desc)$",
        description="'created_at_desc' (newest first) or 'created_at_asc'",
    ),
    auth: AuthContext = Depends(require_auth),
    db: AsyncSession = Depends(get_db_session),
) -> NoteListResponse:
    result = await note_service.list_notes(
        db=db,
        auth=auth,
        limit=limit,
        cursor=cursor,
        tag=tag,
        sort=sort,
    )
    response.headers["X-Total-Count"] = str(result.total_count)
    response.headers["Cache-Control"] = NO_STORE
    return result


@router.post(
    "/notes",
    status_code=201,
    response_model=NoteResponse,
    responses={400: {"description": "Note too large", "model": ErrorResponse}},
    summary="Create a note",
)
async def create_note(
    body: NoteCreate,
    response: Response,
    auth: AuthContext = Depends(require_auth),
    db: AsyncSession = Depends(get_db_session),
) -> NoteResponse:
    """Content is encrypted under the caller's key before it reaches the database."""
    response.headers["Cache-Control"] = NO_STORE
    return await note_service.create_note(db=db, auth=auth, content=body.content, tags=body.tags)


@router.get(
    "/notes/{note_id}",
    response_model=NoteResponse,
    responses={404: {"description": "Note not found", "model": ErrorResponse}},
    summary="Get a single note by ID",
)
async def get_note(
    note_id: UUID,
    response: Response,
    auth: AuthContext = Depends(require_auth),
    db: AsyncSession = Depends(get_db_session),
) -> NoteResponse:
    """Another user's note id returns 404, same as a nonexistent one."""
    response.headers["Cache-Control"] = NO_STORE
    return await note_service.get_note(db=db, auth=auth, note_id=note_id)


@router.patch(
    "/notes/{note_id}",
    response_model=NoteResponse,
    responses={
        400: {"description": "Nothing to update or note too large", "model": ErrorResponse},
        404: {"description": "Note not found", "model": ErrorResponse},
    },
    summary="Update a note's content and/or tags",
)
async def update_note(
    note_id: UUID,
    body: NoteUpdate,
    response: Response,
    auth: AuthContext = Depends(require_auth),
    db: AsyncSession = Depends(get_db_session),
) -> NoteResponse:
    response.headers["Cache-Control"] = NO_STORE
    return await note_service.update_note(
        db=db,
        auth=auth,
        note_id=note_id,
        content=body.content,
        tags=body.tags,
    )


@router.delete(
    "/notes/{note_id}",
    status_code=204,
    responses={404: {"description": "Note not found", "model": ErrorResponse}},
    summary="Delete a note permanently",
)
async def delete_note(
    note_id: UUID,
    auth: AuthContext = Depends(require_auth),
    db: AsyncSession = Depends(get_db_session),
) -> Response:
    await note_service.delete_note(db=db, auth=auth, note_id=note_id)
    return Response(status_code=204)
