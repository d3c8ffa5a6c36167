"""
Noterverse Backend — Note Service (Business Logic Orchestrator)
=================================================================

What:  Create/read/update/delete for encrypted notes.
Why:   Encapsulates the encrypt-on-write / decrypt-on-read rules in one place,
       independent of HTTP concerns.
How:   Every operation takes the AuthContext produced by the authorization
       gate and uses ONLY its user id and key. No method accepts a user id
       from anywhere else.

Write path (POST /api/notes, PATCH /api/notes/{id}):
    ┌──────────┐    ┌──────────────┐    ┌──────────────┐    ┌──────────┐
    │ Plaintext│───▶│ NoteCipher   │───▶│  Envelope    │───▶│  Store   │
    │ (Route)  │    │ (user key,   │    │ nonce|ct|tag │    │  (DB)    │
    └──────────┘    │  fresh nonce)│    └──────────────┘    └──────────┘
                    └──────────────┘

Read path: rows are always selected WHERE user_id = :auth_user, then
decrypted. A row owned by someone else is simply not found.

Associated Data:
    Each envelope is bound to b"noterverse/note/v1" || user_id || note_id.
    Copying ciphertext between rows or users makes decryption fail.
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import List, Optional
from uuid import UUID

from sqlalchemy import asc, desc, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.exceptions import (
    DatabaseError,
    DecryptionError,
    NotFoundError,
    NoterverseError,
    ValidationError,
)
from app.models.note import Note
from app.schemas.note import NoteListResponse, NoteResponse
from app.services.auth_gate import AuthContext
from app.services.note_cipher import Envelope, note_cipher

logger = logging.getLogger(__name__)

NOTE_AAD_PREFIX = b"noterverse/note/v1"


def note_associated_data(user_id: UUID, note_id: UUID) -> bytes:
    return NOTE_AAD_PREFIX + user_id.bytes + note_id.bytes


class NoteService:
    """
    Business logic layer for note operations.

    Error Handling Strategy:
        Application exceptions (NotFoundError, ValidationError,
        DecryptionError) propagate as-is. Anything else from the database
        layer is wrapped in DatabaseError so internals stay in the logs.
    """

    # ── Crypto helpers ────────────────────────────────────────────────────

    def _encode_content(self, content: str) -> bytes:
        encoded = content.encode("utf-8")
        if len(encoded) > settings.max_note_bytes:
            raise ValidationError(
                message=f"Note is too large. Maximum size is {settings.max_note_bytes} bytes.",
                field="content",
                context={"size": len(encoded)},
            )
        return encoded

    def _seal(self, auth: AuthContext, note_id: UUID, plaintext: bytes) -> Envelope:
        return note_cipher.encrypt(
            auth.key,
            plaintext,
            associated_data=note_associated_data(auth.user_id, note_id),
        )

    def _open(self, auth: AuthContext, note: Note) -> str:
        """
        Decrypt a note row owned by auth.user.

        Raises:
            DecryptionError: generic; the specific cause is only logged
        """
        try:
            if note.key_version != auth.key.version:
                raise DecryptionError()
            envelope = Envelope(nonce=note.nonce, ciphertext=note.ciphertext, tag=note.tag)
            plaintext = note_cipher.decrypt(
                auth.key,
                envelope,
                associated_data=note_associated_data(note.user_id, note.id),
            )
            return plaintext.decode("utf-8")
        except (DecryptionError, ValueError):
            logger.error(
                "Note decryption failed: user_id=%s note_id=%s at=%s",
                auth.user_id,
                note.id,
                datetime.now(timezone.utc).isoformat(),
            )
            raise DecryptionError(
                context={"user_id": str(auth.user_id), "note_id": str(note.id)}
            ) from None

    def _to_response(self, note: Note, content: str) -> NoteResponse:
        return NoteResponse(
            id=note.id,
            content=content,
            tags=list(note.tags or []),
            created_at=note.created_at,
            updated_at=note.updated_at,
        )

    async def _get_owned(self, db: AsyncSession, auth: AuthContext, note_id: UUID) -> Note:
        result = await db.execute(
            select(Note).where(Note.id == note_id, Note.user_id == auth.user_id)
        )
        note = result.scalar_one_or_none()
        if note is None:
            raise NotFoundError(resource="note", resource_id=str(note_id))
        return note

    # ── Operations ────────────────────────────────────────────────────────

    async def create_note(
        self,
        db: AsyncSession,
        auth: AuthContext,
        content: str,
        tags: Optional[List[str]] = None,
    ) -> NoteResponse:
        """
        Encrypt and store a new note.

        Workflow:
            1. Enforce size limit on the UTF-8 bytes
            2. Assign the note id up front (it is part of the associated data)
            3. Encrypt with the caller's key under a fresh nonce
            4. Insert; only the envelope and tags reach the database

        Raises:
            ValidationError: content over max_note_bytes
            DatabaseError: insert failed
        """
        plaintext = self._encode_content(content)
        try:
            note_id = uuid.uuid4()
            envelope = self._seal(auth, note_id, plaintext)
            now = datetime.now(timezone.utc)
            note = Note(
                id=note_id,
                user_id=auth.user_id,
                nonce=envelope.nonce,
                ciphertext=envelope.ciphertext,
                tag=envelope.tag,
                key_version=auth.key.version,
                tags=list(tags or []),
                created_at=now,
                updated_at=now,
            )
            db.add(note)
            await db.flush()
            logger.info("Note %s created for user %s (%d bytes)", note.id, auth.user_id, len(plaintext))
            return self._to_response(note, content)

        except NoterverseError:
            raise
        except Exception as e:
            logger.error("Database error creating note: %s", str(e), exc_info=True)
            raise DatabaseError(
                message="Could not save the note. Please try again.",
                context={"error_type": type(e).__name__},
            )

    async def get_note(self, db: AsyncSession, auth: AuthContext, note_id: UUID) -> NoteResponse:
        """
        Fetch and decrypt one of the caller's notes.

        Raises:
            NotFoundError: no such note for this user (→ 404)
            DecryptionError: envelope failed authentication (→ 500, generic)
            DatabaseError: query failed (→ 500)
        """
        try:
            note = await self._get_owned(db, auth, note_id)
        except NoterverseError:
            raise
        except Exception as e:
            logger.error("Database error fetching note %s: %s", note_id, str(e))
            raise DatabaseError(
                message="Could not retrieve the note. Please try again.",
                context={"note_id": str(note_id)},
            )
        return self._to_response(note, self._open(auth, note))

    async def list_notes(
        self,
        db: AsyncSession,
        auth: AuthContext,
        limit: int = 20,
        cursor: Optional[str] = None,
        tag: Optional[str] = None,
        sort: str = "created_at_desc",
    ) -> NoteListResponse:
        """
        List the caller's notes with cursor-based pagination.

        How:
            - Default sort: created_at DESC (newest first)
            - Cursor: ISO datetime of last item; WHERE created_at < :cursor
            - Optional tag filter: tags @> ARRAY[:tag]
            - Fetch limit + 1 rows to compute has_more without a second scan

        Query plan (default sort):
            SELECT * FROM notes WHERE user_id = :uid AND created_at < :cursor
            ORDER BY created_at DESC LIMIT :limit + 1
            → idx_notes_user_created_at
        """
        try:
            query = select(Note).where(Note.user_id == auth.user_id)
            count_query = select(func.count(Note.id)).where(Note.user_id == auth.user_id)

            if tag:
                query = query.where(Note.tags.contains([tag]))
                count_query = count_query.where(Note.tags.contains([tag]))

            if cursor:
                try:
                    cursor_dt = datetime.fromisoformat(cursor)
                except ValueError:
                    cursor_dt = None  # Invalid cursor: start from the beginning
                if cursor_dt and cursor_dt.tzinfo is None:
                    # created_at is timestamptz; cursors we issue are UTC
                    cursor_dt = cursor_dt.replace(tzinfo=timezone.utc)

                if cursor_dt:
                    if sort == "created_at_desc":
                        query = query.where(Note.created_at < cursor_dt)
                    else:
                        query = query.where(Note.created_at > cursor_dt)

            if sort == "created_at_asc":
                query = query.order_by(asc(Note.created_at))
            else:
                query = query.order_by(desc(Note.created_at))

            result = await db.execute(query.limit(limit + 1))
            notes = list(result.scalars().all())

            count_result = await db.execute(count_query)
            total_count = count_result.scalar() or 0

        except Exception as e:
            logger.error("Database error listing notes: %s", str(e), exc_info=True)
            raise DatabaseError(
                message="Could not retrieve notes. Please try again.",
                context={"error_type": type(e).__name__},
            )

        has_more = len(notes) > limit
        if has_more:
            notes = notes[:limit]

        next_cursor = None
        if has_more and notes:
            next_cursor = notes[-1].created_at.isoformat()

        return NoteListResponse(
            notes=[self._to_response(note, self._open(auth, note)) for note in notes],
            total_count=total_count,
            next_cursor=next_cursor,
            has_more=has_more,
        )

    async def update_note(
        self,
        db: AsyncSession,
        auth: AuthContext,
        note_id: UUID,
        content: Optional[str] = None,
        tags: Optional[List[str]] = None,
    ) -> NoteResponse:
        """
        Replace content and/or tags.

        New content is encrypted as a whole new envelope with a new nonce;
        the old ciphertext is overwritten, never patched.

        Raises:
            ValidationError: nothing to change, or content too large
            NotFoundError: no such note for this user
        """
        if content is None and tags is None:
            raise ValidationError(message="Provide content or tags to update")

        plaintext = self._encode_content(content) if content is not None else None
        try:
            note = await self._get_owned(db, auth, note_id)
        except NoterverseError:
            raise
        except Exception as e:
            logger.error("Database error fetching note %s: %s", note_id, str(e))
            raise DatabaseError(
                message="Could not update the note. Please try again.",
                context={"note_id": str(note_id)},
            )

        if plaintext is not None:
            envelope = self._seal(auth, note.id, plaintext)
            note.nonce = envelope.nonce
            note.ciphertext = envelope.ciphertext
            note.tag = envelope.tag
            note.key_version = auth.key.version
            current = content
        else:
            current = self._open(auth, note)

        if tags is not None:
            note.tags = list(tags)
        note.updated_at = datetime.now(timezone.utc)

        try:
            await db.flush()
        except Exception as e:
            logger.error("Database error updating note %s: %s", note_id, str(e), exc_info=True)
            raise DatabaseError(
                message="Could not update the note. Please try again.",
                context={"note_id": str(note_id)},
            )

        logger.info("Note %s updated (content=%s, tags=%s)", note.id, content is not None, tags is not None)
        return self._to_response(note, current)

    async def delete_note(self, db: AsyncSession, auth: AuthContext, note_id: UUID) -> None:
        """
        Permanently remove one of the caller's notes.

        Raises:
            NotFoundError: no such note for this user
        """
        try:
            note = await self._get_owned(db, auth, note_id)
            await db.delete(note)
            await db.flush()
        except NoterverseError:
            raise
        except Exception as e:
            logger.error("Database error deleting note %s: %s", note_id, str(e), exc_info=True)
            raise DatabaseError(
                message="Could not delete the note. Please try again.",
                context={"note_id": str(note_id)},
            )
        logger.info("Note %s deleted for user %s", note_id, auth.user_id)


# ── Singleton Instance ────────────────────────────────────────────────────
note_service = NoteService()
