"""
Noterverse Backend — Note SQLAlchemy Model
============================================

What:  ORM model representing the `notes` table in PostgreSQL.
Why:   Stores each note as an AES-GCM envelope plus plaintext metadata.
How:   Inherits from the shared DeclarativeBase; Alembic reads this for migrations.
Who:   Used by NoteService for CRUD operations.

Table Design Rationale:
    - nonce / ciphertext / tag: The envelope, stored as three columns so the
      fixed-width fields are delimited by the schema rather than by offsets.
    - key_version: Which key derivation scheme produced the key. Bumped only
      alongside a migration that re-encrypts; see services/key_derivation.py.
    - tags: Plaintext on purpose. Filtering by tag happens in SQL, so the
      database has to be able to read them.
    - user_id: Immutable owner. Bound into the envelope's associated data, so
      moving a row to another user makes it fail authentication.

    Index on (user_id, created_at DESC):
        Every list query is "this user's notes, newest first".
"""

import uuid
from datetime import datetime, timezone
from typing import List

from sqlalchemy import (
    DateTime,
    ForeignKey,
    Index,
    LargeBinary,
    SmallInteger,
    String,
    Uuid,
    text,
)
from sqlalchemy.dialects.postgresql import ARRAY
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base


class Note(Base):
    """
    An encrypted note belonging to exactly one user.

    Lifecycle:
        1. Created with a fresh nonce when the user saves a new note
        2. On edit the whole envelope is replaced (new nonce every time)
        3. Delete removes the row; there is no soft delete
    """

    __tablename__ = "notes"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
        comment="Unique note identifier; also bound into the envelope AAD",
    )

    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        comment="Owning user; never changes after creation",
    )

    # ── Envelope ──────────────────────────────────────────────────────────
    nonce: Mapped[bytes] = mapped_column(
        LargeBinary(12),
        nullable=False,
        comment="96-bit AES-GCM nonce, unique per encryption",
    )

    ciphertext: Mapped[bytes] = mapped_column(
        LargeBinary,
        nullable=False,
        comment="AES-GCM ciphertext of the note content (tag stored separately)",
    )

    tag: Mapped[bytes] = mapped_column(
        LargeBinary(16),
        nullable=False,
        comment="128-bit AES-GCM authentication tag",
    )

    key_version: Mapped[int] = mapped_column(
        SmallInteger,
        nullable=False,
        default=1,
        server_default=text("1"),
        comment="Key derivation scheme version used for this envelope",
    )

    # ── Plaintext metadata ────────────────────────────────────────────────
    tags: Mapped[List[str]] = mapped_column(
        ARRAY(String(64)),
        nullable=False,
        default=list,
        server_default=text("'{}'"),
        comment="Plaintext tags used for filtering",
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        server_default=text("CURRENT_TIMESTAMP"),
    )

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        server_default=text("CURRENT_TIMESTAMP"),
    )

    __table_args__ = (
        Index("idx_notes_user_created_at", "user_id", created_at.desc()),
    )

    def __repr__(self) -> str:
        # No envelope bytes in the repr
        return (
            f"<Note(id={self.id}, user_id={self.user_id}, "
            f"created_at='{self.created_at}')>"
        )
