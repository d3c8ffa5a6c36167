"""
Noterverse Backend — User SQLAlchemy Model
============================================

What:  ORM model for the `users` table: one row per identity-provider subject.
Why:   Notes reference a stable internal id rather than the provider's
       subject string, and first sign-in needs a place to record the user.
How:   The UNIQUE constraint on external_id is what makes concurrent first
       sign-ins converge on one row (see services/user_resolver.py).

Column Notes:
    - external_id: The `sub` claim. Immutable; also the key derivation context,
      so rewriting it would make the user's notes undecryptable.
    - email / name: Advisory display data from the token. Never key material.
"""

import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import DateTime, String, UniqueConstraint, Uuid, text
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base


class User(Base):
    """
    An authenticated account, created on first successful sign-in.

    Lifecycle:
        1. Created by the User Resolver the first time a verified token
           carries an unseen external id
        2. email/name refreshed when a later token carries new values
        3. Never deleted by the application core
    """

    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
        comment="Internal user identifier",
    )

    external_id: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        comment="Identity provider subject (sub claim); immutable",
    )

    email: Mapped[Optional[str]] = mapped_column(
        String(320),
        nullable=True,
        comment="Advisory email from the identity token",
    )

    name: Mapped[Optional[str]] = mapped_column(
        String(255),
        nullable=True,
        comment="Advisory display name from the identity token",
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
        UniqueConstraint("external_id", name="uq_users_external_id"),
    )

    def __repr__(self) -> str:
        return f"<User(id={self.id})>"
