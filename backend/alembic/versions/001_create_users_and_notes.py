"""Create users and notes tables

Revision ID: 001
Revises: None
Create Date: 2026-10-18 00:00:00.000000+00:00

What:  Creates `users` (one row per identity-provider subject) and `notes`
       (AES-GCM envelopes plus plaintext tags).
How:   PostgreSQL-specific: UUID keys, TIMESTAMP WITH TIME ZONE, TEXT[] tags.

Rollback: downgrade() drops both tables (destructive: all notes lost).
"""

from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column(
            "id",
            postgresql.UUID(as_uuid=True),
            server_default=sa.text("gen_random_uuid()"),
            nullable=False,
            comment="Internal user identifier",
        ),
        sa.Column(
            "external_id",
            sa.String(255),
            nullable=False,
            comment="Identity provider subject (sub claim); immutable",
        ),
        sa.Column("email", sa.String(320), nullable=True, comment="Advisory email from the identity token"),
        sa.Column("name", sa.String(255), nullable=True, comment="Advisory display name from the identity token"),
        sa.Column(
            "created_at",
            sa.TIMESTAMP(timezone=True),
            server_default=sa.text("CURRENT_TIMESTAMP"),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.TIMESTAMP(timezone=True),
            server_default=sa.text("CURRENT_TIMESTAMP"),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint("id"),
        # Arbiter for concurrent first sign-ins of the same subject
        sa.UniqueConstraint("external_id", name="uq_users_external_id"),
    )

    op.create_table(
        "notes",
        sa.Column(
            "id",
            postgresql.UUID(as_uuid=True),
            server_default=sa.text("gen_random_uuid()"),
            nullable=False,
            comment="Unique note identifier; also bound into the envelope AAD",
        ),
        sa.Column(
            "user_id",
            postgresql.UUID(as_uuid=True),
            nullable=False,
            comment="Owning user; never changes after creation",
        ),
        sa.Column("nonce", sa.LargeBinary(12), nullable=False, comment="96-bit AES-GCM nonce"),
        sa.Column("ciphertext", sa.LargeBinary(), nullable=False, comment="AES-GCM ciphertext"),
        sa.Column("tag", sa.LargeBinary(16), nullable=False, comment="128-bit AES-GCM tag"),
        sa.Column(
            "key_version",
            sa.SmallInteger(),
            server_default=sa.text("1"),
            nullable=False,
            comment="Key derivation scheme version used for this envelope",
        ),
        sa.Column(
            "tags",
            postgresql.ARRAY(sa.String(64)),
            server_default=sa.text("'{}'"),
            nullable=False,
            comment="Plaintext tags used for filtering",
        ),
        sa.Column(
            "created_at",
            sa.TIMESTAMP(timezone=True),
            server_default=sa.text("CURRENT_TIMESTAMP"),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.TIMESTAMP(timezone=True),
            server_default=sa.text("CURRENT_TIMESTAMP"),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        # bytea has no length limit; enforce the fixed envelope widths here
        sa.CheckConstraint("octet_length(nonce) = 12", name="ck_notes_nonce_len"),
        sa.CheckConstraint("octet_length(tag) = 16", name="ck_notes_tag_len"),
    )

    op.create_index(
        "idx_notes_user_created_at",
        "notes",
        ["user_id", sa.text("created_at DESC")],
    )
    # GIN index for tags @> ARRAY[...] filtering
    op.create_index(
        "idx_notes_tags",
        "notes",
        ["tags"],
        postgresql_using="gin",
    )


def downgrade() -> None:
    """WARNING: destructive. All users and notes are permanently lost."""
    op.drop_index("idx_notes_tags", table_name="notes")
    op.drop_index("idx_notes_user_created_at", table_name="notes")
    op.drop_table("notes")
    op.drop_table("users")
