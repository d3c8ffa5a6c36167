"""
Noterverse Backend — User Resolver
====================================

What:  Maps a verified external id to an internal user, creating it on first sight.
Why:   Notes belong to internal ids. Two requests racing on a brand-new
       account must end up with ONE user row, not two and not an error.
How:   Look up; if absent, insert. The external_id UNIQUE constraint picks
       the winner of any race; the loser's store raises ResolutionConflict
       and the resolver re-reads the winner's row.

    Request A ──lookup(miss)──insert(ok)──────────────▶ user X
    Request B ──lookup(miss)──insert(UNIQUE violation)──lookup──▶ user X

No application-level lock: the database constraint is the only arbiter,
which also holds across multiple worker processes.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.exceptions import DatabaseError, ResolutionConflict
from app.models.user import User
from app.services.identity_verifier import VerifiedIdentity

logger = logging.getLogger(__name__)

MAX_RESOLVE_ATTEMPTS = 3

# Column widths of users.email / users.name
MAX_EMAIL_LENGTH = 320
MAX_NAME_LENGTH = 255


def _advisory(value, limit: int) -> Optional[str]:
    """Display-only claim, clipped to its column. Non-strings are dropped."""
    if not isinstance(value, str):
        return None
    return value[:limit]


@dataclass(frozen=True)
class ResolvedUser:
    id: UUID
    external_id: str
    email: Optional[str] = None
    name: Optional[str] = None


class UserStore(ABC):
    """
    Storage capability the resolver depends on.

    Contract for create(): insert a new user, or raise ResolutionConflict if
    the external id already exists. Must not leave the caller's transaction
    unusable after a conflict.
    """

    @abstractmethod
    async def get_by_external_id(self, external_id: str) -> Optional[ResolvedUser]:
        ...

    @abstractmethod
    async def create(
        self, external_id: str, email: Optional[str], name: Optional[str]
    ) -> ResolvedUser:
        ...

    async def update_profile(
        self, user_id: UUID, email: Optional[str], name: Optional[str]
    ) -> None:
        """Refresh advisory display fields. Optional for stores."""
        return None


def _to_resolved(user: User) -> ResolvedUser:
    return ResolvedUser(
        id=user.id,
        external_id=user.external_id,
        email=user.email,
        name=user.name,
    )


class SqlAlchemyUserStore(UserStore):
    """UserStore over the request's AsyncSession."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_by_external_id(self, external_id: str) -> Optional[ResolvedUser]:
        result = await self.db.execute(
            select(User).where(User.external_id == external_id)
        )
        user = result.scalar_one_or_none()
        return _to_resolved(user) if user is not None else None

    async def create(
        self, external_id: str, email: Optional[str], name: Optional[str]
    ) -> ResolvedUser:
        user = User(external_id=external_id, email=email, name=name)
        try:
            # SAVEPOINT: a unique violation rolls back only this insert,
            # leaving the request transaction usable for the re-fetch
            async with self.db.begin_nested():
                self.db.add(user)
                await self.db.flush()
        except IntegrityError:
            raise ResolutionConflict(external_id=external_id) from None
        return _to_resolved(user)

    async def update_profile(
        self, user_id: UUID, email: Optional[str], name: Optional[str]
    ) -> None:
        user = await self.db.get(User, user_id)
        if user is None:
            return
        user.email = email
        user.name = name
        user.updated_at = datetime.now(timezone.utc)
        await self.db.flush()


class UserResolver:
    """
    create-or-fetch over a UserStore.

    ResolutionConflict never escapes this class. If the row that caused the
    conflict cannot be read back after MAX_RESOLVE_ATTEMPTS, something is
    wrong beyond a race and DatabaseError is raised.
    """

    def __init__(self, store: UserStore):
        self.store = store

    async def resolve(self, identity: VerifiedIdentity) -> ResolvedUser:
        external_id = identity.external_id

        for attempt in range(1, MAX_RESOLVE_ATTEMPTS + 1):
            existing = await self.store.get_by_external_id(external_id)
            if existing is not None:
                return await self._refresh_profile(existing, identity)

            try:
                created = await self.store.create(
                    external_id,
                    _advisory(identity.email, MAX_EMAIL_LENGTH),
                    _advisory(identity.name, MAX_NAME_LENGTH),
                )
            except ResolutionConflict:
                logger.info(
                    "Concurrent first sign-in detected (attempt %d); re-fetching user",
                    attempt,
                )
                continue

            logger.info("Created user %s on first sign-in", created.id)
            return created

        logger.error("User resolution did not converge after %d attempts", MAX_RESOLVE_ATTEMPTS)
        raise DatabaseError(
            message="Could not complete sign-in. Please try again.",
            context={"attempts": MAX_RESOLVE_ATTEMPTS},
        )

    async def _refresh_profile(
        self, user: ResolvedUser, identity: VerifiedIdentity
    ) -> ResolvedUser:
        # Only fields the token actually carries; a missing claim keeps the stored value
        claimed_email = _advisory(identity.email, MAX_EMAIL_LENGTH)
        claimed_name = _advisory(identity.name, MAX_NAME_LENGTH)
        email = claimed_email if claimed_email is not None else user.email
        name = claimed_name if claimed_name is not None else user.name
        if (email, name) == (user.email, user.name):
            return user
        await self.store.update_profile(user.id, email, name)
        return ResolvedUser(id=user.id, external_id=user.external_id, email=email, name=name)
