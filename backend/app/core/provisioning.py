"""User provisioning on first authenticated request.

Supabase owns sign-up; this mirrors the account into ``users`` so webhook
events can be joined to it. Race-safe via INSERT ... ON CONFLICT DO NOTHING.
"""

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.auth import AuthUser
from app.db.base import dialect_insert
from app.db.models.user import User


async def provision_user(session_factory: async_sessionmaker[AsyncSession], user: AuthUser) -> None:
    """Create the ``users`` row for ``user`` if it does not exist yet. Idempotent."""
    async with session_factory() as session:
        stmt = (
            dialect_insert(session, User)
            .values(id=user.user_id, email=user.email, role="user")
            .on_conflict_do_nothing(index_elements=["id"])
        )
        await session.execute(stmt)
        await session.commit()
