"""
Division membership lookups.
"""

from typing import Protocol

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from deuce.database.models import DivisionMember


class MembershipOracle(Protocol):
    """Answers whether a user may play in a division."""

    async def is_member(self, session: AsyncSession, user_id: int, division_id: int) -> bool:
        ...


class DivisionMembershipOracle:
    """Membership backed by the ``division_members`` table."""

    async def is_member(self, session: AsyncSession, user_id: int, division_id: int) -> bool:
        result = await session.execute(
            select(DivisionMember.id).where(
                DivisionMember.division_id == division_id,
                DivisionMember.user_id == user_id,
                DivisionMember.is_active.is_(True),
            )
        )
        return result.scalar_one_or_none() is not None
