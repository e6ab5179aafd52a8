"""
Environment lookup scoped to organization membership.

CHANGELOG:
- 2026-10-10: Initial creation (STORY-107)
"""

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from runmetrics.db.models import OrgMember, RuntimeEnvironment


async def find_member_environment(
    db: AsyncSession,
    environment_id: str,
    user_id: str,
) -> RuntimeEnvironment | None:
    """Return the environment if ``user_id`` belongs to its organization.

    Args:
        db: Async database session.
        environment_id: Environment to look up.
        user_id: Authenticated user.

    Returns:
        RuntimeEnvironment | None: The environment, or None if it does not
        exist or the user is not a member of its organization.
    """
    stmt = (
        select(RuntimeEnvironment)
        .join(
            OrgMember,
            OrgMember.organization_id == RuntimeEnvironment.organization_id,
        )
        .where(
            RuntimeEnvironment.id == environment_id,
            OrgMember.user_id == user_id,
        )
        .limit(1)
    )
    result = await db.execute(stmt)
    return result.scalar_one_or_none()
