"""Role lookup and assignment."""

from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from fanclub.db.models import Role, UserRole


async def get_role_names(db: AsyncSession, user_id: int) -> list[str]:
    """Names of the roles assigned to a user, in assignment order."""
    result = await db.execute(
        select(Role.name)
        .join(UserRole, UserRole.role_id == Role.id)
        .where(UserRole.user_id == user_id)
        .order_by(UserRole.id)
    )
    return list(result.scalars().all())


async def find_role_by_name(db: AsyncSession, name: str) -> Role | None:
    """Exact, case-sensitive name match."""
    result = await db.execute(select(Role).where(Role.name == name))
    return result.scalar_one_or_none()


async def get_or_create_role(db: AsyncSession, name: str) -> Role:
    role = await find_role_by_name(db, name)
    if role is None:
        role = Role(name=name)
        db.add(role)
        await db.flush()
    return role


async def assign_role(db: AsyncSession, user_id: int, role_name: str) -> UserRole:
    """
    Assign a role to a user.

    Raises:
        ValueError: If no role has that name.
    """
    role = await find_role_by_name(db, role_name)
    if role is None:
        msg = f"Unknown role: {role_name}"
        raise ValueError(msg)

    result = await db.execute(
        select(UserRole).where(UserRole.user_id == user_id).where(UserRole.role_id == role.id)
    )
    assignment = result.scalar_one_or_none()
    if assignment is None:
        assignment = UserRole(user_id=user_id, role_id=role.id)
        db.add(assignment)
        await db.flush()
    return assignment
