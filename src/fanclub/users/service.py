"""User management business logic.

Every write goes through the lifecycle hooks in a fixed order:

    register: insert -> created -> saved
    update:   assign -> updating -> flush -> saved
    delete:   deleting -> delete
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

import structlog
from sqlalchemy import select

from fanclub.db.models import User
from fanclub.referrals import generate_unique_referral_code

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from fanclub.users.observer import UsersObserver

logger = structlog.get_logger()

UPDATABLE_FIELDS = frozenset({"username", "email", "name", "avatar", "cover"})
REQUIRED_FIELDS = ("username", "email")


async def get_user_by_id(db: AsyncSession, user_id: int) -> User | None:
    result = await db.execute(select(User).where(User.id == user_id))
    return result.scalar_one_or_none()


async def _ensure_unique(db: AsyncSession, column: Any, value: str, exclude_id: int | None = None) -> None:
    query = select(User.id).where(column == value)
    if exclude_id is not None:
        query = query.where(User.id != exclude_id)
    existing = await db.execute(query)
    if existing.first() is not None:
        msg = f"{column.key.capitalize()} already taken"
        raise ValueError(msg)


async def register_user(
    db: AsyncSession,
    observer: UsersObserver,
    username: str,
    email: str,
    name: str | None = None,
) -> User:
    """
    Create a user and run the creation hooks.

    Raises:
        ValueError: If the username or email is already taken.
    """
    email = email.strip().lower()
    await _ensure_unique(db, User.username, username)
    await _ensure_unique(db, User.email, email)

    now = datetime.now(timezone.utc)
    user = User(
        username=username,
        email=email,
        name=name,
        avatar=None,
        cover=None,
        referral_code=await generate_unique_referral_code(db),
        role_id=None,
        created_at=now,
        updated_at=now,
    )
    db.add(user)
    await db.flush()

    await observer.created(user)
    await observer.saved(user)

    logger.info("user_registered", user_id=user.id, username=username)
    return user


async def update_user(
    db: AsyncSession,
    observer: UsersObserver,
    user: User,
    **fields: Any,
) -> User:
    """
    Update profile fields and run the update hooks.

    The updating hook may discard some of the requested changes.

    Raises:
        ValueError: If a field is not updatable, username or email is cleared or taken.
    """
    unknown = set(fields) - UPDATABLE_FIELDS
    if unknown:
        msg = f"Cannot update fields: {', '.join(sorted(unknown))}"
        raise ValueError(msg)

    cleared = [key for key in REQUIRED_FIELDS if key in fields and fields[key] is None]
    if cleared:
        msg = f"Cannot clear fields: {', '.join(cleared)}"
        raise ValueError(msg)

    if "email" in fields:
        fields["email"] = fields["email"].strip().lower()
        await _ensure_unique(db, User.email, fields["email"], exclude_id=user.id)
    if "username" in fields:
        await _ensure_unique(db, User.username, fields["username"], exclude_id=user.id)

    for key, value in fields.items():
        setattr(user, key, value)

    await observer.updating(user)
    if db.is_modified(user):
        user.updated_at = datetime.now(timezone.utc)
    await db.flush()

    await observer.saved(user)
    return user


async def delete_user(db: AsyncSession, observer: UsersObserver, user: User) -> None:
    """Run the deletion hooks, then remove the user row."""
    user_id = user.id
    await observer.deleting(user)
    await db.delete(user)
    await db.flush()
    logger.info("user_deleted", user_id=user_id)
