"""User lists: the predefined Following / Blocked lists and their members.

Rules:
- Every user owns exactly one 'following' and one 'blocked' list
- Adding a member that is already on the list is a no-op
- A user cannot follow or block themself
"""

from __future__ import annotations

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from fanclub.db.models import User, UserList, UserListMember

logger = structlog.get_logger()

LIST_FOLLOWING = "following"
LIST_BLOCKED = "blocked"

DEFAULT_LISTS = {
    LIST_FOLLOWING: "Following",
    LIST_BLOCKED: "Blocked",
}

# action -> (list type, add?)
_ACTIONS = {
    "follow": (LIST_FOLLOWING, True),
    "unfollow": (LIST_FOLLOWING, False),
    "block": (LIST_BLOCKED, True),
    "unblock": (LIST_BLOCKED, False),
}


class ListError(Exception):
    """Raised for unknown actions or members."""


async def get_predefined_list(db: AsyncSession, user_id: int, list_type: str) -> UserList | None:
    result = await db.execute(
        select(UserList).where(UserList.user_id == user_id).where(UserList.type == list_type)
    )
    return result.scalars().first()


async def create_user_default_lists(db: AsyncSession, user_id: int) -> list[UserList]:
    """Create the predefined lists the user doesn't have yet. Returns all of them."""
    lists = []
    for list_type, name in DEFAULT_LISTS.items():
        existing = await get_predefined_list(db, user_id, list_type)
        if existing is None:
            existing = UserList(user_id=user_id, name=name, type=list_type)
            db.add(existing)
        lists.append(existing)
    await db.flush()
    return lists


async def is_list_member(db: AsyncSession, list_id: int, user_id: int) -> bool:
    result = await db.execute(
        select(UserListMember.id)
        .where(UserListMember.list_id == list_id)
        .where(UserListMember.user_id == user_id)
    )
    return result.first() is not None


async def manage_predefined_user_member_list(
    db: AsyncSession,
    owner_id: int,
    member_id: int | str,
    action: str,
) -> bool:
    """
    Apply a follow / unfollow / block / unblock action from owner to member.

    Returns True if the list changed.

    Raises:
        ListError: If the action is unknown, or the member id is malformed or
            doesn't exist.
    """
    if action not in _ACTIONS:
        msg = f"Unknown list action: {action}"
        raise ListError(msg)
    list_type, add = _ACTIONS[action]
    try:
        member_id = int(member_id)
    except (TypeError, ValueError) as e:
        msg = f"Invalid user id: {member_id!r}"
        raise ListError(msg) from e

    if member_id == owner_id:
        return False

    member = await db.get(User, member_id)
    if member is None:
        msg = f"User {member_id} does not exist"
        raise ListError(msg)

    user_list = await get_predefined_list(db, owner_id, list_type)
    if user_list is None:
        await create_user_default_lists(db, owner_id)
        user_list = await get_predefined_list(db, owner_id, list_type)

    result = await db.execute(
        select(UserListMember)
        .where(UserListMember.list_id == user_list.id)
        .where(UserListMember.user_id == member_id)
    )
    membership = result.scalar_one_or_none()

    if add and membership is None:
        db.add(UserListMember(list_id=user_list.id, user_id=member_id))
    elif not add and membership is not None:
        await db.delete(membership)
    else:
        return False

    await db.flush()
    logger.info("list_member_changed", owner_id=owner_id, member_id=member_id, action=action)
    return True
