"""User management router: all /api/v1/users/* endpoints."""

from __future__ import annotations

import structlog
from fastapi import APIRouter, Depends, HTTPException, Response
from sqlalchemy.ext.asyncio import AsyncSession

from fanclub.database import get_session
from fanclub.db.models import User
from fanclub.users.dependencies import get_users_observer, require_admin
from fanclub.users.observer import UsersObserver
from fanclub.users.schemas import ProfileUpdateRequest, RegisterRequest, UserResponse
from fanclub.users.service import delete_user, get_user_by_id, register_user, update_user

logger = structlog.get_logger()

router = APIRouter(prefix="/api/v1/users", tags=["Users"])


def _user_response(user: User) -> UserResponse:
    """Build a UserResponse from a User model."""
    return UserResponse(
        id=user.id,
        username=user.username,
        email=user.email,
        name=user.name,
        avatar=user.avatar,
        cover=user.cover,
        referral_code=user.referral_code,
        role_id=user.role_id,
        created_at=user.created_at,
        updated_at=user.updated_at,
    )


async def _get_user_or_404(db: AsyncSession, user_id: int) -> User:
    user = await get_user_by_id(db, user_id)
    if user is None:
        raise HTTPException(status_code=404, detail="User not found")
    return user


# ---------------------------------------------------------------------------
# Registration
# ---------------------------------------------------------------------------


@router.post("", response_model=UserResponse, status_code=201)
async def register(
    body: RegisterRequest,
    response: Response,
    db: AsyncSession = Depends(get_session),
    observer: UsersObserver = Depends(get_users_observer),
) -> UserResponse:
    """Register a new user. A `referral` cookie is redeemed and then cleared."""
    try:
        user = await register_user(db, observer, username=body.username, email=body.email, name=body.name)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    await db.commit()

    observer.cookies.apply(response)
    return _user_response(user)


# ---------------------------------------------------------------------------
# Admin
# ---------------------------------------------------------------------------


@router.get("/{user_id}", response_model=UserResponse, dependencies=[Depends(require_admin)])
async def get_user(
    user_id: int,
    db: AsyncSession = Depends(get_session),
) -> UserResponse:
    """Get a user's full profile."""
    return _user_response(await _get_user_or_404(db, user_id))


@router.patch("/{user_id}", response_model=UserResponse, dependencies=[Depends(require_admin)])
async def update_user_endpoint(
    user_id: int,
    body: ProfileUpdateRequest,
    db: AsyncSession = Depends(get_session),
    observer: UsersObserver = Depends(get_users_observer),
) -> UserResponse:
    """Update profile fields. Avatar / cover values pointing at the same file are ignored."""
    user = await _get_user_or_404(db, user_id)
    try:
        user = await update_user(db, observer, user, **body.model_dump(exclude_unset=True))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    await db.commit()
    return _user_response(user)


@router.delete("/{user_id}", dependencies=[Depends(require_admin)])
async def delete_user_endpoint(
    user_id: int,
    db: AsyncSession = Depends(get_session),
    observer: UsersObserver = Depends(get_users_observer),
) -> dict[str, str]:
    """Delete a user. Cleanup failures are logged, never returned."""
    user = await _get_user_or_404(db, user_id)
    await delete_user(db, observer, user)
    await db.commit()
    return {"status": "user_deleted"}
