"""User wallet provisioning."""

from __future__ import annotations

from decimal import Decimal

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from fanclub.db.models import User, Wallet

logger = structlog.get_logger()


async def get_user_wallet(db: AsyncSession, user_id: int) -> Wallet | None:
    result = await db.execute(select(Wallet).where(Wallet.user_id == user_id))
    return result.scalar_one_or_none()


async def create_user_wallet(db: AsyncSession, user: User) -> Wallet:
    """Create an empty wallet for the user, or return the one they already have."""
    wallet = await get_user_wallet(db, user.id)
    if wallet is not None:
        return wallet

    wallet = Wallet(user_id=user.id, total=Decimal("0"), pending_balance=Decimal("0"))
    db.add(wallet)
    await db.flush()
    logger.info("wallet_created", user_id=user.id, wallet_id=wallet.id)
    return wallet
