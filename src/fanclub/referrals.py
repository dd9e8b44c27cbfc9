"""Referral codes and their redemption.

Codes are 8-character alphanumeric (A-Z, 0-9), generated server-side
with a cryptographic random source, one per user.
A user redeems a given code at most once (unique on used_by + referral_code).
"""

from __future__ import annotations

import secrets
import string

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from fanclub.db.models import ReferralCodeUsage, User

REFERRAL_CHARSET = string.ascii_uppercase + string.digits  # A-Z, 0-9
REFERRAL_LENGTH = 8
REFERRAL_COOKIE = "referral"


def generate_referral_code() -> str:
    """Generate a cryptographically random 8-character referral code."""
    return "".join(secrets.choice(REFERRAL_CHARSET) for _ in range(REFERRAL_LENGTH))


async def generate_unique_referral_code(db: AsyncSession) -> str:
    """Generate a referral code that no user has yet."""
    for _ in range(10):
        code = generate_referral_code()
        existing = await db.execute(select(User.id).where(User.referral_code == code))
        if existing.first() is None:
            return code
    raise RuntimeError("Failed to generate unique referral code after 10 attempts")


async def find_referrer(db: AsyncSession, code: str) -> User | None:
    """The user owning a referral code."""
    if not code:
        return None
    result = await db.execute(select(User).where(User.referral_code == code))
    return result.scalars().first()


async def get_referral_usage(db: AsyncSession, used_by: int, code: str) -> ReferralCodeUsage | None:
    result = await db.execute(
        select(ReferralCodeUsage)
        .where(ReferralCodeUsage.used_by == used_by)
        .where(ReferralCodeUsage.referral_code == code)
    )
    return result.scalar_one_or_none()


async def record_referral_usage(db: AsyncSession, used_by: int, code: str) -> ReferralCodeUsage | None:
    """
    Record that `used_by` redeemed `code`.

    Returns None if the pair was already recorded, including when a concurrent
    request inserted it first and the unique constraint rejected this insert.
    """
    if await get_referral_usage(db, used_by, code) is not None:
        return None

    usage = ReferralCodeUsage(used_by=used_by, referral_code=code)
    try:
        async with db.begin_nested():
            db.add(usage)
    except IntegrityError:
        return None
    return usage
