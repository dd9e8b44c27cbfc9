"""Trusted device registration for new-device two-factor checks."""

from __future__ import annotations

import hashlib
from dataclasses import dataclass
from datetime import datetime, timezone

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from fanclub.db.models import UserDevice

logger = structlog.get_logger()


@dataclass(frozen=True)
class RequestInfo:
    """Client details of the request that triggered an operation."""

    ip_address: str | None = None
    user_agent: str | None = None


def device_signature(ip_address: str | None, user_agent: str | None) -> str:
    """Stable fingerprint of a client: sha256 of ip and user agent."""
    return hashlib.sha256(f"{ip_address or ''}|{user_agent or ''}".encode()).hexdigest()


async def add_new_user_device(
    db: AsyncSession,
    user_id: int,
    verified: bool = False,
    request_info: RequestInfo | None = None,
) -> UserDevice:
    """Register the requesting client as one of the user's devices."""
    info = request_info or RequestInfo()
    device = UserDevice(
        user_id=user_id,
        signature=device_signature(info.ip_address, info.user_agent),
        address=info.ip_address,
        agent=(info.user_agent or "")[:512] or None,
        verified_at=datetime.now(timezone.utc) if verified else None,
    )
    db.add(device)
    await db.flush()
    logger.info("device_added", user_id=user_id, verified=verified)
    return device
