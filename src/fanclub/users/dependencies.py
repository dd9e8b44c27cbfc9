"""FastAPI dependencies for user endpoints."""

from __future__ import annotations

import secrets

from fastapi import Depends, Header, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from fanclub.attachments import AttachmentService
from fanclub.billing import get_payment_service
from fanclub.config import get_settings
from fanclub.cookies import RequestCookies
from fanclub.database import get_session
from fanclub.devices import RequestInfo
from fanclub.site_settings import load_site_settings
from fanclub.storage import get_storage_manager
from fanclub.users.observer import UsersObserver


async def require_admin(x_admin_token: str | None = Header(None)) -> None:
    """Reject the request unless it carries the configured admin token."""
    expected = get_settings().admin_token
    if not expected or not x_admin_token or not secrets.compare_digest(x_admin_token, expected):
        raise HTTPException(status_code=401, detail="Invalid admin token")


async def get_users_observer(
    request: Request,
    db: AsyncSession = Depends(get_session),
) -> UsersObserver:
    """Lifecycle hooks bound to this request's session, settings and cookies."""
    storage = get_storage_manager()
    return UsersObserver(
        db=db,
        site_settings=await load_site_settings(db),
        payments=get_payment_service(),
        storage=storage,
        attachments=AttachmentService(storage),
        cookies=RequestCookies(request.cookies),
        request_info=RequestInfo(
            ip_address=request.client.host if request.client else None,
            user_agent=request.headers.get("user-agent"),
        ),
    )
