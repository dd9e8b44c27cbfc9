"""Attachment lookup and removal."""

from __future__ import annotations

from collections.abc import Sequence

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from fanclub.db.models import Attachment
from fanclub.storage import StorageManager

logger = structlog.get_logger()


async def get_user_attachments(db: AsyncSession, user_id: int) -> Sequence[Attachment]:
    """All attachments owned by a user, oldest first."""
    result = await db.execute(
        select(Attachment).where(Attachment.user_id == user_id).order_by(Attachment.created_at, Attachment.id)
    )
    return result.scalars().all()


class AttachmentService:
    """Removes attachments together with every stored copy of their files."""

    def __init__(self, storage: StorageManager) -> None:
        self.storage = storage

    async def remove_attachment(self, db: AsyncSession, attachment: Attachment) -> None:
        """
        Delete the attachment's file and its derived variants, then the row.

        Files live on the disk the attachment was uploaded to, which may differ
        from the current default disk.

        Raises:
            StorageError: If the attachment's disk is not configured.
        """
        disk = self.storage.disk(attachment.driver)
        paths = [attachment.filename, attachment.thumbnail_path, attachment.blurred_path]
        for path in paths:
            if path:
                await disk.delete(path)

        await db.delete(attachment)
        await db.flush()
        logger.info("attachment_removed", attachment_id=attachment.id, driver=attachment.driver)
