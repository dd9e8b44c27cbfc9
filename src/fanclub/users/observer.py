"""User lifecycle hooks.

The user service calls these around its own persistence operations:

- deleting: before the row is removed. Cleanup is best-effort and never raises.
- created:  after the row is inserted. Provisioning errors propagate.
- updating: before changes are flushed. May discard pending file-path changes.
- saved:    after any insert or update is flushed.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog
from sqlalchemy import inspect, select, update
from sqlalchemy.orm.attributes import set_committed_value

from fanclub.attachments import get_user_attachments
from fanclub.billing import get_active_subscriptions
from fanclub.db.models import User
from fanclub.devices import RequestInfo, add_new_user_device
from fanclub.lists import create_user_default_lists, manage_predefined_user_member_list
from fanclub.referrals import REFERRAL_COOKIE, find_referrer, record_referral_usage
from fanclub.roles import find_role_by_name, get_role_names
from fanclub.storage import DRIVER_S3, basename, get_file_name_from_url
from fanclub.wallets import create_user_wallet

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from fanclub.attachments import AttachmentService
    from fanclub.billing import PaymentService
    from fanclub.cookies import RequestCookies
    from fanclub.site_settings import SiteSettings
    from fanclub.storage import StorageManager

logger = structlog.get_logger()

PROFILE_FILE_FIELDS = ("avatar", "cover")
ADMIN_VERSION_ROLE_SYNC = "v2"


async def update_quietly(db: AsyncSession, user: User, **values: object) -> None:
    """Write columns straight to the table, without dirtying the instance or running hooks."""
    await db.execute(
        update(User)
        .where(User.id == user.id)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    for key, value in values.items():
        set_committed_value(user, key, value)


class UsersObserver:
    """Side effects of creating, updating and deleting users."""

    def __init__(
        self,
        db: AsyncSession,
        site_settings: SiteSettings,
        payments: PaymentService,
        storage: StorageManager,
        attachments: AttachmentService,
        cookies: RequestCookies,
        request_info: RequestInfo | None = None,
    ) -> None:
        self.db = db
        self.site_settings = site_settings
        self.payments = payments
        self.storage = storage
        self.attachments = attachments
        self.cookies = cookies
        self.request_info = request_info or RequestInfo()

    # ------------------------------------------------------------------
    # deleting
    # ------------------------------------------------------------------

    async def deleting(self, user: User) -> None:
        """Cancel subscriptions, delete profile files and attachments. Never raises."""
        # Read before the steps below flush pending changes on the instance
        cover, avatar = await self._stored_profile_files(user)
        await self._cancel_subscriptions(user)
        await self._delete_profile_files(user, cover, avatar)
        await self._remove_attachments(user)

    async def _cancel_subscriptions(self, user: User) -> None:
        try:
            subscriptions = await get_active_subscriptions(self.db, user.id)
        except Exception:
            logger.exception("subscriptions_lookup_failed", user_id=user.id)
            return

        for subscription in subscriptions:
            try:
                cancelled = await self.payments.cancel_subscription(self.db, subscription)
            except Exception as e:
                logger.error("subscription_cancel_failed", subscription_id=subscription.id, error=str(e))
                continue
            if not cancelled:
                logger.error("subscription_cancel_failed", subscription_id=subscription.id)

    async def _stored_profile_files(self, user: User) -> tuple[str | None, str | None]:
        """Persisted cover and avatar, ignoring whatever is pending on the instance."""
        try:
            result = await self.db.execute(
                select(User.cover, User.avatar)
                .where(User.id == user.id)
                .execution_options(autoflush=False)
            )
            row = result.one_or_none()
        except Exception as e:
            logger.error("profile_files_delete_failed", user_id=user.id, cover=None, avatar=None, error=str(e))
            return None, None
        if row is None:
            return None, None
        return row.cover, row.avatar

    async def _delete_profile_files(self, user: User, cover: str | None, avatar: str | None) -> None:
        if not cover and not avatar:
            return
        try:
            disk = self.storage.disk(self.site_settings.get("filesystems.defaultFilesystemDriver"))
            if cover:
                await disk.delete(cover)
            if avatar:
                await disk.delete(avatar)
        except Exception as e:
            logger.error("profile_files_delete_failed", user_id=user.id, cover=cover, avatar=avatar, error=str(e))

    async def _remove_attachments(self, user: User) -> None:
        try:
            attachments = await get_user_attachments(self.db, user.id)
        except Exception:
            logger.exception("attachments_lookup_failed", user_id=user.id)
            return

        for attachment in attachments:
            try:
                await self.attachments.remove_attachment(self.db, attachment)
            except Exception as e:
                logger.error("attachment_remove_failed", attachment_id=attachment.id, error=str(e))

    # ------------------------------------------------------------------
    # created
    # ------------------------------------------------------------------

    async def created(self, user: User | None) -> None:
        """Provision wallet, lists, device, default follows and referral for a new user."""
        if user is None:
            return

        await create_user_wallet(self.db, user)
        await create_user_default_lists(self.db, user.id)

        if self.site_settings.flag("security.default_2fa_on_register"):
            await add_new_user_device(self.db, user.id, verified=True, request_info=self.request_info)

        users_to_follow = self.site_settings.get("profiles.default_users_to_follow")
        if users_to_follow:
            for member_id in str(users_to_follow).split(","):
                member_id = member_id.strip()
                if member_id:
                    await manage_predefined_user_member_list(self.db, user.id, member_id, "follow")

        if self.site_settings.flag("referrals.enabled") and self.cookies.has(REFERRAL_COOKIE):
            await self._redeem_referral(user)

    async def _redeem_referral(self, user: User) -> None:
        referrer = await find_referrer(self.db, self.cookies.get(REFERRAL_COOKIE))
        if referrer is None:
            return

        usage = await record_referral_usage(self.db, user.id, referrer.referral_code)
        if usage is None:
            return

        self.cookies.forget(REFERRAL_COOKIE)
        logger.info("referral_recorded", user_id=user.id, referrer_id=referrer.id)
        if self.site_settings.flag("referrals.auto_follow_the_user"):
            await manage_predefined_user_member_list(self.db, user.id, referrer.id, "follow")

    # ------------------------------------------------------------------
    # updating
    # ------------------------------------------------------------------

    async def updating(self, user: User) -> None:
        """Discard avatar / cover changes that would store a broken or temporary path."""
        for field in PROFILE_FILE_FIELDS:
            self._sanitize_file_field(user, field)

    def _presigned_urls_enabled(self) -> bool:
        return (
            self.site_settings.get("storage.driver") == DRIVER_S3
            and self.site_settings.flag("storage.aws_cdn_enabled")
            and self.site_settings.flag("storage.aws_cdn_presigned_urls_enabled")
        )

    def _sanitize_file_field(self, user: User, field: str) -> None:
        history = inspect(user).attrs[field].history
        if not history.has_changes():
            return
        original = history.deleted[0] if history.deleted else None
        if not original:
            return

        value = getattr(user, field)
        if value is not None and basename(value) == basename(original):
            # Same file under a different prefix, e.g. a full URL resubmitted by a form
            revert = True
        else:
            revert = self._presigned_urls_enabled() and not get_file_name_from_url(value)

        if revert:
            set_committed_value(user, field, original)
            logger.info("profile_file_change_discarded", user_id=user.id, field=field)

    # ------------------------------------------------------------------
    # saved
    # ------------------------------------------------------------------

    async def saved(self, user: User) -> None:
        """Mirror the user's first assigned role into the legacy role_id column."""
        if self.site_settings.get("settings.admin_version") != ADMIN_VERSION_ROLE_SYNC:
            return

        role_names = await get_role_names(self.db, user.id)
        if not role_names:
            return

        legacy_role = await find_role_by_name(self.db, role_names[0])
        if legacy_role is not None and user.role_id != legacy_role.id:
            await update_quietly(self.db, user, role_id=legacy_role.id)
