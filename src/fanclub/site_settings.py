"""Admin-editable site settings.

Settings are stored as strings in the `site_settings` table and read once
per request into an immutable snapshot. A handful of keys that belong to
process configuration (storage driver name, admin panel version) fall back
to `Settings` when the table does not override them.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Mapping
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from fanclub.config import Settings, get_settings
from fanclub.db.models import SiteSetting

_TRUE_VALUES = {"1", "true", "on", "yes"}
_FALSE_VALUES = {"", "0", "false", "off", "no", "null", "none"}


class SiteSettings(ABC):
    """Read-only view over site settings."""

    @abstractmethod
    def get(self, key: str, default: Any = None) -> Any:
        """Return the raw value stored for `key`, or `default`."""
        ...

    def flag(self, key: str) -> bool:
        """Return the value for `key` interpreted as a boolean."""
        return to_bool(self.get(key))


def to_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if value is None:
        return False
    if isinstance(value, str):
        normalized = value.strip().lower()
        if normalized in _TRUE_VALUES:
            return True
        if normalized in _FALSE_VALUES:
            return False
        return True
    return bool(value)


class StaticSiteSettings(SiteSettings):
    """Site settings backed by a plain mapping."""

    def __init__(self, values: Mapping[str, Any] | None = None, settings: Settings | None = None) -> None:
        self._values = dict(values or {})
        self._settings = settings or get_settings()

    def get(self, key: str, default: Any = None) -> Any:
        if key in self._values:
            return self._values[key]
        fallback = self._config_fallbacks().get(key)
        if fallback is not None:
            return fallback
        return default

    def _config_fallbacks(self) -> dict[str, Any]:
        return {
            "filesystems.defaultFilesystemDriver": self._settings.default_filesystem_driver,
            "settings.admin_version": self._settings.admin_version,
        }


async def load_site_settings(db: AsyncSession, settings: Settings | None = None) -> StaticSiteSettings:
    """Snapshot every row of the site_settings table."""
    result = await db.execute(select(SiteSetting.key, SiteSetting.value))
    return StaticSiteSettings({key: value for key, value in result.all()}, settings=settings)


async def set_site_setting(db: AsyncSession, key: str, value: str | None) -> SiteSetting:
    """Create or overwrite a stored setting."""
    row = await db.get(SiteSetting, key)
    if row is None:
        row = SiteSetting(key=key, value=value)
        db.add(row)
    else:
        row.value = value
    await db.flush()
    return row
