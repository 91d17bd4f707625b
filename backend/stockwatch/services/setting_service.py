"""Persisted user preferences."""

import json
from typing import Any

import structlog
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from stockwatch.core.exceptions import ValidationError
from stockwatch.models.app_setting import AppSetting
from stockwatch.schemas.settings import UserSettings

logger = structlog.get_logger(__name__)


class SettingService:
    """Reads and writes ``UserSettings`` as key/value rows.

    Keys that were never written fall back to the model defaults, so a
    fresh database behaves like one with default settings stored.
    """

    def __init__(self, db: AsyncSession):
        self.db = db
        self.logger = logger.bind(service="setting_service")

    async def get(self) -> UserSettings:
        """Current settings as an immutable snapshot."""
        result = await self.db.execute(select(AppSetting))
        stored: dict[str, Any] = {}
        for row in result.scalars().all():
            if row.key not in UserSettings.model_fields:
                continue
            try:
                stored[row.key] = json.loads(row.value)
            except json.JSONDecodeError:
                self.logger.warning("setting_value_corrupt", key=row.key)
        try:
            return UserSettings.model_validate(stored)
        except PydanticValidationError as e:
            # A row written by an older version no longer validates
            self.logger.warning("stored_settings_invalid", error=str(e))
            valid = {
                key: value
                for key, value in stored.items()
                if not any(err["loc"] and err["loc"][0] == key for err in e.errors())
            }
            return UserSettings.model_validate(valid)

    async def update(self, **changes: Any) -> UserSettings:
        """Validate and persist a partial update.

        Raises:
            ValidationError: Unknown key or invalid value; nothing is written
        """
        current = await self.get()
        merged = {**current.model_dump(), **changes}
        try:
            updated = UserSettings.model_validate(merged)
        except PydanticValidationError as e:
            messages = "; ".join(
                f"{'.'.join(str(part) for part in err['loc'])}: {err['msg']}" for err in e.errors()
            )
            raise ValidationError(f"Invalid settings: {messages}") from e

        values = updated.model_dump()
        for key in changes:
            await self._put(key, values[key])
        await self.db.flush()

        self.logger.info("settings_updated", keys=sorted(changes))
        return updated

    async def _put(self, key: str, value: Any) -> None:
        existing = await self.db.get(AppSetting, key)
        encoded = json.dumps(value)
        if existing:
            existing.value = encoded
        else:
            self.db.add(AppSetting(key=key, value=encoded))
