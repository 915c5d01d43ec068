"""Persistence of per-user content preferences."""

from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..db_models import UserSettings

logger = logging.getLogger(__name__)


class UserSettingsStore:
    """Reads and writes user settings through SQLAlchemy async sessions."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def get_adult_content_filter_preference(self, user_id: str) -> bool | None:
        """Return the stored preference, or ``None`` when the user never chose."""

        username = (user_id or "").strip()
        if not username:
            return None
        async with self._session_factory() as session:
            result = await session.execute(
                select(UserSettings.filter_adult_content).where(
                    UserSettings.username == username
                )
            )
            return result.scalar_one_or_none()

    async def set_adult_content_filter_preference(
        self, user_id: str, value: bool | None
    ) -> None:
        username = (user_id or "").strip()
        if not username:
            raise ValueError("A username is required to store settings")
        async with self._session_factory() as session:
            record = await session.get(UserSettings, username)
            if record is None:
                record = UserSettings(username=username)
                session.add(record)
            record.filter_adult_content = value
            await session.commit()
        logger.info("Stored adult content preference for %s: %s", username, value)
