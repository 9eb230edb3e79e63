"""
Settings store

Key/value settings the operators can change at runtime. Reads return the
caller's default when the key has never been set.
"""
from abc import ABC, abstractmethod
from typing import Dict, Optional
import logging

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from cashdesk.modules.cash_register.exceptions import from_db_error
from cashdesk.modules.settings.models import AppSetting

logger = logging.getLogger(__name__)

AUTO_CLOSE_TIME_KEY = "cash_register_auto_close_time"


class SettingsStore(ABC):

    @abstractmethod
    async def get(self, key: str, default: Optional[str] = None) -> Optional[str]:
        ...

    @abstractmethod
    async def set(self, key: str, value: str) -> None:
        ...


class SqlSettingsStore(SettingsStore):

    def __init__(self, sessionmaker: async_sessionmaker):
        self._sessionmaker = sessionmaker

    async def get(self, key: str, default: Optional[str] = None) -> Optional[str]:
        async with self._sessionmaker() as db:
            try:
                result = await db.execute(select(AppSetting).where(AppSetting.key == key))
                setting = result.scalar_one_or_none()
            except SQLAlchemyError as e:
                logger.error(f"Error reading setting '{key}': {e}")
                raise from_db_error(e, f"read setting '{key}'") from e
        if setting is None or setting.value is None:
            return default
        return setting.value

    async def set(self, key: str, value: str) -> None:
        async with self._sessionmaker() as db:
            try:
                result = await db.execute(select(AppSetting).where(AppSetting.key == key))
                setting = result.scalar_one_or_none()
                if setting:
                    setting.value = value
                else:
                    db.add(AppSetting(key=key, value=value))
                await db.commit()
            except SQLAlchemyError as e:
                await db.rollback()
                logger.error(f"Error saving setting '{key}': {e}")
                raise from_db_error(e, f"save setting '{key}'") from e


class InMemorySettingsStore(SettingsStore):

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._values: Dict[str, str] = dict(initial or {})

    async def get(self, key: str, default: Optional[str] = None) -> Optional[str]:
        return self._values.get(key, default)

    async def set(self, key: str, value: str) -> None:
        self._values[key] = value
