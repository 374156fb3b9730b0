from typing import AsyncIterator

from fastapi import Header
from sqlalchemy.ext.asyncio import AsyncSession

from .config import get_settings
from .database import async_session
from .utils.i18n import MessageCatalog


async def get_session() -> AsyncIterator[AsyncSession]:
    async with async_session() as session:
        yield session


async def get_locale(accept_language: str | None = Header(default=None)) -> str:
    """First language of the Accept-Language header, or the configured default."""
    if not accept_language:
        return get_settings().default_locale
    first = accept_language.split(",", 1)[0].split(";", 1)[0].strip()
    return first or get_settings().default_locale


def get_localizer() -> MessageCatalog:
    return MessageCatalog(default_locale=get_settings().default_locale)
