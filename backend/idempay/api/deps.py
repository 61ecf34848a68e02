import secrets
from functools import lru_cache

from fastapi import Depends, Header
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from idempay.config import Settings, settings
from idempay.db.session import get_session_factory
from idempay.exceptions import PaymentError
from idempay.services.payment_service import PaymentService
from idempay.services.providers.dispatcher import ProviderDispatcher, build_dispatcher


def get_settings() -> Settings:
    return settings


@lru_cache
def get_dispatcher() -> ProviderDispatcher:
    return build_dispatcher(settings)


def get_payment_service(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    dispatcher: ProviderDispatcher = Depends(get_dispatcher),
    app_settings: Settings = Depends(get_settings),
) -> PaymentService:
    return PaymentService(session_factory, dispatcher, app_settings)


async def require_api_key(
    api_key: str | None = Header(None, alias="X-API-Key"),
    app_settings: Settings = Depends(get_settings),
) -> None:
    expected = app_settings.api_key
    if not expected:
        raise PaymentError(
            500,
            "UNAUTHORIZED",
            "API key is not configured. Please set API_KEY environment variable.",
        )
    if api_key is None or not secrets.compare_digest(api_key, expected):
        raise PaymentError(401, "UNAUTHORIZED", "Invalid or missing API key")
