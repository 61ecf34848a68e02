from idempay.services.providers.async_sim import AsyncSimProvider
from idempay.services.providers.base import (
    ChargeResult,
    ProviderStrategy,
    WebhookCapableProvider,
    WebhookResult,
)
from idempay.services.providers.dispatcher import ProviderDispatcher, build_dispatcher
from idempay.services.providers.sync_sim import SyncSimProvider

__all__ = [
    "AsyncSimProvider",
    "ChargeResult",
    "ProviderDispatcher",
    "ProviderStrategy",
    "SyncSimProvider",
    "WebhookCapableProvider",
    "WebhookResult",
    "build_dispatcher",
]
