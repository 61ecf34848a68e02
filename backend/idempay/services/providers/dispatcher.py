import asyncio
import logging
from collections.abc import Iterable

from idempay.config import Settings
from idempay.exceptions import ChargeFailed, UnsupportedProvider
from idempay.models.base import PaymentProvider
from idempay.schemas.payment import PaymentCreate
from idempay.services.providers.async_sim import AsyncSimProvider
from idempay.services.providers.base import (
    ChargeResult,
    ProviderStrategy,
    WebhookCapableProvider,
)
from idempay.services.providers.sync_sim import SyncSimProvider

logger = logging.getLogger(__name__)


class ProviderDispatcher:
    """Routes a payment to its provider strategy and bounds the call with a timeout.

    Both lookup tables are fixed at construction.
    """

    def __init__(self, providers: Iterable[ProviderStrategy], timeout: float | None = 30.0):
        self._strategies: dict[PaymentProvider, ProviderStrategy] = {}
        self._webhook_parsers: dict[PaymentProvider, WebhookCapableProvider] = {}
        for strategy in providers:
            self._strategies[strategy.provider] = strategy
            if isinstance(strategy, WebhookCapableProvider):
                self._webhook_parsers[strategy.provider] = strategy
        self.timeout = timeout

    def route(self, provider: PaymentProvider) -> ProviderStrategy:
        strategy = self._strategies.get(provider)
        if strategy is None:
            raise UnsupportedProvider(f"Unsupported payment provider: {provider}")
        return strategy

    def route_webhook(self, provider: PaymentProvider) -> WebhookCapableProvider:
        parser = self._webhook_parsers.get(provider)
        if parser is None:
            raise UnsupportedProvider(f"Provider {provider.value} does not support webhooks")
        return parser

    async def charge(self, request: PaymentCreate, idempotency_key: str) -> ChargeResult:
        strategy = self.route(request.payment_provider)
        logger.info(
            "Dispatching payment to %s (%s): amount=%s, idempotency_key=%s",
            strategy.provider.value,
            "sync" if strategy.synchronous else "async",
            request.amount,
            idempotency_key,
        )
        try:
            result = await asyncio.wait_for(
                strategy.initiate(request, idempotency_key), timeout=self.timeout
            )
        except asyncio.TimeoutError:
            raise ChargeFailed(
                f"{strategy.provider.value} did not answer within {self.timeout}s",
                transient=True,
            ) from None
        logger.info(
            "Payment dispatched via %s: status=%s, transaction_no=%s, provider_transaction_id=%s",
            strategy.provider.value,
            result.status.value,
            result.transaction_no,
            result.provider_transaction_id,
        )
        return result


def build_dispatcher(settings: Settings) -> ProviderDispatcher:
    return ProviderDispatcher(
        [
            SyncSimProvider(
                amount_limit=settings.provider_amount_limit,
                latency=settings.sync_provider_latency_seconds,
            ),
            AsyncSimProvider(amount_limit=settings.provider_amount_limit),
        ],
        timeout=settings.charge_timeout_seconds,
    )
