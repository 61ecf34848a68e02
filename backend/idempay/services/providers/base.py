from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass

from idempay.models.base import PaymentProvider, PaymentStatus
from idempay.schemas.payment import PaymentCreate


@dataclass(frozen=True)
class ChargeResult:
    """Normalized outcome of one provider call."""

    status: PaymentStatus
    provider: PaymentProvider
    transaction_no: str | None = None
    provider_transaction_id: str | None = None


@dataclass(frozen=True)
class WebhookResult:
    provider_transaction_id: str
    transaction_no: str | None
    status: PaymentStatus
    payload: str


class ProviderStrategy(ABC):
    """One external charge service.

    Synchronous providers return COMPLETED or FAILED inline. Asynchronous
    providers only confirm acceptance: they return PENDING plus a
    provider_transaction_id and deliver the result later by webhook.
    """

    provider: PaymentProvider
    synchronous: bool

    @abstractmethod
    async def initiate(self, request: PaymentCreate, idempotency_key: str) -> ChargeResult:
        ...


class WebhookCapableProvider(ABC):
    @abstractmethod
    def parse_webhook(self, payload: str, headers: Mapping[str, str]) -> WebhookResult:
        """Turn the provider's raw callback into a WebhookResult.

        Raises InvalidWebhookPayload when the payload cannot be understood.
        """
