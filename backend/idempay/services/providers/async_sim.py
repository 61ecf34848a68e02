import json
import logging
import uuid
from collections.abc import Callable, Mapping
from decimal import Decimal

from idempay.exceptions import ChargeFailed, InvalidWebhookPayload
from idempay.models.base import PaymentProvider, PaymentStatus
from idempay.schemas.payment import PaymentCreate
from idempay.services.providers.base import (
    ChargeResult,
    ProviderStrategy,
    WebhookCapableProvider,
    WebhookResult,
)

logger = logging.getLogger(__name__)

_SUCCESS_STATUSES = {"SUCCEED", "COMPLETED"}


def _new_transaction_id() -> str:
    return "ASYNC_" + uuid.uuid4().hex[:20]


class AsyncSimProvider(ProviderStrategy, WebhookCapableProvider):
    """Simulated wallet provider: accepts immediately, settles via webhook.

    Callback payload::

        {"transaction_id": "...", "transaction_no": "...", "status": "SUCCEED"}
    """

    provider = PaymentProvider.ASYNCSIM
    synchronous = False

    def __init__(
        self,
        amount_limit: Decimal = Decimal("10000"),
        transaction_id_factory: Callable[[], str] = _new_transaction_id,
        webhook_base_url: str = "https://asyncsim.example.com/webhooks/",
    ):
        self.amount_limit = amount_limit
        self.transaction_id_factory = transaction_id_factory
        self.webhook_base_url = webhook_base_url

    async def initiate(self, request: PaymentCreate, idempotency_key: str) -> ChargeResult:
        logger.info(
            "Charging via ASYNCSIM: amount=%s, method=%s, idempotency_key=%s",
            request.amount,
            request.payment_method,
            idempotency_key,
        )
        if request.amount > self.amount_limit:
            raise ChargeFailed("Payment amount exceeds limit")

        raw = self._call_api()
        try:
            body = json.loads(raw)
            provider_transaction_id = body["transaction_id"]
        except (ValueError, KeyError) as exc:
            raise ChargeFailed(f"Failed to parse ASYNCSIM response: {exc}") from exc

        logger.info(
            "ASYNCSIM accepted payment: provider_transaction_id=%s, webhook_url=%s",
            provider_transaction_id,
            body.get("webhook_url"),
        )
        return ChargeResult(
            status=PaymentStatus.PENDING,
            provider=self.provider,
            provider_transaction_id=provider_transaction_id,
        )

    def _call_api(self) -> str:
        transaction_id = self.transaction_id_factory()
        return json.dumps(
            {
                "transaction_id": transaction_id,
                "webhook_url": self.webhook_base_url + transaction_id,
                "status": "PENDING",
            }
        )

    def parse_webhook(self, payload: str, headers: Mapping[str, str]) -> WebhookResult:
        logger.info("Parsing ASYNCSIM webhook: payload length=%d", len(payload))
        try:
            body = json.loads(payload)
        except ValueError as exc:
            raise InvalidWebhookPayload(f"Failed to parse ASYNCSIM webhook payload: {exc}") from exc
        if not isinstance(body, dict):
            raise InvalidWebhookPayload("ASYNCSIM webhook payload must be a JSON object")

        transaction_id = body.get("transaction_id")
        raw_status = body.get("status")
        if not isinstance(transaction_id, str) or not transaction_id:
            raise InvalidWebhookPayload("missing 'transaction_id'")
        if not isinstance(raw_status, str):
            raise InvalidWebhookPayload("missing 'status'")

        if raw_status.upper() in _SUCCESS_STATUSES:
            status = PaymentStatus.COMPLETED
        elif raw_status.upper() == "FAILED":
            status = PaymentStatus.FAILED
        else:
            logger.warning("ASYNCSIM webhook: unknown status %r, treating as FAILED", raw_status)
            status = PaymentStatus.FAILED

        transaction_no = body.get("transaction_no")
        return WebhookResult(
            provider_transaction_id=transaction_id,
            transaction_no=str(transaction_no) if transaction_no is not None else None,
            status=status,
            payload=payload,
        )
