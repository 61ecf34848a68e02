import asyncio
import json
import logging
import uuid
from collections.abc import Callable
from decimal import Decimal

from idempay.exceptions import ChargeFailed
from idempay.models.base import PaymentProvider, PaymentStatus
from idempay.schemas.payment import PaymentCreate
from idempay.services.providers.base import ChargeResult, ProviderStrategy

logger = logging.getLogger(__name__)


def _new_charge_id() -> str:
    return "ch_" + uuid.uuid4().hex[:24]


class SyncSimProvider(ProviderStrategy):
    """Simulated card processor that answers inline after ``latency`` seconds."""

    provider = PaymentProvider.SYNCSIM
    synchronous = True

    def __init__(
        self,
        amount_limit: Decimal = Decimal("10000"),
        latency: float = 1.0,
        charge_id_factory: Callable[[], str] = _new_charge_id,
    ):
        self.amount_limit = amount_limit
        self.latency = latency
        self.charge_id_factory = charge_id_factory

    async def initiate(self, request: PaymentCreate, idempotency_key: str) -> ChargeResult:
        logger.info(
            "Charging via SYNCSIM: amount=%s, method=%s, idempotency_key=%s",
            request.amount,
            request.payment_method,
            idempotency_key,
        )
        if request.amount > self.amount_limit:
            raise ChargeFailed("Payment amount exceeds limit")

        raw = await self._call_api(request)
        transaction_no, status = self._parse_response(raw)
        return ChargeResult(status=status, provider=self.provider, transaction_no=transaction_no)

    async def _call_api(self, request: PaymentCreate) -> str:
        if self.latency:
            await asyncio.sleep(self.latency)
        return json.dumps(
            {"id": self.charge_id_factory(), "status": "SUCCEED", "amount": str(request.amount)}
        )

    def _parse_response(self, raw: str) -> tuple[str | None, PaymentStatus]:
        try:
            body = json.loads(raw)
        except ValueError as exc:
            raise ChargeFailed(f"Failed to parse SYNCSIM response: {exc}") from exc

        charge_id = body.get("id")
        if not isinstance(charge_id, str):
            raise ChargeFailed("Invalid SYNCSIM response: missing or invalid 'id' field")

        if str(body.get("status", "")).upper() == "SUCCEED":
            return charge_id, PaymentStatus.COMPLETED
        logger.warning("SYNCSIM declined charge %s with status %r", charge_id, body.get("status"))
        return None, PaymentStatus.FAILED
