import logging

from fastapi import APIRouter, Depends, Request

from idempay.api.deps import get_payment_service, require_api_key
from idempay.exceptions import UnsupportedProvider
from idempay.models.base import PaymentProvider
from idempay.schemas.errors import ErrorResponse
from idempay.schemas.payment import WebhookAck
from idempay.services.payment_service import PaymentService

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/v1/webhooks",
    tags=["webhooks"],
    dependencies=[Depends(require_api_key)],
    responses={400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)


@router.post("/{provider}", response_model=WebhookAck)
async def receive_webhook(
    provider: str,
    request: Request,
    service: PaymentService = Depends(get_payment_service),
):
    try:
        payment_provider = PaymentProvider.parse(provider)
    except ValueError as exc:
        raise UnsupportedProvider(str(exc)) from None

    payload = (await request.body()).decode("utf-8", errors="replace")
    headers = dict(request.headers)
    logger.info(
        "Received webhook from %s: payload length=%d", payment_provider.value, len(payload)
    )

    outcome = await service.handle_provider_webhook(payment_provider, payload, headers)
    return WebhookAck(
        provider_transaction_id=outcome.provider_transaction_id,
        applied=outcome.applied,
        processing_status=outcome.processing_status,
    )
