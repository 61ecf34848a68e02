from fastapi import APIRouter, Depends, Header
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from idempay.api.deps import get_payment_service, require_api_key
from idempay.db.session import get_session
from idempay.exceptions import PaymentError
from idempay.schemas.errors import ErrorResponse
from idempay.schemas.payment import PaymentCreate, PaymentRead, PaymentRecordRead
from idempay.services.payment_service import PaymentService, get_payment_record

router = APIRouter(
    prefix="/api/v1/payments",
    tags=["payments"],
    dependencies=[Depends(require_api_key)],
    responses={
        400: {"model": ErrorResponse},
        401: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
    },
)


@router.post("", response_model=PaymentRead, responses={202: {"model": PaymentRead}})
async def process_payment(
    data: PaymentCreate,
    idempotency_key: str | None = Header(None, alias="Idempotency-Key"),
    service: PaymentService = Depends(get_payment_service),
):
    if idempotency_key is None or not idempotency_key.strip():
        raise PaymentError(400, "BAD_REQUEST", "Idempotency-Key header is required")

    result = await service.process_payment(idempotency_key, data)
    return JSONResponse(
        status_code=result.status_code,
        content=result.response.model_dump(mode="json"),
    )


@router.get("/{idempotency_key}", response_model=PaymentRecordRead)
async def get_payment(
    idempotency_key: str,
    session: AsyncSession = Depends(get_session),
):
    return await get_payment_record(session, idempotency_key)
