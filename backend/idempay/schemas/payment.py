from datetime import datetime
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from idempay.models.base import PaymentProvider, PaymentStatus, ProcessingStatus


class PaymentCreate(BaseModel):
    amount: Decimal = Field(gt=0, max_digits=19, decimal_places=4)
    payment_method: str = Field(min_length=1, max_length=50)
    description: str | None = Field(default=None, max_length=255)
    payment_provider: PaymentProvider

    @field_validator("payment_method")
    @classmethod
    def validate_payment_method(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Payment method is required")
        return v

    @field_validator("payment_provider", mode="before")
    @classmethod
    def parse_provider(cls, v: Any) -> Any:
        if isinstance(v, str):
            return PaymentProvider.parse(v)
        return v

    def canonical_fields(self) -> dict[str, Any]:
        """Fields that define the payment; this is what gets fingerprinted."""
        return {
            "amount": self.amount,
            "payment_method": self.payment_method,
            "description": self.description,
            "payment_provider": self.payment_provider.value,
        }


class PaymentRead(BaseModel):
    transaction_no: str | None = None
    status: PaymentStatus
    amount: Decimal
    payment_method: str
    description: str | None = None
    created_at: datetime
    payment_provider: PaymentProvider | None = None
    provider_transaction_id: str | None = None
    idempotency_key: str | None = None
    cached: bool = False
    error: str | None = None
    message: str | None = None

    def snapshot(self) -> dict[str, Any]:
        """JSON form persisted as the record's response body."""
        return self.model_dump(mode="json", exclude={"idempotency_key", "cached"})

    def with_metadata(self, idempotency_key: str, cached: bool) -> "PaymentRead":
        return self.model_copy(update={"idempotency_key": idempotency_key, "cached": cached})


class PaymentRecordRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    idempotency_key: str
    version: int
    processing_status: ProcessingStatus
    payment_status: PaymentStatus | None
    transaction_no: str | None
    provider_transaction_id: str | None
    payment_provider: PaymentProvider | None
    amount: Decimal
    payment_method: str
    description: str | None
    response: dict[str, Any] | None = Field(default=None, validation_alias="response_body")
    created_at: datetime
    updated_at: datetime
    expires_at: datetime


class WebhookAck(BaseModel):
    provider_transaction_id: str
    applied: bool
    processing_status: ProcessingStatus
