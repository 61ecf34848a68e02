import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import (
    JSON,
    DateTime,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from idempay.models.base import (
    Base,
    PaymentProvider,
    PaymentStatus,
    ProcessingStatus,
    payment_provider_enum,
    payment_status_enum,
    processing_status_enum,
)


class PaymentRequest(Base):
    __tablename__ = "payment_requests"
    __table_args__ = (
        UniqueConstraint("idempotency_key", name="uq_payment_requests_idempotency_key"),
        UniqueConstraint(
            "provider_transaction_id", name="uq_payment_requests_provider_transaction_id"
        ),
        Index("idx_payment_requests_expires", "expires_at"),
        Index("idx_payment_requests_status_updated", "processing_status", "updated_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    idempotency_key: Mapped[str] = mapped_column(String(36), nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    processing_status: Mapped[ProcessingStatus] = mapped_column(
        processing_status_enum, nullable=False
    )
    request_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    request_body: Mapped[str] = mapped_column(Text, nullable=False)

    # HTTP status replayed alongside response_body
    response_status: Mapped[int | None] = mapped_column(Integer, nullable=True)
    response_body = mapped_column(
        JSON(none_as_null=True).with_variant(JSONB(none_as_null=True), "postgresql"),
        nullable=True,
    )
    transaction_no: Mapped[str | None] = mapped_column(String(64), nullable=True)
    provider_transaction_id: Mapped[str | None] = mapped_column(
        String(100), nullable=True
    )
    payment_status: Mapped[PaymentStatus | None] = mapped_column(
        payment_status_enum, nullable=True
    )

    payment_provider: Mapped[PaymentProvider | None] = mapped_column(
        payment_provider_enum, nullable=True
    )
    amount: Mapped[Decimal] = mapped_column(Numeric(19, 4), nullable=False)
    payment_method: Mapped[str] = mapped_column(String(50), nullable=False)
    description: Mapped[str | None] = mapped_column(String(255), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
