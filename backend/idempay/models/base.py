import enum

from sqlalchemy import Enum
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    pass


class ProcessingStatus(str, enum.Enum):
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class PaymentStatus(str, enum.Enum):
    COMPLETED = "completed"
    FAILED = "failed"
    PENDING = "pending"


class PaymentProvider(str, enum.Enum):
    SYNCSIM = "SYNCSIM"
    ASYNCSIM = "ASYNCSIM"

    @classmethod
    def parse(cls, value: str) -> "PaymentProvider":
        """Case-insensitive lookup; raises ValueError for unknown providers."""
        try:
            return cls(value.strip().upper())
        except ValueError:
            supported = ", ".join(p.value for p in cls)
            raise ValueError(
                f"Invalid payment provider: {value}. Supported values: {supported}"
            ) from None


processing_status_enum = Enum(
    ProcessingStatus, name="processing_status_enum", native_enum=False, length=20
)
payment_status_enum = Enum(
    PaymentStatus,
    name="payment_status_enum",
    native_enum=False,
    length=20,
    values_callable=lambda e: [m.value for m in e],
)
payment_provider_enum = Enum(
    PaymentProvider, name="payment_provider_enum", native_enum=False, length=50
)
