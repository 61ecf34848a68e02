from idempay.models.base import Base
from idempay.models.payment_request import PaymentRequest

__all__ = ["Base", "PaymentRequest"]
