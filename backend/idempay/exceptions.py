from typing import Any


class PaymentError(Exception):
    transient = False
    retryable = False

    def __init__(
        self,
        status_code: int,
        code: str,
        message: str,
        details: dict[str, Any] | None = None,
    ):
        self.status_code = status_code
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)


class InvalidKeyFormat(PaymentError):
    def __init__(self, message: str):
        super().__init__(400, "INVALID_IDEMPOTENCY_KEY", message)


class IdempotencyKeyConflict(PaymentError):
    def __init__(self, idempotency_key: str):
        super().__init__(
            409,
            "IDEMPOTENCY_KEY_CONFLICT",
            "Idempotency key already used with different request body.",
            {"idempotency_key": idempotency_key},
        )


class RequestInProgress(PaymentError):
    """Another attempt owns the key, or contention kept us from resolving it. Retry later."""

    retryable = True

    def __init__(self, idempotency_key: str, message: str | None = None, **details: Any):
        super().__init__(
            409,
            "REQUEST_IN_PROGRESS",
            message or "Payment is being processed. Please retry later.",
            {"idempotency_key": idempotency_key, **details},
        )


class ChargeFailed(PaymentError):
    def __init__(self, message: str, transient: bool = False):
        super().__init__(502, "PAYMENT_FAILED", message)
        self.transient = transient


class UnknownProviderTransaction(PaymentError):
    def __init__(self, provider_transaction_id: str):
        super().__init__(
            404,
            "UNKNOWN_PROVIDER_TRANSACTION",
            f"Payment not found for provider transaction id: {provider_transaction_id}",
            {"provider_transaction_id": provider_transaction_id},
        )


class UnsupportedProvider(PaymentError):
    def __init__(self, message: str):
        super().__init__(400, "UNSUPPORTED_PROVIDER", message)


class InvalidWebhookPayload(PaymentError):
    def __init__(self, message: str):
        super().__init__(400, "INVALID_WEBHOOK_PAYLOAD", f"Invalid webhook: {message}")


class PaymentNotFound(PaymentError):
    def __init__(self, idempotency_key: str):
        super().__init__(
            404, "NOT_FOUND", "Payment not found", {"idempotency_key": idempotency_key}
        )


class DuplicateKey(Exception):
    """Insert hit the unique constraint on idempotency_key."""

    def __init__(self, idempotency_key: str):
        self.idempotency_key = idempotency_key
        super().__init__(f"Duplicate idempotency key: {idempotency_key}")


class VersionConflict(Exception):
    """A concurrent writer advanced the row's version first."""

    transient = True

    def __init__(self, idempotency_key: str, expected_version: int):
        self.idempotency_key = idempotency_key
        self.expected_version = expected_version
        super().__init__(
            f"Version conflict for {idempotency_key} (expected version {expected_version})"
        )


class DuplicateProviderTransaction(Exception):
    """Update hit the unique constraint on provider_transaction_id."""

    def __init__(self, idempotency_key: str, provider_transaction_id: str | None):
        self.idempotency_key = idempotency_key
        self.provider_transaction_id = provider_transaction_id
        super().__init__(
            f"Provider transaction id {provider_transaction_id} is already bound to another "
            f"payment (idempotency key {idempotency_key})"
        )
