import logging
from dataclasses import dataclass
from datetime import timedelta
from decimal import Decimal
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from idempay.config import Settings
from idempay.exceptions import (
    ChargeFailed,
    DuplicateKey,
    DuplicateProviderTransaction,
    IdempotencyKeyConflict,
    PaymentNotFound,
    RequestInProgress,
    UnknownProviderTransaction,
    VersionConflict,
)
from idempay.models.base import PaymentProvider, PaymentStatus, ProcessingStatus
from idempay.models.payment_request import PaymentRequest
from idempay.schemas.payment import PaymentCreate, PaymentRead
from idempay.services import record_store
from idempay.services.hashing import canonical_json, sha256_hex
from idempay.services.providers.base import ChargeResult
from idempay.services.providers.dispatcher import ProviderDispatcher
from idempay.services.record_store import as_utc, utcnow
from idempay.services.retry import retry_async
from idempay.services.validation import validate_idempotency_key

logger = logging.getLogger(__name__)

PAYMENT_FAILED = "PAYMENT_FAILED"


@dataclass(frozen=True)
class ProcessPaymentResult:
    response: PaymentRead
    cached: bool
    status_code: int = 200


@dataclass(frozen=True)
class Admission:
    record: PaymentRequest
    cached: bool = False


@dataclass(frozen=True)
class WebhookOutcome:
    provider_transaction_id: str
    applied: bool
    processing_status: ProcessingStatus


def _is_version_conflict(exc: BaseException) -> bool:
    return isinstance(exc, VersionConflict)


def _failed_response(
    amount: Decimal,
    payment_method: str,
    description: str | None,
    provider: PaymentProvider | None,
    message: str,
) -> PaymentRead:
    return PaymentRead(
        status=PaymentStatus.FAILED,
        amount=amount,
        payment_method=payment_method,
        description=description,
        created_at=utcnow(),
        payment_provider=provider,
        error=PAYMENT_FAILED,
        message=message,
    )


def _failed_values(response: PaymentRead) -> dict[str, Any]:
    # Failures are a normal terminal outcome, replayed with 200
    return {
        "processing_status": ProcessingStatus.FAILED,
        "payment_status": PaymentStatus.FAILED,
        "response_status": 200,
        "response_body": response.snapshot(),
    }


def _failure_message(exc: Exception) -> str:
    if isinstance(exc, ChargeFailed):
        return exc.message
    return f"Payment processing failed: {exc}"


class PaymentService:
    """Turns a slow, fallible provider call into one observed outcome per idempotency key.

    Each request touches the store in short, separately committed steps:
    admission (insert, or attach to the existing row), then reconciliation
    of the charge outcome. The provider call runs between them with no
    transaction open. Every update is conditional on the version read
    before it, so concurrent writers are detected rather than overwritten.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        dispatcher: ProviderDispatcher,
        settings: Settings,
    ):
        self._session_factory = session_factory
        self.dispatcher = dispatcher
        self.settings = settings
        self.ttl = timedelta(hours=settings.idempotency_ttl_hours)

    # --- Payments ---

    async def process_payment(
        self, idempotency_key: str, request: PaymentCreate
    ) -> ProcessPaymentResult:
        validate_idempotency_key(idempotency_key)

        request_body = canonical_json(request.canonical_fields())
        request_hash = sha256_hex(request_body)

        admission = await self.create_or_attach(
            idempotency_key, request_hash, request_body, request
        )
        if admission.cached:
            logger.debug("Returning cached response for idempotency key %s", idempotency_key)
            return self._cached_result(admission.record)

        try:
            outcome = await retry_async(
                lambda: self.dispatcher.charge(request, idempotency_key),
                attempts=self.settings.charge_retry_attempts,
                base_delay=self.settings.charge_retry_delay_seconds,
                label=f"Charge for {idempotency_key}",
            )
        except Exception as exc:
            logger.warning("Payment failed for idempotency key %s: %s", idempotency_key, exc)
            response = _failed_response(
                request.amount,
                request.payment_method,
                request.description,
                request.payment_provider,
                _failure_message(exc),
            )
            await self._reconcile(admission.record, _failed_values(response))
            return ProcessPaymentResult(response.with_metadata(idempotency_key, False), False)

        response, values, status_code = self._outcome_values(request, outcome)
        try:
            await self._reconcile(admission.record, values)
        except DuplicateProviderTransaction as exc:
            logger.error("Cannot record outcome for idempotency key %s: %s", idempotency_key, exc)
            response = _failed_response(
                request.amount,
                request.payment_method,
                request.description,
                outcome.provider,
                "Provider returned a transaction id already bound to another payment",
            )
            await self._reconcile(admission.record, _failed_values(response))
            return ProcessPaymentResult(response.with_metadata(idempotency_key, False), False)
        return ProcessPaymentResult(
            response.with_metadata(idempotency_key, False), False, status_code
        )

    async def create_or_attach(
        self,
        idempotency_key: str,
        request_hash: str,
        request_body: str,
        request: PaymentCreate,
    ) -> Admission:
        now = utcnow()
        record = PaymentRequest(
            idempotency_key=idempotency_key,
            version=0,
            processing_status=ProcessingStatus.PROCESSING,
            request_hash=request_hash,
            request_body=request_body,
            amount=request.amount,
            payment_method=request.payment_method,
            description=request.description,
            payment_provider=request.payment_provider,
            created_at=now,
            updated_at=now,
            expires_at=now + self.ttl,
        )
        async with self._session_factory() as session:
            try:
                await record_store.insert_record(session, record)
            except DuplicateKey:
                logger.debug("Idempotency key %s already exists, attaching", idempotency_key)
            else:
                await session.commit()
                logger.debug("Created PROCESSING record for idempotency key %s", idempotency_key)
                return Admission(record)

        try:
            return await retry_async(
                lambda: self._handle_existing(
                    idempotency_key, request_hash, request_body, request
                ),
                attempts=self.settings.conflict_retry_attempts,
                base_delay=self.settings.conflict_retry_delay_seconds,
                retry_if=_is_version_conflict,
                label=f"Attach to {idempotency_key}",
            )
        except VersionConflict:
            logger.info(
                "Falling back to read-only resolution for idempotency key %s", idempotency_key
            )
            return await self._handle_existing_read_only(idempotency_key, request_hash)

    async def _handle_existing(
        self,
        idempotency_key: str,
        request_hash: str,
        request_body: str,
        request: PaymentCreate,
    ) -> Admission:
        async with self._session_factory() as session:
            existing = await self._load(session, idempotency_key)
            if self._is_expired(existing):
                return await self._reset(session, existing, request_hash, request_body, request)
            if existing.request_hash != request_hash:
                raise IdempotencyKeyConflict(idempotency_key)

            # Re-read: another attempt may have finished (or expired) the row meanwhile
            existing = await self._load(session, idempotency_key)
            if self._is_expired(existing):
                return await self._reset(session, existing, request_hash, request_body, request)
            if existing.request_hash != request_hash:
                raise IdempotencyKeyConflict(idempotency_key)

            if existing.processing_status == ProcessingStatus.PROCESSING:
                raise RequestInProgress(idempotency_key)
            if existing.processing_status == ProcessingStatus.COMPLETED:
                return Admission(existing, cached=True)

            logger.info("Retrying previously failed payment for idempotency key %s", idempotency_key)
            return await self._reset(session, existing, request_hash, request_body, request)

    async def _handle_existing_read_only(self, idempotency_key: str, request_hash: str) -> Admission:
        async with self._session_factory() as session:
            existing = await self._load(session, idempotency_key)

        if not self._is_expired(existing) and existing.request_hash != request_hash:
            raise IdempotencyKeyConflict(idempotency_key)
        if (
            not self._is_expired(existing)
            and existing.processing_status == ProcessingStatus.COMPLETED
        ):
            return Admission(existing, cached=True)
        raise RequestInProgress(
            idempotency_key,
            "Payment processing is currently unavailable due to high contention. "
            "Please retry later.",
            reason="contention",
        )

    async def _reset(
        self,
        session: AsyncSession,
        existing: PaymentRequest,
        request_hash: str,
        request_body: str,
        request: PaymentCreate,
    ) -> Admission:
        previous_status = existing.processing_status
        previous_version = existing.version
        updated = await record_store.update_if_version_matches(
            session,
            existing,
            existing.version,
            {
                "processing_status": ProcessingStatus.PROCESSING,
                "request_hash": request_hash,
                "request_body": request_body,
                "amount": request.amount,
                "payment_method": request.payment_method,
                "description": request.description,
                "payment_provider": request.payment_provider,
                "response_status": None,
                "response_body": None,
                "transaction_no": None,
                "provider_transaction_id": None,
                "payment_status": None,
                "expires_at": utcnow() + self.ttl,
            },
        )
        await session.commit()
        logger.info(
            "Reset %s record for idempotency key %s (version %d -> %d)",
            previous_status.value,
            existing.idempotency_key,
            previous_version,
            updated.version,
        )
        return Admission(updated)

    def _outcome_values(
        self, request: PaymentCreate, outcome: ChargeResult
    ) -> tuple[PaymentRead, dict[str, Any], int]:
        if outcome.status == PaymentStatus.FAILED:
            response = _failed_response(
                request.amount,
                request.payment_method,
                request.description,
                outcome.provider,
                "Payment declined by provider",
            )
            return response, _failed_values(response), 200

        response = PaymentRead(
            transaction_no=outcome.transaction_no,
            status=outcome.status,
            amount=request.amount,
            payment_method=request.payment_method,
            description=request.description,
            created_at=utcnow(),
            payment_provider=outcome.provider,
            provider_transaction_id=outcome.provider_transaction_id,
        )
        values: dict[str, Any] = {
            "response_body": response.snapshot(),
            "provider_transaction_id": outcome.provider_transaction_id,
            "payment_provider": outcome.provider,
            "payment_status": outcome.status,
        }
        if outcome.status == PaymentStatus.PENDING:
            # Stays PROCESSING until the provider's webhook settles it
            values["response_status"] = 202
            return response, values, 202

        values["processing_status"] = ProcessingStatus.COMPLETED
        values["response_status"] = 200
        values["transaction_no"] = outcome.transaction_no
        return response, values, 200

    async def _reconcile(
        self, record: PaymentRequest, values: dict[str, Any]
    ) -> PaymentRequest | None:
        """Record the charge outcome against the version admission produced.

        Only this request's cycle may write that version. A conflict means the
        row was swept or reset underneath us, so the outcome is logged and
        dropped instead of overwriting the newer cycle.
        """
        async with self._session_factory() as session:
            try:
                updated = await record_store.update_if_version_matches(
                    session, record, record.version, values
                )
            except VersionConflict:
                logger.error(
                    "Could not record outcome for idempotency key %s: record moved past "
                    "version %d. Outcome: %s",
                    record.idempotency_key,
                    record.version,
                    values.get("response_body"),
                )
                return None
            await session.commit()
        logger.debug(
            "Reconciled idempotency key %s to %s (version %d)",
            updated.idempotency_key,
            updated.processing_status.value,
            updated.version,
        )
        return updated

    # --- Webhooks ---

    async def handle_provider_webhook(
        self, provider: PaymentProvider, payload: str, headers: dict[str, str]
    ) -> WebhookOutcome:
        parser = self.dispatcher.route_webhook(provider)
        result = parser.parse_webhook(payload, headers)
        return await self.process_webhook(
            result.provider_transaction_id, result.payload, result.transaction_no, result.status
        )

    async def process_webhook(
        self,
        provider_transaction_id: str,
        payload: str,
        transaction_no: str | None,
        status: PaymentStatus,
    ) -> WebhookOutcome:
        # Fingerprint is informational only; duplicates are detected by record state
        logger.debug(
            "Webhook for provider transaction %s, payload hash %s",
            provider_transaction_id,
            sha256_hex(payload),
        )
        try:
            return await retry_async(
                lambda: self._apply_webhook(provider_transaction_id, transaction_no, status),
                attempts=self.settings.conflict_retry_attempts,
                base_delay=self.settings.conflict_retry_delay_seconds,
                retry_if=_is_version_conflict,
                label=f"Webhook for {provider_transaction_id}",
            )
        except VersionConflict as exc:
            raise RequestInProgress(
                exc.idempotency_key,
                "Webhook could not be applied due to concurrent updates. Please retry later.",
                provider_transaction_id=provider_transaction_id,
                reason="contention",
            ) from exc

    async def _apply_webhook(
        self,
        provider_transaction_id: str,
        transaction_no: str | None,
        status: PaymentStatus,
    ) -> WebhookOutcome:
        async with self._session_factory() as session:
            record = await record_store.find_by_provider_transaction_id(
                session, provider_transaction_id
            )
            if record is None:
                raise UnknownProviderTransaction(provider_transaction_id)

            if record.processing_status in (ProcessingStatus.COMPLETED, ProcessingStatus.FAILED):
                logger.info(
                    "Webhook ignored - payment already %s: idempotency_key=%s, "
                    "provider_transaction_id=%s",
                    record.processing_status.value,
                    record.idempotency_key,
                    provider_transaction_id,
                )
                return WebhookOutcome(provider_transaction_id, False, record.processing_status)

            if record.processing_status != ProcessingStatus.PROCESSING:
                logger.warning(
                    "Webhook ignored - inconsistent record state %s: idempotency_key=%s",
                    record.processing_status,
                    record.idempotency_key,
                )
                return WebhookOutcome(provider_transaction_id, False, record.processing_status)

            if status == PaymentStatus.COMPLETED:
                response = PaymentRead(
                    transaction_no=transaction_no,
                    status=PaymentStatus.COMPLETED,
                    amount=record.amount,
                    payment_method=record.payment_method,
                    description=record.description,
                    created_at=utcnow(),
                    payment_provider=record.payment_provider,
                    provider_transaction_id=provider_transaction_id,
                )
                values = {
                    "processing_status": ProcessingStatus.COMPLETED,
                    "payment_status": PaymentStatus.COMPLETED,
                    "transaction_no": transaction_no,
                    "response_status": 200,
                    "response_body": response.snapshot(),
                }
            elif status == PaymentStatus.FAILED:
                response = _failed_response(
                    record.amount,
                    record.payment_method,
                    record.description,
                    record.payment_provider,
                    "Payment processing failed",
                )
                response = response.model_copy(
                    update={"provider_transaction_id": provider_transaction_id}
                )
                values = _failed_values(response)
            else:
                logger.warning(
                    "Webhook: unexpected status %s for provider_transaction_id=%s",
                    status.value,
                    provider_transaction_id,
                )
                return WebhookOutcome(provider_transaction_id, False, record.processing_status)

            updated = await record_store.update_if_version_matches(
                session, record, record.version, values
            )
            await session.commit()

        logger.info(
            "Webhook applied: idempotency_key=%s, provider_transaction_id=%s, status=%s, "
            "transaction_no=%s",
            updated.idempotency_key,
            provider_transaction_id,
            status.value,
            transaction_no,
        )
        return WebhookOutcome(provider_transaction_id, True, updated.processing_status)

    # --- Maintenance ---

    async def sweep_stuck_records(self) -> int:
        """Fail PROCESSING rows abandoned mid-charge so their keys can be retried.

        Rows waiting on an async provider (provider_transaction_id set) are
        left for the webhook.
        """
        threshold = self.settings.stuck_threshold_minutes
        if threshold <= 0:
            return 0

        cutoff = utcnow() - timedelta(minutes=threshold)
        async with self._session_factory() as session:
            stuck = await record_store.find_stuck_records(session, cutoff)

        swept = 0
        for record in stuck:
            response = _failed_response(
                record.amount,
                record.payment_method,
                record.description,
                record.payment_provider,
                "Payment processing was abandoned",
            )
            async with self._session_factory() as session:
                try:
                    await record_store.update_if_version_matches(
                        session, record, record.version, _failed_values(response)
                    )
                except VersionConflict:
                    logger.debug("Stuck record %s moved concurrently, skipping", record.idempotency_key)
                    continue
                await session.commit()
            logger.warning(
                "Marked stuck record as FAILED: idempotency_key=%s, last update %s",
                record.idempotency_key,
                as_utc(record.updated_at).isoformat(),
            )
            swept += 1
        return swept

    # --- Helpers ---

    async def _load(self, session: AsyncSession, idempotency_key: str) -> PaymentRequest:
        record = await record_store.find_by_key(session, idempotency_key)
        if record is None:
            # Rows are reset in place, never deleted; only an operator can remove one
            # between the failed insert and this read. A fresh attempt will insert again.
            raise RequestInProgress(
                idempotency_key,
                "Payment record was removed concurrently. Please retry.",
                reason="record_missing",
            )
        return record

    @staticmethod
    def _is_expired(record: PaymentRequest) -> bool:
        return utcnow() > as_utc(record.expires_at)

    @staticmethod
    def _cached_result(record: PaymentRequest) -> ProcessPaymentResult:
        response = PaymentRead.model_validate(record.response_body)
        return ProcessPaymentResult(
            response.with_metadata(record.idempotency_key, True),
            True,
            record.response_status or 200,
        )


async def get_payment_record(session: AsyncSession, idempotency_key: str) -> PaymentRequest:
    validate_idempotency_key(idempotency_key)
    record = await record_store.find_by_key(session, idempotency_key)
    if record is None:
        raise PaymentNotFound(idempotency_key)
    return record
