import logging
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from idempay.exceptions import DuplicateKey, DuplicateProviderTransaction, VersionConflict
from idempay.models.base import ProcessingStatus
from idempay.models.payment_request import PaymentRequest

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """SQLite hands back naive datetimes; everything is stored as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


async def insert_record(session: AsyncSession, record: PaymentRequest) -> PaymentRequest:
    session.add(record)
    try:
        await session.flush()
    except IntegrityError:
        await session.rollback()
        raise DuplicateKey(record.idempotency_key) from None
    return record


async def find_by_key(session: AsyncSession, idempotency_key: str) -> PaymentRequest | None:
    result = await session.execute(
        select(PaymentRequest)
        .where(PaymentRequest.idempotency_key == idempotency_key)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def find_by_provider_transaction_id(
    session: AsyncSession, provider_transaction_id: str
) -> PaymentRequest | None:
    result = await session.execute(
        select(PaymentRequest)
        .where(PaymentRequest.provider_transaction_id == provider_transaction_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def update_if_version_matches(
    session: AsyncSession,
    record: PaymentRequest,
    expected_version: int,
    values: dict[str, Any],
) -> PaymentRequest:
    """Apply ``values`` only if the row still carries ``expected_version``.

    Bumps the version by one and returns the updated row. Raises
    VersionConflict when a concurrent writer got there first, and
    DuplicateProviderTransaction when another row already holds the
    provider_transaction_id being written.
    """
    stmt = (
        update(PaymentRequest)
        .where(
            PaymentRequest.idempotency_key == record.idempotency_key,
            PaymentRequest.version == expected_version,
        )
        .values(**values, version=expected_version + 1, updated_at=utcnow())
        .returning(PaymentRequest)
        .execution_options(synchronize_session=False, populate_existing=True)
    )
    try:
        result = await session.execute(stmt)
    except IntegrityError:
        await session.rollback()
        raise DuplicateProviderTransaction(
            record.idempotency_key, values.get("provider_transaction_id")
        ) from None
    updated = result.scalars().one_or_none()
    if updated is None:
        logger.debug(
            "Version conflict for idempotency key %s (expected version %d)",
            record.idempotency_key,
            expected_version,
        )
        raise VersionConflict(record.idempotency_key, expected_version)
    return updated


async def find_stuck_records(
    session: AsyncSession, updated_before: datetime, limit: int = 100
) -> list[PaymentRequest]:
    """PROCESSING rows with no async provider id that have not moved since ``updated_before``."""
    result = await session.execute(
        select(PaymentRequest)
        .where(
            PaymentRequest.processing_status == ProcessingStatus.PROCESSING,
            PaymentRequest.provider_transaction_id.is_(None),
            PaymentRequest.updated_at < updated_before,
        )
        .order_by(PaymentRequest.updated_at)
        .limit(limit)
    )
    return list(result.scalars().all())
