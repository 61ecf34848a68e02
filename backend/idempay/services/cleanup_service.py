import asyncio
import logging

from idempay.services.payment_service import PaymentService

logger = logging.getLogger(__name__)


async def _cleanup_loop(service: PaymentService, interval_seconds: float):
    while True:
        await asyncio.sleep(interval_seconds)
        try:
            swept = await service.sweep_stuck_records()
            if swept:
                logger.info("Failed %d stuck payment records", swept)
        except Exception:
            logger.exception("Error during stuck-record sweep")


def start_cleanup_task(service: PaymentService) -> asyncio.Task | None:
    settings = service.settings
    if settings.stuck_threshold_minutes <= 0 or settings.cleanup_interval_minutes <= 0:
        logger.info("Stuck-record sweep disabled")
        return None
    return asyncio.create_task(_cleanup_loop(service, settings.cleanup_interval_minutes * 60))
