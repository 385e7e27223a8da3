import asyncio
import logging

from storefront.database import AsyncSessionLocal
from storefront.infrastructure.unit_of_work import UnitOfWork
from storefront.application.expire_orders import ExpireStaleOrdersUseCase
from storefront.config import settings

logger = logging.getLogger(__name__)


async def expiry_worker(poll_interval: float = 60, error_backoff: float = 120):
    """Cancels unpaid orders older than RESERVATION_TTL_MINUTES and releases their stock"""
    logger.info(f"Expiry worker started, TTL {settings.RESERVATION_TTL_MINUTES} min")

    while True:
        try:
            use_case = ExpireStaleOrdersUseCase(UnitOfWork(AsyncSessionLocal), settings.RESERVATION_TTL_MINUTES)
            await use_case()
            await asyncio.sleep(poll_interval)
        except Exception as e:
            logger.error(f"Expiry worker error: {e}", exc_info=True)
            await asyncio.sleep(error_backoff)


def main():
    logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
    asyncio.run(expiry_worker())


if __name__ == "__main__":
    main()
