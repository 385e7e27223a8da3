import asyncio
import logging

from storefront.database import AsyncSessionLocal
from storefront.infrastructure.unit_of_work import UnitOfWork
from storefront.infrastructure.kafka_producer import KafkaProducerClient
from storefront.application.process_outbox import ProcessOutboxEventsUseCase
from storefront.config import settings

logger = logging.getLogger(__name__)


async def outbox_worker(poll_interval: float = 3, error_backoff: float = 10):
    """Publishes order events from the outbox table to Kafka"""
    kafka_producer = KafkaProducerClient(settings.KAFKA_BOOTSTRAP_SERVERS, settings.KAFKA_TOPIC)
    await kafka_producer.start()
    logger.info("Outbox worker started")

    try:
        while True:
            try:
                use_case = ProcessOutboxEventsUseCase(UnitOfWork(AsyncSessionLocal), kafka_producer)
                await use_case(limit=20)
                await asyncio.sleep(poll_interval)
            except Exception as e:
                logger.error(f"Outbox worker error: {e}", exc_info=True)
                await asyncio.sleep(error_backoff)
    finally:
        await kafka_producer.stop()


def main():
    logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
    asyncio.run(outbox_worker())


if __name__ == "__main__":
    main()
