import asyncio
import logging

from storefront.database import AsyncSessionLocal
from storefront.infrastructure.unit_of_work import UnitOfWork
from storefront.infrastructure.http_clients import HTTPEmailClient
from storefront.infrastructure.kafka_producer import KafkaProducerClient
from storefront.application.process_outbox import ProcessOutboxEventsUseCase
from storefront.config import settings

logger = logging.getLogger(__name__)


async def outbox_worker():
    """Worker для доставки outbox сообщений"""
    logger.info("Outbox worker запущен")

    kafka_producer = KafkaProducerClient(settings.KAFKA_BOOTSTRAP_SERVERS, settings.KAFKA_ORDER_TOPIC)
    email_client = HTTPEmailClient(settings.EMAIL_SERVICE_URL, settings.EMAIL_API_TOKEN, timeout=settings.NOTIFICATION_TIMEOUT)
    use_case = ProcessOutboxEventsUseCase(
        unit_of_work=UnitOfWork(AsyncSessionLocal),
        publisher=kafka_producer,
        email_service=email_client,
        max_attempts=settings.OUTBOX_MAX_ATTEMPTS
    )

    # producer нужно запустить до первой публикации
    await kafka_producer.start()

    try:
        while True:
            try:
                delivered = await use_case(limit=10)
                if delivered:
                    logger.info(f"Доставлено {delivered} outbox events")
                await asyncio.sleep(3)

            except Exception as e:
                logger.error(f"Ошибка в outbox worker: {e}", exc_info=True)
                await asyncio.sleep(10)
    finally:
        await kafka_producer.stop()


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
    asyncio.run(outbox_worker())
