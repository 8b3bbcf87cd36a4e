import asyncio
import logging

from storefront.database import AsyncSessionLocal
from storefront.infrastructure.kafka_consumer import KafkaConsumerClient
from storefront.infrastructure.unit_of_work import UnitOfWork
from storefront.config import settings

logger = logging.getLogger(__name__)


async def store_fulfillment_event(uow: UnitOfWork, event_data: dict) -> bool:
    """Сохраняет событие от fulfillment service в inbox. False, если дубликат или мусор."""
    event_type = event_data.get("event_type")
    order_id = event_data.get("order_id")
    if not order_id:
        logger.error(f"Событие {event_type} без order_id пропущено")
        return False
    idempotency_key = event_data.get("idempotency_key") or f"{event_type}_{order_id}"

    logger.info(f"Получено {event_type} для заказа {order_id}")

    async with uow() as tx:
        # Проверяем, не получали ли уже
        if await tx.inbox.is_processed(idempotency_key):
            logger.info(f"Событие {idempotency_key} уже получено")
            return False

        await tx.inbox.create(
            event_type=event_type,
            event_data=event_data,
            order_id=order_id,
            idempotency_key=idempotency_key
        )
        await tx.commit()

    logger.info(f"Сохранено {event_type} inbox для заказа {order_id}")
    return True


async def fulfillment_consumer():
    """Consumer для событий от fulfillment service"""
    logger.info("Fulfillment consumer started")

    uow = UnitOfWork(AsyncSessionLocal)
    consumer = KafkaConsumerClient(settings.KAFKA_BOOTSTRAP_SERVERS, settings.KAFKA_FULFILLMENT_TOPIC)
    await consumer.start()

    try:
        await consumer.consume(lambda event_data: store_fulfillment_event(uow, event_data))
    finally:
        await consumer.stop()


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
    asyncio.run(fulfillment_consumer())
