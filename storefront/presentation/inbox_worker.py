import asyncio
import logging

from storefront.database import AsyncSessionLocal
from storefront.infrastructure.unit_of_work import UnitOfWork
from storefront.infrastructure.notifications import OutboxNotificationChannel
from storefront.application.inventory import InventoryLedger
from storefront.application.process_inbox import ProcessInboxEventsUseCase

logger = logging.getLogger(__name__)


async def inbox_worker():
    """Worker для применения событий fulfillment service к заказам"""
    logger.info("Inbox worker запущен")

    uow = UnitOfWork(AsyncSessionLocal)
    use_case = ProcessInboxEventsUseCase(
        unit_of_work=uow,
        ledger=InventoryLedger(),
        notifications=OutboxNotificationChannel(uow)
    )

    while True:
        try:
            processed = await use_case(limit=10)
            if processed:
                logger.info(f"Обработано {processed} inbox events")
            await asyncio.sleep(2)

        except Exception as e:
            logger.error(f"Ошибка в inbox worker: {e}", exc_info=True)
            await asyncio.sleep(10)


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
    asyncio.run(inbox_worker())
