import logging
from typing import Optional

from storefront.application.interfaces import ANALYTICS_EVENT, EMAIL_EVENT, NotificationChannel

logger = logging.getLogger(__name__)


class OutboxNotificationChannel(NotificationChannel):
    """Кладет уведомления в outbox отдельной транзакцией, доставку делает outbox worker"""

    def __init__(self, unit_of_work):
        self._uow = unit_of_work

    async def email(self, to: str, template: str, data: dict, reference_id: Optional[str] = None) -> None:
        await self._post(
            EMAIL_EVENT,
            {"to": to, "template": template, "data": data},
            reference_id
        )

    async def analytics(
        self,
        event_type: str,
        event_name: str,
        user_id: Optional[str] = None,
        page: Optional[str] = None,
        metadata: Optional[dict] = None,
        reference_id: Optional[str] = None,
    ) -> None:
        await self._post(
            ANALYTICS_EVENT,
            {
                "user_id": user_id,
                "event_type": event_type,
                "event_name": event_name,
                "page": page,
                "metadata": metadata or {}
            },
            reference_id
        )

    async def _post(self, event_type: str, event_data: dict, reference_id: Optional[str]) -> None:
        try:
            async with self._uow() as uow:
                await uow.outbox.create(event_type=event_type, event_data=event_data, order_id=reference_id)
                await uow.commit()
        except Exception as e:
            # Уведомления не влияют на результат операции
            logger.error(f"Не удалось поставить {event_type} в очередь для {reference_id}: {e}")
