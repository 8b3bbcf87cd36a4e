import httpx
import logging
from typing import Optional

from storefront.application.interfaces import EmailService
from storefront.domain.exceptions import NotificationError

logger = logging.getLogger(__name__)


class HTTPEmailClient(EmailService):
    def __init__(self, base_url: str, api_token: str, timeout: float = 10.0,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self._base_url = base_url.rstrip("/")
        self._api_token = api_token
        self._timeout = timeout
        self._transport = transport

    async def send(self, to: str, template: str, data: dict, idempotency_key: str) -> bool:
        """Одна попытка отправки, повторы делает outbox worker"""
        try:
            async with httpx.AsyncClient(transport=self._transport) as client:
                response = await client.post(
                    f"{self._base_url}/api/emails",
                    json={
                        "to": to,
                        "template": template,
                        "data": data,
                        "idempotency_key": idempotency_key
                    },
                    headers={"X-API-Key": self._api_token},
                    timeout=self._timeout
                )
        except httpx.RequestError as e:
            logger.warning(f"Email service ошибка подключения: {e}")
            raise NotificationError(f"Email service не доступен: {str(e)}")

        if response.status_code in (200, 201, 202):
            logger.info(f"Письмо {template} отправлено на {to}")
            return True
        # 409: письмо с таким ключом уже отправлено
        if response.status_code == 409:
            logger.info(f"Письмо {idempotency_key} уже было отправлено")
            return True
        raise NotificationError(f"Email service вернул {response.status_code}")
