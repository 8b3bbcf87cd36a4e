import hashlib
import hmac
import logging
import uuid
from typing import Optional

import httpx

from storefront.application.interfaces import PaymentGateway
from storefront.domain.exceptions import GatewayError
from storefront.domain.models import PaymentMethod, PaymentStatus
from storefront.domain.payments import ConfirmResult, IntentResult, RefundResult, StatusResult

logger = logging.getLogger(__name__)


class HTTPGateway(PaymentGateway):
    """Общая часть HTTP-шлюзов: один клиент на вызов, ограниченный timeout"""

    def __init__(self, base_url: str, timeout: float = 30.0, transport: Optional[httpx.AsyncBaseTransport] = None):
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._transport = transport

    def _auth(self) -> Optional[tuple]:
        return None

    def _headers(self) -> dict:
        return {}

    async def _request(self, method: str, path: str, headers: Optional[dict] = None, **kwargs) -> dict:
        try:
            async with httpx.AsyncClient(transport=self._transport, timeout=self._timeout) as client:
                response = await client.request(
                    method,
                    f"{self._base_url}{path}",
                    auth=self._auth(),
                    headers={**self._headers(), **(headers or {})},
                    **kwargs
                )
        except httpx.RequestError as e:
            logger.error(f"{self.name}: ошибка подключения: {e}")
            raise GatewayError(f"{self.name} недоступен: {str(e)}")

        if response.status_code >= 400:
            logger.error(f"{self.name}: {method} {path} -> {response.status_code}: {response.text}")
            raise GatewayError(f"{self.name} ошибка: {response.status_code} - {self._error_text(response)}")
        return response.json()

    @staticmethod
    def _error_text(response: httpx.Response) -> str:
        try:
            error = response.json().get("error", {})
        except ValueError:
            return response.text
        if isinstance(error, dict):
            return error.get("description") or error.get("message") or response.text
        return str(error)


class RazorpayGateway(HTTPGateway):
    """Шлюз с серверным order id, который клиент подтверждает у себя"""

    name = "razorpay"

    def __init__(self, base_url: str, key_id: str, key_secret: str, currency: str = "INR",
                 timeout: float = 30.0, transport: Optional[httpx.AsyncBaseTransport] = None):
        super().__init__(base_url, timeout, transport)
        self._key_id = key_id
        self._key_secret = key_secret
        self._currency = currency

    def _auth(self) -> Optional[tuple]:
        return (self._key_id, self._key_secret)

    async def create_intent(self, amount_minor: int, order_ref: str, customer_email: Optional[str] = None) -> IntentResult:
        try:
            data = await self._request(
                "POST",
                "/orders",
                json={
                    "amount": amount_minor,
                    "currency": self._currency,
                    "receipt": order_ref,
                    "notes": {"orderId": order_ref}
                }
            )
        except Exception as e:
            logger.error(f"Razorpay: не удалось создать заказ для {order_ref}: {e}")
            return IntentResult(success=False, gateway=self.name, error=str(e))

        if not data.get("id"):
            logger.error(f"Razorpay: ответ без id заказа для {order_ref}")
            return IntentResult(success=False, gateway=self.name, error="Razorpay не вернул id заказа", raw=data)

        return IntentResult(
            success=True,
            gateway=self.name,
            intent_id=data["id"],
            amount=data.get("amount", amount_minor),
            currency=data.get("currency", self._currency),
            instructions={
                "gateway": self.name,
                "orderId": data["id"],
                "amount": data.get("amount", amount_minor),
                "currency": data.get("currency", self._currency),
                "receipt": data.get("receipt", order_ref),
                "keyId": self._key_id
            },
            raw=data
        )

    def signature_is_valid(self, gateway_order_id: str, payment_id: str, signature: str) -> bool:
        expected = hmac.new(
            self._key_secret.encode(),
            f"{gateway_order_id}|{payment_id}".encode(),
            hashlib.sha256
        ).hexdigest()
        return hmac.compare_digest(expected, signature)

    async def confirm(self, intent_ref: Optional[str], method_ref: str, signature: Optional[str] = None) -> ConfirmResult:
        if signature is not None and not (intent_ref and self.signature_is_valid(intent_ref, method_ref, signature)):
            logger.warning(f"Razorpay: неверная подпись платежа {method_ref}")
            return ConfirmResult(success=False, status=PaymentStatus.FAILED, error="Invalid payment signature")

        try:
            data = await self._request("GET", f"/payments/{method_ref}")
        except Exception as e:
            return ConfirmResult(success=False, status=PaymentStatus.PENDING, error=str(e))

        if not intent_ref or data.get("order_id") != intent_ref:
            return ConfirmResult(
                success=False, status=PaymentStatus.FAILED, raw=data,
                error="Платеж относится к другому заказу"
            )

        status = {
            "captured": PaymentStatus.COMPLETED,
            "authorized": PaymentStatus.COMPLETED,
            "failed": PaymentStatus.FAILED,
            "refunded": PaymentStatus.REFUNDED,
        }.get(data.get("status"), PaymentStatus.PENDING)
        return ConfirmResult(
            success=status == PaymentStatus.COMPLETED,
            status=status,
            transaction_id=data.get("id", method_ref),
            raw=data,
            error=None if status == PaymentStatus.COMPLETED else data.get("error_description")
        )

    async def status(self, intent_ref: str) -> StatusResult:
        try:
            data = await self._request("GET", f"/orders/{intent_ref}")
        except Exception as e:
            return StatusResult(success=False, status=PaymentStatus.PENDING, error=str(e))

        status = PaymentStatus.COMPLETED if data.get("status") == "paid" else PaymentStatus.PENDING
        return StatusResult(success=True, status=status, amount=data.get("amount_paid", data.get("amount")), raw=data)

    async def refund(self, payment_ref: str, amount_minor: Optional[int] = None) -> RefundResult:
        body = {"amount": amount_minor} if amount_minor is not None else {}
        try:
            data = await self._request("POST", f"/payments/{payment_ref}/refund", json=body)
        except Exception as e:
            logger.error(f"Razorpay: возврат по {payment_ref} не выполнен: {e}")
            return RefundResult(success=False, error=str(e))
        return RefundResult(success=True, refund_id=data.get("id"), amount=data.get("amount"), raw=data)


class StripeGateway(HTTPGateway):
    """Шлюз с client secret, платеж подтверждается на клиенте"""

    name = "stripe"

    def __init__(self, base_url: str, secret_key: str, currency: str = "INR",
                 timeout: float = 30.0, transport: Optional[httpx.AsyncBaseTransport] = None):
        super().__init__(base_url, timeout, transport)
        self._secret_key = secret_key
        self._currency = currency.lower()

    def _headers(self) -> dict:
        return {"Authorization": f"Bearer {self._secret_key}"}

    async def create_intent(self, amount_minor: int, order_ref: str, customer_email: Optional[str] = None) -> IntentResult:
        form = {
            "amount": str(amount_minor),
            "currency": self._currency,
            "metadata[orderId]": order_ref
        }
        if customer_email:
            form["receipt_email"] = customer_email
        try:
            data = await self._request(
                "POST",
                "/payment_intents",
                data=form,
                headers={"Idempotency-Key": f"intent_{order_ref}_{amount_minor}"}
            )
        except Exception as e:
            logger.error(f"Stripe: не удалось создать payment intent для {order_ref}: {e}")
            return IntentResult(success=False, gateway=self.name, error=str(e))

        if not data.get("id"):
            logger.error(f"Stripe: ответ без id payment intent для {order_ref}")
            return IntentResult(success=False, gateway=self.name, error="Stripe не вернул id payment intent", raw=data)

        return IntentResult(
            success=True,
            gateway=self.name,
            intent_id=data["id"],
            client_secret=data.get("client_secret"),
            amount=data.get("amount", amount_minor),
            currency=data.get("currency", self._currency),
            instructions={
                "gateway": self.name,
                "clientSecret": data.get("client_secret"),
                "amount": data.get("amount", amount_minor),
                "currency": data.get("currency", self._currency)
            },
            raw=data
        )

    @staticmethod
    def _map_status(value: Optional[str]) -> PaymentStatus:
        if value == "succeeded":
            return PaymentStatus.COMPLETED
        if value in ("canceled", "requires_payment_method"):
            return PaymentStatus.FAILED
        return PaymentStatus.PENDING

    async def confirm(self, intent_ref: Optional[str], method_ref: str, signature: Optional[str] = None) -> ConfirmResult:
        try:
            data = await self._request("GET", f"/payment_intents/{method_ref}")
        except Exception as e:
            return ConfirmResult(success=False, status=PaymentStatus.PENDING, error=str(e))

        if not intent_ref or data.get("id") != intent_ref:
            return ConfirmResult(
                success=False, status=PaymentStatus.FAILED, raw=data,
                error="Payment intent относится к другому заказу"
            )

        status = self._map_status(data.get("status"))
        return ConfirmResult(
            success=status == PaymentStatus.COMPLETED,
            status=status,
            transaction_id=data.get("id", method_ref),
            raw=data,
            error=None if status == PaymentStatus.COMPLETED else f"Статус платежа: {data.get('status')}"
        )

    async def status(self, intent_ref: str) -> StatusResult:
        try:
            data = await self._request("GET", f"/payment_intents/{intent_ref}")
        except Exception as e:
            return StatusResult(success=False, status=PaymentStatus.PENDING, error=str(e))
        return StatusResult(
            success=True,
            status=self._map_status(data.get("status")),
            amount=data.get("amount_received", data.get("amount")),
            raw=data
        )

    async def refund(self, payment_ref: str, amount_minor: Optional[int] = None) -> RefundResult:
        form = {"payment_intent": payment_ref}
        if amount_minor is not None:
            form["amount"] = str(amount_minor)
        try:
            data = await self._request("POST", "/refunds", data=form)
        except Exception as e:
            logger.error(f"Stripe: возврат по {payment_ref} не выполнен: {e}")
            return RefundResult(success=False, error=str(e))
        return RefundResult(success=True, refund_id=data.get("id"), amount=data.get("amount"), raw=data)


class CashOnDeliveryGateway(PaymentGateway):
    """Оплата при получении: шлюза нет, все операции локальные"""

    name = "cod"
    collects_upfront = False

    async def create_intent(self, amount_minor: int, order_ref: str, customer_email: Optional[str] = None) -> IntentResult:
        return IntentResult(success=True, gateway=self.name, amount=amount_minor)

    async def confirm(self, intent_ref: Optional[str], method_ref: str, signature: Optional[str] = None) -> ConfirmResult:
        return ConfirmResult(success=True, status=PaymentStatus.COMPLETED, transaction_id=method_ref)

    async def status(self, intent_ref: str) -> StatusResult:
        return StatusResult(success=True, status=PaymentStatus.PENDING)

    async def refund(self, payment_ref: str, amount_minor: Optional[int] = None) -> RefundResult:
        # Возврат наличных оформляется вручную
        return RefundResult(success=True, refund_id=f"cod_refund_{uuid.uuid4().hex[:12]}", amount=amount_minor)


def build_gateways(settings, transport: Optional[httpx.AsyncBaseTransport] = None) -> dict:
    return {
        PaymentMethod.RAZORPAY: RazorpayGateway(
            settings.RAZORPAY_BASE_URL,
            settings.RAZORPAY_KEY_ID,
            settings.RAZORPAY_KEY_SECRET,
            currency=settings.PAYMENT_CURRENCY,
            timeout=settings.GATEWAY_TIMEOUT,
            transport=transport
        ),
        PaymentMethod.STRIPE: StripeGateway(
            settings.STRIPE_BASE_URL,
            settings.STRIPE_SECRET_KEY,
            currency=settings.PAYMENT_CURRENCY,
            timeout=settings.GATEWAY_TIMEOUT,
            transport=transport
        ),
        PaymentMethod.COD: CashOnDeliveryGateway(),
    }
