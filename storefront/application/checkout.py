import logging
import secrets
import string
import time
import uuid
from decimal import Decimal
from typing import List, Optional
from pydantic import BaseModel, Field
from sqlalchemy.exc import IntegrityError

from storefront.domain.models import (
    GuestContact, Order, OrderStatus, PaymentLog, PaymentMethod, PaymentStatus, money, to_minor_units, utcnow
)
from storefront.domain.exceptions import GatewayError, OrderNotFoundError, ValidationError
from storefront.application.discounts import DiscountEngine
from storefront.application.interfaces import NotificationChannel, PaymentGateway
from storefront.application.inventory import InventoryLedger
from storefront.application.order_status import announce_confirmation, customer_name
from storefront.application.pricing import CartLineDTO, PricingValidator


logger = logging.getLogger(__name__)

_ORDER_SUFFIX_ALPHABET = string.ascii_uppercase + string.digits


def generate_order_number() -> str:
    """ORD-<миллисекунды>-<случайный хвост>"""
    suffix = "".join(secrets.choice(_ORDER_SUFFIX_ALPHABET) for _ in range(6))
    return f"ORD-{int(time.time() * 1000)}-{suffix}"


class Buyer(BaseModel):
    """Покупатель: либо зарегистрированный пользователь, либо гость"""
    user_id: Optional[str] = None
    email: str
    guest: Optional[GuestContact] = None


class CheckoutDTO(BaseModel):
    items: List[CartLineDTO] = Field(min_length=1)
    payment_method: PaymentMethod
    address_id: Optional[str] = None
    discount_code: Optional[str] = None
    idempotency_key: Optional[str] = None


class CheckoutResult(BaseModel):
    order: Order
    payment: Optional[dict] = None
    demo: bool = False


class CheckoutUseCase:
    """Оформление заказа: цены -> промокод -> запись заказа -> платеж -> уведомления.

    Все, что до записи заказа, отменяет запрос целиком. Все, что после,
    выполняется best-effort: заказ остается, даже если упал шлюз или почта.
    """

    def __init__(
        self,
        unit_of_work,
        gateways: dict,
        notifications: NotificationChannel,
        pricing: PricingValidator,
        discounts: DiscountEngine,
        ledger: InventoryLedger,
        currency: str = "INR",
        shipping_cost: Decimal = Decimal("0"),
        app_url: str = ""
    ):
        self._uow = unit_of_work
        self._gateways = gateways
        self._notifications = notifications
        self._pricing = pricing
        self._discounts = discounts
        self._ledger = ledger
        self._currency = currency
        self._shipping_cost = money(shipping_cost)
        self._app_url = app_url

    def _gateway_for(self, method: PaymentMethod) -> PaymentGateway:
        gateway = self._gateways.get(method)
        if gateway is None:
            raise ValidationError(f"Способ оплаты {method.value} не поддерживается")
        return gateway

    async def __call__(self, buyer: Buyer, dto: CheckoutDTO) -> CheckoutResult:
        logger.info(f"Оформление заказа для {buyer.user_id or buyer.email}, позиций: {len(dto.items)}")
        gateway = self._gateway_for(dto.payment_method)

        # 1. Повторная отправка того же запроса
        if dto.idempotency_key:
            async with self._uow() as uow:
                existing = await uow.orders.get_by_idempotency_key(dto.idempotency_key)
            if existing:
                return await self._resume(existing, buyer)

        # 2-4. Цены, промокод и запись заказа в одной транзакции
        try:
            order = await self._create_order(buyer, dto, gateway)
        except IntegrityError:
            # Параллельный запрос с тем же ключом успел первым
            async with self._uow() as uow:
                existing = await uow.orders.get_by_idempotency_key(dto.idempotency_key)
            if not existing:
                raise
            return await self._resume(existing, buyer)

        # 5-6. Платеж. При ошибке заказ остается PENDING
        payment = await self._initiate_payment(order, gateway, buyer.email)

        # 7. Уведомления
        await self._notify_created(order, buyer)

        return CheckoutResult(order=order, payment=payment)

    async def retry_payment(self, order_id: str, buyer: Buyer) -> CheckoutResult:
        async with self._uow() as uow:
            order = await uow.orders.get_by_id(order_id)
        if not order or order.user_id != buyer.user_id:
            raise OrderNotFoundError(f"Заказ {order_id} не найден")
        if not order.can_be_paid():
            raise ValidationError(f"Заказ {order.order_number} не ожидает оплаты (статус {order.status.value})")
        payment = await self._initiate_payment(order, self._gateway_for(order.payment_method), buyer.email)
        return CheckoutResult(order=order, payment=payment)

    async def _resume(self, order: Order, buyer: Buyer) -> CheckoutResult:
        if order.user_id != buyer.user_id or order.email != buyer.email:
            raise ValidationError("Ключ идемпотентности уже использован для другого заказа")
        logger.info(f"Заказ уже существует: {order.id}")
        payment = None
        if order.can_be_paid():
            payment = await self._initiate_payment(order, self._gateway_for(order.payment_method), buyer.email)
        return CheckoutResult(order=order, payment=payment)

    async def _create_order(self, buyer: Buyer, dto: CheckoutDTO, gateway: PaymentGateway) -> Order:
        order_id = str(uuid.uuid4())
        async with self._uow() as uow:
            priced = await self._pricing(uow, dto.items, order_id)
            discounted, discount_id = await self._discounts(uow, dto.discount_code, priced.subtotal)
            discount_amount = money(priced.subtotal - discounted)
            total = money(max(Decimal(0), priced.subtotal - discount_amount + self._shipping_cost))

            now = utcnow()
            order = Order(
                id=order_id,
                order_number=generate_order_number(),
                user_id=buyer.user_id,
                email=buyer.email,
                guest=buyer.guest,
                # Оплата при получении не ждет подтверждения шлюза
                status=OrderStatus.PENDING if gateway.collects_upfront else OrderStatus.CONFIRMED,
                payment_method=dto.payment_method,
                payment_status=PaymentStatus.PENDING,
                subtotal=priced.subtotal,
                discount_amount=discount_amount,
                shipping_cost=self._shipping_cost,
                total=total,
                discount_code_id=discount_id,
                shipping_address_id=dto.address_id,
                billing_address_id=dto.address_id,
                idempotency_key=dto.idempotency_key,
                items=priced.items,
                created_at=now,
                updated_at=now
            )
            await uow.orders.create(order)
            if order.status == OrderStatus.CONFIRMED:
                await announce_confirmation(uow, order, self._ledger)
            await uow.commit()

        logger.info(f"Заказ создан: {order.order_number} ({order.status.value}), сумма {order.total}")
        return order

    async def _initiate_payment(self, order: Order, gateway: PaymentGateway, email: str) -> Optional[dict]:
        if not gateway.collects_upfront:
            return None

        # Транзакция уже закрыта: шлюз вызывается вне ее
        result = await gateway.create_intent(to_minor_units(order.total), order.id, email)
        if not result.success:
            logger.error(f"Платеж для заказа {order.order_number} не создан: {result.error}")
            await self._log_payment(order, gateway, PaymentStatus.FAILED, {"error": result.error})
            raise GatewayError("Не удалось инициировать платеж", order_id=order.id)

        # Без intent id платеж нельзя будет подтвердить, поэтому запись обязательная
        try:
            async with self._uow() as uow:
                await uow.orders.update_payment_intent(order.id, result.intent_id)
                await uow.commit()
        except Exception as e:
            logger.error(f"Не удалось сохранить платеж {result.intent_id} для {order.order_number}: {e}")
            raise GatewayError("Не удалось инициировать платеж", order_id=order.id) from e

        await self._log_payment(order, gateway, PaymentStatus.PENDING, result.raw)
        logger.info(f"Платеж {result.intent_id} создан для заказа {order.order_number}")
        return result.instructions

    async def _log_payment(self, order: Order, gateway: PaymentGateway, status: PaymentStatus,
                           response: Optional[dict]) -> None:
        try:
            async with self._uow() as uow:
                await uow.payment_logs.create(
                    PaymentLog(
                        id=str(uuid.uuid4()),
                        order_id=order.id,
                        gateway=gateway.name,
                        payment_method=order.payment_method,
                        amount=order.total,
                        currency=self._currency,
                        status=status,
                        gateway_response=response,
                        created_at=utcnow()
                    )
                )
                await uow.commit()
        except Exception as e:
            logger.error(f"Не удалось записать payment log для {order.order_number}: {e}")

    async def _notify_created(self, order: Order, buyer: Buyer) -> None:
        await self._notifications.email(
            to=buyer.email,
            template="orderConfirmation",
            data={
                "name": customer_name(order),
                "orderNumber": order.order_number,
                "total": str(order.total),
                "items": [
                    {"productId": item.product_id, "quantity": item.quantity, "price": str(item.price)}
                    for item in order.items
                ],
                "orderUrl": f"{self._app_url}/orders/{order.id}"
            },
            reference_id=order.id
        )
        await self._notifications.analytics(
            event_type="CHECKOUT_START",
            event_name="Checkout Started",
            user_id=buyer.user_id,
            page="/checkout",
            metadata={"orderId": order.id, "total": str(order.total), "itemCount": len(order.items)},
            reference_id=order.id
        )
