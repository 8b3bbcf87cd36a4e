import logging
import uuid
from decimal import Decimal
from typing import List, Optional
from pydantic import BaseModel, Field

from storefront.domain.models import (
    GuestContact, Order, OrderItem, OrderStatus, PaymentMethod, PaymentStatus, money, utcnow
)
from storefront.domain.exceptions import OrderNotFoundError, StoreUnavailableError, ValidationError
from storefront.application.checkout import Buyer, CheckoutDTO, CheckoutResult, CheckoutUseCase, generate_order_number
from storefront.application.pricing import CartLineDTO


logger = logging.getLogger(__name__)


class GuestCheckoutDTO(BaseModel):
    contact: GuestContact
    items: List[CartLineDTO] = Field(min_length=1)
    payment_method: PaymentMethod = PaymentMethod.RAZORPAY
    discount_code: Optional[str] = None
    idempotency_key: Optional[str] = None


class CreateGuestOrderUseCase:
    """Заказ без регистрации.

    Цены и промокод проверяются так же, как для зарегистрированных покупателей.
    Если хранилище недоступно и demo_fallback включен (только не в production),
    возвращается синтетический заказ с пометкой demo.
    """

    def __init__(self, checkout: CheckoutUseCase, demo_fallback: bool = False, shipping_cost: Decimal = Decimal("0")):
        self._checkout = checkout
        self._demo_fallback = demo_fallback
        self._shipping_cost = money(shipping_cost)

    async def __call__(self, dto: GuestCheckoutDTO) -> CheckoutResult:
        contact = dto.contact.model_copy(update={"email": dto.contact.email.strip().lower()})
        if not contact.first_name or not contact.last_name or not contact.phone or not contact.address:
            raise ValidationError("Не заполнены обязательные поля покупателя")

        buyer = Buyer(email=contact.email, guest=contact)
        checkout_dto = CheckoutDTO(
            items=dto.items,
            payment_method=dto.payment_method,
            discount_code=dto.discount_code,
            idempotency_key=dto.idempotency_key
        )

        try:
            return await self._checkout(buyer, checkout_dto)
        except StoreUnavailableError as e:
            if not self._demo_fallback:
                raise
            logger.warning(f"Хранилище недоступно, гостевой заказ создан в demo-режиме: {e}")
            return CheckoutResult(order=self._demo_order(contact, dto), demo=True)

    def _demo_order(self, contact: GuestContact, dto: GuestCheckoutDTO) -> Order:
        order_number = generate_order_number()
        order_id = order_number.replace("ORD-", "")
        # Серверные цены недоступны, суммы считаются по ценам клиента
        items = [
            OrderItem(
                id=str(uuid.uuid4()),
                order_id=order_id,
                product_id=line.product_id,
                quantity=line.quantity,
                price=money(line.price)
            )
            for line in dto.items
        ]
        subtotal = money(sum((item.line_total for item in items), Decimal(0)))
        now = utcnow()
        return Order(
            id=order_id,
            order_number=order_number,
            email=contact.email,
            guest=contact,
            status=OrderStatus.PENDING,
            payment_method=dto.payment_method,
            payment_status=PaymentStatus.PENDING,
            subtotal=subtotal,
            shipping_cost=self._shipping_cost,
            total=money(subtotal + self._shipping_cost),
            items=items,
            created_at=now,
            updated_at=now
        )


class GuestOrderLookup(BaseModel):
    order: Order
    demo: bool = False


class GetGuestOrderUseCase:
    def __init__(self, unit_of_work, demo_fallback: bool = False):
        self._uow = unit_of_work
        self._demo_fallback = demo_fallback

    async def __call__(self, email: str, order_number: str) -> GuestOrderLookup:
        if not email or not order_number:
            raise ValidationError("Необходимо указать email и номер заказа")
        email = email.strip().lower()
        order_number = order_number.strip().upper()

        try:
            async with self._uow() as uow:
                order = await uow.orders.get_by_number_and_email(order_number, email)
        except StoreUnavailableError as e:
            if not self._demo_fallback:
                raise
            logger.warning(f"Хранилище недоступно, возвращен demo-заказ {order_number}: {e}")
            return GuestOrderLookup(order=self._demo_order(email, order_number), demo=True)

        if not order:
            raise OrderNotFoundError(f"Заказ {order_number} не найден")
        return GuestOrderLookup(order=order)

    @staticmethod
    def _demo_order(email: str, order_number: str) -> Order:
        now = utcnow()
        return Order(
            id="demo-order-id",
            order_number=order_number,
            email=email,
            guest=GuestContact(
                first_name="Demo", last_name="Customer", email=email, phone="9876543210", address="Demo address"
            ),
            status=OrderStatus.SHIPPED,
            payment_method=PaymentMethod.RAZORPAY,
            payment_status=PaymentStatus.COMPLETED,
            subtotal=money(2000),
            shipping_cost=money(99),
            total=money(2099),
            created_at=now,
            updated_at=now
        )
