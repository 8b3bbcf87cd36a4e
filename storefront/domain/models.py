from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import Optional
from pydantic import BaseModel, Field, model_validator


CENT = Decimal("0.01")


def money(value) -> Decimal:
    """Приводит сумму к Decimal с двумя знаками"""
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


def to_minor_units(amount: Decimal) -> int:
    """Рубли -> копейки (paise/cents) для платежных шлюзов"""
    return int((money(amount) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class OrderStatus(str, Enum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    PROCESSING = "PROCESSING"
    SHIPPED = "SHIPPED"
    DELIVERED = "DELIVERED"
    CANCELLED = "CANCELLED"
    REFUNDED = "REFUNDED"


# Прямая цепочка жизненного цикла заказа
FULFILLMENT_CHAIN = (
    OrderStatus.PENDING,
    OrderStatus.CONFIRMED,
    OrderStatus.PROCESSING,
    OrderStatus.SHIPPED,
    OrderStatus.DELIVERED,
)
TERMINAL_STATUSES = (OrderStatus.DELIVERED, OrderStatus.CANCELLED, OrderStatus.REFUNDED)


class PaymentMethod(str, Enum):
    RAZORPAY = "razorpay"
    STRIPE = "stripe"
    COD = "cod"

    @property
    def is_hosted_gateway(self) -> bool:
        return self is not PaymentMethod.COD


class PaymentStatus(str, Enum):
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    REFUNDED = "REFUNDED"


class DiscountType(str, Enum):
    PERCENTAGE = "PERCENTAGE"
    FIXED = "FIXED"


class StockStatus(str, Enum):
    IN_STOCK = "in_stock"
    LOW = "low"
    CRITICAL = "critical"
    OUT_OF_STOCK = "out_of_stock"

    @classmethod
    def classify(cls, total_stock: int) -> "StockStatus":
        if total_stock <= 0:
            return cls.OUT_OF_STOCK
        if total_stock <= 5:
            return cls.CRITICAL
        if total_stock <= 10:
            return cls.LOW
        return cls.IN_STOCK


class InventoryOperation(str, Enum):
    SET = "set"
    INCREMENT = "increment"
    DECREMENT = "decrement"


class Identity(BaseModel):
    """Пользователь от внешнего identity provider"""
    user_id: str
    email: str
    role: str = "CUSTOMER"

    @property
    def is_admin(self) -> bool:
        return self.role.upper() == "ADMIN"


class GuestContact(BaseModel):
    """Value Object — контактные данные гостя"""
    first_name: str
    last_name: str
    email: str
    phone: str
    address: str
    city: str = ""
    state: str = ""
    zip_code: str = ""
    country: str = ""

    def full_address(self) -> str:
        return f"{self.address}, {self.city}, {self.state} {self.zip_code}, {self.country}"


class ProductVariant(BaseModel):
    id: str
    product_id: str
    size: Optional[str] = None
    color: Optional[str] = None
    sku: Optional[str] = None
    quantity: int = 0


class Product(BaseModel):
    id: str
    name: str
    sku: Optional[str] = None
    slug: Optional[str] = None
    category_id: Optional[str] = None
    price: Decimal
    inventory: int = 0
    variants: list[ProductVariant] = Field(default_factory=list)

    @property
    def variant_stock(self) -> int:
        return sum(v.quantity for v in self.variants)

    @property
    def total_stock(self) -> int:
        return self.inventory + self.variant_stock

    @property
    def stock_status(self) -> StockStatus:
        return StockStatus.classify(self.total_stock)


class DiscountCode(BaseModel):
    id: str
    code: str
    discount_type: DiscountType
    discount_value: Decimal
    is_active: bool = True
    valid_from: Optional[datetime] = None
    valid_until: datetime

    def is_usable(self, now: datetime) -> bool:
        """Бизнес-правило: активен и не истек"""
        valid_until = self.valid_until
        if valid_until.tzinfo is None:
            valid_until = valid_until.replace(tzinfo=timezone.utc)
        return self.is_active and now <= valid_until

    def apply(self, subtotal: Decimal) -> Decimal:
        if self.discount_type == DiscountType.PERCENTAGE:
            adjusted = subtotal * (1 - self.discount_value / Decimal(100))
        else:
            adjusted = subtotal - self.discount_value
        return money(max(Decimal(0), adjusted))


class OrderItem(BaseModel):
    """Цена фиксируется на момент заказа"""
    id: str
    order_id: str
    product_id: str
    quantity: int = Field(ge=1)
    price: Decimal

    @property
    def line_total(self) -> Decimal:
        return money(self.price * self.quantity)


class Order(BaseModel):
    """Domain Entity — заказ (aggregate root вместе с позициями)"""
    id: str
    order_number: str
    user_id: Optional[str] = None
    email: str
    guest: Optional[GuestContact] = None
    status: OrderStatus
    payment_method: PaymentMethod
    payment_status: PaymentStatus = PaymentStatus.PENDING
    subtotal: Decimal
    discount_amount: Decimal = Decimal("0.00")
    shipping_cost: Decimal = Decimal("0.00")
    total: Decimal
    discount_code_id: Optional[str] = None
    shipping_address_id: Optional[str] = None
    billing_address_id: Optional[str] = None
    tracking_number: Optional[str] = None
    tracking_url: Optional[str] = None
    payment_intent_id: Optional[str] = None
    payment_transaction_id: Optional[str] = None
    idempotency_key: Optional[str] = None
    items: list[OrderItem] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime

    @model_validator(mode="after")
    def _buyer_is_exclusive(self):
        if (self.user_id is None) == (self.guest is None):
            raise ValueError("Заказ оформляется либо на пользователя, либо на гостя")
        return self

    @property
    def is_guest(self) -> bool:
        return self.guest is not None

    def can_be_paid(self) -> bool:
        """Бизнес-правило: оплатить через шлюз можно только PENDING заказ"""
        return self.status == OrderStatus.PENDING and self.payment_method.is_hosted_gateway

    def holds_stock(self) -> bool:
        """Склад уже списан под этот заказ"""
        return self.status in (OrderStatus.CONFIRMED, OrderStatus.PROCESSING)

    def can_transition_to(self, target: OrderStatus) -> bool:
        if self.status == target:
            return True
        if self.status in TERMINAL_STATUSES:
            return False
        if target in (OrderStatus.CANCELLED, OrderStatus.REFUNDED):
            return True
        if target not in FULFILLMENT_CHAIN:
            return False
        # Только вперед по цепочке, пропуск промежуточных шагов допустим
        return FULFILLMENT_CHAIN.index(target) > FULFILLMENT_CHAIN.index(self.status)

    def expected_total(self) -> Decimal:
        subtotal = sum((item.line_total for item in self.items), Decimal(0))
        return money(max(Decimal(0), subtotal - self.discount_amount + self.shipping_cost))


class PaymentLog(BaseModel):
    id: str
    order_id: str
    gateway: str
    payment_method: PaymentMethod
    amount: Decimal
    currency: str
    status: PaymentStatus
    gateway_response: Optional[dict] = None
    gateway_transaction_id: Optional[str] = None
    created_at: datetime


class AnalyticsEvent(BaseModel):
    """Не авторитетная запись аудита"""
    id: str
    user_id: Optional[str] = None
    event_type: str
    event_name: str
    page: Optional[str] = None
    metadata: dict = Field(default_factory=dict)
    created_at: datetime
