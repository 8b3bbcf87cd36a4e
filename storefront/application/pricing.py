import logging
import uuid
from decimal import Decimal
from typing import List
from pydantic import BaseModel, Field

from storefront.domain.models import OrderItem, money
from storefront.domain.exceptions import PriceDriftError, ProductNotFoundError, ValidationError


logger = logging.getLogger(__name__)


class CartLineDTO(BaseModel):
    product_id: str
    quantity: int = Field(ge=1)
    price: Decimal = Field(ge=0)


class PricedCart(BaseModel):
    subtotal: Decimal
    items: List[OrderItem]


class PricingValidator:
    """Пересчитывает корзину по актуальным ценам каталога"""

    def __init__(self, tolerance: Decimal = Decimal("0.10")):
        self._tolerance = tolerance

    async def __call__(self, uow, lines: List[CartLineDTO], order_id: str) -> PricedCart:
        if not lines:
            raise ValidationError("Заказ должен содержать товары")

        subtotal = Decimal(0)
        items = []
        for line in lines:
            product = await uow.products.get_by_id(line.product_id)
            if not product:
                raise ProductNotFoundError(line.product_id)

            server_price = product.price
            if abs(server_price - line.price) > server_price * self._tolerance:
                logger.warning(
                    f"Расхождение цены для {product.id}: клиент {line.price}, сервер {server_price}"
                )
                raise PriceDriftError(product.id, product.name, server_price, line.price)

            subtotal += server_price * line.quantity
            items.append(
                OrderItem(
                    id=str(uuid.uuid4()),
                    order_id=order_id,
                    product_id=product.id,
                    quantity=line.quantity,
                    price=money(server_price)
                )
            )

        return PricedCart(subtotal=money(subtotal), items=items)
