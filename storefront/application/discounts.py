import logging
from decimal import Decimal
from typing import Optional, Tuple

from storefront.domain.models import utcnow
from storefront.domain.exceptions import InvalidDiscountError


logger = logging.getLogger(__name__)


class DiscountEngine:
    """Применяет один промокод к сумме заказа"""

    def __init__(self, clock=utcnow):
        self._clock = clock

    async def __call__(self, uow, code: Optional[str], subtotal: Decimal) -> Tuple[Decimal, Optional[str]]:
        if not code:
            return subtotal, None

        discount = await uow.discounts.get_by_code(code)
        if not discount or not discount.is_usable(self._clock()):
            logger.info(f"Промокод {code} отклонен")
            raise InvalidDiscountError(code)

        adjusted = discount.apply(subtotal)
        logger.info(f"Промокод {code} применен: {subtotal} -> {adjusted}")
        return adjusted, discount.id
