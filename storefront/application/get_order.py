from storefront.domain.models import Identity, Order
from storefront.domain.exceptions import OrderNotFoundError


class GetOrderUseCase:
    def __init__(self, unit_of_work):
        self._uow = unit_of_work

    async def __call__(self, order_id: str, identity: Identity) -> Order:
        async with self._uow() as uow:
            order = await uow.orders.get_by_id(order_id)
            # Чужой заказ неотличим от несуществующего
            if not order or not (identity.is_admin or order.user_id == identity.user_id):
                raise OrderNotFoundError(f"Заказ {order_id} не найден")
            return order
