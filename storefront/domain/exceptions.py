class DomainException(Exception):
    pass


class ValidationError(DomainException):
    pass


class AuthenticationError(DomainException):
    pass


class PermissionDeniedError(DomainException):
    pass


class NotFoundError(DomainException):
    pass


class ProductNotFoundError(NotFoundError):
    def __init__(self, product_id: str):
        self.product_id = product_id
        super().__init__(f"Товар {product_id} не найден")


class VariantNotFoundError(NotFoundError):
    def __init__(self, variant_id: str):
        self.variant_id = variant_id
        super().__init__(f"Вариант товара {variant_id} не найден")


class OrderNotFoundError(NotFoundError):
    pass


class PriceDriftError(DomainException):
    def __init__(self, product_id: str, product_name: str, server_price, client_price):
        self.product_id = product_id
        self.server_price = server_price
        self.client_price = client_price
        super().__init__(
            f"Цена товара {product_name} изменилась ({client_price} -> {server_price}). "
            f"Обновите корзину и попробуйте снова"
        )


class InvalidDiscountError(DomainException):
    def __init__(self, code: str):
        self.code = code
        super().__init__(f"Промокод {code} недействителен или истек")


class InvalidStatusTransitionError(DomainException):
    def __init__(self, current, target):
        self.current = current
        self.target = target
        super().__init__(f"Переход статуса {current.value} -> {target.value} невозможен")


class GatewayError(DomainException):
    """Платежный шлюз не смог создать/подтвердить платеж. Заказ при этом остается."""

    def __init__(self, message: str, order_id: str | None = None):
        self.order_id = order_id
        super().__init__(message)


class PaymentVerificationError(DomainException):
    pass


class NotificationError(DomainException):
    pass


class StoreUnavailableError(DomainException):
    pass
