import logging
from typing import Optional
from fastapi import APIRouter, Depends, Header, Query, Request, status
from fastapi.responses import JSONResponse

from storefront.config import Settings, settings
from storefront.database import AsyncSessionLocal
from storefront.domain.models import GuestContact, Identity
from storefront.domain.exceptions import (
    AuthenticationError, DomainException, GatewayError, InvalidDiscountError, InvalidStatusTransitionError,
    NotFoundError, PaymentVerificationError, PermissionDeniedError, PriceDriftError, StoreUnavailableError,
    ValidationError
)
from storefront.application.checkout import Buyer, CheckoutDTO, CheckoutUseCase
from storefront.application.discounts import DiscountEngine
from storefront.application.get_order import GetOrderUseCase
from storefront.application.guest_order import CreateGuestOrderUseCase, GetGuestOrderUseCase, GuestCheckoutDTO
from storefront.application.inventory import (
    AdjustInventoryDTO, AdjustInventoryUseCase, BulkAdjustInventoryUseCase, BulkAdjustmentDTO,
    GetInventoryReportUseCase, InventoryLedger, VariantUpdateDTO
)
from storefront.application.order_status import CancelOrderUseCase, UpdateOrderStatusDTO, UpdateOrderStatusUseCase
from storefront.application.pricing import CartLineDTO, PricingValidator
from storefront.application.refund import RefundDTO, RefundOrderUseCase
from storefront.application.verify_payment import VerifyPaymentDTO, VerifyPaymentUseCase
from storefront.infrastructure.gateways import build_gateways
from storefront.infrastructure.notifications import OutboxNotificationChannel
from storefront.infrastructure.unit_of_work import UnitOfWork
from storefront.presentation.identity import get_admin, get_identity
from storefront.presentation.schemas import (
    BulkInventoryRequest, BulkInventoryResponse, CheckoutRequest, CheckoutResponse, ErrorResponse,
    GuestOrderRequest, GuestOrderResponse, InventoryReportResponse, InventoryUpdateRequest, OrderResponse,
    ProductStockResponse, RefundRequest, UpdateOrderStatusRequest, VerifyPaymentRequest
)

logger = logging.getLogger(__name__)

router = APIRouter()


# Доменные исключения -> HTTP статусы (ищется ближайший класс по MRO)
ERROR_STATUS_CODES: dict[type, int] = {
    ValidationError: 400,
    PriceDriftError: 400,
    InvalidDiscountError: 400,
    InvalidStatusTransitionError: 400,
    PaymentVerificationError: 400,
    AuthenticationError: 401,
    PermissionDeniedError: 403,
    NotFoundError: 404,
    GatewayError: 502,
    StoreUnavailableError: 503,
}


async def domain_error_handler(request: Request, exc: DomainException) -> JSONResponse:
    status_code = next(
        (ERROR_STATUS_CODES[cls] for cls in type(exc).__mro__ if cls in ERROR_STATUS_CODES), 500
    )
    content = {"detail": str(exc), "error_type": type(exc).__name__}
    if isinstance(exc, GatewayError):
        # Заказ сохранен, клиент может повторить оплату
        content["order_id"] = exc.order_id
    if status_code >= 500:
        logger.error(f"{request.method} {request.url.path}: {type(exc).__name__}: {exc}")
    return JSONResponse(status_code=status_code, content=content)


ERROR_RESPONSES = {
    400: {"model": ErrorResponse},
    401: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    502: {"model": ErrorResponse},
    503: {"model": ErrorResponse},
}


# Фабрики для создания use cases
def get_settings() -> Settings:
    return settings


def get_unit_of_work() -> UnitOfWork:
    return UnitOfWork(AsyncSessionLocal)


def get_gateways(config: Settings = Depends(get_settings)) -> dict:
    return build_gateways(config)


def get_ledger() -> InventoryLedger:
    return InventoryLedger()


def get_notifications(uow: UnitOfWork = Depends(get_unit_of_work)) -> OutboxNotificationChannel:
    return OutboxNotificationChannel(uow)


def get_checkout_use_case(
    uow: UnitOfWork = Depends(get_unit_of_work),
    gateways: dict = Depends(get_gateways),
    notifications: OutboxNotificationChannel = Depends(get_notifications),
    ledger: InventoryLedger = Depends(get_ledger),
    config: Settings = Depends(get_settings)
):
    return CheckoutUseCase(
        uow,
        gateways,
        notifications,
        PricingValidator(config.PRICE_DRIFT_TOLERANCE),
        DiscountEngine(),
        ledger,
        currency=config.PAYMENT_CURRENCY,
        shipping_cost=config.SHIPPING_COST,
        app_url=config.APP_URL
    )


def get_verify_payment_use_case(
    uow: UnitOfWork = Depends(get_unit_of_work),
    gateways: dict = Depends(get_gateways),
    notifications: OutboxNotificationChannel = Depends(get_notifications),
    ledger: InventoryLedger = Depends(get_ledger)
):
    return VerifyPaymentUseCase(uow, gateways, ledger, notifications)


def get_refund_use_case(
    uow: UnitOfWork = Depends(get_unit_of_work),
    gateways: dict = Depends(get_gateways),
    notifications: OutboxNotificationChannel = Depends(get_notifications),
    ledger: InventoryLedger = Depends(get_ledger),
    config: Settings = Depends(get_settings)
):
    return RefundOrderUseCase(uow, gateways, ledger, notifications, currency=config.PAYMENT_CURRENCY)


def get_guest_order_use_case(
    checkout: CheckoutUseCase = Depends(get_checkout_use_case),
    config: Settings = Depends(get_settings)
):
    return CreateGuestOrderUseCase(checkout, demo_fallback=config.demo_fallback_enabled, shipping_cost=config.SHIPPING_COST)


def get_guest_lookup_use_case(
    uow: UnitOfWork = Depends(get_unit_of_work),
    config: Settings = Depends(get_settings)
):
    return GetGuestOrderUseCase(uow, demo_fallback=config.demo_fallback_enabled)


def get_get_order_use_case(uow: UnitOfWork = Depends(get_unit_of_work)):
    return GetOrderUseCase(uow)


def get_cancel_order_use_case(
    uow: UnitOfWork = Depends(get_unit_of_work),
    notifications: OutboxNotificationChannel = Depends(get_notifications),
    ledger: InventoryLedger = Depends(get_ledger)
):
    return CancelOrderUseCase(uow, ledger, notifications)


def get_update_status_use_case(
    uow: UnitOfWork = Depends(get_unit_of_work),
    notifications: OutboxNotificationChannel = Depends(get_notifications),
    ledger: InventoryLedger = Depends(get_ledger)
):
    return UpdateOrderStatusUseCase(uow, ledger, notifications)


def get_inventory_report_use_case(uow: UnitOfWork = Depends(get_unit_of_work)):
    return GetInventoryReportUseCase(uow)


def get_adjust_inventory_use_case(
    uow: UnitOfWork = Depends(get_unit_of_work),
    ledger: InventoryLedger = Depends(get_ledger)
):
    return AdjustInventoryUseCase(uow, ledger)


def get_bulk_inventory_use_case(
    uow: UnitOfWork = Depends(get_unit_of_work),
    notifications: OutboxNotificationChannel = Depends(get_notifications),
    ledger: InventoryLedger = Depends(get_ledger)
):
    return BulkAdjustInventoryUseCase(uow, ledger, notifications)


def _cart(items) -> list:
    return [CartLineDTO(product_id=item.product_id, quantity=item.quantity, price=item.price) for item in items]


# Checkout

@router.post(
    "/checkout",
    response_model=CheckoutResponse,
    responses=ERROR_RESPONSES,
    status_code=status.HTTP_201_CREATED
)
async def checkout(
    request: CheckoutRequest,
    idempotency_key: Optional[str] = Header(default=None),
    identity: Identity = Depends(get_identity),
    use_case: CheckoutUseCase = Depends(get_checkout_use_case)
):
    """Оформить заказ и получить инструкции для оплаты"""
    dto = CheckoutDTO(
        items=_cart(request.items),
        payment_method=request.payment_method,
        address_id=request.address_id,
        discount_code=request.discount_code,
        idempotency_key=idempotency_key
    )
    result = await use_case(Buyer(user_id=identity.user_id, email=identity.email), dto)
    return CheckoutResponse.from_result(result)


@router.put("/checkout", response_model=OrderResponse, responses=ERROR_RESPONSES)
async def verify_payment(
    request: VerifyPaymentRequest,
    use_case: VerifyPaymentUseCase = Depends(get_verify_payment_use_case)
):
    """Подтвердить оплату после возврата клиента со страницы шлюза.

    Идентичность не требуется: гостевые заказы тоже оплачиваются через шлюз,
    а принадлежность платежа заказу проверяет сам шлюз.
    """
    order = await use_case(
        VerifyPaymentDTO(order_id=request.order_id, payment_id=request.payment_id, signature=request.signature)
    )
    return OrderResponse.model_validate(order)


@router.post("/checkout/refunds", response_model=OrderResponse, responses=ERROR_RESPONSES)
async def refund_order(
    request: RefundRequest,
    admin: Identity = Depends(get_admin),
    use_case: RefundOrderUseCase = Depends(get_refund_use_case)
):
    """Вернуть оплату по заказу"""
    order = await use_case(
        RefundDTO(order_id=request.order_id, amount=request.amount, reason=request.reason),
        actor_id=admin.user_id
    )
    return OrderResponse.model_validate(order)


@router.post("/checkout/{order_id}/payment", response_model=CheckoutResponse, responses=ERROR_RESPONSES)
async def retry_payment(
    order_id: str,
    identity: Identity = Depends(get_identity),
    use_case: CheckoutUseCase = Depends(get_checkout_use_case)
):
    """Повторно создать платеж для PENDING заказа"""
    result = await use_case.retry_payment(order_id, Buyer(user_id=identity.user_id, email=identity.email))
    return CheckoutResponse.from_result(result)


# Orders

@router.post(
    "/orders/guest",
    response_model=CheckoutResponse,
    responses=ERROR_RESPONSES,
    status_code=status.HTTP_201_CREATED
)
async def create_guest_order(
    request: GuestOrderRequest,
    idempotency_key: Optional[str] = Header(default=None),
    use_case: CreateGuestOrderUseCase = Depends(get_guest_order_use_case)
):
    """Заказ без регистрации"""
    contact = GuestContact(
        first_name=request.first_name,
        last_name=request.last_name,
        email=request.email,
        phone=request.phone,
        address=request.address,
        city=request.city,
        state=request.state,
        zip_code=request.zip_code,
        country=request.country
    )
    result = await use_case(
        GuestCheckoutDTO(
            contact=contact,
            items=_cart(request.items),
            payment_method=request.payment_method,
            discount_code=request.discount_code,
            idempotency_key=idempotency_key
        )
    )
    return CheckoutResponse.from_result(result)


@router.get("/orders/guest", response_model=GuestOrderResponse, responses=ERROR_RESPONSES)
async def get_guest_order(
    email: str = Query(...),
    order_number: str = Query(..., alias="orderNumber"),
    use_case: GetGuestOrderUseCase = Depends(get_guest_lookup_use_case)
):
    """Отследить гостевой заказ по email и номеру"""
    lookup = await use_case(email, order_number)
    return GuestOrderResponse(order=OrderResponse.model_validate(lookup.order), demo=lookup.demo)


@router.get("/orders/{order_id}", response_model=OrderResponse, responses=ERROR_RESPONSES)
async def get_order(
    order_id: str,
    identity: Identity = Depends(get_identity),
    use_case: GetOrderUseCase = Depends(get_get_order_use_case)
):
    """Получить заказ по ID"""
    order = await use_case(order_id, identity)
    return OrderResponse.model_validate(order)


@router.post("/orders/{order_id}/cancel", response_model=OrderResponse, responses=ERROR_RESPONSES)
async def cancel_order(
    order_id: str,
    identity: Identity = Depends(get_identity),
    use_case: CancelOrderUseCase = Depends(get_cancel_order_use_case)
):
    """Отменить заказ до доставки"""
    order = await use_case(order_id, identity)
    return OrderResponse.model_validate(order)


@router.put("/admin/orders/{order_id}/status", response_model=OrderResponse, responses=ERROR_RESPONSES)
async def update_order_status(
    order_id: str,
    request: UpdateOrderStatusRequest,
    admin: Identity = Depends(get_admin),
    use_case: UpdateOrderStatusUseCase = Depends(get_update_status_use_case)
):
    """Сменить статус заказа вручную"""
    order = await use_case(
        UpdateOrderStatusDTO(
            order_id=order_id,
            status=request.status,
            tracking_number=request.tracking_number,
            tracking_url=request.tracking_url
        )
    )
    return OrderResponse.model_validate(order)


# Inventory

@router.get("/inventory", response_model=InventoryReportResponse, responses=ERROR_RESPONSES)
async def get_inventory(
    low_stock: bool = Query(False, alias="lowStock"),
    category_id: Optional[str] = Query(None, alias="categoryId"),
    admin: Identity = Depends(get_admin),
    use_case: GetInventoryReportUseCase = Depends(get_inventory_report_use_case)
):
    """Остатки по товарам со сводкой"""
    report = await use_case(low_stock=low_stock, category_id=category_id)
    return InventoryReportResponse.model_validate(report)


@router.put("/inventory", response_model=ProductStockResponse, responses=ERROR_RESPONSES)
async def update_inventory(
    request: InventoryUpdateRequest,
    admin: Identity = Depends(get_admin),
    use_case: AdjustInventoryUseCase = Depends(get_adjust_inventory_use_case)
):
    """Изменить остатки одного товара и его вариантов"""
    product = await use_case(
        AdjustInventoryDTO(
            product_id=request.product_id,
            inventory=request.inventory,
            operation=request.operation,
            variant_updates=[
                VariantUpdateDTO(variant_id=v.variant_id, quantity=v.quantity) for v in request.variant_updates
            ]
        )
    )
    return ProductStockResponse.model_validate(product)


@router.post("/inventory", response_model=BulkInventoryResponse, responses=ERROR_RESPONSES)
async def bulk_update_inventory(
    request: BulkInventoryRequest,
    admin: Identity = Depends(get_admin),
    use_case: BulkAdjustInventoryUseCase = Depends(get_bulk_inventory_use_case)
):
    """Пакетная корректировка: результат по каждой позиции отдельно"""
    results = await use_case(
        [
            BulkAdjustmentDTO(product_id=a.product_id, quantity=a.quantity, operation=a.operation)
            for a in request.adjustments
        ],
        reason=request.reason,
        actor_id=admin.user_id
    )
    succeeded = sum(1 for r in results if r.success)
    return BulkInventoryResponse(
        results=[r.model_dump() for r in results],
        succeeded=succeeded,
        failed=len(results) - succeeded
    )
