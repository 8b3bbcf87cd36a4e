from typing import Optional
from pydantic import BaseModel

from storefront.domain.models import PaymentStatus


class IntentResult(BaseModel):
    """Нормализованный ответ шлюза на создание платежа"""
    success: bool
    gateway: str
    intent_id: Optional[str] = None
    client_secret: Optional[str] = None
    amount: Optional[int] = None
    currency: Optional[str] = None
    instructions: Optional[dict] = None
    raw: Optional[dict] = None
    error: Optional[str] = None


class ConfirmResult(BaseModel):
    success: bool
    status: PaymentStatus
    transaction_id: Optional[str] = None
    raw: Optional[dict] = None
    error: Optional[str] = None


class StatusResult(BaseModel):
    success: bool
    status: PaymentStatus
    amount: Optional[int] = None
    raw: Optional[dict] = None
    error: Optional[str] = None


class RefundResult(BaseModel):
    success: bool
    refund_id: Optional[str] = None
    amount: Optional[int] = None
    raw: Optional[dict] = None
    error: Optional[str] = None
