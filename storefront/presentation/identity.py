from typing import Optional
from fastapi import Depends, Header

from storefront.domain.models import Identity
from storefront.domain.exceptions import AuthenticationError, PermissionDeniedError


async def get_optional_identity(
    x_user_id: Optional[str] = Header(default=None),
    x_user_email: Optional[str] = Header(default=None),
    x_user_role: Optional[str] = Header(default=None),
) -> Optional[Identity]:
    """Идентичность пробрасывает upstream proxy через заголовки"""
    if not x_user_id or not x_user_email:
        return None
    return Identity(user_id=x_user_id, email=x_user_email.strip().lower(), role=(x_user_role or "CUSTOMER").upper())


async def get_identity(identity: Optional[Identity] = Depends(get_optional_identity)) -> Identity:
    if identity is None:
        raise AuthenticationError("Требуется авторизация")
    return identity


async def get_admin(identity: Identity = Depends(get_identity)) -> Identity:
    if not identity.is_admin:
        raise PermissionDeniedError("Доступ только для администратора")
    return identity
