from contextlib import asynccontextmanager
from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from storefront.domain.exceptions import StoreUnavailableError
from storefront.infrastructure.repositories import (
    SQLAlchemyAnalyticsRepository,
    SQLAlchemyDiscountRepository,
    SQLAlchemyInboxRepository,
    SQLAlchemyOrderRepository,
    SQLAlchemyOutboxRepository,
    SQLAlchemyPaymentLogRepository,
    SQLAlchemyProductRepository
)

# Ошибки подключения к хранилищу, а не ошибки данных
CONNECTIVITY_ERRORS = (OperationalError, InterfaceError, OSError)


class UnitOfWork:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    @asynccontextmanager
    async def __call__(self):
        try:
            async with self._session_factory() as session:
                try:
                    uow_impl = _UnitOfWorkImpl(session)
                    yield uow_impl
                    # Если commit не вызван — rollback
                    await session.rollback()
                except Exception:
                    await session.rollback()
                    raise
        except CONNECTIVITY_ERRORS as e:
            raise StoreUnavailableError(f"Хранилище недоступно: {e}") from e


class _UnitOfWorkImpl:
    def __init__(self, session: AsyncSession):
        self._session = session
        self.products = SQLAlchemyProductRepository(session)
        self.discounts = SQLAlchemyDiscountRepository(session)
        self.orders = SQLAlchemyOrderRepository(session)
        self.payment_logs = SQLAlchemyPaymentLogRepository(session)
        self.analytics = SQLAlchemyAnalyticsRepository(session)
        self.outbox = SQLAlchemyOutboxRepository(session)
        self.inbox = SQLAlchemyInboxRepository(session)

    async def commit(self):
        await self._session.commit()

    async def rollback(self):
        await self._session.rollback()
