import logging
from fastapi import Depends, FastAPI
from contextlib import asynccontextmanager

from storefront.config import Settings, settings
from storefront.database import create_tables, engine
from storefront.domain.exceptions import DomainException
from storefront.presentation.api import domain_error_handler, get_settings, router

logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Управление жизненным циклом приложения"""
    # В production схемой управляет Alembic
    if not settings.is_production:
        try:
            await create_tables()
            logger.info("Таблицы созданы")
        except Exception as e:
            # Гостевой demo-режим должен подниматься и без БД
            logger.warning(f"Не удалось создать таблицы: {e}")

    yield

    logger.info("Приложение останавливается...")
    await engine.dispose()


app = FastAPI(
    title="Storefront Checkout Service",
    description="Оформление заказов, оплата и остатки",
    version="1.0.0",
    lifespan=lifespan
)

app.add_exception_handler(DomainException, domain_error_handler)
app.include_router(router, prefix="/api")


@app.get("/")
async def root():
    return {"message": "Storefront checkout service работает"}


@app.get("/health")
async def health(config: Settings = Depends(get_settings)):
    return {"status": "healthy", "environment": config.ENVIRONMENT}
