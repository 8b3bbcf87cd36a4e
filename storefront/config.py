import os
from decimal import Decimal
from dotenv import load_dotenv

load_dotenv()


def _flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


class Settings:
    # Database
    POSTGRES_CONNECTION_STRING: str = os.getenv("POSTGRES_CONNECTION_STRING", "")

    # Окружение
    ENVIRONMENT: str = os.getenv("ENVIRONMENT", "production")
    GUEST_DEMO_FALLBACK: bool = _flag("GUEST_DEMO_FALLBACK")
    APP_URL: str = os.getenv("APP_URL", "http://localhost:3000")

    # Checkout
    PAYMENT_CURRENCY: str = os.getenv("PAYMENT_CURRENCY", "INR")
    SHIPPING_COST: Decimal = Decimal(os.getenv("SHIPPING_COST", "0"))
    PRICE_DRIFT_TOLERANCE: Decimal = Decimal(os.getenv("PRICE_DRIFT_TOLERANCE", "0.10"))

    # Payment gateways
    RAZORPAY_BASE_URL: str = os.getenv("RAZORPAY_BASE_URL", "https://api.razorpay.com/v1")
    RAZORPAY_KEY_ID: str = os.getenv("RAZORPAY_KEY_ID", "")
    RAZORPAY_KEY_SECRET: str = os.getenv("RAZORPAY_KEY_SECRET", "")
    STRIPE_BASE_URL: str = os.getenv("STRIPE_BASE_URL", "https://api.stripe.com/v1")
    STRIPE_SECRET_KEY: str = os.getenv("STRIPE_SECRET_KEY", "")
    GATEWAY_TIMEOUT: float = float(os.getenv("GATEWAY_TIMEOUT", "30"))

    # Notifications
    EMAIL_SERVICE_URL: str = os.getenv("EMAIL_SERVICE_URL", "")
    EMAIL_API_TOKEN: str = os.getenv("EMAIL_API_TOKEN", "")
    NOTIFICATION_TIMEOUT: float = float(os.getenv("NOTIFICATION_TIMEOUT", "10"))
    OUTBOX_MAX_ATTEMPTS: int = int(os.getenv("OUTBOX_MAX_ATTEMPTS", "5"))

    # Kafka
    KAFKA_BOOTSTRAP_SERVERS: str = os.getenv("KAFKA_BOOTSTRAP_SERVERS", "localhost:9092")
    KAFKA_ORDER_TOPIC: str = os.getenv("KAFKA_ORDER_TOPIC", "storefront.order-events")
    KAFKA_FULFILLMENT_TOPIC: str = os.getenv("KAFKA_FULFILLMENT_TOPIC", "storefront.fulfillment-events")

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT.lower() == "production"

    @property
    def demo_fallback_enabled(self) -> bool:
        """Демо-заказы при недоступной БД только вне production"""
        return self.GUEST_DEMO_FALLBACK and not self.is_production

    @property
    def DATABASE_URL(self) -> str:
        """Асинхронный URL для приложения"""
        return self.POSTGRES_CONNECTION_STRING.replace("postgres://", "postgresql+asyncpg://")

    @property
    def SYNC_DATABASE_URL(self) -> str:
        """Синхронный URL для Alembic"""
        return self.POSTGRES_CONNECTION_STRING.replace("postgres://", "postgresql://")


settings = Settings()
