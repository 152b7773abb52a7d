import os
from dataclasses import dataclass
from decimal import Decimal
from pathlib import Path

from dotenv import load_dotenv

env_path = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(dotenv_path=env_path)

OPAY_LIVE_BASE_URL = "https://liveapi.opaycheckout.com"
OPAY_SANDBOX_BASE_URL = "https://testapi.opaycheckout.com"
DEFAULT_JWT_SECRET = "change-me-in-production"


@dataclass(frozen=True)
class PaymentConfig:
    """Everything the gateway client and the payment orchestrator need at runtime."""

    gateway_base_url: str
    merchant_id: str
    public_key: str
    secret_key: str
    callback_url: str
    return_url: str
    delivery_fee: Decimal
    timeout_seconds: float = 15.0
    expire_minutes: int = 30
    query_retries: int = 3
    merchant_name: str = "BOOKMATE"
    country: str = "NG"
    currency: str = "NGN"

    @property
    def has_credentials(self) -> bool:
        return bool(self.merchant_id and self.public_key and self.secret_key)


class Settings:
    @staticmethod
    def _get_int(name: str, default: int) -> int:
        return int(os.getenv(name, str(default)))

    @property
    def APP_ENV(self) -> str:
        return os.getenv("APP_ENV", "development").strip().lower()

    @property
    def is_production(self) -> bool:
        return self.APP_ENV == "production"

    @property
    def BASE_URL(self) -> str:
        return os.getenv("BASE_URL", "http://localhost:8000")

    @property
    def DATABASE_URL(self) -> str:
        database_url = os.getenv("DATABASE_URL", "").strip()
        if not database_url:
            raise ValueError("DATABASE_URL is required")
        return database_url

    @property
    def DB_CONNECT_RETRIES(self) -> int:
        return self._get_int("DB_CONNECT_RETRIES", 5)

    @property
    def DB_CONNECT_RETRY_DELAY_SECONDS(self) -> int:
        return self._get_int("DB_CONNECT_RETRY_DELAY_SECONDS", 2)

    @property
    def JWT_SECRET(self) -> str:
        return os.getenv("JWT_SECRET", DEFAULT_JWT_SECRET)

    @property
    def JWT_ALGORITHM(self) -> str:
        return os.getenv("JWT_ALGORITHM", "HS256")

    @property
    def JWT_EXPIRE_MINUTES(self) -> int:
        return self._get_int("JWT_EXPIRE_MINUTES", 60 * 24 * 7)

    @property
    def OPAY_MERCHANT_ID(self) -> str:
        return os.getenv("OPAY_MERCHANT_ID", "")

    @property
    def OPAY_PUBLIC_KEY(self) -> str:
        # Payment creation only.
        return os.getenv("OPAY_PUBLIC_KEY", "")

    @property
    def OPAY_SECRET_KEY(self) -> str:
        # Signs every other gateway call.
        return os.getenv("OPAY_SECRET_KEY", "")

    @property
    def OPAY_BASE_URL(self) -> str:
        default = OPAY_LIVE_BASE_URL if self.is_production else OPAY_SANDBOX_BASE_URL
        return os.getenv("OPAY_BASE_URL", default).rstrip("/")

    @property
    def OPAY_CALLBACK_URL(self) -> str:
        return os.getenv("OPAY_CALLBACK_URL", "http://localhost:8000/webhooks/opay")

    @property
    def OPAY_RETURN_URL(self) -> str:
        return os.getenv("OPAY_RETURN_URL", "http://localhost:8000/api/payments/return")

    @property
    def OPAY_TIMEOUT_SECONDS(self) -> float:
        return float(os.getenv("OPAY_TIMEOUT_SECONDS", "15"))

    @property
    def OPAY_PAYMENT_EXPIRE_MINUTES(self) -> int:
        return self._get_int("OPAY_PAYMENT_EXPIRE_MINUTES", 30)

    @property
    def OPAY_QUERY_RETRIES(self) -> int:
        return self._get_int("OPAY_QUERY_RETRIES", 3)

    @property
    def OPAY_MERCHANT_NAME(self) -> str:
        return os.getenv("OPAY_MERCHANT_NAME", "BOOKMATE")

    @property
    def DELIVERY_FEE(self) -> Decimal:
        return Decimal(os.getenv("DELIVERY_FEE", "500"))

    @property
    def ADMIN_NAME(self) -> str:
        return os.getenv("ADMIN_NAME", "Admin User")

    @property
    def ADMIN_EMAIL(self) -> str:
        return os.getenv("ADMIN_EMAIL", "")

    @property
    def ADMIN_PASSWORD(self) -> str:
        return os.getenv("ADMIN_PASSWORD", "")

    @property
    def CORS_ORIGINS(self) -> str:
        return os.getenv("CORS_ORIGINS", "http://localhost:3000,http://localhost:3001")

    def payment_config(self) -> PaymentConfig:
        return PaymentConfig(
            gateway_base_url=self.OPAY_BASE_URL,
            merchant_id=self.OPAY_MERCHANT_ID,
            public_key=self.OPAY_PUBLIC_KEY,
            secret_key=self.OPAY_SECRET_KEY,
            callback_url=self.OPAY_CALLBACK_URL,
            return_url=self.OPAY_RETURN_URL,
            delivery_fee=self.DELIVERY_FEE,
            timeout_seconds=self.OPAY_TIMEOUT_SECONDS,
            expire_minutes=self.OPAY_PAYMENT_EXPIRE_MINUTES,
            query_retries=self.OPAY_QUERY_RETRIES,
            merchant_name=self.OPAY_MERCHANT_NAME,
        )


settings = Settings()

# Validate critical settings
if settings.JWT_SECRET == DEFAULT_JWT_SECRET:
    import warnings
    warnings.warn("JWT_SECRET is using default value. Change it in production!", UserWarning)
