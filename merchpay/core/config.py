from decimal import Decimal
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    database_url: str = Field(..., alias="DATABASE_URL")

    jwt_secret_key: str = Field(..., alias="JWT_SECRET_KEY")
    jwt_algorithm: str = Field("HS256", alias="JWT_ALGORITHM")
    access_token_expire_minutes: int = Field(60, alias="ACCESS_TOKEN_EXPIRE_MINUTES")

    # Mercado Pago
    mercadopago_access_token: Optional[str] = Field(None, alias="MERCADOPAGO_ACCESS_TOKEN")
    mercadopago_api_url: str = Field("https://api.mercadopago.com", alias="MERCADOPAGO_API_URL")
    mercadopago_timeout_seconds: float = Field(5.0, alias="MERCADOPAGO_TIMEOUT_SECONDS")

    # Receipt storage (S3 compatible)
    receipts_bucket: str = Field("payment-receipts", alias="RECEIPTS_BUCKET")
    aws_region: str = Field("us-east-1", alias="AWS_REGION")
    aws_access_key_id: Optional[str] = Field(None, alias="AWS_ACCESS_KEY_ID")
    aws_secret_access_key: Optional[str] = Field(None, alias="AWS_SECRET_ACCESS_KEY")
    receipts_public_base_url: Optional[str] = Field(None, alias="RECEIPTS_PUBLIC_BASE_URL")
    receipt_max_bytes: int = Field(10 * 1024 * 1024, alias="RECEIPT_MAX_BYTES")

    # Transfers must match the nominal installment price within this many currency units
    amount_tolerance: Decimal = Field(Decimal("0.01"), alias="AMOUNT_TOLERANCE")

    # Bootstrap administrator (merchpay.db.init_db)
    admin_dni: Optional[str] = Field(None, alias="ADMIN_DNI")
    admin_password: Optional[str] = Field(None, alias="ADMIN_PASSWORD")

    log_level: str = Field("INFO", alias="LOG_LEVEL")

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"


settings = Settings()
