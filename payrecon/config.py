from __future__ import annotations

from pydantic_settings import BaseSettings, SettingsConfigDict

from payrecon.domain.enums import MoneyUnit, SignatureMode


class Settings(BaseSettings):
    """Application configuration read from environment variables."""

    # General
    app_env: str = "development"
    app_base_url: str = "http://localhost:3000"
    default_currency: str = "NGN"
    gateway_timeout_seconds: float = 10.0
    # Explicit override; ignored in production where signatures are always enforced
    signature_mode: SignatureMode | None = None

    # Flutterwave config
    flutterwave_secret_key: str = ""
    flutterwave_webhook_secret: str = ""
    flutterwave_base_url: str = "https://api.flutterwave.com/v3"
    flutterwave_item_price_unit: MoneyUnit = MoneyUnit.MAJOR
    flutterwave_cross_verify: bool = False

    # Paystack config
    paystack_secret_key: str = ""
    paystack_webhook_secret: str = ""
    paystack_base_url: str = "https://api.paystack.co"
    paystack_item_price_unit: MoneyUnit = MoneyUnit.MAJOR
    paystack_cross_verify: bool = False

    # OPay config
    opay_secret_key: str = ""
    opay_public_key: str = ""
    opay_merchant_id: str = ""
    opay_base_url: str = ""
    opay_country: str = "NG"
    opay_cross_verify: bool | None = None
    opay_item_price_unit: MoneyUnit = MoneyUnit.MAJOR

    # Database (PostgreSQL)
    db_host: str = ""
    db_port: int = 5432
    db_user: str = ""
    db_password: str = ""
    db_name: str = ""
    db_schema: str = "payments"

    @property
    def is_production(self) -> bool:
        return self.app_env.lower() in {"production", "prod", "live"}

    @property
    def effective_signature_mode(self) -> SignatureMode:
        if self.is_production:
            return SignatureMode.ENFORCE
        return self.signature_mode or SignatureMode.BYPASS

    @property
    def opay_cross_verification(self) -> bool:
        if self.opay_cross_verify is None:
            return self.is_production
        return self.opay_cross_verify

    @property
    def opay_api_base(self) -> str:
        if self.opay_base_url:
            return self.opay_base_url.rstrip("/")
        if self.is_production:
            return "https://liveapi.opaycheckout.com"
        return "https://testapi.opaycheckout.com"

    @property
    def db_enabled(self) -> bool:
        return bool(self.db_host and self.db_user and self.db_name)

    @property
    def db_dsn(self) -> str:
        if not self.db_enabled:
            return ""
        return f"postgresql://{self.db_user}:{self.db_password}@{self.db_host}:{self.db_port}/{self.db_name}"

    # Pydantic v2 settings config
    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )


settings = Settings()
