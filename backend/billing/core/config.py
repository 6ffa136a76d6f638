from decimal import Decimal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    APP_NAME: str = "Billing Engine"
    version: str = "0.1.0"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"
    APP_DATABASE_DSN: str = "sqlite:////tmp/billing.db"
    REDIS_URL: str = "redis://localhost:6379"

    # Public client portal, used to build invoice links
    CLIENT_URL: str = "http://localhost:5173"

    # CORS
    CORS_ORIGINS: str = "http://localhost:3000,http://localhost:5173"

    # Invoicing
    DEFAULT_INVOICE_PREFIX: str = "INV"
    INVOICE_DUE_DAYS: int = 30
    INVOICE_NUMBER_ATTEMPTS: int = 5
    SUPPORTED_CURRENCIES: list[str] = [
        "KES",
        "USD",
        "GBP",
        "EUR",
        "NGN",
        "ZAR",
        "UGX",
        "TZS",
        "INR",
        "AED",
    ]
    # Turnover tax percentage per currency; currencies not listed are untaxed
    TAX_RATES: dict[str, Decimal] = {"KES": Decimal("1.5")}

    # Recurring templates
    RECURRING_MAX_CATCH_UP: int = 12

    # Reminders
    REMINDER_MAX_ATTEMPTS: int = 5

    # PDF rendering
    PDF_STORAGE_PATH: str = "/tmp/invoices"
    PDF_PUBLIC_PREFIX: str = "/invoices"
    PDF_RENDER_ATTEMPTS: int = 2
    PDF_RENDER_TIMEOUT_MS: int = 15000
    PDF_RETRY_DELAY_SECONDS: float = 1.0

    # SMTP
    SMTP_HOST: str = ""
    SMTP_PORT: int = 587
    SMTP_USERNAME: str = ""
    SMTP_PASSWORD: str = ""
    SMTP_FROM_EMAIL: str = "billing@example.com"
    SMTP_FROM_NAME: str = "Billing"
    SMTP_USE_TLS: bool = True

    # M-Pesa (Daraja) settings
    mpesa_consumer_key: str = ""
    mpesa_consumer_secret: str = ""
    mpesa_shortcode: str = "174379"
    mpesa_passkey: str = ""
    mpesa_callback_url: str = "http://localhost:8000/payments/callback/mpesa"
    mpesa_environment: str = "sandbox"  # "sandbox" or "production"
    mpesa_currency: str = "KES"
    mpesa_timeout_seconds: float = 30.0

    # Paystack settings
    paystack_secret_key: str = ""
    paystack_base_url: str = "https://api.paystack.co"
    paystack_timeout_seconds: float = 30.0

    @property
    def mpesa_enabled(self) -> bool:
        return bool(self.mpesa_consumer_key)


settings = Settings()
