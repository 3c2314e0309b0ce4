"""Shared configuration management for the invoicing service.

Based on Pydantic Settings v2 best practices:
https://docs.pydantic.dev/latest/concepts/pydantic_settings/
"""

from decimal import Decimal
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings with environment variable support.

    All settings can be overridden via environment variables with the prefix 'APP_'.
    Example: APP_TAX_RATE_PERCENT=5
    """

    model_config = SettingsConfigDict(
        env_prefix="APP_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    environment: Literal["development", "staging", "production"] = Field(
        default="development",
        description="Deployment environment",
    )
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Logging level",
    )

    # Service configuration
    service_name: str = Field(
        default="payment-invoice-pipeline",
        description="Service identifier for metrics and logs",
    )
    service_version: str = Field(
        default="0.1.0",
        description="Service version",
    )

    # Tax regime
    tax_enabled: bool = Field(
        default=True,
        description="Charge tax on invoice lines",
    )
    tax_rate_percent: Decimal = Field(
        default=Decimal("20"),
        description="Tax rate in percent (negative values are treated as 0)",
    )
    prices_include_tax: bool = Field(
        default=False,
        description="Unit prices and line totals already include tax",
    )
    tax_label: str = Field(
        default="VAT",
        description="Tax name printed on invoices",
    )

    # Document layout
    default_currency: str = Field(
        default="GBP",
        description="ISO 4217 code used when an event carries no currency",
    )
    quantity_label: str = Field(
        default="Litres",
        description="Column heading for line quantities",
    )

    # Issuer details printed on every invoice
    issuer_name: str = Field(
        default="FuelFlow",
        description="Legal name of the invoicing business",
    )
    issuer_address: str = Field(
        default="1 Example Street\nExample Town\nEX1 2MP\nUnited Kingdom",
        description="Issuer postal address, one line per newline",
    )
    issuer_email: str = Field(
        default="invoices@mail.fuelflow.co.uk",
        description="Issuer contact email",
    )
    issuer_phone: str = Field(default="", description="Issuer contact phone")
    issuer_company_number: str = Field(default="", description="Company registration number")
    issuer_vat_number: str = Field(default="", description="Tax registration number")
    issuer_jurisdiction: str = Field(
        default="Registered in England & Wales",
        description="Registration statement printed in the footer",
    )

    # Secrets
    webhook_secret: str = Field(
        default="",
        description="Shared secret for payment event signatures (APP_WEBHOOK_SECRET)",
    )
    webhook_tolerance_seconds: int = Field(
        default=300,
        description="Maximum age of a signed payment event",
    )
    invoice_secret: str = Field(
        default="",
        description="Shared secret for the invoice construction endpoint (x-invoice-secret)",
    )

    # Payment processor
    processor_api_key: str = Field(
        default="",
        description="Payment processor API key used for secondary lookups",
    )

    # Database
    database_url: str = Field(
        default="sqlite:///./invoicing.db",
        description="SQLAlchemy URL for the order and event ledgers",
    )
    database_auto_create: bool = Field(
        default=True,
        description="Create missing tables on startup",
    )

    # Storage configuration (S3-compatible object storage)
    storage_enabled: bool = Field(
        default=False,
        description="Enable invoice storage in S3-compatible storage (MinIO)",
    )
    storage_endpoint: str = Field(
        default="localhost:9000",
        description="S3-compatible storage endpoint (host:port)",
    )
    storage_access_key: str = Field(
        default="",
        description="Storage access key (use env var APP_STORAGE_ACCESS_KEY)",
    )
    storage_secret_key: str = Field(
        default="",
        description="Storage secret key (use env var APP_STORAGE_SECRET_KEY)",
    )
    storage_bucket: str = Field(
        default="invoices",
        description="Bucket name for invoice documents",
    )
    storage_secure: bool = Field(
        default=False,
        description="Use HTTPS for storage connections",
    )

    # Email delivery
    email_api_url: str = Field(
        default="https://api.resend.com/emails",
        description="HTTP endpoint of the transactional email API",
    )
    email_api_key: str = Field(
        default="",
        description="Email API key (use env var APP_EMAIL_API_KEY)",
    )
    email_from: str = Field(
        default="FuelFlow <invoices@mail.fuelflow.co.uk>",
        description="Sender address for invoice emails",
    )
    email_bcc: str = Field(
        default="",
        description="Comma-separated BCC recipients for invoice emails",
    )
    email_subject_prefix: str = Field(
        default="FuelFlow",
        description="Prefix for invoice email subjects",
    )

    @field_validator("tax_rate_percent")
    @classmethod
    def _clamp_tax_rate(cls, value: Decimal) -> Decimal:
        return max(Decimal("0"), value)

    @field_validator("issuer_address")
    @classmethod
    def _expand_newlines(cls, value: str) -> str:
        # Single-line env files carry literal "\n" sequences
        return value.replace("\\n", "\n")

    @property
    def tax_rate(self) -> Decimal:
        """Tax rate as a fraction (20% -> 0.2)."""
        return self.tax_rate_percent / Decimal("100")

    @property
    def issuer_address_lines(self) -> list[str]:
        """Non-empty issuer address lines."""
        return [line.strip() for line in self.issuer_address.split("\n") if line.strip()]

    @property
    def email_bcc_list(self) -> list[str]:
        """BCC recipients parsed from the comma-separated setting."""
        return [addr.strip() for addr in self.email_bcc.split(",") if addr.strip()]


def get_settings() -> Settings:
    """Factory function to get settings instance.

    Returns:
        Configured Settings instance
    """
    return Settings()
