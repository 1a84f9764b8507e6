"""
Pricing Engine Configuration
Pydantic Settings for environment-based configuration
Source: https://docs.pydantic.dev/latest/concepts/pydantic_settings/
"""

from decimal import Decimal
from functools import lru_cache
from typing import Literal, Optional

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from clinic_pricing.core.enums import IntegrationMode


class PricingSettings(BaseSettings):
    """
    Pricing engine settings loaded from environment variables.

    All variables are prefixed with PRICING_ (e.g. PRICING_ROUNDING_UNIT).
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        env_prefix="PRICING_",
    )

    # =========================================================================
    # Application Settings
    # =========================================================================
    ENVIRONMENT: Literal["development", "staging", "production", "testing"] = Field(
        default="development",
        description="Environment: development, staging, production, testing",
    )
    INTEGRATION_MODE: IntegrationMode = Field(
        default=IntegrationMode.DEMO,
        description="demo (in-memory repository) or live (PostgreSQL)",
    )
    LOG_LEVEL: str = Field(default="INFO", description="Logging level")
    JSON_LOGS: bool = Field(default=False, description="Emit JSON log lines")
    LOG_FILE: Optional[str] = Field(default=None, description="Optional log file path")

    # =========================================================================
    # Database Configuration
    # =========================================================================
    POSTGRES_HOST: str = Field(default="db", description="PostgreSQL host")
    POSTGRES_PORT: int = Field(default=5432, description="PostgreSQL port")
    POSTGRES_DB: str = Field(default="clinic_pricing", description="Database name")
    POSTGRES_USER: str = Field(default="clinic_pricing", description="Database user")
    POSTGRES_PASSWORD: str = Field(default="", description="Database password")

    DATABASE_URL: Optional[str] = Field(default=None, description="Full database URL")

    DB_POOL_SIZE: int = Field(default=20, description="Database connection pool size")
    DB_MAX_OVERFLOW: int = Field(default=10, description="Max overflow connections")
    DB_POOL_TIMEOUT: int = Field(default=30, description="Connection timeout (seconds)")
    DB_ECHO: bool = Field(default=False, description="Echo SQL statements")

    @property
    def database_url(self) -> str:
        """Construct DATABASE_URL if not explicitly provided"""
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return (
            f"postgresql+asyncpg://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}"
            f"@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"
        )

    # =========================================================================
    # Money and Coverage
    # =========================================================================
    CURRENCY_CODE: str = Field(default="IRR", description="Single billing currency")
    ROUNDING_UNIT: Decimal = Field(
        default=Decimal("1"),
        description="Smallest currency unit amounts are rounded to",
    )
    MIN_COVERAGE_PERCENT: Decimal = Field(default=Decimal("0"), ge=0, le=100)
    MAX_COVERAGE_PERCENT: Decimal = Field(default=Decimal("100"), ge=0, le=100)

    # =========================================================================
    # Calculation Behaviour
    # =========================================================================
    MAX_FUTURE_CALCULATION_DAYS: int = Field(
        default=1,
        ge=0,
        description="How far past today a calculation date may lie",
    )
    PERSIST_CALCULATIONS: bool = Field(
        default=True,
        description="Persist records produced by NEW calculations",
    )

    # =========================================================================
    # Validators
    # =========================================================================
    @field_validator("ROUNDING_UNIT")
    @classmethod
    def validate_rounding_unit(cls, v: Decimal) -> Decimal:
        if v <= 0:
            raise ValueError("ROUNDING_UNIT must be positive")
        return v

    @model_validator(mode="after")
    def validate_coverage_bounds(self) -> "PricingSettings":
        if self.MIN_COVERAGE_PERCENT > self.MAX_COVERAGE_PERCENT:
            raise ValueError("MIN_COVERAGE_PERCENT cannot exceed MAX_COVERAGE_PERCENT")
        return self

    @property
    def is_demo_mode(self) -> bool:
        """Check if running in demo mode."""
        return self.INTEGRATION_MODE == IntegrationMode.DEMO


@lru_cache
def get_settings() -> PricingSettings:
    """Get cached settings instance."""
    return PricingSettings()
