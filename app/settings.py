from __future__ import annotations

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Unified application settings loaded from environment/.env.

    Validation is explicit via validate_startup(); do not raise on import.
    """

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")

    # Database
    DATABASE_PATH: str = Field(default="billing.db")

    # Logging
    LOG_LEVEL: str = Field(default="INFO")

    # Region used when a request does not carry one (users always have their own)
    DEFAULT_REGION: str = Field(default="global")

    # Subscription accrual
    SUBSCRIPTION_APPLY_MAX_ATTEMPTS: int = Field(default=3, description="Optimistic update attempts per order")

    # Payment providers (only used to decide whether a provider runs in mock mode)
    STRIPE_SECRET_KEY: str | None = Field(default=None)
    PAYPAL_CLIENT_ID: str | None = Field(default=None)
    WECHAT_APP_ID: str | None = Field(default=None)
    ALIPAY_APP_ID: str | None = Field(default=None)
    MOCK_PAYMENTS_ENABLED: bool = Field(default=True, description="Allow /mock-complete for demo orders")

    # Auth
    JWT_SECRET_KEY: str | None = Field(default=None, description="HS256 signing key for access tokens")
    JWT_EXPIRE_DAYS: int = Field(default=7)

    # CORS
    ALLOWED_ORIGINS: list[str] | str = Field(default_factory=list)

    @field_validator("ALLOWED_ORIGINS", mode="before")
    @classmethod
    def _parse_allowed_origins(cls, value):
        """Allow env to be provided as JSON array or comma-separated string."""
        if value is None or value == "":
            return []
        if isinstance(value, (list, tuple)):
            return [str(v).strip() for v in value if str(v).strip()]
        if isinstance(value, str):
            s = value.strip()
            if s.startswith("["):
                import json
                try:
                    parsed = json.loads(s)
                except json.JSONDecodeError:
                    parsed = None
                if isinstance(parsed, (list, tuple)):
                    return [str(v).strip() for v in parsed if str(v).strip()]
            return [part.strip() for part in s.split(",") if part.strip()]
        return []

    @field_validator("DEFAULT_REGION")
    @classmethod
    def _region_known(cls, v: str) -> str:
        v = (v or "").strip().lower()
        if v not in ("cn", "global"):
            raise ValueError("DEFAULT_REGION must be 'cn' or 'global'")
        return v

    @field_validator("SUBSCRIPTION_APPLY_MAX_ATTEMPTS")
    @classmethod
    def _attempts_positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("SUBSCRIPTION_APPLY_MAX_ATTEMPTS must be positive")
        return v

    def provider_configured(self, payment_method: str) -> bool:
        """True when real credentials exist for the given payment method."""
        credentials = {
            "stripe": self.STRIPE_SECRET_KEY,
            "paypal": self.PAYPAL_CLIENT_ID,
            "wechat": self.WECHAT_APP_ID,
            "alipay": self.ALIPAY_APP_ID,
        }
        return bool(credentials.get(payment_method))

    def validate_startup(self) -> dict:
        """Perform non-fatal configuration validation for startup.

        Returns a dict with errors/warnings; caller decides how to handle.
        """
        errors: list[str] = []
        warnings: list[str] = []

        if not self.DATABASE_PATH:
            errors.append("DATABASE_PATH is required")

        if not self.JWT_SECRET_KEY:
            errors.append("JWT_SECRET_KEY is required for login and token checks")

        missing = [m for m in ("stripe", "paypal", "wechat", "alipay") if not self.provider_configured(m)]
        if missing:
            warnings.append(f"Payment providers running in mock mode: {', '.join(missing)}")

        if self.MOCK_PAYMENTS_ENABLED:
            warnings.append("MOCK_PAYMENTS_ENABLED is on - orders can be completed without a provider")

        return {"errors": errors, "warnings": warnings, "is_valid": len(errors) == 0}


# Singleton settings instance
settings = Settings()
