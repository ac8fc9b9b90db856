import logging

import pytest
from pydantic import ValidationError

from app.logging_config import _SecretMaskingFilter
from app.settings import Settings


def test_allowed_origins_accepts_json_and_csv():
    assert Settings(ALLOWED_ORIGINS='["https://a.example", "https://b.example"]').ALLOWED_ORIGINS == [
        "https://a.example",
        "https://b.example",
    ]
    assert Settings(ALLOWED_ORIGINS="https://a.example, https://b.example").ALLOWED_ORIGINS == [
        "https://a.example",
        "https://b.example",
    ]
    assert Settings(ALLOWED_ORIGINS="").ALLOWED_ORIGINS == []


def test_invalid_region_and_attempts_are_rejected():
    with pytest.raises(ValidationError):
        Settings(DEFAULT_REGION="eu")
    with pytest.raises(ValidationError):
        Settings(SUBSCRIPTION_APPLY_MAX_ATTEMPTS=0)


def test_provider_configured_drives_mock_mode():
    cfg = Settings(
        STRIPE_SECRET_KEY="sk_test_abc", PAYPAL_CLIENT_ID=None, MOCK_PAYMENTS_ENABLED=False, JWT_SECRET_KEY="s3cret"
    )

    assert cfg.provider_configured("stripe") is True
    assert cfg.provider_configured("paypal") is False

    result = cfg.validate_startup()
    assert result["is_valid"] is True
    assert any("paypal" in w for w in result["warnings"])


def test_missing_jwt_secret_is_a_startup_error():
    result = Settings(JWT_SECRET_KEY=None).validate_startup()

    assert result["is_valid"] is False
    assert any("JWT_SECRET_KEY" in e for e in result["errors"])


def test_secret_masking_filter():
    record = logging.LogRecord(
        "test", logging.INFO, __file__, 1,
        "Authorization: Bearer abc.def STRIPE_SECRET_KEY=sk_live_123 key %s", ("sk_test_999",), None,
    )

    _SecretMaskingFilter().filter(record)
    message = record.getMessage()

    assert "abc.def" not in message
    assert "sk_live_123" not in message
    assert "sk_test_999" not in message
