import logging
import logging.config
import os
import re


class _SecretMaskingFilter(logging.Filter):
    """Redacts secrets from log messages and arguments.

    Masks Authorization headers, payment provider credentials and client
    secrets returned by checkout sessions. Applies to both record.msg and
    record.args.
    """

    SECRET_PATTERNS: list[tuple[re.Pattern[str], str]] = [
        # Authorization headers
        (re.compile(r"(Authorization\s*:\s*)(Bearer\s+[A-Za-z0-9._\-]+)", re.IGNORECASE), r"\1***"),
        # Key-value with known secret names
        (
            re.compile(
                r"\b(STRIPE_SECRET_KEY|JWT_SECRET_KEY|password|PAYPAL_CLIENT_SECRET|WECHAT_API_KEY|ALIPAY_PRIVATE_KEY|client_secret|api_key|apiKey)\b(\s*[:=]\s*)([^\s,;]+)",
                re.IGNORECASE,
            ),
            r"\1\2***",
        ),
        # Raw Stripe keys
        (re.compile(r"\b(sk|rk)_(live|test)_[A-Za-z0-9]+\b"), r"\1_\2_***"),
    ]

    def _mask(self, text: str) -> str:
        masked = text
        for pattern, repl in self.SECRET_PATTERNS:
            masked = pattern.sub(repl, masked)
        return masked

    def filter(self, record: logging.LogRecord) -> bool:
        if isinstance(record.msg, str):
            record.msg = self._mask(record.msg)

        if record.args:
            if isinstance(record.args, dict):
                record.args = {k: self._mask(v) if isinstance(v, str) else v for k, v in record.args.items()}
            elif isinstance(record.args, tuple):
                record.args = tuple(self._mask(a) if isinstance(a, str) else a for a in record.args)  # type: ignore[assignment]
        return True


def setup_logging(level: str = "INFO") -> None:
    effective_level = os.getenv("LOG_LEVEL", level).upper()
    config = {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "default": {
                "format": "%(asctime)s %(levelname)s [%(name)s] %(message)s",
            },
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "formatter": "default",
                "level": effective_level,
            },
        },
        "root": {
            "handlers": ["console"],
            "level": effective_level,
        },
    }
    logging.config.dictConfig(config)

    # Attach secret masking filter to all handlers
    secret_filter = _SecretMaskingFilter()
    for handler in logging.getLogger().handlers:
        handler.addFilter(secret_filter)
