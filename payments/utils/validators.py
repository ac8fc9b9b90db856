import re
import logging
from typing import Optional, Tuple

from ..models.enums import PaymentCurrency, PaymentMethod

logger = logging.getLogger(__name__)

MAX_DESCRIPTION_LENGTH = 200


class PaymentValidators:
    """Validators for the payments module"""

    @staticmethod
    def validate_amount(amount: Optional[float]) -> Tuple[bool, str]:
        """
        Validate an order amount

        Args:
            amount: Amount in major currency units

        Returns:
            Tuple[is_valid, error_message]
        """
        if amount is None:
            return False, "Amount is required"

        if amount <= 0:
            return False, "Amount must be positive"

        if amount > 1000000:
            return False, "Amount is too large"

        return True, ""

    @staticmethod
    def validate_order_no(order_no: str) -> bool:
        """Order numbers look like ORDER1712345678901ABC123XYZ"""
        if not order_no:
            return False
        return bool(re.match(r'^ORDER[0-9]{13}[0-9A-Z]{9}$', order_no))

    @staticmethod
    def validate_currency(currency: str) -> bool:
        if not currency:
            return False
        return currency.upper() in {c.value for c in PaymentCurrency}

    @staticmethod
    def validate_payment_method(method: str) -> bool:
        if not method:
            return False
        return method.lower() in {m.value for m in PaymentMethod}

    @staticmethod
    def sanitize_description(text: Optional[str], max_length: Optional[int] = MAX_DESCRIPTION_LENGTH) -> str:
        """Collapse whitespace and cap the length of a plan description (None keeps it whole)."""
        if not text:
            return ""

        text = re.sub(r'\s+', ' ', text.strip())

        if max_length is not None and len(text) > max_length:
            text = text[:max_length]

        return text
