"""
Billing payment module

Orders, plan classification and subscription accrual for paid orders.
Services live in payments.services and are imported from there.
"""

__version__ = "1.0.0"

from .models.order import PaymentOrder
from .models.enums import PaymentStatus, PaymentMethod, PaymentCurrency, Region, PlanType

__all__ = [
    "PaymentOrder",
    "PaymentStatus",
    "PaymentMethod",
    "PaymentCurrency",
    "Region",
    "PlanType",
]
