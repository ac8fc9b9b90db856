from .order import PaymentOrder, OrderCreate, PaymentConfirm, MockComplete
from .enums import PaymentStatus, PaymentMethod, PaymentCurrency, Region, PlanType
from .errors import PlanClassificationError, OrderTimestampError
from .subscription import SubscriptionState, SubscriptionStatus

__all__ = [
    "PaymentOrder",
    "OrderCreate",
    "PaymentConfirm",
    "MockComplete",
    "PaymentStatus",
    "PaymentMethod",
    "PaymentCurrency",
    "Region",
    "PlanType",
    "PlanClassificationError",
    "OrderTimestampError",
    "SubscriptionState",
    "SubscriptionStatus",
]
