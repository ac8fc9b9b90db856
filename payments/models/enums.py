from enum import Enum


class PaymentStatus(str, Enum):
    """Order payment statuses"""
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


class PaymentMethod(str, Enum):
    """Payment methods, one per provider"""
    WECHAT = "wechat"
    ALIPAY = "alipay"
    STRIPE = "stripe"
    PAYPAL = "paypal"


class PaymentCurrency(str, Enum):
    USD = "USD"
    CNY = "CNY"


class Region(str, Enum):
    """Deployment region a user is registered in"""
    CN = "cn"
    GLOBAL = "global"

    @property
    def default_currency(self) -> "PaymentCurrency":
        return PaymentCurrency.CNY if self is Region.CN else PaymentCurrency.USD


class PlanType(str, Enum):
    """Subscription plan types"""
    MONTHLY = "monthly"
    YEARLY = "yearly"

    @property
    def days(self) -> int:
        return 30 if self is PlanType.MONTHLY else 365
