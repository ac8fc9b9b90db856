from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional, Dict, Any
from pydantic import BaseModel, Field, field_validator

from .enums import PaymentStatus, PaymentMethod, PaymentCurrency, Region, PlanType


def utc(value: Optional[datetime]) -> Optional[datetime]:
    """Naive datetimes are taken as UTC; aware ones are converted to UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_epoch(value: Optional[datetime]) -> Optional[int]:
    value = utc(value)
    return int(value.timestamp()) if value else None


def from_epoch(value: Optional[int]) -> Optional[datetime]:
    if value is None:
        return None
    return datetime.fromtimestamp(int(value), tz=timezone.utc)


@dataclass
class PaymentOrder:
    """Payment order for a subscription plan"""
    id: Optional[int] = None
    order_no: str = ""
    user_id: int = 0
    amount: float = 0.0
    currency: PaymentCurrency = PaymentCurrency.USD
    payment_method: PaymentMethod = PaymentMethod.STRIPE
    payment_status: PaymentStatus = PaymentStatus.PENDING
    region: Region = Region.GLOBAL
    plan_code: Optional[PlanType] = None
    description: Optional[str] = None
    provider_order_id: Optional[str] = None
    callback_data: Optional[Dict[str, Any]] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    review_reason: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    paid_at: Optional[datetime] = None
    subscription_applied_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'order_no': self.order_no,
            'user_id': self.user_id,
            'amount': self.amount,
            'currency': self.currency.value,
            'payment_method': self.payment_method.value,
            'payment_status': self.payment_status.value,
            'region': self.region.value,
            'plan_code': self.plan_code.value if self.plan_code else None,
            'description': self.description,
            'provider_order_id': self.provider_order_id,
            'callback_data': self.callback_data,
            'metadata': self.metadata,
            'review_reason': self.review_reason,
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'updated_at': self.updated_at.isoformat() if self.updated_at else None,
            'paid_at': self.paid_at.isoformat() if self.paid_at else None,
            'subscription_applied_at': (
                self.subscription_applied_at.isoformat() if self.subscription_applied_at else None
            ),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'PaymentOrder':
        data = dict(data)
        if data.get('currency'):
            data['currency'] = PaymentCurrency(data['currency'])
        if data.get('payment_method'):
            data['payment_method'] = PaymentMethod(data['payment_method'])
        if data.get('payment_status'):
            data['payment_status'] = PaymentStatus(data['payment_status'])
        if data.get('region'):
            data['region'] = Region(data['region'])
        if data.get('plan_code'):
            data['plan_code'] = PlanType(data['plan_code'])

        for name in ('created_at', 'updated_at', 'paid_at', 'subscription_applied_at'):
            if data.get(name) and isinstance(data[name], str):
                data[name] = utc(datetime.fromisoformat(data[name]))

        return cls(**data)

    def is_paid(self) -> bool:
        return self.payment_status == PaymentStatus.PAID

    def is_pending(self) -> bool:
        return self.payment_status == PaymentStatus.PENDING

    def is_subscription_applied(self) -> bool:
        return self.subscription_applied_at is not None

    def mark_as_paid(self, paid_at: Optional[datetime] = None):
        now = datetime.now(timezone.utc)
        self.payment_status = PaymentStatus.PAID
        self.paid_at = utc(paid_at) or now
        self.updated_at = now


class OrderCreate(BaseModel):
    """Request body for creating an order; the user comes from the bearer token"""
    amount: float = Field(..., description="Amount in major currency units, e.g. 149.99")
    currency: Optional[PaymentCurrency] = Field(None, description="Defaults to the user's region currency")
    payment_method: PaymentMethod = Field(..., description="Payment provider")
    description: Optional[str] = Field(None, description="Plan description, e.g. 'Pro Plan - Pro Yearly'")
    plan_code: Optional[PlanType] = Field(None, description="Explicit plan type")

    @field_validator('amount')
    @classmethod
    def validate_amount(cls, v):
        if v <= 0:
            raise ValueError('Amount must be positive')
        return v


class PaymentConfirm(BaseModel):
    """Request body for confirming a payment"""
    order_no: str = Field(..., min_length=1)
    payment_provider_order_id: str = Field(..., min_length=1)
    payment_status: PaymentStatus = Field(PaymentStatus.PAID)
    payment_data: Optional[Dict[str, Any]] = Field(None, description="Raw provider payload")


class MockComplete(BaseModel):
    order_no: str = Field(..., min_length=1)
