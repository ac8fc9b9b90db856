from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Dict, Any

from .enums import PlanType, Region


@dataclass
class SubscriptionState:
    """Subscription fields of a user row plus the version used for compare-and-swap."""
    user_id: int
    subscription_type: Optional[PlanType] = None
    expires_at: Optional[datetime] = None
    version: int = 0
    region: Region = Region.GLOBAL

    @property
    def effective_type(self) -> Optional[PlanType]:
        # A stored type without an expiry grants nothing.
        if self.expires_at is None:
            return None
        return self.subscription_type

    def is_active(self, now: datetime) -> bool:
        return self.expires_at is not None and self.expires_at > now


@dataclass
class SubscriptionStatus:
    """Subscription as reported to clients"""
    user_id: int
    subscription_type: Optional[PlanType]
    subscription_expires_at: Optional[datetime]
    days_remaining: int
    is_active: bool
    region: Region
    source: str = "live"

    def to_dict(self) -> Dict[str, Any]:
        return {
            'user_id': self.user_id,
            'subscription_type': self.subscription_type.value if self.subscription_type else None,
            'subscription_expires_at': (
                self.subscription_expires_at.isoformat() if self.subscription_expires_at else None
            ),
            'days_remaining': self.days_remaining,
            'is_active': self.is_active,
            'region': self.region.value,
            'source': self.source,
        }
