import logging
from datetime import datetime, timezone
from typing import Optional

from ..models.order import utc
from ..models.subscription import SubscriptionStatus
from ..repositories.order_repository import OrderRepository
from ..utils.subscription_accrual import days_remaining, recompute_from_history
from app.repositories.user_repository import UserRepository
from app.settings import settings as app_settings

logger = logging.getLogger(__name__)


class SubscriptionStatusService:
    """Read-side view of a user's subscription"""

    def __init__(
        self,
        db_path: Optional[str] = None,
        order_repo: Optional[OrderRepository] = None,
        user_repo: Optional[UserRepository] = None,
    ):
        self.db_path = db_path or app_settings.DATABASE_PATH
        self.order_repo = order_repo or OrderRepository(self.db_path)
        self.user_repo = user_repo or UserRepository(self.db_path)

    async def get_user_subscription(self, user_id: int, now: Optional[datetime] = None) -> Optional[SubscriptionStatus]:
        """
        Current subscription of a user, or None if the user does not exist.

        When the stored type or expiry is missing, the status is derived from
        the user's paid orders without writing anything back.
        """
        now = utc(now) or datetime.now(timezone.utc)
        state = await self.user_repo.get_subscription_state(user_id)
        if state is None:
            return None

        if state.subscription_type is None or state.expires_at is None:
            orders = await self.order_repo.list_paid_for_user(user_id)
            if orders:
                fold = recompute_from_history(orders, now)
                logger.info(
                    f"[STATUS] User {user_id} has no stored subscription, derived from "
                    f"{len(fold.applied_order_nos)} paid orders"
                )
                return SubscriptionStatus(
                    user_id=user_id,
                    subscription_type=fold.subscription_type,
                    subscription_expires_at=fold.expires_at,
                    days_remaining=days_remaining(fold.expires_at, now),
                    is_active=fold.is_active,
                    region=state.region,
                    source="history",
                )
            return SubscriptionStatus(
                user_id=user_id,
                subscription_type=None,
                subscription_expires_at=None,
                days_remaining=0,
                is_active=False,
                region=state.region,
            )

        if not state.is_active(now):
            return SubscriptionStatus(
                user_id=user_id,
                subscription_type=None,
                subscription_expires_at=None,
                days_remaining=0,
                is_active=False,
                region=state.region,
            )

        return SubscriptionStatus(
            user_id=user_id,
            subscription_type=state.effective_type,
            subscription_expires_at=state.expires_at,
            days_remaining=days_remaining(state.expires_at, now),
            is_active=True,
            region=state.region,
        )
