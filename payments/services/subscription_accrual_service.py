"""
Applies paid orders to user subscriptions.

Every payment confirmation path (provider callbacks, manual confirm, mock
completion) ends up in SubscriptionAccrualService.apply_paid_order. An order
changes the subscription at most once: the order's subscription_applied_at
marker is written in the same transaction as the user update.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from ..models.enums import PlanType
from ..models.errors import OrderTimestampError, PlanClassificationError
from ..models.order import utc
from ..repositories.order_repository import ApplyWriteResult, OrderRepository
from ..utils.plan_classifier import resolve_order_plan
from ..utils.subscription_accrual import (
    evaluate_accrual,
    order_effective_paid_at,
    recompute_from_history,
)
from app.repositories.user_repository import UserRepository
from app.settings import settings as app_settings

logger = logging.getLogger(__name__)


class ApplyOutcome(str, Enum):
    APPLIED = "applied"
    ALREADY_APPLIED = "already_applied"
    RECOMPUTED = "recomputed"
    NEEDS_REVIEW = "needs_review"
    NOT_PAID = "not_paid"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"


@dataclass
class SubscriptionApplyResult:
    outcome: ApplyOutcome
    order_no: Optional[str] = None
    user_id: Optional[int] = None
    subscription_type: Optional[PlanType] = None
    expires_at: Optional[datetime] = None
    message: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.outcome in (ApplyOutcome.APPLIED, ApplyOutcome.ALREADY_APPLIED, ApplyOutcome.RECOMPUTED)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'outcome': self.outcome.value,
            'order_no': self.order_no,
            'user_id': self.user_id,
            'subscription_type': self.subscription_type.value if self.subscription_type else None,
            'subscription_expires_at': self.expires_at.isoformat() if self.expires_at else None,
            'message': self.message,
        }


class SubscriptionAccrualService:
    """Consolidated subscription update after payment"""

    def __init__(
        self,
        db_path: Optional[str] = None,
        order_repo: Optional[OrderRepository] = None,
        user_repo: Optional[UserRepository] = None,
        max_attempts: Optional[int] = None,
    ):
        self.db_path = db_path or app_settings.DATABASE_PATH
        self.order_repo = order_repo or OrderRepository(self.db_path)
        self.user_repo = user_repo or UserRepository(self.db_path)
        self.max_attempts = max_attempts or app_settings.SUBSCRIPTION_APPLY_MAX_ATTEMPTS

    async def apply_paid_order(self, order_no: str, now: Optional[datetime] = None) -> SubscriptionApplyResult:
        """
        Apply a paid order to its user's subscription exactly once.

        Logic:
        1. Order must exist and be paid
        2. An order with the applied marker set is a no-op
        3. Plan and payment time must be known, otherwise the order goes to review
        4. Evaluate accrual against the user's current expiry and write it
           conditionally; on a concurrent user update re-read and retry
        5. If a newer order was applied first, rebuild the user from history

        Args:
            order_no: Order number
            now: Reference time, defaults to the current UTC time

        Returns:
            SubscriptionApplyResult
        """
        now = utc(now) or datetime.now(timezone.utc)

        order = await self.order_repo.get_by_order_no(order_no)
        if not order:
            logger.error(f"[ACCRUAL] Order {order_no} not found")
            return SubscriptionApplyResult(ApplyOutcome.NOT_FOUND, order_no, message="Order not found")

        if not order.is_paid():
            logger.warning(
                f"[ACCRUAL] Order {order_no} is not paid (status: {order.payment_status.value}), "
                f"subscription unchanged"
            )
            return SubscriptionApplyResult(
                ApplyOutcome.NOT_PAID, order_no, order.user_id,
                message=f"Order status is {order.payment_status.value}",
            )

        if order.is_subscription_applied():
            logger.info(f"[ACCRUAL] Order {order_no} already applied, skipping")
            return SubscriptionApplyResult(ApplyOutcome.ALREADY_APPLIED, order_no, order.user_id)

        try:
            plan = resolve_order_plan(order)
        except PlanClassificationError as e:
            logger.error(f"[ACCRUAL] {e}; subscription unchanged")
            await self.order_repo.mark_for_review(order_no, "unclassifiable_plan")
            return SubscriptionApplyResult(ApplyOutcome.NEEDS_REVIEW, order_no, order.user_id, message=str(e))

        try:
            paid_at = order_effective_paid_at(order)
        except OrderTimestampError as e:
            logger.error(f"[ACCRUAL] {e}; subscription unchanged")
            await self.order_repo.mark_for_review(order_no, "missing_timestamp")
            return SubscriptionApplyResult(ApplyOutcome.NEEDS_REVIEW, order_no, order.user_id, message=str(e))

        for attempt in range(1, self.max_attempts + 1):
            state = await self.user_repo.get_subscription_state(order.user_id)
            if state is None:
                logger.error(f"[ACCRUAL] User {order.user_id} of order {order_no} not found")
                await self.order_repo.mark_for_review(order_no, "user_not_found")
                return SubscriptionApplyResult(
                    ApplyOutcome.NEEDS_REVIEW, order_no, order.user_id, message="User not found"
                )

            accrual = evaluate_accrual(state.expires_at, plan.plan_type, paid_at, now)
            write = await self.order_repo.apply_subscription(
                order_no=order_no,
                user_id=order.user_id,
                effective_paid_at=paid_at,
                expected_version=state.version,
                subscription_type=accrual.subscription_type,
                expires_at=accrual.expires_at,
                applied_at=now,
            )

            if write == ApplyWriteResult.APPLIED:
                logger.info(
                    f"[ACCRUAL] Order {order_no} applied to user {order.user_id}: "
                    f"{'accrued' if accrual.accrued else 'restarted'} {plan.plan_type.value} "
                    f"(plan from {plan.source}), "
                    f"{state.expires_at.isoformat() if state.expires_at else None} -> {accrual.expires_at.isoformat()}"
                )
                if state.subscription_type and state.subscription_type != accrual.subscription_type and accrual.accrued:
                    logger.info(
                        f"[ACCRUAL] User {order.user_id} plan type changes {state.subscription_type.value} -> "
                        f"{accrual.subscription_type.value} while days accrue from the previous plan"
                    )
                return SubscriptionApplyResult(
                    ApplyOutcome.APPLIED, order_no, order.user_id,
                    accrual.subscription_type, accrual.expires_at,
                )

            if write == ApplyWriteResult.ALREADY_APPLIED:
                logger.info(f"[ACCRUAL] Order {order_no} was applied by a concurrent call, skipping")
                return SubscriptionApplyResult(ApplyOutcome.ALREADY_APPLIED, order_no, order.user_id)

            if write == ApplyWriteResult.NEWER_ORDER_APPLIED:
                logger.warning(
                    f"[ACCRUAL] Order {order_no} arrived out of order, rebuilding user {order.user_id} from history"
                )
                result = await self.recompute_user(order.user_id, now)
                result.order_no = order_no
                return result

            if write == ApplyWriteResult.USER_NOT_FOUND:
                await self.order_repo.mark_for_review(order_no, "user_not_found")
                return SubscriptionApplyResult(
                    ApplyOutcome.NEEDS_REVIEW, order_no, order.user_id, message="User not found"
                )

            logger.warning(
                f"[ACCRUAL] Subscription of user {order.user_id} changed concurrently "
                f"(attempt {attempt}/{self.max_attempts}, order {order_no})"
            )

        logger.error(f"[ACCRUAL] Giving up on order {order_no} after {self.max_attempts} conflicting attempts")
        return SubscriptionApplyResult(
            ApplyOutcome.CONFLICT, order_no, order.user_id,
            message="Concurrent subscription updates, retry later",
        )

    async def recompute_user(self, user_id: int, now: Optional[datetime] = None) -> SubscriptionApplyResult:
        """
        Rebuild a user's subscription from all paid orders and persist it.

        The raw fold is stored even when it has already expired; readers treat
        an expiry in the past as no subscription.
        """
        now = utc(now) or datetime.now(timezone.utc)

        for attempt in range(1, self.max_attempts + 1):
            state = await self.user_repo.get_subscription_state(user_id)
            if state is None:
                logger.error(f"[ACCRUAL] Recompute requested for unknown user {user_id}")
                return SubscriptionApplyResult(ApplyOutcome.NOT_FOUND, user_id=user_id, message="User not found")

            orders = await self.order_repo.list_paid_for_user(user_id)
            fold = recompute_from_history(orders, now)
            for skipped_order_no, reason in fold.skipped:
                await self.order_repo.mark_for_review(skipped_order_no, reason)

            write = await self.order_repo.apply_recomputed(
                user_id=user_id,
                expected_version=state.version,
                subscription_type=fold.folded_type,
                expires_at=fold.folded_expires_at,
                order_nos=fold.applied_order_nos,
                applied_at=now,
            )
            if write == ApplyWriteResult.APPLIED:
                logger.info(
                    f"[ACCRUAL] User {user_id} rebuilt from {len(fold.applied_order_nos)} paid orders "
                    f"({len(fold.skipped)} skipped): type={fold.subscription_type.value if fold.subscription_type else None}, "
                    f"expires_at={fold.expires_at.isoformat() if fold.expires_at else None}"
                )
                return SubscriptionApplyResult(
                    ApplyOutcome.RECOMPUTED, user_id=user_id,
                    subscription_type=fold.subscription_type, expires_at=fold.expires_at,
                )
            if write == ApplyWriteResult.USER_NOT_FOUND:
                return SubscriptionApplyResult(ApplyOutcome.NOT_FOUND, user_id=user_id, message="User not found")

            logger.warning(
                f"[ACCRUAL] Subscription of user {user_id} changed during recompute "
                f"(attempt {attempt}/{self.max_attempts})"
            )

        return SubscriptionApplyResult(
            ApplyOutcome.CONFLICT, user_id=user_id, message="Concurrent subscription updates, retry later"
        )
