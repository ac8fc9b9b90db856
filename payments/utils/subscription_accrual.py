"""
Subscription expiry accrual.

A paid order either extends a subscription that is still running when the
order was paid (accrual, counted from the current expiry) or starts a new
period from the payment date (restart). Everything here is pure computation;
reading and persisting subscription state is done by the callers.
"""
import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Iterable, List, Optional, Tuple

from ..models.enums import PaymentStatus, PlanType
from ..models.errors import OrderTimestampError, PlanClassificationError
from ..models.order import PaymentOrder, utc
from .plan_classifier import resolve_order_plan

logger = logging.getLogger(__name__)

ONE_DAY = timedelta(days=1)


@dataclass(frozen=True)
class AccrualResult:
    subscription_type: PlanType
    expires_at: datetime
    accrued: bool  # True: extended from the previous expiry, False: restarted from paid_at
    is_current: bool  # expires_at is still in the future relative to now


@dataclass
class HistoryFoldResult:
    """Outcome of folding a user's paid orders oldest to newest"""
    subscription_type: Optional[PlanType]
    expires_at: Optional[datetime]
    folded_type: Optional[PlanType] = None
    folded_expires_at: Optional[datetime] = None
    applied_order_nos: List[str] = field(default_factory=list)
    skipped: List[Tuple[str, str]] = field(default_factory=list)

    @property
    def is_active(self) -> bool:
        return self.expires_at is not None


def evaluate_accrual(
    current_expires_at: Optional[datetime],
    plan_type: PlanType,
    paid_at: datetime,
    now: datetime,
) -> AccrualResult:
    """
    Compute the subscription produced by one paid order.

    Args:
        current_expires_at: User's expiry before this order, or None
        plan_type: Plan bought by the order
        paid_at: When the order was paid
        now: Reference time for is_current

    Returns:
        AccrualResult; the subscription type is always the plan just bought
    """
    plan_type = PlanType(plan_type)
    current_expires_at = utc(current_expires_at)
    paid_at = utc(paid_at)
    now = utc(now)

    days_to_add = timedelta(days=plan_type.days)
    is_active = current_expires_at is not None and current_expires_at > paid_at

    if is_active:
        new_expires_at = current_expires_at + days_to_add
    else:
        new_expires_at = paid_at + days_to_add

    return AccrualResult(
        subscription_type=plan_type,
        expires_at=new_expires_at,
        accrued=is_active,
        is_current=new_expires_at > now,
    )


def days_remaining(expires_at: Optional[datetime], now: datetime) -> int:
    """Whole days left, rounded up and never negative."""
    if expires_at is None:
        return 0
    remaining = (utc(expires_at) - utc(now)) / ONE_DAY
    return max(0, math.ceil(remaining))


def order_effective_paid_at(order: PaymentOrder) -> datetime:
    """paid_at, falling back to updated_at then created_at."""
    for value in (order.paid_at, order.updated_at, order.created_at):
        if value is not None:
            return utc(value)
    raise OrderTimestampError(order.order_no)


def recompute_from_history(orders: Iterable[PaymentOrder], now: datetime) -> HistoryFoldResult:
    """
    Derive a user's subscription from all of their paid orders.

    Orders are folded oldest to newest. Orders without a timestamp or without a
    resolvable plan are skipped and listed in ``skipped``. The reported type is
    the plan of the last folded order, even when an earlier, longer plan
    contributed most of the remaining days. An expiry that is already past is
    reported as no subscription; the raw fold is kept in ``folded_*``.
    """
    now = utc(now)
    dated: List[Tuple[datetime, PaymentOrder, PlanType]] = []
    skipped: List[Tuple[str, str]] = []

    for order in orders:
        if order.payment_status != PaymentStatus.PAID:
            continue
        try:
            paid_at = order_effective_paid_at(order)
        except OrderTimestampError as e:
            logger.error(f"[ACCRUAL] Skipping order in history fold: {e}")
            skipped.append((order.order_no, "missing_timestamp"))
            continue
        try:
            plan_type = resolve_order_plan(order).plan_type
        except PlanClassificationError as e:
            logger.warning(f"[ACCRUAL] Skipping order in history fold: {e}")
            skipped.append((order.order_no, "unclassifiable_plan"))
            continue
        dated.append((paid_at, order, plan_type))

    dated.sort(key=lambda item: item[0])

    current_expires_at: Optional[datetime] = None
    final_type: Optional[PlanType] = None
    applied: List[str] = []

    for paid_at, order, plan_type in dated:
        result = evaluate_accrual(current_expires_at, plan_type, paid_at, now)
        current_expires_at = result.expires_at
        final_type = result.subscription_type
        applied.append(order.order_no)

    if current_expires_at is not None and current_expires_at > now:
        return HistoryFoldResult(
            subscription_type=final_type,
            expires_at=current_expires_at,
            folded_type=final_type,
            folded_expires_at=current_expires_at,
            applied_order_nos=applied,
            skipped=skipped,
        )

    return HistoryFoldResult(
        subscription_type=None,
        expires_at=None,
        folded_type=final_type,
        folded_expires_at=current_expires_at,
        applied_order_nos=applied,
        skipped=skipped,
    )
