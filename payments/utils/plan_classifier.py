"""
Plan type resolution for paid orders.

Orders created by current clients carry an explicit ``plan_code``. Older orders
only have the human-readable plan description (e.g. "Pro Plan - Pro Yearly"),
so the description classifier below is kept as a best-effort back-compat shim,
and the amount heuristic is the last resort when even that is missing.
"""
import logging
from dataclasses import dataclass
from typing import Optional

from ..models.enums import PaymentCurrency, PlanType
from ..models.errors import PlanClassificationError
from ..models.order import PaymentOrder

logger = logging.getLogger(__name__)

# Price thresholds separating monthly from yearly orders (yearly is $149.99 / ¥999)
USD_YEARLY_THRESHOLD = 100
CNY_YEARLY_THRESHOLD = 500

_YEARLY_MARKERS = ("pro yearly", "pro-yearly", "yearly", "annual")
_MONTHLY_MARKERS = ("pro monthly", "pro-monthly", "monthly")

SOURCE_PLAN_CODE = "plan_code"
SOURCE_DESCRIPTION = "description"
SOURCE_AMOUNT = "amount"


@dataclass(frozen=True)
class PlanResolution:
    plan_type: PlanType
    source: str


def classify_plan_description(description: Optional[str]) -> Optional[PlanType]:
    """
    Classify a free-text plan description.

    Yearly markers are checked before monthly ones, so a description matching
    both is always yearly.

    Returns:
        PlanType, or None when the text names neither plan
    """
    if not description:
        return None
    text = description.strip().lower()
    if not text:
        return None

    if any(marker in text for marker in _YEARLY_MARKERS):
        return PlanType.YEARLY
    if any(marker in text for marker in _MONTHLY_MARKERS):
        return PlanType.MONTHLY
    if "year" in text and "month" not in text:
        return PlanType.YEARLY
    if "month" in text and "year" not in text:
        return PlanType.MONTHLY
    return None


def infer_plan_from_amount(amount: Optional[float], currency: Optional[str]) -> Optional[PlanType]:
    """
    Guess the plan from the order amount.

    USD orders of 100 or more are yearly; every other currency is priced in CNY,
    where 500 or more is yearly. Returns None when there is no positive amount.
    """
    if amount is None or amount <= 0:
        return None
    currency_code = currency.value if isinstance(currency, PaymentCurrency) else (currency or "")
    threshold = USD_YEARLY_THRESHOLD if currency_code.upper() == PaymentCurrency.USD.value else CNY_YEARLY_THRESHOLD
    return PlanType.YEARLY if amount >= threshold else PlanType.MONTHLY


def resolve_order_plan(order: PaymentOrder) -> PlanResolution:
    """
    Determine which plan a paid order bought.

    Order of precedence: explicit plan code, description, amount heuristic.

    Raises:
        PlanClassificationError: nothing identifies the plan; the order must not
            change the subscription and goes to manual review instead
    """
    if order.plan_code:
        return PlanResolution(PlanType(order.plan_code), SOURCE_PLAN_CODE)

    plan_type = classify_plan_description(order.description)
    if plan_type:
        logger.debug(f"[PLAN] Order {order.order_no} classified from description {order.description!r}: {plan_type.value}")
        return PlanResolution(plan_type, SOURCE_DESCRIPTION)

    plan_type = infer_plan_from_amount(order.amount, order.currency)
    if plan_type:
        logger.warning(
            f"[PLAN] Order {order.order_no} has no usable plan description ({order.description!r}), "
            f"inferred {plan_type.value} from amount {order.amount} {getattr(order.currency, 'value', order.currency)}"
        )
        return PlanResolution(plan_type, SOURCE_AMOUNT)

    raise PlanClassificationError(order.order_no, order.description)
