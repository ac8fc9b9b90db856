import logging
import secrets
import string
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from ..models.enums import PaymentCurrency, PaymentMethod, PaymentStatus, PlanType, Region
from ..models.order import PaymentOrder
from ..repositories.order_repository import OrderRepository
from ..utils.plan_classifier import classify_plan_description
from ..utils.validators import PaymentValidators
from .subscription_accrual_service import SubscriptionAccrualService, SubscriptionApplyResult
from app.repositories.user_repository import UserRepository
from app.settings import settings as app_settings

logger = logging.getLogger(__name__)

_BASE36_UPPER = string.digits + string.ascii_uppercase


def generate_order_no() -> str:
    """ORDER + epoch milliseconds + 9 random base36 characters."""
    suffix = "".join(secrets.choice(_BASE36_UPPER) for _ in range(9))
    return f"ORDER{int(time.time() * 1000)}{suffix}"


def generate_mock_provider_order_id() -> str:
    suffix = "".join(secrets.choice(string.digits + string.ascii_lowercase) for _ in range(9))
    return f"MOCK_{int(time.time() * 1000)}_{suffix}"


@dataclass
class PaymentConfirmation:
    order: Optional[PaymentOrder]
    subscription: Optional[SubscriptionApplyResult] = None
    error: Optional[str] = None


class PaymentService:
    """Order lifecycle: creation, confirmation, mock completion, queries"""

    def __init__(
        self,
        db_path: Optional[str] = None,
        order_repo: Optional[OrderRepository] = None,
        user_repo: Optional[UserRepository] = None,
        accrual_service: Optional[SubscriptionAccrualService] = None,
        mock_payments_enabled: Optional[bool] = None,
    ):
        self.db_path = db_path or app_settings.DATABASE_PATH
        self.order_repo = order_repo or OrderRepository(self.db_path)
        self.user_repo = user_repo or UserRepository(self.db_path)
        self.accrual_service = accrual_service or SubscriptionAccrualService(
            self.db_path, order_repo=self.order_repo, user_repo=self.user_repo
        )
        self.mock_payments_enabled = (
            app_settings.MOCK_PAYMENTS_ENABLED if mock_payments_enabled is None else mock_payments_enabled
        )

    async def create_order(
        self,
        user_id: int,
        amount: float,
        payment_method: PaymentMethod,
        currency: Optional[PaymentCurrency] = None,
        description: Optional[str] = None,
        plan_code: Optional[PlanType] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Tuple[Optional[PaymentOrder], Optional[str]]:
        """
        Create a pending order for a subscription plan.

        The order is stored in the user's registered region, and uses that
        region's currency unless one is given. When no plan code is given but
        the description names a plan, the plan code is recorded from it.

        Returns:
            Tuple[order, error_message]
        """
        is_valid, error_msg = PaymentValidators.validate_amount(amount)
        if not is_valid:
            logger.error(f"[PAYMENT] Invalid amount for user {user_id}: {error_msg}")
            return None, error_msg

        if not PaymentValidators.validate_payment_method(getattr(payment_method, "value", payment_method)):
            logger.error(f"[PAYMENT] Unsupported payment method for user {user_id}: {payment_method}")
            return None, "Unsupported payment method"
        payment_method = PaymentMethod(getattr(payment_method, "value", payment_method).lower())

        if currency is not None and not PaymentValidators.validate_currency(getattr(currency, "value", currency)):
            logger.error(f"[PAYMENT] Unsupported currency for user {user_id}: {currency}")
            return None, "Unsupported currency"

        user = await self.user_repo.get_by_id(user_id)
        if not user:
            logger.error(f"[PAYMENT] User {user_id} not found, order not created")
            return None, "User not found"

        region: Region = user["region"]
        currency = PaymentCurrency(getattr(currency, "value", currency).upper()) if currency else region.default_currency

        # Plan markers usually sit at the end of the text, so classify before truncating
        full_description = PaymentValidators.sanitize_description(description, max_length=None)
        if plan_code is None:
            plan_code = classify_plan_description(full_description)
        description = PaymentValidators.sanitize_description(full_description)

        order = PaymentOrder(
            order_no=generate_order_no(),
            user_id=user_id,
            amount=float(amount),
            currency=currency,
            payment_method=payment_method,
            payment_status=PaymentStatus.PENDING,
            region=region,
            plan_code=PlanType(plan_code) if plan_code else None,
            description=description,
            metadata=dict(metadata or {}),
        )

        logger.info(
            "[PAYMENT] create_order: user_id=%s, amount=%s %s, method=%s, region=%s, plan=%s",
            user_id,
            order.amount,
            currency.value,
            payment_method.value,
            region.value,
            order.plan_code.value if order.plan_code else None,
        )

        order = await self.order_repo.create(order)
        return order, None

    def is_mock_method(self, payment_method: PaymentMethod) -> bool:
        """Methods without provider credentials are completed locally when mocks are allowed."""
        return self.mock_payments_enabled and not app_settings.provider_configured(PaymentMethod(payment_method).value)

    async def confirm_payment(
        self,
        order_no: str,
        provider_order_id: str,
        payment_status: PaymentStatus = PaymentStatus.PAID,
        callback_data: Optional[Dict[str, Any]] = None,
        now: Optional[datetime] = None,
    ) -> PaymentConfirmation:
        """
        Record the provider's verdict on an order and, when paid, apply the subscription.

        Confirming an already paid order again only re-runs the (idempotent)
        subscription step, which completes orders whose earlier confirmation
        stopped between the two steps. A failed subscription step never fails
        the confirmation; it is reported in the result.
        """
        order = await self.order_repo.get_by_order_no(order_no)
        if not order:
            logger.error(f"[PAYMENT] Order {order_no} not found")
            return PaymentConfirmation(None, error="Order not found")

        payment_status = PaymentStatus(payment_status)
        if payment_status != PaymentStatus.PAID:
            updated = await self.order_repo.try_update_status(order_no, payment_status, PaymentStatus.PENDING)
            if not updated:
                error_msg = f"Order {order_no} is {order.payment_status.value} and cannot be marked {payment_status.value}"
                logger.warning(f"[PAYMENT] {error_msg}")
                return PaymentConfirmation(await self.order_repo.get_by_order_no(order_no), error=error_msg)
            return PaymentConfirmation(await self.order_repo.get_by_order_no(order_no))

        if order.payment_status not in (PaymentStatus.PENDING, PaymentStatus.PAID):
            error_msg = f"Order {order_no} is {order.payment_status.value} and cannot be paid"
            logger.warning(f"[PAYMENT] {error_msg}")
            return PaymentConfirmation(order, error=error_msg)

        transitioned = await self.order_repo.try_mark_paid(order_no, provider_order_id, callback_data, paid_at=now)
        if not transitioned:
            logger.info(f"[PAYMENT] Order {order_no} was already paid, re-checking subscription")

        subscription = await self.accrual_service.apply_paid_order(order_no, now=now)
        if not subscription.success:
            logger.error(
                f"[PAYMENT] Order {order_no} paid but subscription not applied: "
                f"{subscription.outcome.value} ({subscription.message})"
            )

        return PaymentConfirmation(await self.order_repo.get_by_order_no(order_no), subscription)

    async def complete_mock_payment(self, order_no: str, now: Optional[datetime] = None) -> PaymentConfirmation:
        """Mark a demo order paid without a provider and apply the subscription."""
        if not self.mock_payments_enabled:
            return PaymentConfirmation(None, error="Mock payments are disabled")

        completed_at = now or datetime.now(timezone.utc)
        logger.info(f"[PAYMENT] Completing order {order_no} in mock mode")
        return await self.confirm_payment(
            order_no,
            generate_mock_provider_order_id(),
            PaymentStatus.PAID,
            callback_data={"mock": True, "auto_completed": True, "completed_at": completed_at.isoformat()},
            now=now,
        )

    async def get_payment_status(self, order_no: str) -> Optional[PaymentOrder]:
        return await self.order_repo.get_by_order_no(order_no)

    async def get_payment_history(
        self, region: Optional[Region] = None, user_id: Optional[int] = None, limit: int = 50
    ) -> List[PaymentOrder]:
        limit = max(1, min(int(limit), 200))
        return await self.order_repo.list_history(region=region, user_id=user_id, limit=limit)
