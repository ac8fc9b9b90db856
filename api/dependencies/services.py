from app.repositories.user_repository import UserRepository
from app.settings import settings
from payments.services.payment_service import PaymentService
from payments.services.subscription_accrual_service import SubscriptionAccrualService
from payments.services.subscription_status_service import SubscriptionStatusService


# Services are built per request so DATABASE_PATH changes (tests, reloads) take effect.

def get_payment_service() -> PaymentService:
    return PaymentService(settings.DATABASE_PATH)


def get_accrual_service() -> SubscriptionAccrualService:
    return SubscriptionAccrualService(settings.DATABASE_PATH)


def get_status_service() -> SubscriptionStatusService:
    return SubscriptionStatusService(settings.DATABASE_PATH)


def get_user_repository() -> UserRepository:
    return UserRepository(settings.DATABASE_PATH)
