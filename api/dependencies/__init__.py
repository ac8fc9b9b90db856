"""
Dependencies for the billing API
"""
from .services import get_payment_service, get_status_service, get_accrual_service, get_user_repository
from .auth import get_current_user

__all__ = [
    'get_payment_service',
    'get_status_service',
    'get_accrual_service',
    'get_user_repository',
    'get_current_user',
]
