"""
Routes of the billing API
"""
from .auth import router as auth_router
from .payments import router as payments_router
from .users import router as users_router

__all__ = [
    'auth_router',
    'payments_router',
    'users_router',
]
