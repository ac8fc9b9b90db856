"""
Middleware for the billing API
"""
from .error_handler import (
    global_exception_handler,
    http_exception_handler,
    validation_exception_handler,
)

__all__ = [
    'global_exception_handler',
    'http_exception_handler',
    'validation_exception_handler',
]
