"""
Pydantic models for API request validation
"""
import re
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from payments.models.enums import Region


def _normalize_email(v: str) -> str:
    v = v.strip().lower()
    if not re.match(r'^[^@\s]+@[^@\s]+\.[^@\s]+$', v):
        raise ValueError('Invalid email format')
    return v


class RegisterRequest(BaseModel):
    """Email registration; without a region the deployment's DEFAULT_REGION is stored"""
    email: str
    password: str = Field(..., min_length=6, max_length=128)
    name: str = Field(..., max_length=100)
    region: Optional[Region] = None

    @field_validator('email')
    @classmethod
    def validate_email(cls, v):
        return _normalize_email(v)

    @field_validator('name')
    @classmethod
    def validate_name(cls, v):
        v = v.strip()
        if not v:
            raise ValueError('Name is required')
        return v


class LoginRequest(BaseModel):
    email: str
    password: str = Field(..., min_length=1)

    @field_validator('email')
    @classmethod
    def validate_email(cls, v):
        return v.strip().lower()
