"""
Auth routes: email registration, login and the current user
"""
import logging
import sqlite3
from typing import Any, Dict

from fastapi import APIRouter, Depends, HTTPException

from app.repositories.user_repository import UserRepository
from app.security import create_access_token, hash_password, verify_password
from app.settings import settings
from payments.models.enums import Region
from payments.services.subscription_status_service import SubscriptionStatusService
from ..dependencies import get_current_user, get_status_service, get_user_repository
from .models import LoginRequest, RegisterRequest

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/auth", tags=["auth"])


def user_payload(user: Dict[str, Any]) -> dict:
    return {
        "id": user["id"],
        "email": user["email"],
        "name": user["name"],
        "region": user["region"].value,
        "created_at": user["created_at"].isoformat() if user["created_at"] else None,
    }


def _session_payload(user: Dict[str, Any]) -> dict:
    return {
        "user": user_payload(user),
        "token": create_access_token(user["id"], user["region"].value),
    }


@router.post("/email/register", status_code=201)
async def register(body: RegisterRequest, repo: UserRepository = Depends(get_user_repository)):
    region = body.region or Region(settings.DEFAULT_REGION)
    try:
        user = await repo.create_user(body.email, region, body.name, password_hash=hash_password(body.password))
    except sqlite3.IntegrityError:
        logger.info("Registration rejected, email already in use")
        raise HTTPException(status_code=409, detail="Email already registered")
    return {"success": True, "data": _session_payload(user)}


@router.post("/email/login")
async def login(body: LoginRequest, repo: UserRepository = Depends(get_user_repository)):
    user = await repo.get_by_email(body.email)
    password_hash = await repo.get_password_hash(user["id"]) if user else None
    if not user or not verify_password(body.password, password_hash):
        logger.info("[AUTH] Failed login attempt")
        raise HTTPException(status_code=401, detail="Invalid email or password")
    return {"success": True, "data": _session_payload(user)}


@router.get("/me")
async def me(
    user: Dict[str, Any] = Depends(get_current_user),
    status_service: SubscriptionStatusService = Depends(get_status_service),
):
    status = await status_service.get_user_subscription(user["id"])
    return {
        "success": True,
        "data": {"user": user_payload(user), "subscription": status.to_dict() if status else None},
    }


@router.post("/logout")
async def logout(user: Dict[str, Any] = Depends(get_current_user)):
    # Tokens are stateless; the client drops its copy
    return {"success": True, "message": "Logged out"}
