"""
User routes: subscription view and repair, for the authenticated user only
"""
import logging
from typing import Any, Dict

from fastapi import APIRouter, Depends, HTTPException

from payments.services.subscription_accrual_service import ApplyOutcome, SubscriptionAccrualService
from payments.services.subscription_status_service import SubscriptionStatusService
from ..dependencies import get_accrual_service, get_current_user, get_status_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/users", tags=["users"])


def _require_self(user_id: int, current_user: Dict[str, Any]) -> None:
    if current_user["id"] != user_id:
        logger.warning(f"[AUTH] User {current_user['id']} tried to access user {user_id}")
        raise HTTPException(status_code=403, detail="Forbidden")


@router.get("/{user_id}/subscription")
async def user_subscription(
    user_id: int,
    current_user: Dict[str, Any] = Depends(get_current_user),
    service: SubscriptionStatusService = Depends(get_status_service),
):
    _require_self(user_id, current_user)
    status = await service.get_user_subscription(user_id)
    if status is None:
        raise HTTPException(status_code=404, detail="User not found")
    return {"success": True, "data": status.to_dict()}


@router.post("/{user_id}/subscription/recompute")
async def recompute_subscription(
    user_id: int,
    current_user: Dict[str, Any] = Depends(get_current_user),
    service: SubscriptionAccrualService = Depends(get_accrual_service),
):
    _require_self(user_id, current_user)
    result = await service.recompute_user(user_id)
    if result.outcome == ApplyOutcome.NOT_FOUND:
        raise HTTPException(status_code=404, detail="User not found")
    if not result.success:
        raise HTTPException(status_code=409, detail=result.message)
    return {"success": True, "data": result.to_dict()}
