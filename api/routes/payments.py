"""
Payment routes: order creation, confirmation, status and history
"""
import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from payments.models.enums import PaymentStatus, Region
from payments.models.order import OrderCreate, PaymentConfirm, PaymentOrder, MockComplete
from payments.services.payment_service import PaymentConfirmation, PaymentService
from ..dependencies import get_current_user, get_payment_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/payment", tags=["payments"])


def _confirmation_payload(result: PaymentConfirmation) -> dict:
    return {
        "order": result.order.to_dict() if result.order else None,
        "subscription": result.subscription.to_dict() if result.subscription else None,
    }


async def _owned_order(service: PaymentService, order_no: str, current_user: Dict[str, Any]) -> PaymentOrder:
    """Orders of other users look exactly like missing ones"""
    order = await service.get_payment_status(order_no)
    if order is None or order.user_id != current_user["id"]:
        raise HTTPException(status_code=404, detail="Order not found")
    return order


@router.post("/create")
async def create_payment(
    body: OrderCreate,
    current_user: Dict[str, Any] = Depends(get_current_user),
    service: PaymentService = Depends(get_payment_service),
):
    order, error = await service.create_order(
        user_id=current_user["id"],
        amount=body.amount,
        payment_method=body.payment_method,
        currency=body.currency,
        description=body.description,
        plan_code=body.plan_code,
    )
    if error == "User not found":
        raise HTTPException(status_code=404, detail=error)
    if error:
        raise HTTPException(status_code=400, detail=error)

    data = order.to_dict()
    data["mock_mode"] = service.is_mock_method(order.payment_method)
    return {"success": True, "data": data}


@router.post("/confirm")
async def confirm_payment(
    body: PaymentConfirm,
    current_user: Dict[str, Any] = Depends(get_current_user),
    service: PaymentService = Depends(get_payment_service),
):
    await _owned_order(service, body.order_no, current_user)
    result = await service.confirm_payment(
        order_no=body.order_no,
        provider_order_id=body.payment_provider_order_id,
        payment_status=body.payment_status,
        callback_data=body.payment_data,
    )
    if result.order is None:
        raise HTTPException(status_code=404, detail=result.error or "Order not found")
    if result.error:
        raise HTTPException(status_code=409, detail=result.error)

    return {"success": True, "data": _confirmation_payload(result)}


@router.post("/mock-complete")
async def mock_complete_payment(
    body: MockComplete,
    current_user: Dict[str, Any] = Depends(get_current_user),
    service: PaymentService = Depends(get_payment_service),
):
    if not service.mock_payments_enabled:
        raise HTTPException(status_code=403, detail="Mock payments are disabled")

    order = await _owned_order(service, body.order_no, current_user)
    if order.payment_status not in (PaymentStatus.PENDING, PaymentStatus.PAID):
        raise HTTPException(status_code=409, detail=f"Order is {order.payment_status.value}")

    result = await service.complete_mock_payment(body.order_no)
    if result.error:
        raise HTTPException(status_code=409, detail=result.error)
    return {"success": True, "data": _confirmation_payload(result)}


@router.get("/status/{order_no}")
async def payment_status(
    order_no: str,
    current_user: Dict[str, Any] = Depends(get_current_user),
    service: PaymentService = Depends(get_payment_service),
):
    order = await _owned_order(service, order_no, current_user)
    return {"success": True, "data": order.to_dict()}


@router.get("/history")
async def payment_history(
    region: Optional[Region] = None,
    limit: int = Query(50, ge=1, le=200),
    current_user: Dict[str, Any] = Depends(get_current_user),
    service: PaymentService = Depends(get_payment_service),
):
    orders = await service.get_payment_history(region=region, user_id=current_user["id"], limit=limit)
    return {"success": True, "data": [order.to_dict() for order in orders]}
