"""
Subscription and Asaas webhook routes
"""
from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session
from pydantic import BaseModel
from typing import Optional, Dict, Any
import json
import logging

from .auth import get_current_user
from .db.engine import get_db
from .db.models import User
from .exceptions import to_http_exception
from .services.asaas_webhook_service import AsaasWebhookService, verify_access_token
from .services.subscription_service import SubscriptionService, list_plans

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/payments", tags=["payments"])


class SubscriptionRequest(BaseModel):
    plan: str
    cycle: str = "MONTHLY"
    billing_type: str = "PIX"
    customer: Optional[Dict[str, Any]] = None
    credit_card: Optional[Dict[str, Any]] = None
    credit_card_holder_info: Optional[Dict[str, Any]] = None


class CancelRequest(BaseModel):
    reason: Optional[str] = None


@router.get("/plans")
async def get_plans():
    return {"plans": list_plans()}


@router.get("/subscription")
async def get_subscription(current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return SubscriptionService(db).get_subscription_info(current_user)


@router.post("/subscription")
async def create_subscription(
    data: SubscriptionRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Create an Asaas subscription; the plan activates when the first payment is confirmed"""
    try:
        return SubscriptionService(db).create_subscription(
            current_user,
            data.plan,
            cycle=data.cycle,
            billing_type=data.billing_type,
            customer_data=data.customer,
            credit_card=data.credit_card,
            credit_card_holder_info=data.credit_card_holder_info,
        )
    except ValueError as e:
        raise to_http_exception(e)


@router.post("/subscription/cancel")
async def cancel_subscription(
    data: Optional[CancelRequest] = None,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    try:
        return SubscriptionService(db).cancel_subscription(current_user, data.reason if data else None)
    except ValueError as e:
        raise to_http_exception(e)


@router.post("/asaas/webhook")
async def asaas_webhook(request: Request, db: Session = Depends(get_db)):
    """
    Asaas payment and subscription events

    200 when processed (or already processed), 400 for malformed or
    non-retryable events, 422 when Asaas should retry.
    """
    if not verify_access_token(request.headers.get("asaas-access-token")):
        logger.warning("Asaas webhook rejected: invalid access token")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")

    try:
        payload = json.loads(await request.body())
    except json.JSONDecodeError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid JSON payload")

    try:
        result = AsaasWebhookService(db).handle(payload)
    except ValueError as e:
        raise to_http_exception(e)

    if result["status"] == "failed":
        status_code = status.HTTP_422_UNPROCESSABLE_ENTITY if result["retryable"] else status.HTTP_400_BAD_REQUEST
        return JSONResponse(status_code=status_code, content={"success": False, **result})
    return {"success": True, **result}
