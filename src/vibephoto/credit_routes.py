"""
Credit balance, credit package purchase and usage routes
"""
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from pydantic import BaseModel
from typing import Optional, Dict, Any
import logging

from .auth import get_current_user
from .db.engine import get_db
from .db.models import User
from .exceptions import to_http_exception
from .schemas import CreditTransactionResponse, dump_all
from .services.credit_manager import CreditManager
from .services.credit_package_service import CreditPackageService
from .services.rate_limiter import RateLimiter

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["credits"])


class CreditPurchaseRequest(BaseModel):
    package_id: str
    billing_type: str = "PIX"
    customer: Optional[Dict[str, Any]] = None
    installment_count: Optional[int] = None
    credit_card: Optional[Dict[str, Any]] = None
    credit_card_holder_info: Optional[Dict[str, Any]] = None


@router.get("/credits")
async def get_credits(current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    """available = credits_limit - credits_used + credits_balance"""
    return CreditPackageService(db).get_user_credit_info(current_user)


@router.get("/credits/packages")
async def list_credit_packages(current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    service = CreditPackageService(db)
    return {
        "packages": service.list_packages(),
        "recommendation": service.get_recommendations(current_user),
    }


@router.post("/credits/purchase")
async def purchase_credits(
    data: CreditPurchaseRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Create the Asaas charge; credits are added when the payment webhook confirms it"""
    try:
        return CreditPackageService(db).purchase_credit_package(
            current_user,
            data.package_id,
            billing_type=data.billing_type,
            customer_data=data.customer,
            installment_count=data.installment_count,
            credit_card=data.credit_card,
            credit_card_holder_info=data.credit_card_holder_info,
        )
    except ValueError as e:
        raise to_http_exception(e)


@router.get("/credits/transactions")
async def list_transactions(
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    transaction_type: Optional[str] = Query(None, alias="type"),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    transactions = CreditManager(db).get_transactions(current_user.id, limit, offset, transaction_type)
    return {"transactions": dump_all(CreditTransactionResponse, transactions), "limit": limit, "offset": offset}


@router.get("/usage")
async def get_usage(
    days: int = Query(30, ge=1, le=365),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    stats = CreditManager(db).get_usage_stats(current_user.id, days)
    stats["rate_limits"] = RateLimiter(db).get_usage_stats(current_user.id, current_user.plan)
    return stats
