"""
Credit Package Service - one-off credit purchases through Asaas
"""
from sqlalchemy.orm import Session
from datetime import datetime, date, timedelta
from typing import Optional, Dict, Any, List
import logging
import time

from ..db.models import (
    User,
    Payment,
    PaymentType,
    PaymentStatus,
    BillingType,
    CreditPurchase,
    CreditTransaction,
    CreditTransactionType,
    CreditTransactionSource,
)
from .billing_gateway import BillingGateway, get_billing_gateway, format_asaas_date
from .credit_manager import CreditManager
from .plan_catalog import get_credit_packages, get_credit_package
from .subscription_service import SubscriptionService

logger = logging.getLogger(__name__)

CREDIT_VALIDITY_DAYS = 365
PIX_DUE_DAYS = 1
BOLETO_DUE_DAYS = 7
BOLETO_FINE_PERCENT = 2.0
BOLETO_INTEREST_PERCENT = 1.0
CONFIRMED_STATUSES = (PaymentStatus.CONFIRMED.value, PaymentStatus.RECEIVED.value)

# Package suggested for each plan
PLAN_RECOMMENDATIONS = {
    "STARTER": "ESSENCIAL",
    "PREMIUM": "PROFISSIONAL",
    "GOLD": "PREMIUM",
}


def build_external_reference(total_credits: int, now_ms: Optional[int] = None) -> str:
    return f"credits-{total_credits}-{now_ms if now_ms is not None else int(time.time() * 1000)}"


def build_payment_request(
    customer_id: str,
    package: Dict[str, Any],
    billing_type: str,
    installment_count: Optional[int] = None,
    today: Optional[date] = None
) -> Dict[str, Any]:
    """Asaas payment body for a credit package"""
    today = today or date.today()
    total_credits = package["credits"] + package.get("bonus_credits", 0)
    request: Dict[str, Any] = {
        "customer": customer_id,
        "billingType": billing_type,
        "value": float(package["price"]),
        "description": f"{package['name']} - {total_credits} créditos",
        "externalReference": build_external_reference(total_credits),
    }

    if billing_type == BillingType.BOLETO.value:
        request["dueDate"] = format_asaas_date(today + timedelta(days=BOLETO_DUE_DAYS))
        request["fine"] = {"value": BOLETO_FINE_PERCENT}
        request["interest"] = {"value": BOLETO_INTEREST_PERCENT}
    else:
        request["dueDate"] = format_asaas_date(today + timedelta(days=PIX_DUE_DAYS))

    if billing_type == BillingType.CREDIT_CARD.value and installment_count and installment_count > 1:
        request["installmentCount"] = installment_count
        request["installmentValue"] = round(float(package["price"]) / installment_count, 2)
    return request


class CreditPackageService:
    """Service for credit package purchases and expiry"""

    def __init__(self, db: Session, gateway: Optional[BillingGateway] = None):
        self.db = db
        self._gateway = gateway

    @property
    def gateway(self) -> BillingGateway:
        if self._gateway is None:
            self._gateway = get_billing_gateway("asaas")
        return self._gateway

    def list_packages(self) -> List[Dict[str, Any]]:
        packages = []
        for package in get_credit_packages():
            total = package["credits"] + package.get("bonus_credits", 0)
            packages.append({
                **package,
                "total_credits": total,
                "price_per_credit": round(float(package["price"]) / total, 4),
            })
        return packages

    def purchase_credit_package(
        self,
        user: User,
        package_id: str,
        billing_type: str = "PIX",
        customer_data: Optional[Dict[str, Any]] = None,
        installment_count: Optional[int] = None,
        credit_card: Optional[Dict[str, Any]] = None,
        credit_card_holder_info: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        """
        Create an Asaas charge for a credit package

        Credits are added when Asaas confirms the payment.

        Raises:
            ValueError: unknown package, billing type or invalid customer data
        """
        package = get_credit_package(package_id)
        if not package:
            raise ValueError(f"Invalid credit package: {package_id}")
        billing_type = (billing_type or "PIX").upper()
        if billing_type not in (BillingType.PIX.value, BillingType.BOLETO.value, BillingType.CREDIT_CARD.value):
            raise ValueError(f"Invalid billing type: {billing_type}")

        customer_id = SubscriptionService(self.db, self.gateway).ensure_customer(user, customer_data)

        request = build_payment_request(customer_id, package, billing_type, installment_count)
        if billing_type == BillingType.CREDIT_CARD.value and credit_card:
            request["creditCard"] = credit_card
            request["creditCardHolderInfo"] = credit_card_holder_info or {}

        asaas_payment = self.gateway.create_payment(request)
        payment_id = asaas_payment["id"]

        purchase = CreditPurchase(
            user_id=user.id,
            asaas_payment_id=payment_id,
            package_id=package["id"],
            package_name=package["name"],
            credit_amount=package["credits"],
            bonus_credits=package.get("bonus_credits", 0),
            value=package["price"],
            status=PaymentStatus.PENDING.value,
            valid_until=datetime.utcnow() + timedelta(days=CREDIT_VALIDITY_DAYS),
        )
        payment = Payment(
            user_id=user.id,
            asaas_payment_id=payment_id,
            type=PaymentType.CREDIT_PURCHASE.value,
            status=PaymentStatus.PENDING.value,
            billing_type=billing_type,
            value=package["price"],
            description=request["description"],
            due_date=datetime.strptime(request["dueDate"], "%Y-%m-%d"),
            external_reference=request["externalReference"],
            credit_amount=purchase.total_credits,
            invoice_url=asaas_payment.get("invoiceUrl"),
        )

        if billing_type == BillingType.PIX.value:
            try:
                qr = self.gateway.get_pix_qr_code(payment_id)
                payment.pix_qr_code = qr.get("encodedImage")
                payment.pix_payload = qr.get("payload")
            except Exception as e:
                logger.warning(f"Could not fetch PIX QR code for payment {payment_id}: {e}")
        elif billing_type == BillingType.BOLETO.value:
            try:
                boleto = self.gateway.get_boleto_identification_field(payment_id)
                payment.boleto_identification_field = boleto.get("identificationField")
            except Exception as e:
                logger.warning(f"Could not fetch boleto line for payment {payment_id}: {e}")

        self.db.add(purchase)
        self.db.add(payment)
        self.db.commit()

        logger.info(f"Credit purchase {package['id']} created for user {user.id}: payment {payment_id}")
        return {
            "purchase_id": purchase.id,
            "payment_id": payment_id,
            "package": package["id"],
            "credits": purchase.total_credits,
            "value": float(package["price"]),
            "billing_type": billing_type,
            "status": asaas_payment.get("status", PaymentStatus.PENDING.value),
            "due_date": request["dueDate"],
            "invoice_url": payment.invoice_url,
            "pix_qr_code": payment.pix_qr_code,
            "pix_payload": payment.pix_payload,
            "boleto_identification_field": payment.boleto_identification_field,
        }

    def confirm_credit_purchase(self, asaas_payment_id: str, status: str = PaymentStatus.CONFIRMED.value) -> Optional[CreditPurchase]:
        """
        Credit the user for a paid purchase. Already confirmed purchases are left untouched.

        Returns:
            The purchase, or None when no purchase matches the payment
        """
        purchase = self.db.query(CreditPurchase).filter(
            CreditPurchase.asaas_payment_id == asaas_payment_id
        ).first()
        if not purchase:
            logger.warning(f"No credit purchase for payment {asaas_payment_id}")
            return None
        if purchase.status in CONFIRMED_STATUSES:
            logger.info(f"Credit purchase {purchase.id} already confirmed")
            return purchase

        user = self.db.query(User).filter(User.id == purchase.user_id).first()
        if not user:
            raise ValueError(f"User {purchase.user_id} not found")

        now = datetime.utcnow()
        purchase.status = status
        purchase.confirmed_at = now
        CreditManager(self.db).add_purchased_credits(
            user,
            purchase.credit_amount,
            purchase.bonus_credits or 0,
            credit_purchase_id=purchase.id,
            description=f"Compra: {purchase.package_name}",
        )

        payment = self.db.query(Payment).filter(Payment.asaas_payment_id == asaas_payment_id).first()
        if payment:
            payment.status = status
            payment.confirmed_at = now

        logger.info(f"Confirmed credit purchase {purchase.id}: +{purchase.total_credits} credits for user {user.id}")
        return purchase

    def cancel_credit_purchase(self, asaas_payment_id: str, status: str = PaymentStatus.CANCELLED.value) -> Optional[CreditPurchase]:
        """Mark a pending purchase as cancelled or refunded"""
        purchase = self.db.query(CreditPurchase).filter(
            CreditPurchase.asaas_payment_id == asaas_payment_id
        ).first()
        if purchase and purchase.status == PaymentStatus.PENDING.value:
            purchase.status = status
        return purchase

    def mark_expired_credits(self, now: Optional[datetime] = None) -> int:
        """
        Expire confirmed purchases past valid_until and remove their unused credits from the balance

        Returns:
            Number of purchases expired
        """
        now = now or datetime.utcnow()
        purchases = self.db.query(CreditPurchase).filter(
            CreditPurchase.status.in_(CONFIRMED_STATUSES),
            CreditPurchase.is_expired == False,  # noqa: E712
            CreditPurchase.valid_until < now
        ).all()

        for purchase in purchases:
            purchase.is_expired = True
            user = self.db.query(User).filter(User.id == purchase.user_id).first()
            if not user:
                continue
            expired_amount = min(user.credits_balance or 0, purchase.total_credits)
            if expired_amount <= 0:
                continue
            user.credits_balance = (user.credits_balance or 0) - expired_amount
            self.db.add(CreditTransaction(
                user_id=user.id,
                type=CreditTransactionType.EXPIRED.value,
                source=CreditTransactionSource.EXPIRATION.value,
                amount=-expired_amount,
                description=f"Créditos expirados: {purchase.package_name}",
                reference_id=purchase.id,
                credit_purchase_id=purchase.id,
                balance_after=CreditManager.credit_summary(user)["available"],
            ))

        if purchases:
            self.db.commit()
            logger.info(f"Expired {len(purchases)} credit purchases")
        return len(purchases)

    def get_recommendations(self, user: User) -> Dict[str, Any]:
        recommended_id = PLAN_RECOMMENDATIONS.get(user.plan, "ESSENCIAL")
        summary = CreditManager.credit_summary(user)
        return {
            "recommended": get_credit_package(recommended_id),
            "reason": (
                "Seus créditos estão acabando" if summary["available"] < 10
                else f"Pacote ideal para o plano {user.plan}"
            ),
            "available_credits": summary["available"],
        }

    def get_user_credit_info(self, user: User) -> Dict[str, Any]:
        """Credit summary plus active purchases and nearest expiry"""
        purchases = self.db.query(CreditPurchase).filter(
            CreditPurchase.user_id == user.id,
            CreditPurchase.status.in_(CONFIRMED_STATUSES),
            CreditPurchase.is_expired == False  # noqa: E712
        ).order_by(CreditPurchase.valid_until.asc()).all()

        return {
            **CreditManager.credit_summary(user),
            "plan": user.plan,
            "active_purchases": [
                {
                    "id": p.id,
                    "package_name": p.package_name,
                    "credits": p.total_credits,
                    "valid_until": p.valid_until.isoformat() if p.valid_until else None,
                }
                for p in purchases
            ],
            "next_expiration": purchases[0].valid_until.isoformat() if purchases else None,
        }
