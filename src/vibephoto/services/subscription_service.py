"""
Subscription Service - Manages Asaas subscriptions and plan access
"""
from sqlalchemy.orm import Session
from datetime import datetime, date, timedelta
from typing import Optional, Dict, Any, List
import calendar
import logging

from ..db.models import (
    User,
    Payment,
    PaymentType,
    PaymentStatus,
    SubscriptionStatus,
    Plan,
)
from .billing_gateway import (
    BillingGateway,
    get_billing_gateway,
    validate_customer_data,
    customer_data_from_user,
    format_asaas_date,
)
from .credit_manager import CreditManager
from .plan_catalog import get_plan, get_plans, is_valid_plan, get_plan_credits

logger = logging.getLogger(__name__)

BILLING_CYCLES = ("MONTHLY", "YEARLY")
DOWNGRADE_STATUSES = (
    SubscriptionStatus.CANCELLED.value,
    SubscriptionStatus.EXPIRED.value,
    SubscriptionStatus.OVERDUE.value,
)


def get_plan_price(plan: str, cycle: str = "MONTHLY") -> float:
    settings = get_plan(plan)
    return float(settings["annual_price"] if cycle == "YEARLY" else settings["monthly_price"])


def calculate_annual_savings(plan: str) -> Dict[str, Any]:
    settings = get_plan(plan)
    monthly = float(settings["monthly_price"])
    annual = float(settings["annual_price"])
    savings = monthly * 12 - annual
    return {
        "savings": round(savings, 2),
        "months_equivalent": round(savings / monthly),
        "percentage": round(savings / (monthly * 12) * 100),
        "monthly_equivalent": round(annual / 12, 2),
    }


def add_months(start: date, months: int) -> date:
    """Same day N months later, clamped to the end of shorter months"""
    month_index = start.month - 1 + months
    year = start.year + month_index // 12
    month = month_index % 12 + 1
    day = min(start.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def get_next_due_date(cycle: str = "MONTHLY", today: Optional[date] = None) -> date:
    today = today or date.today()
    return add_months(today, 12 if cycle == "YEARLY" else 1)


def get_payment_methods_for_plan(plan: str) -> List[Dict[str, Any]]:
    return [
        {"type": "PIX", "name": "PIX", "description": "Aprovação instantânea"},
        {
            "type": "CREDIT_CARD",
            "name": "Cartão de Crédito",
            "description": "Parcelamento disponível",
            "max_installments": int(get_plan(plan).get("max_installments", 3)),
        },
        {"type": "BOLETO", "name": "Boleto Bancário", "description": "Vencimento em 7 dias"},
    ]


def list_plans() -> List[Dict[str, Any]]:
    """Plans for display with prices, savings and payment methods"""
    return [
        {
            "id": plan_id,
            **settings,
            "annual_savings": calculate_annual_savings(plan_id),
            "payment_methods": get_payment_methods_for_plan(plan_id),
        }
        for plan_id, settings in get_plans().items()
    ]


class SubscriptionService:
    """Service for managing subscriptions and plan limits"""

    def __init__(self, db: Session, gateway: Optional[BillingGateway] = None):
        self.db = db
        self._gateway = gateway

    @property
    def gateway(self) -> BillingGateway:
        if self._gateway is None:
            self._gateway = get_billing_gateway("asaas")
        return self._gateway

    def ensure_customer(self, user: User, customer_overrides: Optional[Dict[str, Any]] = None) -> str:
        """
        Create or refresh the user's Asaas customer

        Raises:
            ValueError: customer data fails validation (message lists the errors)
        """
        customer_data = customer_data_from_user(user, customer_overrides)
        validation = validate_customer_data(customer_data)
        if not validation["is_valid"]:
            raise ValueError("Dados do cliente inválidos: " + "; ".join(validation["errors"]))

        # Persist billing details supplied with the request
        field_map = {
            "cpfCnpj": "cpf_cnpj", "phone": "phone", "mobilePhone": "mobile_phone",
            "address": "address", "addressNumber": "address_number", "complement": "complement",
            "province": "province", "city": "city", "state": "state", "postalCode": "postal_code",
        }
        for source, target in field_map.items():
            if (customer_overrides or {}).get(source):
                setattr(user, target, customer_overrides[source])

        if user.asaas_customer_id:
            self.gateway.update_customer(user.asaas_customer_id, customer_data)
            return user.asaas_customer_id

        customer = self.gateway.create_customer(customer_data)
        user.asaas_customer_id = customer["id"]
        logger.info(f"Created Asaas customer {customer['id']} for user {user.id}")
        return user.asaas_customer_id

    def create_subscription(
        self,
        user: User,
        plan: str,
        cycle: str = "MONTHLY",
        billing_type: str = "PIX",
        customer_data: Optional[Dict[str, Any]] = None,
        credit_card: Optional[Dict[str, Any]] = None,
        credit_card_holder_info: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        """
        Create an Asaas subscription for the user

        The plan becomes active when Asaas confirms the first payment.
        """
        plan = (plan or "").upper()
        cycle = (cycle or "MONTHLY").upper()
        if not is_valid_plan(plan):
            raise ValueError(f"Invalid plan: {plan}")
        if cycle not in BILLING_CYCLES:
            raise ValueError(f"Invalid billing cycle: {cycle}")
        if user.subscription_status == SubscriptionStatus.ACTIVE.value and user.subscription_id:
            raise ValueError("User already has an active subscription")

        customer_id = self.ensure_customer(user, customer_data)
        value = get_plan_price(plan, cycle)
        next_due = get_next_due_date(cycle) if billing_type == "CREDIT_CARD" else date.today() + timedelta(days=1)

        request = {
            "customer": customer_id,
            "billingType": billing_type,
            "value": value,
            "nextDueDate": format_asaas_date(next_due if billing_type != "CREDIT_CARD" else date.today()),
            "cycle": cycle,
            "description": f"VibePhoto {get_plan(plan)['name']} ({cycle.lower()})",
            "externalReference": f"subscription-{user.id}-{plan}-{cycle}",
        }
        if billing_type == "CREDIT_CARD" and credit_card:
            request["creditCard"] = credit_card
            request["creditCardHolderInfo"] = credit_card_holder_info or {}

        subscription = self.gateway.create_subscription(request)
        subscription_id = subscription["id"]

        user.subscription_id = subscription_id
        user.subscription_status = SubscriptionStatus.PENDING.value
        user.billing_cycle = cycle

        first_payment = None
        try:
            payments = self.gateway.get_subscription_payments(subscription_id)
            first_payment = payments[0] if payments else None
        except Exception as e:
            logger.warning(f"Could not fetch first payment of subscription {subscription_id}: {e}")

        payment = Payment(
            user_id=user.id,
            asaas_payment_id=first_payment.get("id") if first_payment else None,
            subscription_id=subscription_id,
            type=PaymentType.SUBSCRIPTION.value,
            status=PaymentStatus.PENDING.value,
            billing_type=billing_type,
            value=value,
            description=request["description"],
            due_date=datetime.combine(next_due, datetime.min.time()),
            external_reference=request["externalReference"],
            plan=plan,
            billing_cycle=cycle,
            invoice_url=first_payment.get("invoiceUrl") if first_payment else None,
        )
        self.db.add(payment)
        self.db.commit()

        logger.info(f"Subscription {subscription_id} created for user {user.id}: {plan}/{cycle}")
        return {
            "subscription_id": subscription_id,
            "status": subscription.get("status", "ACTIVE"),
            "plan": plan,
            "cycle": cycle,
            "value": value,
            "next_due_date": subscription.get("nextDueDate"),
            "payment_id": payment.asaas_payment_id,
            "invoice_url": payment.invoice_url,
        }

    def cancel_subscription(self, user: User, reason: Optional[str] = None) -> Dict[str, Any]:
        if not user.subscription_id:
            raise ValueError("User has no subscription to cancel")

        self.gateway.cancel_subscription(user.subscription_id)
        self.update_subscription_status(user, SubscriptionStatus.CANCELLED.value, ends_at=datetime.utcnow())
        self.db.commit()
        logger.info(f"Subscription {user.subscription_id} cancelled for user {user.id}: {reason or 'no reason'}")
        return {"subscription_id": user.subscription_id, "status": SubscriptionStatus.CANCELLED.value}

    def update_subscription_status(
        self,
        user: User,
        status: str,
        ends_at: Optional[datetime] = None,
        plan: Optional[str] = None
    ) -> User:
        """Set subscription status; cancelled, expired and overdue users fall back to STARTER limits"""
        user.subscription_status = status
        if ends_at is not None:
            user.subscription_ends_at = ends_at
        if plan:
            user.plan = plan

        if status in DOWNGRADE_STATUSES:
            user.credits_limit = get_plan_credits(Plan.STARTER.value)
            if status != SubscriptionStatus.OVERDUE.value:
                user.plan = Plan.STARTER.value
        logger.info(f"User {user.id} subscription status -> {status}")
        return user

    def activate_subscription(
        self,
        user: User,
        plan: Optional[str] = None,
        subscription_id: Optional[str] = None,
        cycle: Optional[str] = None
    ) -> User:
        """Mark the subscription active and reset monthly credits for the plan"""
        if plan and is_valid_plan(plan):
            user.plan = plan.upper()
        if subscription_id:
            user.subscription_id = subscription_id
        if cycle:
            user.billing_cycle = cycle
        user.subscription_status = SubscriptionStatus.ACTIVE.value
        user.subscription_ends_at = None
        if not user.subscription_started_at:
            user.subscription_started_at = datetime.utcnow()

        CreditManager(self.db).renew_monthly_credits(user, user.plan)
        return user

    def get_subscription_info(self, user: User) -> Dict[str, Any]:
        settings = get_plan(user.plan)
        return {
            "plan": user.plan,
            "plan_name": settings["name"],
            "status": user.subscription_status,
            "subscription_id": user.subscription_id,
            "billing_cycle": user.billing_cycle,
            "started_at": user.subscription_started_at.isoformat() if user.subscription_started_at else None,
            "ends_at": user.subscription_ends_at.isoformat() if user.subscription_ends_at else None,
            "credits": CreditManager.credit_summary(user),
            "features": settings.get("features", []),
            "max_models": settings.get("max_models"),
        }
