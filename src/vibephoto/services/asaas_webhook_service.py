"""
Asaas Webhook Service
Idempotent processing of Asaas payment and subscription events.

Every delivery is recorded in WebhookEvent keyed by a hash of
(event, paymentId, subscriptionId, dateCreated). Processed events are never
applied twice; failed ones are retried by Asaas and counted in retry_count.
"""
from sqlalchemy.orm import Session
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Optional, Dict, Any
import hashlib
import hmac
import json
import logging
import re

from ..config import config
from ..db.models import (
    User,
    Payment,
    PaymentType,
    PaymentStatus,
    BillingType,
    CreditPurchase,
    SubscriptionStatus,
    UsageLog,
    WebhookEvent,
)
from .billing_gateway import BillingGateway
from .credit_package_service import CreditPackageService, CREDIT_VALIDITY_DAYS
from .plan_catalog import get_plan_credits, is_valid_plan
from .subscription_service import SubscriptionService, BILLING_CYCLES

logger = logging.getLogger(__name__)

PAYMENT_SUCCESS_EVENTS = ("PAYMENT_CONFIRMED", "PAYMENT_RECEIVED")
PAYMENT_CANCEL_EVENTS = ("PAYMENT_DELETED", "PAYMENT_REFUNDED")
SUBSCRIPTION_EVENTS = ("SUBSCRIPTION_EXPIRED", "SUBSCRIPTION_CANCELLED", "SUBSCRIPTION_REACTIVATED")

_CREDIT_REFERENCE = re.compile(r"(?:credits?|package)-(\d+)", re.IGNORECASE)
_NON_RETRYABLE_MARKERS = ("not found", "invalid", "duplicate")


class WebhookProcessingError(Exception):
    """Event could not be applied; `retryable` decides between 422 and 400"""

    def __init__(self, message: str, retryable: bool = True):
        super().__init__(message)
        self.message = message
        self.retryable = retryable


def verify_access_token(provided: Optional[str], expected: Optional[str] = None) -> bool:
    """asaas-access-token header against ASAAS_WEBHOOK_TOKEN; open when no token is configured"""
    expected = expected if expected is not None else config.ASAAS_WEBHOOK_TOKEN
    if not expected:
        logger.warning("ASAAS_WEBHOOK_TOKEN not configured - webhook not secured")
        return True
    if not provided:
        return False
    return hmac.compare_digest(provided.encode(), expected.encode())


def generate_idempotency_key(payload: Dict[str, Any]) -> str:
    key_data = {
        "event": payload.get("event"),
        "paymentId": (payload.get("payment") or {}).get("id"),
        "subscriptionId": (payload.get("subscription") or {}).get("id"),
        "dateCreated": payload.get("dateCreated"),
    }
    return hashlib.sha256(json.dumps(key_data, separators=(",", ":")).encode()).hexdigest()


def validate_payload(payload: Dict[str, Any]):
    """Raises ValueError for payloads Asaas should not retry"""
    if not isinstance(payload, dict) or not payload.get("event"):
        raise ValueError("Missing event type")
    if not payload.get("payment") and not payload.get("subscription"):
        raise ValueError("Missing payment or subscription data")


def parse_subscription_reference(reference: Optional[str]) -> Optional[Dict[str, str]]:
    """`subscription-{user_id}-{PLAN}-{CYCLE}` -> {user_id, plan, cycle}"""
    if not reference or not reference.startswith("subscription-"):
        return None
    parts = reference[len("subscription-"):].rsplit("-", 2)
    if len(parts) != 3:
        return None
    user_id, plan, cycle = parts
    if not is_valid_plan(plan) or cycle.upper() not in BILLING_CYCLES:
        return None
    return {"user_id": user_id, "plan": plan.upper(), "cycle": cycle.upper()}


def extract_credit_amount(reference: Optional[str]) -> int:
    """Credits encoded in `credits-{n}-...` or `package-{n}` references"""
    if not reference:
        return 0
    match = _CREDIT_REFERENCE.search(reference)
    return int(match.group(1)) if match else 0


def _parse_date(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.strptime(value[:10], "%Y-%m-%d")
    except ValueError:
        return None


class AsaasWebhookService:
    def __init__(self, db: Session, gateway: Optional[BillingGateway] = None):
        self.db = db
        self.subscriptions = SubscriptionService(db, gateway)
        self.credit_packages = CreditPackageService(db, gateway)

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    def handle(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """
        Record and apply one webhook delivery

        Returns:
            {status: processed | already_processed | failed, event_id, ...};
            failed results carry `error` and `retryable`

        Raises:
            ValueError: malformed payload
        """
        validate_payload(payload)
        key = generate_idempotency_key(payload)
        payment = payload.get("payment") or {}
        subscription = payload.get("subscription") or {}

        event = self.db.query(WebhookEvent).filter(WebhookEvent.idempotency_key == key).first()
        if event and event.processed:
            logger.info(f"Webhook {payload['event']} already processed ({event.id})")
            return {"status": "already_processed", "event_id": event.id}

        if event:
            event.retry_count = (event.retry_count or 0) + 1
            event.payload = payload
        else:
            event = WebhookEvent(
                provider="asaas",
                event=payload["event"],
                idempotency_key=key,
                asaas_payment_id=payment.get("id"),
                asaas_subscription_id=subscription.get("id") or payment.get("subscription"),
                asaas_customer_id=payment.get("customer") or subscription.get("customer"),
                payload=payload,
                processed=False,
                retry_count=0,
            )
            self.db.add(event)
        self.db.commit()
        event_id = event.id

        try:
            self.process_event(payload)
        except WebhookProcessingError as e:
            self.db.rollback()
            return self._record_failure(event_id, e.message, e.retryable)
        except Exception as e:
            self.db.rollback()
            message = str(e)
            retryable = not any(marker in message.lower() for marker in _NON_RETRYABLE_MARKERS)
            logger.error(f"Error processing {payload['event']}: {message}", exc_info=True)
            return self._record_failure(event_id, message, retryable)

        event = self.db.query(WebhookEvent).filter(WebhookEvent.id == event_id).first()
        event.processed = True
        event.processed_at = datetime.utcnow()
        event.processing_error = None
        self.db.commit()
        logger.info(f"Webhook {payload['event']} processed ({event_id})")
        return {"status": "processed", "event_id": event_id}

    def _record_failure(self, event_id: str, message: str, retryable: bool) -> Dict[str, Any]:
        event = self.db.query(WebhookEvent).filter(WebhookEvent.id == event_id).first()
        if event:
            event.processed = False
            event.processing_error = message
            self.db.commit()
        logger.warning(f"Webhook event {event_id} failed (retryable={retryable}): {message}")
        return {"status": "failed", "event_id": event_id, "error": message, "retryable": retryable}

    def process_event(self, payload: Dict[str, Any]):
        event_type = payload["event"]
        payment = payload.get("payment")
        subscription = payload.get("subscription")

        if event_type in PAYMENT_SUCCESS_EVENTS:
            self.handle_payment_success(self._require(payment, "payment"), event_type)
        elif event_type == "PAYMENT_OVERDUE":
            self.handle_payment_overdue(self._require(payment, "payment"))
        elif event_type in PAYMENT_CANCEL_EVENTS:
            self.handle_payment_cancelled(self._require(payment, "payment"), event_type)
        elif event_type in SUBSCRIPTION_EVENTS:
            self.handle_subscription_event(self._require(subscription, "subscription"), event_type)
        else:
            # Unknown events succeed so Asaas stops retrying them
            logger.info(f"Unhandled Asaas webhook event: {event_type}")
            return
        self.db.commit()

    @staticmethod
    def _require(data: Optional[Dict[str, Any]], name: str) -> Dict[str, Any]:
        if not data:
            raise WebhookProcessingError(f"Missing {name} data", retryable=False)
        return data

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def find_user(self, customer_id: Optional[str], payment_id: Optional[str] = None,
                  subscription_id: Optional[str] = None) -> User:
        user = None
        if customer_id:
            user = self.db.query(User).filter(User.asaas_customer_id == customer_id).first()
        if user is None and subscription_id:
            user = self.db.query(User).filter(User.subscription_id == subscription_id).first()
        if user is None and payment_id:
            existing = self.db.query(Payment).filter(Payment.asaas_payment_id == payment_id).first()
            if existing:
                user = self.db.query(User).filter(User.id == existing.user_id).first()
        if user is None:
            raise WebhookProcessingError("User not found", retryable=False)
        return user

    def upsert_payment(self, user: User, payment: Dict[str, Any], status: str) -> Payment:
        record = self.db.query(Payment).filter(Payment.asaas_payment_id == payment.get("id")).first()
        if record is None:
            reference = payment.get("externalReference")
            parsed = parse_subscription_reference(reference)
            record = Payment(
                user_id=user.id,
                asaas_payment_id=payment.get("id"),
                subscription_id=payment.get("subscription"),
                type=PaymentType.SUBSCRIPTION.value if payment.get("subscription") else PaymentType.CREDIT_PURCHASE.value,
                billing_type=payment.get("billingType") or BillingType.UNDEFINED.value,
                value=Decimal(str(payment.get("value") or 0)),
                description=payment.get("description") or f"Payment {status.lower()} - {payment.get('billingType')}",
                due_date=_parse_date(payment.get("dueDate")),
                external_reference=reference,
                plan=parsed["plan"] if parsed else None,
                billing_cycle=parsed["cycle"] if parsed else None,
            )
            self.db.add(record)
        record.status = status
        if status in (PaymentStatus.CONFIRMED.value, PaymentStatus.RECEIVED.value) and not record.confirmed_at:
            record.confirmed_at = datetime.utcnow()
        return record

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    def handle_payment_success(self, payment: Dict[str, Any], event_type: str):
        status = PaymentStatus.RECEIVED.value if event_type == "PAYMENT_RECEIVED" else PaymentStatus.CONFIRMED.value
        user = self.find_user(payment.get("customer"), payment.get("id"), payment.get("subscription"))

        if payment.get("subscription"):
            record = self.upsert_payment(user, payment, status)
            parsed = parse_subscription_reference(payment.get("externalReference"))
            plan = record.plan or (parsed["plan"] if parsed else None)
            cycle = record.billing_cycle or (parsed["cycle"] if parsed else None)
            self.subscriptions.activate_subscription(user, plan, payment["subscription"], cycle)
        else:
            purchase = self.credit_packages.confirm_credit_purchase(payment["id"], status)
            if purchase is None:
                self._credit_untracked_purchase(user, payment, status)

        self.db.add(UsageLog(
            user_id=user.id,
            action="PAYMENT_CONFIRMED",
            credits_used=0,
            details={
                "payment_id": payment.get("id"),
                "value": payment.get("value"),
                "billing_type": payment.get("billingType"),
                "subscription": payment.get("subscription"),
            },
        ))
        logger.info(f"Payment {payment.get('id')} confirmed for user {user.id}")

    def _credit_untracked_purchase(self, user: User, payment: Dict[str, Any], status: str):
        """Payment for credits created outside this API; the amount comes from externalReference"""
        credit_amount = extract_credit_amount(payment.get("externalReference"))
        if credit_amount <= 0:
            logger.warning(f"Payment {payment.get('id')} has no credit purchase and no credit amount")
            self.upsert_payment(user, payment, status)
            return

        self.upsert_payment(user, payment, PaymentStatus.PENDING.value)

        self.db.add(CreditPurchase(
            user_id=user.id,
            asaas_payment_id=payment["id"],
            package_name=f"Pacote de {credit_amount} créditos",
            credit_amount=credit_amount,
            bonus_credits=0,
            value=Decimal(str(payment.get("value") or 0)),
            status=PaymentStatus.PENDING.value,
            valid_until=datetime.utcnow() + timedelta(days=CREDIT_VALIDITY_DAYS),
        ))
        self.db.flush()
        self.credit_packages.confirm_credit_purchase(payment["id"], status)

    def handle_payment_overdue(self, payment: Dict[str, Any]):
        user = self.find_user(payment.get("customer"), payment.get("id"), payment.get("subscription"))
        self.upsert_payment(user, payment, PaymentStatus.OVERDUE.value)
        if payment.get("subscription"):
            self.subscriptions.update_subscription_status(user, SubscriptionStatus.OVERDUE.value)
        logger.info(f"Payment {payment.get('id')} overdue for user {user.id}")

    def handle_payment_cancelled(self, payment: Dict[str, Any], event_type: str):
        status = PaymentStatus.REFUNDED.value if event_type == "PAYMENT_REFUNDED" else PaymentStatus.CANCELLED.value
        user = self.find_user(payment.get("customer"), payment.get("id"), payment.get("subscription"))
        self.upsert_payment(user, payment, status)
        if payment.get("subscription"):
            self.subscriptions.update_subscription_status(user, SubscriptionStatus.CANCELLED.value)
        else:
            self.credit_packages.cancel_credit_purchase(payment["id"], status)
        logger.info(f"Payment {payment.get('id')} {status.lower()} for user {user.id}")

    def handle_subscription_event(self, subscription: Dict[str, Any], event_type: str):
        user = self.find_user(subscription.get("customer"), subscription_id=subscription.get("id"))
        now = datetime.utcnow()
        if event_type == "SUBSCRIPTION_EXPIRED":
            self.subscriptions.update_subscription_status(user, SubscriptionStatus.EXPIRED.value, ends_at=now)
        elif event_type == "SUBSCRIPTION_CANCELLED":
            self.subscriptions.update_subscription_status(user, SubscriptionStatus.CANCELLED.value, ends_at=now)
        else:
            user.subscription_status = SubscriptionStatus.ACTIVE.value
            user.subscription_ends_at = None
            user.credits_limit = get_plan_credits(user.plan)
        logger.info(f"Subscription {subscription.get('id')} {event_type} for user {user.id}")

