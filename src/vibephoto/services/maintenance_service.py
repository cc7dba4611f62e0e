"""
Maintenance Service
Periodic housekeeping shared by the scheduler, the cron endpoint and ops scripts:
log retention, stuck generation timeouts and payment reconciliation with Asaas.
"""
from sqlalchemy.orm import Session
from datetime import datetime, timedelta
from typing import Optional, Dict, Any, Callable
import logging

from ..db.models import Generation, GenerationStatus, Payment, PaymentStatus
from ..exceptions import AsaasAPIError
from .asaas_webhook_service import AsaasWebhookService, WebhookProcessingError
from .billing_gateway import BillingGateway, get_billing_gateway
from .rate_limiter import RateLimiter
from .reconciliation_service import ReconciliationService
from .system_logger import SystemLogger

logger = logging.getLogger(__name__)

SYSTEM_LOG_RETENTION_DAYS = 30
RATE_LIMIT_LOG_RETENTION_DAYS = 7
STUCK_GENERATION_MINUTES = 60

# Remote Asaas statuses and the local outcome they map to
PAID_STATUSES = ("CONFIRMED", "RECEIVED", "RECEIVED_IN_CASH")
CANCELLED_STATUSES = ("REFUNDED", "DELETED", "CANCELLED", "REFUND_REQUESTED")


class MaintenanceService:
    def __init__(
        self,
        db: Session,
        gateway: Optional[BillingGateway] = None,
        session_factory: Optional[Callable[[], Session]] = None
    ):
        self.db = db
        self._gateway = gateway
        self.session_factory = session_factory

    @property
    def gateway(self) -> BillingGateway:
        if self._gateway is None:
            self._gateway = get_billing_gateway("asaas")
        return self._gateway

    def find_stuck_generations(self, older_than_minutes: int = STUCK_GENERATION_MINUTES,
                               now: Optional[datetime] = None):
        cutoff = (now or datetime.utcnow()) - timedelta(minutes=older_than_minutes)
        return self.db.query(Generation).filter(
            Generation.status == GenerationStatus.PROCESSING.value,
            Generation.created_at < cutoff
        ).order_by(Generation.created_at.asc()).all()

    def timeout_stuck_generations(self, older_than_minutes: int = STUCK_GENERATION_MINUTES,
                                  now: Optional[datetime] = None) -> int:
        """Fail and refund generations PROCESSING for longer than older_than_minutes"""
        now = now or datetime.utcnow()
        reconciler = ReconciliationService(self.db)
        timed_out = 0
        for generation in self.find_stuck_generations(older_than_minutes, now):
            result = reconciler.timeout_generation(generation, timeout_minutes=older_than_minutes, now=now)
            if result["action"] == "timed_out":
                timed_out += 1
        if timed_out:
            logger.info(f"Timed out {timed_out} stuck generations")
        return timed_out

    def daily_cleanup(self, now: Optional[datetime] = None) -> Dict[str, int]:
        """Remove old system and rate limit logs, then time out stuck generations"""
        summary = {
            "system_logs_deleted": SystemLogger(self.session_factory).cleanup_old_logs(SYSTEM_LOG_RETENTION_DAYS),
            "rate_limit_logs_deleted": RateLimiter(self.db).cleanup_old_logs(RATE_LIMIT_LOG_RETENTION_DAYS),
            "stuck_generations_failed": self.timeout_stuck_generations(now=now),
        }
        logger.info(f"Daily cleanup: {summary}")
        return summary

    def sync_payments(self, days: int = 7, dry_run: bool = False, now: Optional[datetime] = None) -> Dict[str, Any]:
        """
        Reconcile PENDING payments from the last `days` days against Asaas

        Paid payments go through the same path as a PAYMENT_CONFIRMED webhook,
        so credit purchases are credited and subscriptions activated.
        """
        cutoff = (now or datetime.utcnow()) - timedelta(days=days)
        pending = self.db.query(Payment).filter(
            Payment.status == PaymentStatus.PENDING.value,
            Payment.asaas_payment_id.isnot(None),
            Payment.created_at >= cutoff
        ).order_by(Payment.created_at.asc()).all()

        summary: Dict[str, Any] = {
            "checked": 0, "confirmed": 0, "cancelled": 0, "unchanged": 0, "errors": 0,
            "dry_run": dry_run, "results": [],
        }
        handler = AsaasWebhookService(self.db, self._gateway)

        for payment in pending:
            summary["checked"] += 1
            payment_id = payment.asaas_payment_id
            try:
                remote = self.gateway.get_payment(payment_id)
            except AsaasAPIError as e:
                summary["errors"] += 1
                summary["results"].append({"payment_id": payment_id, "action": "error", "error": str(e)})
                logger.error(f"Could not fetch payment {payment_id}: {e}")
                continue

            remote_status = remote.get("status")
            if remote_status in PAID_STATUSES:
                action = "confirmed"
            elif remote_status in CANCELLED_STATUSES:
                action = "cancelled"
            else:
                summary["unchanged"] += 1
                summary["results"].append({"payment_id": payment_id, "action": "unchanged", "status": remote_status})
                continue

            if not dry_run:
                try:
                    if action == "confirmed":
                        event = "PAYMENT_RECEIVED" if remote_status != "CONFIRMED" else "PAYMENT_CONFIRMED"
                        handler.handle_payment_success(remote, event)
                    else:
                        event = "PAYMENT_REFUNDED" if remote_status.startswith("REFUND") else "PAYMENT_DELETED"
                        handler.handle_payment_cancelled(remote, event)
                    self.db.commit()
                except (WebhookProcessingError, ValueError) as e:
                    self.db.rollback()
                    summary["errors"] += 1
                    message = e.message if isinstance(e, WebhookProcessingError) else str(e)
                    summary["results"].append({"payment_id": payment_id, "action": "error", "error": message})
                    logger.error(f"Payment sync failed for {payment_id}: {message}")
                    continue

            summary[action] += 1
            summary["results"].append({"payment_id": payment_id, "action": action, "status": remote_status})

        logger.info(
            f"Payment sync: checked={summary['checked']} confirmed={summary['confirmed']} "
            f"cancelled={summary['cancelled']} errors={summary['errors']} dry_run={dry_run}"
        )
        return summary
