"""
Tests for credit package purchases
"""
import pytest
from datetime import date, datetime
from unittest.mock import patch, Mock
from vibephoto.db.models import User, Payment, CreditPurchase, CreditTransaction
from vibephoto.services.credit_package_service import (
    CreditPackageService,
    build_external_reference,
    build_payment_request,
)
from vibephoto.services.plan_catalog import get_credit_package
from vibephoto.services.subscription_service import SubscriptionService


def _purchase(status="PENDING"):
    return CreditPurchase(
        id="cp-1", user_id="user-1", asaas_payment_id="pay_1",
        package_id="PROFISSIONAL", package_name="Pacote Profissional",
        credit_amount=300, bonus_credits=50, value=239.0, status=status, is_expired=False,
    )


class TestPaymentRequest:
    """Asaas payment body"""

    def test_external_reference(self):
        assert build_external_reference(350, 1700000000000) == "credits-350-1700000000000"

    def test_pix_due_next_day(self):
        request = build_payment_request("cus_1", get_credit_package("PROFISSIONAL"), "PIX", today=date(2026, 3, 10))
        assert request["dueDate"] == "2026-03-11"
        assert request["value"] == 239.0
        assert request["description"] == "Pacote Profissional - 350 créditos"
        assert request["externalReference"].startswith("credits-350-")
        assert "fine" not in request

    def test_boleto_due_in_a_week_with_fine(self):
        request = build_payment_request("cus_1", get_credit_package("ESSENCIAL"), "BOLETO", today=date(2026, 3, 10))
        assert request["dueDate"] == "2026-03-17"
        assert request["fine"] == {"value": 2.0}
        assert request["interest"] == {"value": 1.0}

    def test_card_installments(self):
        request = build_payment_request(
            "cus_1", get_credit_package("PROFISSIONAL"), "CREDIT_CARD", installment_count=3, today=date(2026, 3, 10)
        )
        assert request["installmentCount"] == 3
        assert request["installmentValue"] == 79.67


class TestPurchaseCreditPackage:
    """Creating the charge"""

    def test_list_packages_price_per_credit(self, mock_db):
        packages = {p["id"]: p for p in CreditPackageService(mock_db, gateway=Mock()).list_packages()}
        assert packages["ESSENCIAL"]["price_per_credit"] == 0.89
        assert packages["MEGA"]["total_credits"] == 1800

    def test_invalid_package(self, mock_db):
        service = CreditPackageService(mock_db, gateway=Mock())
        with pytest.raises(ValueError):
            service.purchase_credit_package(Mock(spec=User), "GIGANTE")

    def test_invalid_billing_type(self, mock_db):
        service = CreditPackageService(mock_db, gateway=Mock())
        with pytest.raises(ValueError):
            service.purchase_credit_package(Mock(spec=User), "ESSENCIAL", billing_type="CHEQUE")

    def test_pix_purchase(self, mock_db, mock_user):
        gateway = Mock()
        gateway.create_payment.return_value = {"id": "pay_9", "status": "PENDING", "invoiceUrl": "https://asaas/i/9"}
        gateway.get_pix_qr_code.return_value = {"encodedImage": "base64img", "payload": "000201"}
        service = CreditPackageService(mock_db, gateway=gateway)

        with patch.object(SubscriptionService, "ensure_customer", return_value="cus_1"):
            result = service.purchase_credit_package(mock_user, "PROFISSIONAL", billing_type="pix")

        assert result["payment_id"] == "pay_9"
        assert result["credits"] == 350
        assert result["billing_type"] == "PIX"
        assert result["pix_payload"] == "000201"
        assert gateway.create_payment.call_args[0][0]["customer"] == "cus_1"
        added = [c[0][0] for c in mock_db.add.call_args_list]
        assert any(isinstance(obj, CreditPurchase) and obj.status == "PENDING" for obj in added)
        assert any(isinstance(obj, Payment) and obj.credit_amount == 350 for obj in added)
        mock_db.commit.assert_called_once()

    def test_qr_code_failure_does_not_fail_purchase(self, mock_db, mock_user):
        gateway = Mock()
        gateway.create_payment.return_value = {"id": "pay_9"}
        gateway.get_pix_qr_code.side_effect = RuntimeError("timeout")
        service = CreditPackageService(mock_db, gateway=gateway)

        with patch.object(SubscriptionService, "ensure_customer", return_value="cus_1"):
            result = service.purchase_credit_package(mock_user, "ESSENCIAL")

        assert result["pix_qr_code"] is None
        mock_db.commit.assert_called_once()


class TestConfirmCreditPurchase:
    """Crediting paid purchases"""

    def test_confirm_adds_credits(self, mock_db):
        purchase = _purchase()
        user = User(id="user-1", plan="STARTER", credits_limit=50, credits_used=50, credits_balance=0)
        payment = Payment(asaas_payment_id="pay_1", status="PENDING")
        mock_db.query.return_value.filter.return_value.first.side_effect = [purchase, user, payment]

        result = CreditPackageService(mock_db, gateway=Mock()).confirm_credit_purchase("pay_1")

        assert result is purchase
        assert purchase.status == "CONFIRMED"
        assert purchase.confirmed_at is not None
        assert payment.status == "CONFIRMED"
        assert user.credits_balance == 350

    def test_already_confirmed_is_untouched(self, mock_db):
        purchase = _purchase(status="RECEIVED")
        mock_db.query.return_value.filter.return_value.first.return_value = purchase

        assert CreditPackageService(mock_db, gateway=Mock()).confirm_credit_purchase("pay_1") is purchase
        mock_db.add.assert_not_called()

    def test_unknown_payment(self, mock_db):
        mock_db.query.return_value.filter.return_value.first.return_value = None
        assert CreditPackageService(mock_db, gateway=Mock()).confirm_credit_purchase("pay_x") is None

    def test_cancel_only_pending(self, mock_db):
        purchase = _purchase()
        mock_db.query.return_value.filter.return_value.first.return_value = purchase
        CreditPackageService(mock_db, gateway=Mock()).cancel_credit_purchase("pay_1", status="REFUNDED")
        assert purchase.status == "REFUNDED"


class TestExpiredCredits:
    """Purchases past valid_until"""

    def test_expires_unused_balance(self, mock_db):
        purchase = _purchase(status="CONFIRMED")
        purchase.valid_until = datetime(2025, 1, 1)
        user = User(id="user-1", plan="STARTER", credits_limit=50, credits_used=0, credits_balance=100)
        mock_db.query.return_value.filter.return_value.all.return_value = [purchase]
        mock_db.query.return_value.filter.return_value.first.return_value = user

        assert CreditPackageService(mock_db, gateway=Mock()).mark_expired_credits(datetime(2026, 1, 1)) == 1

        assert purchase.is_expired is True
        assert user.credits_balance == 0
        transaction = mock_db.add.call_args[0][0]
        assert isinstance(transaction, CreditTransaction)
        assert transaction.amount == -100
        assert transaction.type == "EXPIRED"
        mock_db.commit.assert_called_once()

    def test_nothing_to_expire(self, mock_db):
        mock_db.query.return_value.filter.return_value.all.return_value = []
        assert CreditPackageService(mock_db, gateway=Mock()).mark_expired_credits() == 0
        mock_db.commit.assert_not_called()


class TestRecommendations:
    """Package suggestions"""

    def test_low_credits_message(self, mock_db):
        user = User(id="user-1", plan="PREMIUM", credits_limit=200, credits_used=195, credits_balance=0)
        result = CreditPackageService(mock_db, gateway=Mock()).get_recommendations(user)
        assert result["recommended"]["id"] == "PROFISSIONAL"
        assert result["reason"] == "Seus créditos estão acabando"
