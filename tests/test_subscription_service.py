"""
Tests for subscriptions
"""
import pytest
from datetime import date
from unittest.mock import Mock
from vibephoto.db.models import User, Payment
from vibephoto.services.subscription_service import (
    SubscriptionService,
    add_months,
    calculate_annual_savings,
    get_next_due_date,
    get_plan_price,
    get_payment_methods_for_plan,
)


def _user(**overrides):
    fields = dict(id="user-1", email="ana@example.com", name="Ana Souza", plan="STARTER",
                  credits_limit=50, credits_used=10, credits_balance=0)
    fields.update(overrides)
    return User(**fields)


def _gateway():
    gateway = Mock()
    gateway.create_customer.return_value = {"id": "cus_1"}
    gateway.create_subscription.return_value = {"id": "sub_1", "status": "ACTIVE", "nextDueDate": "2026-03-11"}
    gateway.get_subscription_payments.return_value = [{"id": "pay_1", "invoiceUrl": "https://asaas/i/1"}]
    return gateway


class TestPricing:
    """Plan prices and dates"""

    def test_prices(self):
        assert get_plan_price("PREMIUM") == 269.0
        assert get_plan_price("PREMIUM", "YEARLY") == 2148.0

    def test_annual_savings(self):
        savings = calculate_annual_savings("STARTER")
        assert savings["savings"] == 360.0
        assert savings["months_equivalent"] == 4
        assert savings["percentage"] == 34
        assert savings["monthly_equivalent"] == 59.0

    @pytest.mark.parametrize("start,months,expected", [
        (date(2026, 1, 31), 1, date(2026, 2, 28)),
        (date(2024, 1, 31), 1, date(2024, 2, 29)),
        (date(2026, 11, 15), 3, date(2027, 2, 15)),
    ])
    def test_add_months(self, start, months, expected):
        assert add_months(start, months) == expected

    def test_next_due_date(self):
        assert get_next_due_date("YEARLY", today=date(2026, 3, 10)) == date(2027, 3, 10)
        assert get_next_due_date("MONTHLY", today=date(2026, 3, 10)) == date(2026, 4, 10)

    def test_installments_per_plan(self):
        card = [m for m in get_payment_methods_for_plan("GOLD") if m["type"] == "CREDIT_CARD"][0]
        assert card["max_installments"] == 12


class TestEnsureCustomer:
    """Asaas customer"""

    def test_creates_customer(self, mock_db):
        user = _user()
        gateway = _gateway()
        assert SubscriptionService(mock_db, gateway).ensure_customer(user) == "cus_1"
        assert user.asaas_customer_id == "cus_1"
        assert gateway.create_customer.call_args[0][0]["externalReference"] == "user-1"

    def test_updates_existing_customer(self, mock_db):
        user = _user(asaas_customer_id="cus_9")
        gateway = _gateway()
        assert SubscriptionService(mock_db, gateway).ensure_customer(user, {"cpfCnpj": "52998224725"}) == "cus_9"
        gateway.create_customer.assert_not_called()
        gateway.update_customer.assert_called_once()
        assert user.cpf_cnpj == "52998224725"

    def test_invalid_document(self, mock_db):
        with pytest.raises(ValueError) as exc_info:
            SubscriptionService(mock_db, _gateway()).ensure_customer(_user(), {"cpfCnpj": "11111111111"})
        assert "CPF/CNPJ inválido" in str(exc_info.value)


class TestCreateSubscription:
    """Subscription checkout"""

    def test_creates_pending_subscription(self, mock_db):
        user = _user()
        gateway = _gateway()

        result = SubscriptionService(mock_db, gateway).create_subscription(user, "premium", "monthly")

        request = gateway.create_subscription.call_args[0][0]
        assert request["externalReference"] == "subscription-user-1-PREMIUM-MONTHLY"
        assert request["value"] == 269.0
        assert request["cycle"] == "MONTHLY"
        assert result["subscription_id"] == "sub_1"
        assert result["payment_id"] == "pay_1"
        assert user.subscription_status == "PENDING"
        assert user.plan == "STARTER"
        payment = mock_db.add.call_args[0][0]
        assert isinstance(payment, Payment)
        assert payment.plan == "PREMIUM"
        mock_db.commit.assert_called_once()

    def test_invalid_plan(self, mock_db):
        with pytest.raises(ValueError):
            SubscriptionService(mock_db, _gateway()).create_subscription(_user(), "PLATINUM")

    def test_invalid_cycle(self, mock_db):
        with pytest.raises(ValueError):
            SubscriptionService(mock_db, _gateway()).create_subscription(_user(), "GOLD", "WEEKLY")

    def test_already_active(self, mock_db):
        user = _user(subscription_status="ACTIVE", subscription_id="sub_0")
        with pytest.raises(ValueError):
            SubscriptionService(mock_db, _gateway()).create_subscription(user, "GOLD")


class TestSubscriptionStatus:
    """Status transitions"""

    def test_activate_resets_credits(self, mock_db):
        user = _user(plan="STARTER", credits_used=50)
        SubscriptionService(mock_db, _gateway()).activate_subscription(user, plan="PREMIUM", subscription_id="sub_1")
        assert user.plan == "PREMIUM"
        assert user.subscription_status == "ACTIVE"
        assert user.credits_limit == 200
        assert user.credits_used == 0
        assert user.subscription_started_at is not None

    def test_overdue_keeps_plan_with_starter_limit(self, mock_db):
        user = _user(plan="GOLD", credits_limit=1000)
        SubscriptionService(mock_db, _gateway()).update_subscription_status(user, "OVERDUE")
        assert user.plan == "GOLD"
        assert user.credits_limit == 50

    @pytest.mark.parametrize("status", ["CANCELLED", "EXPIRED"])
    def test_cancelled_and_expired_downgrade(self, mock_db, status):
        user = _user(plan="PREMIUM", credits_limit=200)
        SubscriptionService(mock_db, _gateway()).update_subscription_status(user, status)
        assert user.plan == "STARTER"
        assert user.credits_limit == 50

    def test_cancel_subscription(self, mock_db):
        user = _user(plan="PREMIUM", subscription_id="sub_1", subscription_status="ACTIVE")
        gateway = _gateway()
        result = SubscriptionService(mock_db, gateway).cancel_subscription(user, reason="too expensive")
        gateway.cancel_subscription.assert_called_once_with("sub_1")
        assert result["status"] == "CANCELLED"
        assert user.subscription_ends_at is not None

    def test_cancel_without_subscription(self, mock_db):
        with pytest.raises(ValueError):
            SubscriptionService(mock_db, _gateway()).cancel_subscription(_user())
