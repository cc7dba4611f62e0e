"""
Tests for credit accounting
"""
import pytest
from unittest.mock import patch, Mock
from vibephoto.db.models import User, UsageLog, CreditTransaction
from vibephoto.exceptions import InsufficientCreditsError
from vibephoto.services.credit_manager import CreditManager


def _user(limit=50, used=45, balance=10, plan="STARTER"):
    return User(id="user-1", email="u@example.com", plan=plan,
                credits_limit=limit, credits_used=used, credits_balance=balance)


def _added(mock_db, cls):
    return [c[0][0] for c in mock_db.add.call_args_list if isinstance(c[0][0], cls)]


class TestCreditSummary:
    """Available = limit - used + balance"""

    def test_summary(self):
        summary = CreditManager.credit_summary(_user())
        assert summary["subscription_credits"] == 5
        assert summary["purchased_credits"] == 10
        assert summary["available"] == 15

    def test_overused_subscription_does_not_go_negative(self):
        assert CreditManager.credit_summary(_user(limit=50, used=60, balance=3))["available"] == 3

    def test_can_user_afford(self, mock_db):
        manager = CreditManager(mock_db)
        with patch.object(manager, "_get_user", return_value=_user()):
            assert manager.can_user_afford("user-1", 15) == (True, None)
            allowed, reason = manager.can_user_afford("user-1", 16)
        assert allowed is False
        assert reason == "Insufficient credits. Need 16, have 15"


class TestDeductCredits:
    """Subscription credits first, then purchased"""

    def test_splits_between_pools(self, mock_db):
        user = _user()
        manager = CreditManager(mock_db)
        with patch.object(manager, "_get_user", return_value=user):
            usage = manager.deduct_credits("user-1", 8, "generation", reference_id="gen-1")

        assert user.credits_used == 50
        assert user.credits_balance == 7
        assert usage.details["from_subscription"] == 5
        assert usage.details["from_balance"] == 3
        transaction = _added(mock_db, CreditTransaction)[0]
        assert transaction.amount == -8
        assert transaction.type == "SPENT"
        assert transaction.source == "GENERATION"
        assert transaction.balance_after == 7

    def test_insufficient_credits(self, mock_db):
        manager = CreditManager(mock_db)
        with patch.object(manager, "_get_user", return_value=_user()):
            with pytest.raises(InsufficientCreditsError) as exc_info:
                manager.deduct_credits("user-1", 20, "video")
        assert exc_info.value.required == 20
        assert exc_info.value.available == 15
        mock_db.add.assert_not_called()

    def test_unknown_user(self, mock_db):
        mock_db.query.return_value.filter.return_value.first.return_value = None
        with pytest.raises(ValueError):
            CreditManager(mock_db).deduct_credits("ghost", 1, "generation")


class TestRefundCredits:
    """Refunds restore the pools they came from, once"""

    def test_refund_restores_pools(self, mock_db):
        user = _user(used=50, balance=7)
        original = UsageLog(user_id="user-1", action="generation", credits_used=8,
                            details={"reference_id": "gen-1", "from_subscription": 5, "from_balance": 3})
        manager = CreditManager(mock_db)
        with patch.object(manager, "has_refund", return_value=False), \
                patch.object(manager, "_find_usage", return_value=original), \
                patch.object(manager, "_get_user", return_value=user):
            refunded = manager.refund_credits("user-1", "generation", "gen-1", reason="Generation failed")

        assert refunded == 8
        assert user.credits_used == 45
        assert user.credits_balance == 10
        refund_log = _added(mock_db, UsageLog)[0]
        assert refund_log.action == "generation_refund"
        assert refund_log.credits_used == -8
        transaction = _added(mock_db, CreditTransaction)[0]
        assert transaction.type == "REFUNDED"
        assert transaction.amount == 8

    def test_refund_is_idempotent(self, mock_db):
        manager = CreditManager(mock_db)
        with patch.object(manager, "has_refund", return_value=True):
            assert manager.refund_credits("user-1", "generation", "gen-1") == 0
        mock_db.add.assert_not_called()

    def test_nothing_charged_nothing_refunded(self, mock_db):
        manager = CreditManager(mock_db)
        with patch.object(manager, "has_refund", return_value=False), \
                patch.object(manager, "_find_usage", return_value=None):
            assert manager.refund_credits("user-1", "video", "vid-1") == 0

    def test_explicit_amount_without_original(self, mock_db):
        user = _user(used=50, balance=0)
        manager = CreditManager(mock_db)
        with patch.object(manager, "has_refund", return_value=False), \
                patch.object(manager, "_find_usage", return_value=None), \
                patch.object(manager, "_get_user", return_value=user):
            assert manager.refund_credits("user-1", "upscale", "gen-2", amount=4) == 4
        assert user.credits_used == 46


class TestGrants:
    """Purchases and renewals"""

    def test_add_purchased_credits_with_bonus(self, mock_db):
        user = _user(limit=50, used=50, balance=0)
        total = CreditManager(mock_db).add_purchased_credits(user, 300, 50, credit_purchase_id="cp-1")

        assert total == 350
        assert user.credits_balance == 350
        purchase, bonus = _added(mock_db, CreditTransaction)
        assert (purchase.type, purchase.amount, purchase.balance_after) == ("PURCHASED", 300, 300)
        assert (bonus.type, bonus.source, bonus.amount, bonus.balance_after) == ("EARNED", "BONUS", 50, 350)

    def test_renew_monthly_credits(self, mock_db):
        user = _user(limit=50, used=50, balance=5, plan="PREMIUM")
        assert CreditManager(mock_db).renew_monthly_credits(user) == 200
        assert user.credits_used == 0
        assert user.credits_limit == 200
        reset_log = _added(mock_db, UsageLog)[0]
        assert reset_log.action == "SUBSCRIPTION_CREDIT_RESET"


class TestModelLimit:
    """max_models per plan"""

    @pytest.mark.parametrize("plan,current,allowed", [
        ("STARTER", 0, True),
        ("STARTER", 1, False),
        ("PREMIUM", 2, True),
        ("PREMIUM", 3, False),
        ("GOLD", 50, True),
    ])
    def test_check_model_creation_limit(self, mock_db, plan, current, allowed):
        manager = CreditManager(mock_db)
        mock_db.query.return_value.filter.return_value.count.return_value = current
        with patch.object(manager, "_get_user", return_value=_user(plan=plan)):
            result = manager.check_model_creation_limit("user-1")
        assert result["allowed"] is allowed
        assert result["current"] == current


class TestUsageStats:
    """Per-action usage over a window"""

    @pytest.fixture
    def manager(self, mock_db):
        return CreditManager(mock_db)

    def test_aggregates_by_action(self, manager, mock_db):
        mock_db.query.return_value.filter.return_value.group_by.return_value.all.return_value = [
            ("generation", 40, 4), ("upscale", 10, 2),
        ]
        with patch.object(manager, "get_user_credits", return_value={"available": 30}):
            stats = manager.get_usage_stats("user-1", days=7)

        assert stats["period_days"] == 7
        assert stats["total_credits_used"] == 50
        assert stats["by_action"]["upscale"] == {"credits": 10, "count": 2}
        assert stats["available"] == 30

    def test_falls_back_to_empty_counts(self, manager, mock_db):
        mock_db.query.return_value.filter.return_value.group_by.return_value.all.side_effect = RuntimeError("boom")
        with patch.object(manager, "get_user_credits", return_value={"available": 30}):
            stats = manager.get_usage_stats("user-1")

        assert stats["by_action"] == {}
        assert stats["total_credits_used"] == 0
        mock_db.rollback.assert_called_once()
