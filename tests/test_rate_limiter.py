"""
Tests for per-plan rate limits
"""
import pytest
from datetime import datetime, timedelta
from unittest.mock import Mock
from vibephoto.services.rate_limiter import RateLimiter, get_limit_config


def _attempts(mock_db, created_ats):
    rows = [Mock(created_at=created_at) for created_at in created_ats]
    mock_db.query.return_value.filter.return_value.order_by.return_value.all.return_value = rows


class TestLimitConfig:
    """Plan lookup"""

    def test_plan_specific_limits(self):
        assert get_limit_config("generation", "GOLD") == (200, timedelta(hours=1))
        assert get_limit_config("training", "premium")[0] == 5

    def test_unknown_plan_falls_back_to_starter(self):
        assert get_limit_config("api", "ENTERPRISE")[0] == 100

    def test_unknown_action(self):
        with pytest.raises(ValueError):
            get_limit_config("teleport")


class TestRateLimiter:
    """Sliding windows over usage logs"""

    def test_allowed_under_limit(self, mock_db):
        now = datetime(2026, 5, 1, 12, 0)
        _attempts(mock_db, [now - timedelta(minutes=5)])

        result = RateLimiter(mock_db).check_limit("user-1", "generation", "STARTER", now=now)

        assert result["allowed"] is True
        assert result["limit"] == 10
        assert result["remaining"] == 9
        assert result["retry_after"] is None

    def test_blocked_at_limit_with_retry_after(self, mock_db):
        now = datetime(2026, 5, 1, 12, 0)
        oldest = now - timedelta(hours=23)
        _attempts(mock_db, [now - timedelta(hours=1), oldest])

        result = RateLimiter(mock_db).check_limit("user-1", "training", "PREMIUM", now=now)
        assert result["allowed"] is True

        _attempts(mock_db, [oldest])
        result = RateLimiter(mock_db).check_limit("user-1", "training", "STARTER", now=now)

        assert result["allowed"] is False
        assert result["remaining"] == 0
        assert result["reset_time"] == oldest + timedelta(days=1)
        assert result["retry_after"] == 3600

    def test_record_attempt_adds_prefixed_log(self, mock_db):
        RateLimiter(mock_db).record_attempt("user-1", "upload", {"files": 3})
        log = mock_db.add.call_args[0][0]
        assert log.action == "rate_limit_upload"
        assert log.details == {"files": 3}

    def test_cleanup_old_logs(self, mock_db):
        mock_db.query.return_value.filter.return_value.delete.return_value = 12
        assert RateLimiter(mock_db).cleanup_old_logs(7) == 12
        mock_db.commit.assert_called_once()
