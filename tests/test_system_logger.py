"""
Tests for persisted audit logging
"""
from unittest.mock import Mock
from vibephoto.db.models import SystemLog
from vibephoto.services.system_logger import SystemLogger


class TestSystemLogger:
    """SystemLog writes"""

    def test_persists_entry(self):
        session = Mock()
        system_logger = SystemLogger(session_factory=lambda: session)

        assert system_logger.info("Payment confirmed", user_id="user-1", metadata={"payment_id": "pay_1"}) is True

        entry = session.add.call_args[0][0]
        assert isinstance(entry, SystemLog)
        assert entry.level == "info"
        assert entry.extra_metadata == {"payment_id": "pay_1"}
        session.commit.assert_called_once()
        session.close.assert_called_once()

    def test_error_captures_stack(self):
        session = Mock()
        try:
            raise RuntimeError("boom")
        except RuntimeError as e:
            SystemLogger(session_factory=lambda: session).error("Webhook failed", error=e)

        entry = session.add.call_args[0][0]
        assert "RuntimeError: boom" in entry.stack

    def test_write_failure_is_swallowed(self):
        session = Mock()
        session.commit.side_effect = Exception("db down")

        assert SystemLogger(session_factory=lambda: session).warn("Slow webhook") is False
        session.rollback.assert_called_once()
        session.close.assert_called_once()

    def test_cleanup(self):
        session = Mock()
        session.query.return_value.filter.return_value.delete.return_value = 12

        assert SystemLogger(session_factory=lambda: session).cleanup_old_logs(days=30) == 12
        session.commit.assert_called_once()
