"""
Tests for database retry, fallback and circuit breaker helpers
"""
import pytest
from unittest.mock import MagicMock, Mock, patch
from sqlalchemy.exc import OperationalError
from vibephoto.db.utils import (
    is_connection_error,
    calculate_delay,
    with_retry,
    with_fallback,
    DatabaseCircuitBreaker,
    CircuitBreakerOpenError,
    CircuitState,
)


def _operational_error():
    return OperationalError("SELECT 1", {}, Exception("server closed the connection"))


class TestConnectionErrors:
    """Which errors are retried"""

    def test_sqlalchemy_connection_errors(self):
        assert is_connection_error(_operational_error())

    def test_message_markers(self):
        assert is_connection_error(RuntimeError("Can't reach database server at db:5432"))
        assert is_connection_error(RuntimeError("network unreachable"))

    def test_other_errors(self):
        assert not is_connection_error(ValueError("unique constraint violated"))


class TestRetry:
    """with_retry / with_fallback"""

    def test_delay_is_capped(self, monkeypatch):
        monkeypatch.setattr("vibephoto.db.utils.random.random", lambda: 0.5)
        assert calculate_delay(0, 1.0, 10.0, 2.0) == 1.5
        assert calculate_delay(2, 1.0, 10.0, 2.0) == 4.5
        assert calculate_delay(10, 1.0, 10.0, 2.0) == 10.0

    def test_retries_connection_errors_then_succeeds(self):
        operation = Mock(side_effect=[_operational_error(), _operational_error(), "ok"])
        sleep = Mock()
        assert with_retry(operation, sleep=sleep) == "ok"
        assert operation.call_count == 3
        assert sleep.call_count == 2

    def test_gives_up_after_max_retries(self):
        operation = Mock(side_effect=_operational_error())
        sleep = Mock()
        with pytest.raises(OperationalError):
            with_retry(operation, max_retries=3, sleep=sleep)
        assert operation.call_count == 4
        assert sleep.call_count == 3

    def test_non_connection_error_is_not_retried(self):
        operation = Mock(side_effect=ValueError("bad input"))
        sleep = Mock()
        with pytest.raises(ValueError):
            with_retry(operation, sleep=sleep)
        assert operation.call_count == 1
        sleep.assert_not_called()

    def test_fallback_value(self):
        operation = Mock(side_effect=ValueError("boom"))
        assert with_fallback(operation, []) == []


class TestCircuitBreaker:
    """CLOSED -> OPEN -> HALF_OPEN -> CLOSED"""

    def _failing(self):
        raise RuntimeError("db down")

    def test_opens_after_threshold(self):
        now = [0.0]
        breaker = DatabaseCircuitBreaker(threshold=2, timeout=30, clock=lambda: now[0])
        for _ in range(2):
            with pytest.raises(RuntimeError):
                breaker.execute(self._failing)
        assert breaker.state == CircuitState.OPEN

        with pytest.raises(CircuitBreakerOpenError):
            breaker.execute(lambda: "never called")

    def test_half_open_trial_call_closes_on_success(self):
        now = [0.0]
        breaker = DatabaseCircuitBreaker(threshold=1, timeout=30, clock=lambda: now[0])
        with pytest.raises(RuntimeError):
            breaker.execute(self._failing)

        now[0] = 31.0
        assert breaker.state == CircuitState.HALF_OPEN
        assert breaker.execute(lambda: "ok") == "ok"
        assert breaker.state == CircuitState.CLOSED

    def test_half_open_failure_reopens(self):
        now = [0.0]
        breaker = DatabaseCircuitBreaker(threshold=3, timeout=30, clock=lambda: now[0])
        for _ in range(3):
            with pytest.raises(RuntimeError):
                breaker.execute(self._failing)

        now[0] = 45.0
        with pytest.raises(RuntimeError):
            breaker.execute(self._failing)
        assert breaker.state == CircuitState.OPEN


class TestHealthCheckConnection:
    """test_connection retries transient failures"""

    def test_recovers_after_dropped_connection(self):
        with patch("vibephoto.db.engine.engine") as engine, patch("vibephoto.db.engine.time.sleep") as sleep:
            engine.connect.side_effect = [_operational_error(), MagicMock()]
            from vibephoto.db.engine import test_connection as check_connection
            assert check_connection() is True
        assert engine.connect.call_count == 2
        sleep.assert_called_once()

    def test_reports_failure_after_retries(self):
        with patch("vibephoto.db.engine.engine") as engine, patch("vibephoto.db.engine.time.sleep"):
            engine.connect.side_effect = _operational_error()
            from vibephoto.db.engine import test_connection as check_connection
            assert check_connection(max_retries=2) is False
        assert engine.connect.call_count == 3

    def test_other_errors_are_not_retried(self):
        with patch("vibephoto.db.engine.engine") as engine, patch("vibephoto.db.engine.time.sleep") as sleep:
            engine.connect.side_effect = ValueError("bad SQL")
            from vibephoto.db.engine import test_connection as check_connection
            assert check_connection() is False
        sleep.assert_not_called()
