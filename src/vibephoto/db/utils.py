"""
Database resilience helpers
Retry with exponential backoff, fallback values and a circuit breaker for
operations that talk to PostgreSQL outside the request session lifecycle.
"""
import logging
import random
import threading
import time
from enum import Enum
from typing import Callable, TypeVar, Optional

from sqlalchemy.exc import OperationalError, DisconnectionError, InterfaceError

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_RETRY_OPTIONS = {
    "max_retries": 3,
    "base_delay": 1.0,
    "max_delay": 10.0,
    "backoff_multiplier": 2.0,
}

CONNECTION_ERROR_MARKERS = (
    "can't reach database server",
    "connection",
    "timeout",
    "network",
)


def is_connection_error(error: Exception) -> bool:
    """True for errors worth retrying: lost or unreachable database connections"""
    if isinstance(error, (OperationalError, DisconnectionError, InterfaceError)):
        return True
    message = str(error).lower()
    return any(marker in message for marker in CONNECTION_ERROR_MARKERS)


def calculate_delay(attempt: int, base_delay: float, max_delay: float, multiplier: float) -> float:
    """Exponential backoff with up to one second of jitter, capped at max_delay"""
    delay = base_delay * (multiplier ** attempt) + random.random()
    return min(delay, max_delay)


def with_retry(
    operation: Callable[[], T],
    max_retries: int = DEFAULT_RETRY_OPTIONS["max_retries"],
    base_delay: float = DEFAULT_RETRY_OPTIONS["base_delay"],
    max_delay: float = DEFAULT_RETRY_OPTIONS["max_delay"],
    backoff_multiplier: float = DEFAULT_RETRY_OPTIONS["backoff_multiplier"],
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """
    Run a database operation, retrying connection errors with exponential backoff.

    Non-connection errors are raised immediately. After max_retries the last
    connection error is raised.
    """
    last_error: Optional[Exception] = None

    for attempt in range(max_retries + 1):
        try:
            return operation()
        except Exception as e:
            last_error = e
            if not is_connection_error(e) or attempt == max_retries:
                raise
            delay = calculate_delay(attempt, base_delay, max_delay, backoff_multiplier)
            logger.warning(
                f"[DB_RETRY] Connection error (attempt {attempt + 1}/{max_retries + 1}): {e}. "
                f"Retrying in {delay:.2f}s"
            )
            sleep(delay)

    raise last_error


def with_fallback(operation: Callable[[], T], fallback_value: T, **retry_options) -> T:
    """Run an operation with retries, returning fallback_value if it still fails"""
    try:
        return with_retry(operation, **retry_options)
    except Exception as e:
        logger.error(f"[DB_FALLBACK] Operation failed, using fallback value: {e}")
        return fallback_value


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreakerOpenError(Exception):
    """Raised when the circuit is open and calls are being rejected"""
    pass


class DatabaseCircuitBreaker:
    """
    Stops hammering an unavailable database.

    After `threshold` consecutive failures the circuit opens and calls fail fast
    for `timeout` seconds; the next call after that is a half-open trial call whose
    success closes the circuit again.
    """

    def __init__(self, threshold: int = 5, timeout: float = 30.0, clock: Callable[[], float] = time.monotonic):
        self.threshold = threshold
        self.timeout = timeout
        self._clock = clock
        self._failures = 0
        self._opened_at: Optional[float] = None
        self._state = CircuitState.CLOSED
        self._lock = threading.Lock()

    @property
    def state(self) -> CircuitState:
        with self._lock:
            if self._state == CircuitState.OPEN and self._clock() - self._opened_at >= self.timeout:
                self._state = CircuitState.HALF_OPEN
            return self._state

    def execute(self, operation: Callable[[], T]) -> T:
        if self.state == CircuitState.OPEN:
            raise CircuitBreakerOpenError("Database circuit breaker is OPEN")

        try:
            result = operation()
        except Exception:
            self._on_failure()
            raise

        self._on_success()
        return result

    def _on_success(self):
        with self._lock:
            self._failures = 0
            self._opened_at = None
            self._state = CircuitState.CLOSED

    def _on_failure(self):
        with self._lock:
            self._failures += 1
            if self._state == CircuitState.HALF_OPEN or self._failures >= self.threshold:
                self._state = CircuitState.OPEN
                self._opened_at = self._clock()
                logger.error(f"[DB_CIRCUIT] Circuit opened after {self._failures} failures")

    def reset(self):
        self._on_success()


db_circuit_breaker = DatabaseCircuitBreaker()

