"""
Circuit Breaker Pattern Implementation.

Tracks failures per operation key and fails fast once an operation has
failed repeatedly, until a cooldown elapses.
"""

import logging
import threading
import time
from contextlib import contextmanager
from datetime import datetime
from enum import Enum
from typing import Callable, Dict, Iterator, Optional

from jobwaterfall.config import CircuitBreakerConfig
from jobwaterfall.utils.exceptions import CircuitOpenError

logger = logging.getLogger(__name__)

# Transitions kept for statistics
MAX_STATE_CHANGES = 100


class CircuitState(str, Enum):
    """Circuit breaker state machine states."""

    CLOSED = "closed"  # Normal operation
    OPEN = "open"  # Blocking requests due to failures
    HALF_OPEN = "half_open"  # Testing recovery


class _Circuit:
    """Mutable state for one key. Guarded by its own lock."""

    __slots__ = ("state", "failure_count", "last_failure_time", "probe_in_flight", "retired", "lock")

    def __init__(self):
        self.state = CircuitState.CLOSED
        self.failure_count = 0
        self.last_failure_time: Optional[float] = None
        self.probe_in_flight = False
        self.retired = False
        self.lock = threading.Lock()

    def is_idle(self) -> bool:
        return (
            self.state == CircuitState.CLOSED
            and self.failure_count == 0
            and not self.probe_in_flight
        )


class CircuitBreaker:
    """
    Per-key circuit breaker for fault tolerance and resilience.

    Each operation key (e.g. ``"jsearch:sales"``) owns an independent state
    machine, so one failing query never blocks unrelated ones.

    State Transitions:
        CLOSED → OPEN: After failure_threshold failures
        OPEN → HALF_OPEN: On the first check after recovery_timeout seconds
        HALF_OPEN → CLOSED: When the single probe call succeeds
        HALF_OPEN → OPEN: When the probe fails (cooldown restarts)

    Callers check ``is_call_allowed`` before attempting any IO and report
    the outcome with ``record_success`` / ``record_failure``.

    Example:
        >>> breaker = CircuitBreaker(failure_threshold=3)
        >>> if breaker.is_call_allowed("jsearch:sales"):
        ...     try:
        ...         result = await fetch()
        ...         breaker.record_success("jsearch:sales")
        ...     except Exception:
        ...         breaker.record_failure("jsearch:sales")
    """

    def __init__(
        self,
        failure_threshold: Optional[int] = None,
        recovery_timeout: Optional[float] = None,
        clock: Optional[Callable[[], float]] = None,
    ):
        """
        Initialize circuit breaker.

        Args:
            failure_threshold: Failures before opening (default: CircuitBreakerConfig)
            recovery_timeout: Seconds before a probe is allowed (default: CircuitBreakerConfig)
            clock: Monotonic time source (default: time.monotonic)
        """
        self.failure_threshold = failure_threshold or CircuitBreakerConfig.FAILURE_THRESHOLD
        self.recovery_timeout = (
            recovery_timeout if recovery_timeout is not None
            else CircuitBreakerConfig.RECOVERY_TIMEOUT_SECONDS
        )
        self._clock = clock or time.monotonic

        self._circuits: Dict[str, _Circuit] = {}
        self._registry_lock = threading.Lock()

        # Statistics
        self._stats = {
            "allowed": 0,
            "rejected": 0,
            "successes": 0,
            "failures": 0,
        }
        self._state_changes: list[dict] = []

        logger.info(
            "Circuit breaker initialized",
            extra={
                "failure_threshold": self.failure_threshold,
                "recovery_timeout": self.recovery_timeout,
            },
        )

    @contextmanager
    def _locked(self, key: str) -> Iterator[_Circuit]:
        """
        Yield the circuit for ``key`` with its lock held, creating it if needed.

        A circuit retired by another thread between lookup and locking is
        skipped in favour of the registered one.
        """
        while True:
            with self._registry_lock:
                circuit = self._circuits.setdefault(key, _Circuit())
            with circuit.lock:
                if circuit.retired:
                    continue
                try:
                    yield circuit
                finally:
                    self._retire_if_idle(key, circuit)
                return

    def _retire_if_idle(self, key: str, circuit: _Circuit) -> None:
        """Drop a closed circuit with no failures. Caller holds the circuit lock."""
        if not circuit.is_idle():
            return
        with self._registry_lock:
            if self._circuits.get(key) is circuit:
                del self._circuits[key]
                circuit.retired = True

    def _count(self, name: str) -> None:
        with self._registry_lock:
            self._stats[name] += 1

    def _transition(self, key: str, circuit: _Circuit, to_state: CircuitState) -> None:
        """Change state and record the transition. Caller holds the circuit lock."""
        from_state = circuit.state
        circuit.state = to_state
        with self._registry_lock:
            self._state_changes.append(
                {
                    "timestamp": datetime.now().isoformat(),
                    "key": key,
                    "from_state": from_state.value,
                    "to_state": to_state.value,
                    "failure_count": circuit.failure_count,
                }
            )
            del self._state_changes[:-MAX_STATE_CHANGES]
        if to_state == CircuitState.OPEN:
            logger.warning(
                f"Circuit {key}: {from_state.value} → OPEN",
                extra={"key": key, "failure_count": circuit.failure_count},
            )
        else:
            logger.info(f"Circuit {key}: {from_state.value} → {to_state.value}")

    def _refresh(self, key: str, circuit: _Circuit) -> None:
        """Expose OPEN as HALF_OPEN once the cooldown has elapsed."""
        if circuit.state != CircuitState.OPEN or circuit.last_failure_time is None:
            return
        if self._clock() - circuit.last_failure_time > self.recovery_timeout:
            circuit.probe_in_flight = False
            self._transition(key, circuit, CircuitState.HALF_OPEN)

    def is_call_allowed(self, key: str) -> bool:
        """
        Check whether a call for ``key`` may proceed.

        In HALF_OPEN exactly one caller is admitted; further checks return
        False until that probe's outcome is recorded.

        Returns:
            True if the call may be attempted
        """
        with self._locked(key) as circuit:
            self._refresh(key, circuit)

            if circuit.state == CircuitState.CLOSED:
                allowed = True
            elif circuit.state == CircuitState.HALF_OPEN and not circuit.probe_in_flight:
                circuit.probe_in_flight = True
                allowed = True
            else:
                allowed = False

        self._count("allowed" if allowed else "rejected")
        if not allowed:
            logger.debug(f"Circuit {key} rejected call (state={circuit.state.value})")
        return allowed

    def ensure_call_allowed(self, key: str) -> None:
        """
        Raise CircuitOpenError unless a call for ``key`` may proceed.

        Raises:
            CircuitOpenError: If the circuit rejects the call
        """
        if not self.is_call_allowed(key):
            raise CircuitOpenError(
                f"Circuit '{key}' is open - call not attempted",
                key=key,
                failure_count=self.failure_count(key),
                retry_in=self.retry_in(key),
            )

    def record_success(self, key: str) -> None:
        """Record a successful call: the circuit closes and failures reset."""
        with self._locked(key) as circuit:
            circuit.failure_count = 0
            circuit.probe_in_flight = False
            if circuit.state != CircuitState.CLOSED:
                self._transition(key, circuit, CircuitState.CLOSED)
        self._count("successes")

    def record_failure(self, key: str) -> None:
        """Record a failed call, opening the circuit at the threshold."""
        with self._locked(key) as circuit:
            circuit.failure_count += 1
            circuit.last_failure_time = self._clock()

            if circuit.state == CircuitState.HALF_OPEN:
                circuit.probe_in_flight = False
                self._transition(key, circuit, CircuitState.OPEN)
            elif circuit.state == CircuitState.CLOSED and circuit.failure_count >= self.failure_threshold:
                self._transition(key, circuit, CircuitState.OPEN)

            logger.debug(
                f"Circuit {key}: recorded failure "
                f"({circuit.failure_count}/{self.failure_threshold})"
            )
        self._count("failures")

    def release(self, key: str) -> None:
        """
        Give back an admitted call whose outcome will never be reported.

        A half-open probe that is abandoned (e.g. cancelled) would
        otherwise block the key; after release the next check may probe.
        """
        with self._locked(key) as circuit:
            circuit.probe_in_flight = False

    def get_state(self, key: str) -> CircuitState:
        """Current state for ``key`` (OPEN reads as HALF_OPEN after cooldown)."""
        with self._locked(key) as circuit:
            self._refresh(key, circuit)
            return circuit.state

    def failure_count(self, key: str) -> int:
        with self._locked(key) as circuit:
            return circuit.failure_count

    def retry_in(self, key: str) -> Optional[float]:
        """Seconds until an OPEN circuit admits a probe, else None."""
        with self._locked(key) as circuit:
            if circuit.state != CircuitState.OPEN or circuit.last_failure_time is None:
                return None
            elapsed = self._clock() - circuit.last_failure_time
            return round(max(0.0, self.recovery_timeout - elapsed), 3)

    def reset(self, key: Optional[str] = None) -> None:
        """Manually close one circuit, or all of them when ``key`` is None."""
        keys = [key] if key is not None else list(self._circuits)
        for k in keys:
            with self._locked(k) as circuit:
                circuit.failure_count = 0
                circuit.last_failure_time = None
                circuit.probe_in_flight = False
                if circuit.state != CircuitState.CLOSED:
                    self._transition(k, circuit, CircuitState.CLOSED)
        logger.info(f"Circuit breaker reset: {key or 'all keys'}")

    def get_statistics(self) -> dict:
        """
        Get circuit breaker statistics.

        Returns:
            Dictionary with configuration, counters, per-key state and
            the last 10 transitions
        """
        with self._registry_lock:
            counters = dict(self._stats)
            state_changes = self._state_changes[-10:]

        circuits = {}
        for key in list(self._circuits):
            circuits[key] = {
                "state": self.get_state(key).value,
                "failure_count": self.failure_count(key),
                "retry_in_seconds": self.retry_in(key),
            }

        return {
            "configuration": {
                "failure_threshold": self.failure_threshold,
                "recovery_timeout": self.recovery_timeout,
            },
            "counters": counters,
            "circuits": circuits,
            "open_circuits": [k for k, v in circuits.items() if v["state"] == CircuitState.OPEN.value],
            "state_changes": state_changes,
        }

    def __repr__(self) -> str:
        return (
            f"CircuitBreaker(keys={len(self._circuits)}, "
            f"threshold={self.failure_threshold}, recovery={self.recovery_timeout}s)"
        )
