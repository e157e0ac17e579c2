"""Connection lifecycle state machine with exponential reconnect backoff.

States and transitions::

    DISCONNECTED --begin_connect--> CONNECTING
    CONNECTING   --connected------> CONNECTED
    CONNECTING   --failure--------> RECONNECTING{n+1}
    CONNECTED    --failure--------> RECONNECTING{1}
    RECONNECTING --failure--------> RECONNECTING{n+1}
    RECONNECTING --begin_connect--> CONNECTING     (once next_retry_at passes)
    any          --reject---------> FAILED          (terminal)

Backoff schedule with defaults (before jitter): 1s → 2s → 4s → 8s → 16s → 30s (capped)
"""

from __future__ import annotations

import random
from dataclasses import dataclass

from shredstream_monitor.models import ConnectionState, ConnectionStatus, Severity


@dataclass(frozen=True)
class BackoffPolicy:
    """Reconnect delay policy.

    delay(n) = min(initial_delay * multiplier**(n-1) * (1 + U(0, jitter)), max_delay)

    Jitter is a fraction of the base delay. Keeping it below
    ``multiplier - 1`` keeps consecutive delays non-decreasing.
    """

    initial_delay: float = 1.0
    max_delay: float = 30.0
    multiplier: float = 2.0
    jitter: float = 0.25

    def delay(self, attempt: int, rng: random.Random | None = None) -> float:
        """Return the wait before retry number ``attempt`` (1-based)."""
        exponent = max(0, attempt - 1)
        base = self.initial_delay * (self.multiplier**exponent)
        if self.jitter > 0:
            spread = (rng or random).uniform(0.0, self.jitter)
            base *= 1.0 + spread
        return min(base, self.max_delay)


@dataclass(frozen=True)
class StateTransition:
    """A change of connection state, reported as a dashboard log entry."""

    previous: ConnectionState
    current: ConnectionState
    at: float

    @property
    def severity(self) -> Severity:
        status = self.current.status
        if status is ConnectionStatus.FAILED:
            return Severity.ERROR
        if status is ConnectionStatus.RECONNECTING:
            return Severity.WARN
        return Severity.INFO

    def describe(self) -> str:
        """Message for the log panel."""
        current = self.current
        if current.status is ConnectionStatus.RECONNECTING:
            wait = max(0.0, (current.next_retry_at or self.at) - self.at)
            text = f"Connection: Reconnecting (attempt {current.attempt}, retry in {wait:.1f}s)"
            if current.reason:
                text += f" after {current.reason}"
            return text
        return f"Connection: {current.describe()}"


class ConnectionStateMachine:
    """Tracks proxy connectivity.

    Every method that changes state returns the StateTransition, or None
    when the call was a no-op (wrong state, or terminal FAILED).
    """

    def __init__(self, policy: BackoffPolicy | None = None, rng: random.Random | None = None):
        self.policy = policy or BackoffPolicy()
        self._rng = rng or random.Random()
        self._state = ConnectionState()
        self._failures = 0  # Consecutive failures since last successful connect
        self.reconnect_count = 0
        self.connected_since: float | None = None

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def status(self) -> ConnectionStatus:
        return self._state.status

    def _move(self, new_state: ConnectionState, now: float) -> StateTransition:
        transition = StateTransition(previous=self._state, current=new_state, at=now)
        self._state = new_state
        return transition

    def retry_due(self, now: float) -> bool:
        """True if a connect attempt may be issued at ``now``."""
        state = self._state
        if state.status is ConnectionStatus.DISCONNECTED:
            return True
        if state.status is ConnectionStatus.RECONNECTING:
            return state.next_retry_at is None or now >= state.next_retry_at
        return False

    def begin_connect(self, now: float) -> StateTransition | None:
        """Issue a connect attempt (DISCONNECTED/RECONNECTING → CONNECTING)."""
        if not self.retry_due(now):
            return None
        return self._move(ConnectionState(status=ConnectionStatus.CONNECTING), now)

    def connected(self, now: float) -> StateTransition | None:
        """Handle the collaborator's "connected" signal."""
        if self._state.status in (ConnectionStatus.FAILED, ConnectionStatus.CONNECTED):
            return None
        self._failures = 0
        self.connected_since = now
        return self._move(ConnectionState(status=ConnectionStatus.CONNECTED), now)

    def failed(self, now: float, reason: str = "") -> StateTransition | None:
        """Handle a retryable failure: connect error, stream error or disconnect."""
        status = self._state.status
        if status in (ConnectionStatus.FAILED, ConnectionStatus.DISCONNECTED):
            return None
        if status is ConnectionStatus.CONNECTED:
            self.reconnect_count += 1
            self._failures = 0
        self.connected_since = None
        self._failures += 1
        attempt = self._failures
        delay = self.policy.delay(attempt, self._rng)
        return self._move(
            ConnectionState(
                status=ConnectionStatus.RECONNECTING,
                attempt=attempt,
                next_retry_at=now + delay,
                reason=reason,
            ),
            now,
        )

    def reject(self, now: float, reason: str) -> StateTransition | None:
        """Handle a non-retryable signal. FAILED is terminal for the session."""
        if self._state.status is ConnectionStatus.FAILED:
            return None
        self.connected_since = None
        return self._move(ConnectionState(status=ConnectionStatus.FAILED, reason=reason), now)
