# src/shredstream_monitor/aggregator.py
"""Single owner of all mutable dashboard state.

The ingest pump is the only caller. It feeds Updates through apply() and
connection lifecycle through begin_connect()/connection_event(); the render
side only ever sees the immutable Snapshot built by snapshot().

Nothing here raises on bad input. A live dashboard must keep running through
a malformed update, so odd values are clamped, counter decreases become new
baselines, and both are reported as WARN log entries.
"""

from __future__ import annotations

import math
import time
from collections.abc import Callable

import structlog

from shredstream_monitor.config import Config
from shredstream_monitor.connection import (
    BackoffPolicy,
    ConnectionStateMachine,
    StateTransition,
)
from shredstream_monitor.models import (
    ConnectionEvent,
    ConnectionEventKind,
    ConnectionState,
    CumulativeStats,
    LogEntry,
    Severity,
    SlotRecord,
    Snapshot,
    TransactionSample,
    Update,
    WindowCounts,
    WindowRates,
)
from shredstream_monitor.rate_window import RateWindow
from shredstream_monitor.ringbuffer import RingBuffer, SlotHistory

log = structlog.get_logger()

U32_MAX = 2**32 - 1
U64_MAX = 2**64 - 1
COUNTED_SLOTS_FACTOR = 20

# Proxy-reported running totals, diffed against the previous report
_PROXY_COUNTERS = ("received", "forwarded", "failed", "duplicates")
# Every counter kept as a session total and as a window count
_COUNTERS = ("entries", "transactions", "recovered", *_PROXY_COUNTERS)


class Aggregator:
    """Consumes Updates, owns ring buffers, rate windows and connection state."""

    def __init__(
        self,
        config: Config | None = None,
        *,
        clock: Callable[[], float] = time.time,
        connection: ConnectionStateMachine | None = None,
        started_at: float | None = None,
    ) -> None:
        self.config = config or Config()
        self._clock = clock
        self.started_at = clock() if started_at is None else started_at

        history = self.config.history
        metrics = self.config.metrics
        self._slots = SlotHistory(history.slots)
        self._transactions: RingBuffer[TransactionSample] = RingBuffer(history.transactions)
        self._logs: RingBuffer[LogEntry] = RingBuffer(history.logs)

        self._entry_rate = RateWindow(metrics.window_seconds, metrics.bucket_resolution)
        self._tx_rate = RateWindow(metrics.window_seconds, metrics.bucket_resolution)
        self._received_rate = RateWindow(metrics.window_seconds, metrics.bucket_resolution)
        for window in self._rate_windows:
            window.reset(self.started_at)

        reconnect = self.config.reconnect
        self._connection = connection or ConnectionStateMachine(
            BackoffPolicy(
                initial_delay=reconnect.initial_delay,
                max_delay=reconnect.max_delay,
                multiplier=reconnect.multiplier,
                jitter=reconnect.jitter,
            )
        )

        self._totals: dict[str, int] = dict.fromkeys(_COUNTERS, 0)
        self._window: dict[str, int] = dict.fromkeys(_COUNTERS, 0)
        self._window_started_at = self.started_at
        self._proxy_baseline: dict[str, int] = {}
        # slot -> (entries, transactions, recovered) already added to totals,
        # kept well past slot history eviction; oldest-touched slot drops first
        self._counted: dict[int, tuple[int, int, int]] = {}
        self._counted_limit = max(history.slots * COUNTED_SLOTS_FACTOR, 1024)
        self.current_slot = 0
        self.updates_applied = 0

        self.log(
            Severity.INFO,
            f"Dashboard started, proxy at {self.config.stream.endpoint}",
            self.started_at,
        )

    @property
    def _rate_windows(self) -> tuple[RateWindow, ...]:
        return (self._entry_rate, self._tx_rate, self._received_rate)

    @property
    def connection_state(self) -> ConnectionState:
        return self._connection.state

    # ─────────────────────────────────────────────────────────────────────
    # Mutation
    # ─────────────────────────────────────────────────────────────────────

    def apply(self, update: Update, now: float) -> None:
        """Fold one Update into the dashboard state."""
        self.updates_applied += 1
        if update.has_counters:
            self._apply_counters(update, now)
        if update.connection_event is not None:
            self.connection_event(update.connection_event, now)

    def _apply_counters(self, update: Update, now: float) -> None:
        slot = self._normalize("slot", update.slot, U64_MAX, now)
        entries = self._normalize("entries_in_slot", update.entries_in_slot, U32_MAX, now)
        transactions = self._normalize(
            "transactions_in_slot", update.transactions_in_slot, U32_MAX, now
        )
        recovered = self._normalize("recovered_shreds", update.recovered_shreds, U32_MAX, now)

        deltas: dict[str, int] = {}
        for name in _PROXY_COUNTERS:
            field_name = f"cumulative_{name}"
            raw = getattr(update, field_name)
            if raw is None:
                deltas[name] = 0
                continue
            value = self._normalize(field_name, raw, U64_MAX, now)
            deltas[name] = self._proxy_delta(name, value, now)

        # The displayed record is last-write-wins, but totals only grow by
        # the increase over the highest counts already taken for the slot.
        counted = self._counted.pop(slot, (0, 0, 0))
        high = (
            max(entries, counted[0]),
            max(transactions, counted[1]),
            max(recovered, counted[2]),
        )
        deltas["entries"] = high[0] - counted[0]
        deltas["transactions"] = high[1] - counted[1]
        deltas["recovered"] = high[2] - counted[2]
        self._counted[slot] = high
        if len(self._counted) > self._counted_limit:
            del self._counted[next(iter(self._counted))]

        for name, delta in deltas.items():
            self._totals[name] += delta
            self._window[name] += delta

        self._entry_rate.record(deltas["entries"], now)
        self._tx_rate.record(deltas["transactions"], now)
        self._received_rate.record(deltas["received"], now)

        self._slots.upsert(
            SlotRecord(
                slot=slot,
                entries=entries,
                transactions=transactions,
                recovered=recovered,
                observed_at=now,
            )
        )
        if slot > self.current_slot:
            self.current_slot = slot

        dropped = 0
        for signature in update.sample_transaction_signatures:
            if not isinstance(signature, str) or not signature.strip():
                dropped += 1
                continue
            self._transactions.push(
                TransactionSample(signature=signature.strip(), slot=slot, observed_at=now)
            )
        if dropped:
            self._warn(f"Dropped {dropped} empty signature(s) in slot {slot}", now)

    def _proxy_delta(self, name: str, value: int, now: float) -> int:
        """Diff a proxy running total against its previous report.

        The first report only sets the baseline. Any decrease is taken as a
        proxy restart: new baseline, zero delta.
        """
        baseline = self._proxy_baseline.get(name)
        self._proxy_baseline[name] = value
        if baseline is None:
            return 0
        if value < baseline:
            self._warn(
                f"Proxy counter '{name}' went backwards ({baseline} -> {value}), rebaselined", now
            )
            return 0
        return value - baseline

    def _normalize(self, name: str, value: object, limit: int, now: float) -> int:
        """Coerce a counter to an int in [0, limit]."""
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            self._warn(f"Non-numeric {name}={value!r} treated as 0", now)
            return 0
        if isinstance(value, float) and not math.isfinite(value):
            self._warn(f"Non-finite {name}={value!r} treated as 0", now)
            return 0
        number = int(value)
        if number < 0:
            self._warn(f"Negative {name}={number} clamped to 0", now)
            return 0
        if number > limit:
            self._warn(f"Out-of-range {name}={number} clamped to {limit}", now)
            return limit
        return number

    def _warn(self, message: str, now: float) -> None:
        log.warning("update_normalized", detail=message)
        self.log(Severity.WARN, message, now)

    def log(self, severity: Severity, message: str, now: float) -> None:
        """Append an entry to the dashboard log panel."""
        self._logs.push(LogEntry(timestamp=now, severity=severity, message=message))

    def reset_window(self, now: float | None = None) -> None:
        """Clear rate windows and window counts.

        Cumulative totals, slot history and connection state are untouched.
        """
        if now is None:
            now = self._clock()
        for window in self._rate_windows:
            window.reset(now)
        self._window = dict.fromkeys(_COUNTERS, 0)
        self._window_started_at = now
        log.info("window_reset")
        self.log(Severity.INFO, "Metrics window reset", now)

    # ─────────────────────────────────────────────────────────────────────
    # Connection lifecycle
    # ─────────────────────────────────────────────────────────────────────

    def retry_due(self, now: float) -> bool:
        """True if the pump may issue a connect attempt now."""
        return self._connection.retry_due(now)

    def begin_connect(self, now: float) -> StateTransition | None:
        """Record that a connect attempt is being issued."""
        return self._record_transition(self._connection.begin_connect(now))

    def connection_event(self, event: ConnectionEvent, now: float) -> StateTransition | None:
        """Feed a lifecycle signal to the state machine and log the transition."""
        machine = self._connection
        if event.kind is ConnectionEventKind.CONNECTED:
            transition = machine.connected(now)
        elif event.kind is ConnectionEventKind.REJECTED:
            transition = machine.reject(now, event.message or "rejected by upstream")
        else:
            reason = event.message or event.kind.value
            transition = machine.failed(now, reason)
        return self._record_transition(transition)

    def _record_transition(self, transition: StateTransition | None) -> StateTransition | None:
        if transition is None:
            return None
        current = transition.current
        log.info(
            "connection_state",
            status=current.status.value,
            previous=transition.previous.status.value,
            attempt=current.attempt,
            reason=current.reason or None,
        )
        self.log(transition.severity, transition.describe(), transition.at)
        return transition

    # ─────────────────────────────────────────────────────────────────────
    # Read side
    # ─────────────────────────────────────────────────────────────────────

    def snapshot(self, now: float) -> Snapshot:
        """Build an immutable copy of the current state. No side effects."""
        duration = self.config.metrics.window_seconds
        rates = WindowRates(
            entries_per_sec=self._entry_rate.rate_per_second(now),
            transactions_per_sec=self._tx_rate.rate_per_second(now),
            received_per_sec=self._received_rate.rate_per_second(now),
            elapsed=self._entry_rate.elapsed(now),
            duration=duration,
            partial=self._entry_rate.is_partial(now),
        )
        return Snapshot(
            built_at=now,
            started_at=self.started_at,
            endpoint=self.config.stream.endpoint,
            connection=self._connection.state,
            cumulative=CumulativeStats(
                **{f"total_{name}": value for name, value in self._totals.items()}
            ),
            rates=rates,
            window=WindowCounts(started_at=self._window_started_at, **self._window),
            slots=self._slots.freeze(),
            transactions=self._transactions.freeze(),
            logs=self._logs.freeze(),
            current_slot=self.current_slot,
            reconnect_count=self._connection.reconnect_count,
            connected_since=self._connection.connected_since,
            updates_applied=self.updates_applied,
        )
