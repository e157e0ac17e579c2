"""Data types shared by the aggregator, ingest pump and renderers.

Everything here is a frozen dataclass or an enum. Collections inside a
Snapshot are tuples, so a Snapshot handed to the renderer can never alias
aggregator storage.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class Severity(Enum):
    """Log entry severity shown in the dashboard log panel."""

    INFO = "info"
    WARN = "warn"
    ERROR = "error"

    def __str__(self) -> str:
        return self.name


class ConnectionStatus(Enum):
    """Proxy connectivity lifecycle."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"
    FAILED = "failed"


@dataclass(frozen=True)
class ConnectionState:
    """Current connection state.

    ``attempt`` and ``next_retry_at`` are only meaningful while RECONNECTING.
    ``reason`` holds the last failure for RECONNECTING and FAILED.
    """

    status: ConnectionStatus = ConnectionStatus.DISCONNECTED
    attempt: int = 0
    next_retry_at: float | None = None
    reason: str = ""

    @property
    def is_terminal(self) -> bool:
        return self.status is ConnectionStatus.FAILED

    def describe(self) -> str:
        """Short human-readable label, e.g. "Reconnecting (attempt 2)"."""
        if self.status is ConnectionStatus.RECONNECTING:
            return f"Reconnecting (attempt {self.attempt})"
        if self.status is ConnectionStatus.FAILED:
            return f"Failed: {self.reason}" if self.reason else "Failed"
        return self.status.value.capitalize()


class ConnectionEventKind(Enum):
    """Out-of-band lifecycle signals from the stream collaborator."""

    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    ERROR = "error"
    REJECTED = "rejected"  # Non-retryable (e.g. auth rejected)


@dataclass(frozen=True)
class ConnectionEvent:
    kind: ConnectionEventKind
    message: str = ""

    @classmethod
    def connected(cls) -> ConnectionEvent:
        return cls(ConnectionEventKind.CONNECTED)

    @classmethod
    def disconnected(cls, message: str = "") -> ConnectionEvent:
        return cls(ConnectionEventKind.DISCONNECTED, message)

    @classmethod
    def error(cls, message: str) -> ConnectionEvent:
        return cls(ConnectionEventKind.ERROR, message)

    @classmethod
    def rejected(cls, message: str) -> ConnectionEvent:
        return cls(ConnectionEventKind.REJECTED, message)


@dataclass(frozen=True)
class Update:
    """One message from the proxy.

    The ``cumulative_*`` fields are the proxy's own running totals since it
    started, not deltas. Diffing them is the aggregator's job. None means the
    message did not carry that counter.
    """

    timestamp: float
    slot: int = 0
    entries_in_slot: int = 0
    transactions_in_slot: int = 0
    recovered_shreds: int = 0
    cumulative_received: int | None = None
    cumulative_forwarded: int | None = None
    cumulative_failed: int | None = None
    cumulative_duplicates: int | None = None
    sample_transaction_signatures: tuple[str, ...] = ()
    connection_event: ConnectionEvent | None = None
    # Status-only messages carry a connection event and no counters.
    has_counters: bool = True

    @classmethod
    def status_only(cls, timestamp: float, event: ConnectionEvent) -> Update:
        """Build an Update that only carries a connection event."""
        return cls(timestamp=timestamp, connection_event=event, has_counters=False)


@dataclass(frozen=True)
class SlotRecord:
    slot: int
    entries: int
    transactions: int
    recovered: int
    observed_at: float


@dataclass(frozen=True)
class TransactionSample:
    signature: str
    slot: int
    observed_at: float


@dataclass(frozen=True)
class LogEntry:
    timestamp: float
    severity: Severity
    message: str


@dataclass(frozen=True)
class CumulativeStats:
    """Session totals, summed from per-update deltas since dashboard start."""

    total_entries: int = 0
    total_transactions: int = 0
    total_recovered: int = 0
    total_received: int = 0
    total_forwarded: int = 0
    total_failed: int = 0
    total_duplicates: int = 0

    @property
    def recovery_rate(self) -> float:
        """Percent of shreds obtained through FEC recovery rather than received."""
        shreds = self.total_received + self.total_recovered
        if shreds <= 0:
            return 0.0
        return 100.0 * self.total_recovered / shreds


@dataclass(frozen=True)
class WindowCounts:
    """Raw counts since the last window reset."""

    started_at: float = 0.0
    entries: int = 0
    transactions: int = 0
    recovered: int = 0
    received: int = 0
    forwarded: int = 0
    failed: int = 0
    duplicates: int = 0


@dataclass(frozen=True)
class WindowRates:
    """Smoothed per-second rates over the sliding window.

    ``partial`` is True while less than a full window of time has elapsed
    since the window started, in which case ``elapsed`` is shorter than
    ``duration``.
    """

    entries_per_sec: float = 0.0
    transactions_per_sec: float = 0.0
    received_per_sec: float = 0.0
    elapsed: float = 0.0
    duration: float = 0.0
    partial: bool = True


@dataclass(frozen=True)
class Snapshot:
    """Immutable point-in-time copy of dashboard state for one paint."""

    built_at: float
    started_at: float
    endpoint: str
    connection: ConnectionState
    cumulative: CumulativeStats = field(default_factory=CumulativeStats)
    rates: WindowRates = field(default_factory=WindowRates)
    window: WindowCounts = field(default_factory=WindowCounts)
    slots: tuple[SlotRecord, ...] = ()
    transactions: tuple[TransactionSample, ...] = ()
    logs: tuple[LogEntry, ...] = ()
    current_slot: int = 0
    reconnect_count: int = 0
    connected_since: float | None = None
    updates_applied: int = 0

    @property
    def uptime(self) -> float:
        """Seconds since the dashboard started."""
        return max(0.0, self.built_at - self.started_at)

    @property
    def connection_duration(self) -> float | None:
        """Seconds connected, or None if not currently connected."""
        if self.connected_since is None:
            return None
        return max(0.0, self.built_at - self.connected_since)

    def recent_transactions(self) -> tuple[TransactionSample, ...]:
        """Transaction samples newest first, for display."""
        return tuple(reversed(self.transactions))

    def logs_since(self, last: LogEntry | None) -> tuple[tuple[LogEntry, ...], bool]:
        """Log entries newer than ``last``, for incremental display.

        Returns:
            (entries, complete) where complete is True when ``last`` is None
            or has already been evicted, meaning ``entries`` is the whole log
            and any previous display should be cleared first.
        """
        if last is None:
            return self.logs, True
        for index in range(len(self.logs) - 1, -1, -1):
            if self.logs[index] is last:
                return self.logs[index + 1 :], False
        return self.logs, True

    def transaction_series(self) -> tuple[int, ...]:
        """Transactions per slot in history order, oldest first."""
        return tuple(record.transactions for record in self.slots)

    def recent_slots(self, limit: int | None = None) -> tuple[SlotRecord, ...]:
        """Slot records newest first, optionally truncated."""
        newest_first = tuple(reversed(self.slots))
        return newest_first if limit is None else newest_first[:limit]

