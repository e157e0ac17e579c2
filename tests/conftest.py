"""Shared test fixtures for shredstream-monitor."""

import random

import pytest

from shredstream_monitor.aggregator import Aggregator
from shredstream_monitor.config import Config
from shredstream_monitor.connection import BackoffPolicy, ConnectionStateMachine
from shredstream_monitor.models import ConnectionEvent, Update

T0 = 1_700_000_000.0


class FakeClock:
    """Manually advanced clock, callable like time.time()."""

    def __init__(self, start: float = T0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> float:
        self.now += seconds
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    """A fake clock starting at T0."""
    return FakeClock()


@pytest.fixture
def config() -> Config:
    """Default config."""
    return Config()


@pytest.fixture
def aggregator(config: Config, clock: FakeClock) -> Aggregator:
    """Aggregator on the fake clock, with jitter-free backoff."""
    machine = ConnectionStateMachine(BackoffPolicy(jitter=0.0), rng=random.Random(0))
    return Aggregator(config, clock=clock, connection=machine)


def make_update(
    slot: int = 1,
    entries: int = 0,
    transactions: int = 0,
    recovered: int = 0,
    received: int | None = 0,
    forwarded: int | None = 0,
    failed: int | None = 0,
    duplicates: int | None = 0,
    signatures: tuple[str, ...] = (),
    event: ConnectionEvent | None = None,
    timestamp: float = T0,
) -> Update:
    """Create an Update for testing with short field names."""
    return Update(
        timestamp=timestamp,
        slot=slot,
        entries_in_slot=entries,
        transactions_in_slot=transactions,
        recovered_shreds=recovered,
        cumulative_received=received,
        cumulative_forwarded=forwarded,
        cumulative_failed=failed,
        cumulative_duplicates=duplicates,
        sample_transaction_signatures=signatures,
        connection_event=event,
    )
