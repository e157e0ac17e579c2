"""Tests for the aggregator: deltas, normalization, history and snapshots."""

import dataclasses

import pytest
from conftest import T0, make_update

from shredstream_monitor.aggregator import U32_MAX, U64_MAX, Aggregator
from shredstream_monitor.config import Config, HistoryConfig
from shredstream_monitor.models import ConnectionEvent, ConnectionStatus, Severity


def warnings(snapshot) -> list[str]:
    return [entry.message for entry in snapshot.logs if entry.severity is Severity.WARN]


class TestCumulativeStats:
    """Session totals from per-update deltas."""

    def test_slot_overwrite_and_received_delta(self, aggregator: Aggregator):
        """Same slot reported twice: record overwritten, received grows by the difference."""
        aggregator.apply(make_update(slot=100, entries=5, transactions=12, received=1000), T0)
        aggregator.apply(make_update(slot=100, entries=5, transactions=15, received=1050), T0 + 1)
        snapshot = aggregator.snapshot(T0 + 1)

        records = [r for r in snapshot.slots if r.slot == 100]
        assert len(records) == 1
        assert records[0].transactions == 15
        assert snapshot.cumulative.total_received == 50
        # Slot counts contribute only the increase on re-report
        assert snapshot.cumulative.total_transactions == 15
        assert snapshot.cumulative.total_entries == 5

    def test_totals_equal_sum_of_deltas(self, aggregator: Aggregator):
        """Monotonic counters: totals equal the sum of per-update deltas."""
        received = [100, 150, 150, 400, 1000]
        forwarded = [90, 140, 145, 390, 990]
        for i, (rx, fwd) in enumerate(zip(received, forwarded)):
            aggregator.apply(
                make_update(slot=i, entries=2, transactions=3, received=rx, forwarded=fwd),
                T0 + i,
            )
        stats = aggregator.snapshot(T0 + 5).cumulative
        assert stats.total_received == received[-1] - received[0]
        assert stats.total_forwarded == forwarded[-1] - forwarded[0]
        assert stats.total_entries == 10
        assert stats.total_transactions == 15

    def test_first_report_is_baseline(self, aggregator: Aggregator):
        """The first cumulative value only sets the baseline."""
        aggregator.apply(make_update(received=5_000_000, failed=7), T0)
        stats = aggregator.snapshot(T0).cumulative
        assert stats.total_received == 0
        assert stats.total_failed == 0

    def test_decrease_is_reset_baseline(self, aggregator: Aggregator):
        """A counter going backwards gives a zero delta and a WARN entry."""
        aggregator.apply(make_update(slot=1, received=1000), T0)
        aggregator.apply(make_update(slot=2, received=1200), T0 + 1)
        aggregator.apply(make_update(slot=3, received=50), T0 + 2)
        aggregator.apply(make_update(slot=4, received=80), T0 + 3)
        snapshot = aggregator.snapshot(T0 + 3)

        assert snapshot.cumulative.total_received == 200 + 0 + 30
        assert any("went backwards" in message for message in warnings(snapshot))

    def test_totals_never_decrease(self, aggregator: Aggregator):
        values = [10, 20, 5, 30, 0, 100]
        previous = 0
        for i, value in enumerate(values):
            aggregator.apply(make_update(slot=i, received=value, duplicates=value), T0 + i)
            total = aggregator.snapshot(T0 + i).cumulative.total_received
            assert total >= previous
            previous = total

    def test_slot_recount_lower_adds_nothing(self, aggregator: Aggregator):
        """A lower re-report overwrites the record but never subtracts."""
        aggregator.apply(make_update(slot=9, entries=10, transactions=20), T0)
        aggregator.apply(make_update(slot=9, entries=4, transactions=8), T0 + 1)
        snapshot = aggregator.snapshot(T0 + 1)
        assert snapshot.cumulative.total_entries == 10
        assert snapshot.cumulative.total_transactions == 20
        assert snapshot.slots[-1].entries == 4


    def test_late_partial_report_not_double_counted(self, aggregator: Aggregator):
        """Final, then a late partial, then final again: the slot counts once."""
        aggregator.apply(make_update(slot=9, entries=10, transactions=20, recovered=3), T0)
        aggregator.apply(make_update(slot=9, entries=4, transactions=8, recovered=1), T0 + 1)
        aggregator.apply(make_update(slot=9, entries=10, transactions=20, recovered=3), T0 + 2)
        snapshot = aggregator.snapshot(T0 + 2)
        assert snapshot.cumulative.total_entries == 10
        assert snapshot.cumulative.total_transactions == 20
        assert snapshot.cumulative.total_recovered == 3
        assert snapshot.window.transactions == 20
        assert snapshot.slots[-1].transactions == 20

    def test_slot_re_reported_after_history_eviction(self, aggregator: Aggregator):
        """Counted slot totals outlive the displayed slot history."""
        aggregator.apply(make_update(slot=1, transactions=7), T0)
        for slot in range(2, 80):
            aggregator.apply(make_update(slot=slot), T0)
        assert 1 not in {r.slot for r in aggregator.snapshot(T0).slots}

        aggregator.apply(make_update(slot=1, transactions=7), T0 + 1)
        snapshot = aggregator.snapshot(T0 + 1)
        assert snapshot.cumulative.total_transactions == 7
        assert snapshot.slots[-1].slot == 1

    def test_absent_proxy_counter_keeps_baseline(self, aggregator: Aggregator):
        """An update without a proxy counter neither rebaselines nor warns."""
        aggregator.apply(make_update(slot=1, received=1000), T0)
        aggregator.apply(make_update(slot=2, received=None), T0 + 1)
        aggregator.apply(make_update(slot=3, received=1050), T0 + 2)
        snapshot = aggregator.snapshot(T0 + 2)
        assert snapshot.cumulative.total_received == 50
        assert not any("went backwards" in message for message in warnings(snapshot))

    def test_recovery_rate(self, aggregator: Aggregator):
        aggregator.apply(make_update(slot=1, received=0), T0)
        assert aggregator.snapshot(T0).cumulative.recovery_rate == 0.0
        aggregator.apply(make_update(slot=2, recovered=5, received=95), T0 + 1)
        assert aggregator.snapshot(T0 + 1).cumulative.recovery_rate == pytest.approx(5.0)


class TestNormalization:
    """Malformed values never raise."""

    @pytest.mark.parametrize("value", [float("nan"), float("inf"), float("-inf")])
    def test_non_finite_treated_as_zero(self, aggregator: Aggregator, value):
        update = make_update(slot=value, entries=value, transactions=3, received=value)
        aggregator.apply(update, T0)
        snapshot = aggregator.snapshot(T0)
        assert snapshot.slots[-1].slot == 0
        assert snapshot.slots[-1].entries == 0
        assert snapshot.cumulative.total_transactions == 3
        assert sum("Non-finite" in message for message in warnings(snapshot)) == 3

    def test_negative_values_clamped(self, aggregator: Aggregator):
        aggregator.apply(make_update(slot=-3, entries=-1, transactions=4), T0)
        snapshot = aggregator.snapshot(T0)
        assert snapshot.slots[-1].slot == 0
        assert snapshot.slots[-1].entries == 0
        assert snapshot.cumulative.total_transactions == 4
        assert len(warnings(snapshot)) == 2

    def test_out_of_range_values_clamped(self, aggregator: Aggregator):
        aggregator.apply(make_update(slot=U64_MAX + 10, entries=U32_MAX + 1), T0)
        record = aggregator.snapshot(T0).slots[-1]
        assert record.slot == U64_MAX
        assert record.entries == U32_MAX

    def test_non_numeric_treated_as_zero(self, aggregator: Aggregator):
        update = dataclasses.replace(make_update(slot=5), entries_in_slot="lots")
        aggregator.apply(update, T0)
        snapshot = aggregator.snapshot(T0)
        assert snapshot.slots[-1].entries == 0
        assert any("Non-numeric" in message for message in warnings(snapshot))

    def test_empty_signatures_dropped(self, aggregator: Aggregator):
        aggregator.apply(make_update(slot=5, signatures=("abc", "", "  ", "def")), T0)
        snapshot = aggregator.snapshot(T0)
        assert [s.signature for s in snapshot.transactions] == ["abc", "def"]
        assert any("empty signature" in message for message in warnings(snapshot))


class TestHistory:
    """Bounded slot, transaction and log history."""

    def test_transaction_ring_keeps_last_five(self, clock):
        """Capacity 5, 8 signatures in order: the last 5 remain, oldest first."""
        config = Config(history=HistoryConfig(transactions=5))
        aggregator = Aggregator(config, clock=clock)
        signatures = tuple(f"sig{i}" for i in range(8))
        aggregator.apply(make_update(slot=1, signatures=signatures), T0)
        snapshot = aggregator.snapshot(T0)

        assert [s.signature for s in snapshot.transactions] == [
            "sig3",
            "sig4",
            "sig5",
            "sig6",
            "sig7",
        ]
        assert snapshot.recent_transactions()[0].signature == "sig7"

    def test_slot_out_of_order_last_write_wins(self, aggregator: Aggregator):
        """A late update for an older slot overwrites that slot only."""
        aggregator.apply(make_update(slot=10, entries=1), T0)
        aggregator.apply(make_update(slot=11, entries=2), T0 + 1)
        aggregator.apply(make_update(slot=10, entries=7), T0 + 2)
        snapshot = aggregator.snapshot(T0 + 2)

        by_slot = {r.slot: r for r in snapshot.slots}
        assert by_slot[10].entries == 7
        assert by_slot[11].entries == 2
        assert [r.slot for r in snapshot.slots] == [10, 11]
        assert snapshot.current_slot == 11

    def test_slot_history_bounded(self, aggregator: Aggregator):
        for slot in range(75):
            aggregator.apply(make_update(slot=slot, entries=1), T0)
        slots = aggregator.snapshot(T0).slots
        assert len(slots) == 50
        assert slots[0].slot == 25

    def test_log_ring_bounded(self, clock):
        config = Config(history=HistoryConfig(logs=10))
        aggregator = Aggregator(config, clock=clock)
        for i in range(30):
            aggregator.log(Severity.INFO, f"message {i}", T0 + i)
        logs = aggregator.snapshot(T0 + 30).logs
        assert len(logs) == 10
        assert logs[-1].message == "message 29"


class TestRatesAndWindow:
    """Window counts, rates and reset."""

    def test_rates_over_elapsed_time(self, aggregator: Aggregator):
        aggregator.apply(make_update(slot=1, entries=10, transactions=40, received=0), T0 + 1)
        aggregator.apply(make_update(slot=2, entries=10, transactions=40, received=500), T0 + 2)
        rates = aggregator.snapshot(T0 + 4).rates

        assert rates.entries_per_sec == pytest.approx(20 / 4)
        assert rates.transactions_per_sec == pytest.approx(80 / 4)
        assert rates.received_per_sec == pytest.approx(500 / 4)
        assert rates.partial
        assert rates.elapsed == pytest.approx(4.0)
        assert rates.duration == 10.0

    def test_reset_window_clears_rates_not_totals(self, aggregator: Aggregator, clock):
        aggregator.apply(make_update(slot=1, entries=10, transactions=40), T0 + 1)
        clock.advance(5)
        aggregator.reset_window()
        snapshot = aggregator.snapshot(clock.now)

        assert snapshot.rates.transactions_per_sec == 0.0
        assert snapshot.window.transactions == 0
        assert snapshot.window.started_at == clock.now
        assert snapshot.cumulative.total_transactions == 40
        assert len(snapshot.slots) == 1
        assert snapshot.logs[-1].message == "Metrics window reset"
        assert snapshot.logs[-1].severity is Severity.INFO

    def test_window_counts_track_deltas(self, aggregator: Aggregator):
        aggregator.apply(make_update(slot=1, entries=3, received=100, failed=1), T0)
        aggregator.apply(make_update(slot=2, entries=4, received=160, failed=3), T0 + 1)
        window = aggregator.snapshot(T0 + 1).window
        assert window.entries == 7
        assert window.received == 60
        assert window.failed == 2


class TestConnectionRouting:
    """Connection events are routed to the state machine and logged."""

    def test_connection_events(self, aggregator: Aggregator):
        aggregator.begin_connect(T0)
        aggregator.connection_event(ConnectionEvent.connected(), T0)
        assert aggregator.connection_state.status is ConnectionStatus.CONNECTED

        aggregator.apply(
            make_update(slot=1, event=ConnectionEvent.disconnected("upstream closed")), T0 + 5
        )
        state = aggregator.connection_state
        assert state.status is ConnectionStatus.RECONNECTING
        assert state.attempt == 1
        assert state.reason == "upstream closed"

        snapshot = aggregator.snapshot(T0 + 5)
        assert snapshot.reconnect_count == 1
        messages = [entry.message for entry in snapshot.logs]
        assert "Connection: Connected" in messages
        assert any(m.startswith("Connection: Reconnecting (attempt 1") for m in messages)

    def test_status_only_update_has_no_counters(self, aggregator: Aggregator):
        from shredstream_monitor.models import Update

        aggregator.begin_connect(T0)
        aggregator.apply(Update.status_only(T0, ConnectionEvent.connected()), T0)
        snapshot = aggregator.snapshot(T0)
        assert snapshot.connection.status is ConnectionStatus.CONNECTED
        assert snapshot.slots == ()
        assert snapshot.updates_applied == 1

    def test_rejected_is_failed(self, aggregator: Aggregator):
        aggregator.begin_connect(T0)
        aggregator.connection_event(ConnectionEvent.rejected("bad token"), T0)
        snapshot = aggregator.snapshot(T0)
        assert snapshot.connection.status is ConnectionStatus.FAILED
        assert snapshot.logs[-1].severity is Severity.ERROR


class TestSnapshot:
    """Snapshots are immutable copies."""

    def test_snapshot_is_independent(self, aggregator: Aggregator):
        aggregator.apply(make_update(slot=1, signatures=("a",)), T0)
        before = aggregator.snapshot(T0)
        aggregator.apply(make_update(slot=2, signatures=("b",)), T0 + 1)
        after = aggregator.snapshot(T0 + 1)

        assert [r.slot for r in before.slots] == [1]
        assert [r.slot for r in after.slots] == [1, 2]
        assert isinstance(before.slots, tuple)
        with pytest.raises(dataclasses.FrozenInstanceError):
            before.current_slot = 99  # type: ignore[misc]

    def test_snapshot_has_no_side_effects(self, aggregator: Aggregator):
        aggregator.apply(make_update(slot=1, entries=5), T0)
        first = aggregator.snapshot(T0 + 100)
        second = aggregator.snapshot(T0 + 1)
        assert first.rates.entries_per_sec == 0.0
        assert second.rates.entries_per_sec == pytest.approx(5.0)
        assert len(first.logs) == len(second.logs)

    def test_startup_entry_and_uptime(self, aggregator: Aggregator):
        snapshot = aggregator.snapshot(T0 + 65)
        assert snapshot.logs[0].message == "Dashboard started, proxy at 127.0.0.1:50051"
        assert snapshot.uptime == 65
        assert snapshot.endpoint == "127.0.0.1:50051"
