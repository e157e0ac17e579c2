"""Live dashboard for a shredstream proxy.

Philosophy: TUI = window onto the latest published Snapshot. Nothing more.
- The ingest pump runs as a background task and owns all mutable state
- Every tick reads publisher.latest() and repaints if it changed
- The only thing the UI asks of the pump is a window reset
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Any

from rich.table import Table
from rich.text import Text
from textual import events
from textual.app import App, ComposeResult
from textual.binding import Binding
from textual.containers import Horizontal
from textual.css.query import NoMatches
from textual.message import Message
from textual.widgets import DataTable, Footer, Label, RichLog, Static, TabbedContent, TabPane

from shredstream_monitor.config import Config
from shredstream_monitor.formatting import (
    format_age,
    format_clock,
    format_count,
    format_duration,
    format_rate,
    truncate_signature,
)
from shredstream_monitor.ingest import IngestPump, build_pump
from shredstream_monitor.logging import STATUS_STYLES
from shredstream_monitor.models import ConnectionStatus, LogEntry, Severity, Snapshot
from shredstream_monitor.tui.sparkline import Sparkline

if TYPE_CHECKING:
    from textual.widget import Widget

    from shredstream_monitor.publisher import SnapshotPublisher

TAB_IDS = ("overview", "slots", "transactions", "logs")
_BLOCKED_BY_HELP = ("next_tab", "previous_tab", "reset_window")

SEVERITY_COLORS = {
    Severity.INFO: "bright_blue",
    Severity.WARN: "yellow",
    Severity.ERROR: "bold red",
}

HELP_TEXT = """\
[bold]Keys[/]
  [cyan]q[/]                quit
  [cyan]r[/]                reset the metrics window
  [cyan]tab[/]  [cyan]→[/]  [cyan]l[/]       next tab
  [cyan]shift+tab  ←  h[/]  previous tab
  [cyan]?[/]                toggle this help (esc or any other key closes it)

Rates are averaged over the sliding window. Until a full window has
elapsed the header shows it as partial.
"""


class HeaderBar(Static):
    """Connection status, current slot, throughput and uptime."""

    DEFAULT_CSS = """
    HeaderBar {
        height: 3;
        padding: 0 1;
        border: solid $primary;
        border-title-align: left;
    }

    HeaderBar Horizontal {
        height: 1;
        width: 100%;
    }

    HeaderBar #status-left {
        width: auto;
    }

    HeaderBar #status-right {
        width: 1fr;
        text-align: right;
    }
    """

    def compose(self) -> ComposeResult:
        yield Horizontal(
            Label("", id="status-left"),
            Label("", id="status-right"),
        )

    def on_mount(self) -> None:
        self.border_title = "SHREDSTREAM"

    def update_from_snapshot(self, snapshot: Snapshot) -> None:
        try:
            left = self.query_one("#status-left", Label)
            right = self.query_one("#status-right", Label)
        except NoMatches:
            return

        state = snapshot.connection
        color, icon = STATUS_STYLES[state.status]
        self.styles.border = ("solid", color)

        status = Text(f"{icon} {state.describe()}", style=f"bold {color}")
        if state.status is ConnectionStatus.RECONNECTING and state.next_retry_at is not None:
            wait = max(0.0, state.next_retry_at - snapshot.built_at)
            status.append(f" (retry in {wait:.0f}s)", style="dim")
        status.append(f"   slot {snapshot.current_slot}")
        status.append(f"   {format_rate(snapshot.rates.transactions_per_sec)} tx/s")
        status.append(f"   up {format_duration(snapshot.uptime)}", style="dim")
        left.update(status)

        window = f"window {snapshot.rates.elapsed:.0f}/{snapshot.rates.duration:.0f}s"
        if snapshot.rates.partial:
            window += " (partial)"
        right.update(Text(f"{snapshot.endpoint}   {window}", style="dim"))


class OverviewPanel(Static):
    """Rates, totals, window counts and the most recent slots."""

    DEFAULT_CSS = """
    OverviewPanel {
        height: 1fr;
    }

    OverviewPanel #overview-stats {
        height: auto;
        padding: 0 1;
    }

    OverviewPanel #tx-sparkline {
        height: 4;
        border: solid $primary;
        border-title-align: left;
    }

    OverviewPanel DataTable {
        height: 1fr;
        border: solid $primary;
        border-title-align: left;
    }
    """

    def compose(self) -> ComposeResult:
        yield Static("", id="overview-stats")
        yield Sparkline(height=2, style="magenta", id="tx-sparkline")
        yield DataTable(id="recent-slots", zebra_stripes=True, cursor_type="none")

    def on_mount(self) -> None:
        self.query_one("#tx-sparkline", Sparkline).border_title = "TRANSACTIONS PER SLOT"
        table = self.query_one("#recent-slots", DataTable)
        table.border_title = "RECENT SLOTS"
        table.add_columns("Slot", "Entries", "Txns", "Recovered", "Seen")

    def update_from_snapshot(self, snapshot: Snapshot, recent_slots: int) -> None:
        try:
            stats = self.query_one("#overview-stats", Static)
            sparkline = self.query_one("#tx-sparkline", Sparkline)
            table = self.query_one("#recent-slots", DataTable)
        except NoMatches:
            return

        totals = snapshot.cumulative
        window = snapshot.window
        rates = snapshot.rates

        connected_for = snapshot.connection_duration

        # Three label/value column pairs: rates, session totals, window/misc
        recovery = totals.recovery_rate
        recovery_color = "green" if recovery < 10.0 else "yellow"
        rate_column = [
            ("Entries/s", f"[cyan]{format_rate(rates.entries_per_sec)}[/]"),
            ("Txns/s", f"[magenta]{format_rate(rates.transactions_per_sec)}[/]"),
            ("Shreds/s", format_rate(rates.received_per_sec)),
            ("FEC recovery", f"[{recovery_color}]{recovery:.1f}%[/]"),
            ("Reconnects", str(snapshot.reconnect_count)),
            (
                "Connected for",
                format_duration(connected_for) if connected_for is not None else "-",
            ),
        ]
        total_column = [
            ("Total entries", format_count(totals.total_entries)),
            ("Total txns", format_count(totals.total_transactions)),
            ("Received", format_count(totals.total_received)),
            ("Recovered", format_count(totals.total_recovered)),
            ("Failed", f"[red]{format_count(totals.total_failed)}[/]"),
            ("Duplicates", format_count(totals.total_duplicates)),
        ]
        window_column = [
            ("Window entries", format_count(window.entries)),
            ("Window txns", format_count(window.transactions)),
            ("Window shreds", format_count(window.received)),
            ("Window recovered", format_count(window.recovered)),
            ("Forwarded", format_count(totals.total_forwarded)),
            ("Updates", format_count(snapshot.updates_applied)),
        ]

        grid = Table.grid(padding=(0, 3))
        for _ in range(3):
            grid.add_column(style="dim")
            grid.add_column(justify="right")
        for cells in zip(rate_column, total_column, window_column):
            grid.add_row(*(part for cell in cells for part in cell))
        stats.update(grid)
        sparkline.data = [float(count) for count in snapshot.transaction_series()]

        table.clear()
        for record in snapshot.recent_slots(recent_slots):
            table.add_row(
                str(record.slot),
                format_count(record.entries),
                format_count(record.transactions),
                format_count(record.recovered),
                format_age(record.observed_at, now=snapshot.built_at),
            )


class SlotTable(Static):
    """Every slot still in history, newest first."""

    DEFAULT_CSS = """
    SlotTable {
        height: 1fr;
    }

    SlotTable DataTable {
        width: 100%;
        height: 100%;
    }
    """

    def compose(self) -> ComposeResult:
        yield DataTable(id="slot-table", zebra_stripes=True, cursor_type="none")

    def on_mount(self) -> None:
        self.query_one("#slot-table", DataTable).add_columns(
            "Slot", "Entries", "Txns", "Recovered", "Observed"
        )

    def update_from_snapshot(self, snapshot: Snapshot) -> None:
        try:
            table = self.query_one("#slot-table", DataTable)
        except NoMatches:
            return
        table.clear()
        for record in snapshot.recent_slots():
            table.add_row(
                Text(str(record.slot), style="bold"),
                format_count(record.entries),
                format_count(record.transactions),
                format_count(record.recovered),
                format_clock(record.observed_at),
            )


class TransactionTable(Static):
    """Sampled transaction signatures, newest first."""

    DEFAULT_CSS = """
    TransactionTable {
        height: 1fr;
    }

    TransactionTable DataTable {
        width: 100%;
        height: 100%;
    }
    """

    SIGNATURE_WIDTH = 48

    def compose(self) -> ComposeResult:
        yield DataTable(id="transaction-table", zebra_stripes=True, cursor_type="none")

    def on_mount(self) -> None:
        self.query_one("#transaction-table", DataTable).add_columns(
            "Signature", "Slot", "Observed"
        )

    def update_from_snapshot(self, snapshot: Snapshot) -> None:
        try:
            table = self.query_one("#transaction-table", DataTable)
        except NoMatches:
            return
        table.clear()
        for sample in snapshot.recent_transactions():
            table.add_row(
                Text(truncate_signature(sample.signature, self.SIGNATURE_WIDTH), style="cyan"),
                str(sample.slot),
                format_clock(sample.observed_at),
            )


class LogPanel(Static):
    """Dashboard log entries, appended as new ones appear in snapshots."""

    DEFAULT_CSS = """
    LogPanel {
        height: 1fr;
    }

    LogPanel RichLog {
        width: 100%;
        height: 100%;
    }
    """

    def __init__(self, max_lines: int = 100, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self._max_lines = max_lines
        self._last_written: LogEntry | None = None

    def compose(self) -> ComposeResult:
        yield RichLog(id="log-view", markup=False, max_lines=self._max_lines)

    def update_from_snapshot(self, snapshot: Snapshot) -> None:
        try:
            view = self.query_one("#log-view", RichLog)
        except NoMatches:
            return
        entries, complete = snapshot.logs_since(self._last_written)
        if complete:
            view.clear()
        for entry in entries:
            line = Text(f"{format_clock(entry.timestamp)} ", style="dim")
            line.append(f"{str(entry.severity):<5} ", style=SEVERITY_COLORS[entry.severity])
            line.append(entry.message)
            view.write(line)
        if snapshot.logs:
            self._last_written = snapshot.logs[-1]


class HelpOverlay(Static, can_focus=True):
    """Key reference, toggled with ``?``.

    Takes focus while shown; any key other than ``?`` or ``q`` closes it.
    """

    DEFAULT_CSS = """
    HelpOverlay {
        dock: bottom;
        height: auto;
        padding: 1 2;
        border: solid $accent;
        background: $surface;
    }
    """

    class Closed(Message):
        """The user dismissed the overlay."""

    def on_mount(self) -> None:
        self.border_title = "HELP"

    def on_key(self, event: events.Key) -> None:
        if event.key in ("question_mark", "q"):
            return  # Left to the app bindings
        event.stop()
        event.prevent_default()
        self.post_message(self.Closed())


class ShredstreamApp(App):
    """Live dashboard for a shredstream proxy."""

    CSS = """
    Screen {
        layout: vertical;
    }

    #header {
        height: 3;
    }

    #tabs {
        height: 1fr;
    }
    """

    BINDINGS = [
        Binding("q", "quit", "Quit"),
        Binding("r", "reset_window", "Reset window"),
        Binding("question_mark", "toggle_help", "Help"),
        Binding("tab", "next_tab", "Next tab", show=False, priority=True),
        Binding("shift+tab", "previous_tab", "Previous tab", show=False, priority=True),
        Binding("right,l", "next_tab", "Next tab", show=False, priority=True),
        Binding("left,h", "previous_tab", "Previous tab", show=False, priority=True),
    ]

    def __init__(
        self,
        config: Config | None = None,
        pump: IngestPump | None = None,
        publisher: SnapshotPublisher | None = None,
    ) -> None:
        super().__init__()
        self.config = config or Config.load()
        self.pump = pump or build_pump(self.config)
        self.publisher = publisher or self.pump.publisher
        self._pump_task: asyncio.Task | None = None
        self._painted: Snapshot | None = None
        self._help_shown = False
        self._focus_before_help: Widget | None = None

    def compose(self) -> ComposeResult:
        """Create the dashboard layout."""
        yield HeaderBar(id="header")
        with TabbedContent(id="tabs", initial="overview"):
            with TabPane("Overview", id="overview"):
                yield OverviewPanel(id="overview-panel")
            with TabPane("Slots", id="slots"):
                yield SlotTable(id="slot-panel")
            with TabPane("Transactions", id="transactions"):
                yield TransactionTable(id="transaction-panel")
            with TabPane("Logs", id="logs"):
                yield LogPanel(max_lines=self.config.history.logs, id="log-panel")
        help_overlay = HelpOverlay(HELP_TEXT, id="help")
        help_overlay.display = False
        yield help_overlay
        yield Footer()

    def on_mount(self) -> None:
        """Start the ingest pump and the repaint timer."""
        self.title = "shredstream-monitor"
        self.sub_title = self.config.stream.endpoint
        self._pump_task = asyncio.create_task(self.pump.run())
        self.set_interval(self.config.tui.tick_interval, self.refresh_snapshot)
        # First paint once the tab widgets have mounted and added their columns
        self.call_after_refresh(self.refresh_snapshot)

    def on_unmount(self) -> None:
        """Cleanup on shutdown."""
        # Close the stream first to unblock any pending read
        self.pump.stop()
        if self._pump_task and not self._pump_task.done():
            self._pump_task.cancel()

    def refresh_snapshot(self) -> None:
        """Repaint from the latest snapshot if it changed since the last paint."""
        snapshot = self.publisher.latest()
        if snapshot is self._painted:
            return
        try:
            self.query_one("#header", HeaderBar).update_from_snapshot(snapshot)
            self.query_one("#overview-panel", OverviewPanel).update_from_snapshot(
                snapshot, self.config.tui.recent_slots_shown
            )
            self.query_one("#slot-panel", SlotTable).update_from_snapshot(snapshot)
            self.query_one("#transaction-panel", TransactionTable).update_from_snapshot(snapshot)
            self.query_one("#log-panel", LogPanel).update_from_snapshot(snapshot)
        except NoMatches:
            return
        self._painted = snapshot

    def action_reset_window(self) -> None:
        """Ask the ingest side to reset the metrics window."""
        self.pump.request_window_reset()
        self.notify("Metrics window reset")

    def check_action(self, action: str, parameters: tuple[object, ...]) -> bool | None:
        """Tab switching and window reset are off while help is shown."""
        if self._help_shown and action in _BLOCKED_BY_HELP:
            return False
        return True

    def action_toggle_help(self) -> None:
        if self._help_shown:
            self._close_help()
            return
        help_overlay = self.query_one("#help", HelpOverlay)
        self._focus_before_help = self.focused
        self._help_shown = True
        help_overlay.display = True
        help_overlay.focus()

    def _close_help(self) -> None:
        self.query_one("#help", HelpOverlay).display = False
        self._help_shown = False
        if self._focus_before_help is not None:
            self.set_focus(self._focus_before_help)
        self._focus_before_help = None

    def on_help_overlay_closed(self, message: HelpOverlay.Closed) -> None:
        self._close_help()

    def _switch_tab(self, step: int) -> None:
        tabs = self.query_one("#tabs", TabbedContent)
        current = TAB_IDS.index(tabs.active) if tabs.active in TAB_IDS else 0
        tabs.active = TAB_IDS[(current + step) % len(TAB_IDS)]

    def action_next_tab(self) -> None:
        self._switch_tab(1)

    def action_previous_tab(self) -> None:
        self._switch_tab(-1)


def run_tui(config: Config | None = None) -> None:
    """Run the TUI application."""
    app = ShredstreamApp(config)
    app.run()
