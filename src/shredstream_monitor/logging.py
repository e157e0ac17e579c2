"""Console and file logging.

CLI commands print through the rich helpers here (the TUI owns the terminal
while it runs). Both modes write structured JSON lines to a rotating file
through structlog, configured by configure().
"""

from __future__ import annotations

import logging
import logging.handlers
from datetime import datetime
from typing import TYPE_CHECKING

import structlog
from rich.console import Console
from rich.markup import escape

from shredstream_monitor.formatting import format_count, format_duration, format_rate
from shredstream_monitor.models import ConnectionStatus

if TYPE_CHECKING:
    from shredstream_monitor.config import Config
    from shredstream_monitor.models import LogEntry, Snapshot

_console = Console(highlight=False)

# Status → (rich color, icon), shared with the TUI header
STATUS_STYLES: dict[ConnectionStatus, tuple[str, str]] = {
    ConnectionStatus.CONNECTED: ("green", "●"),
    ConnectionStatus.CONNECTING: ("yellow", "◐"),
    ConnectionStatus.RECONNECTING: ("yellow", "◐"),
    ConnectionStatus.DISCONNECTED: ("white", "○"),
    ConnectionStatus.FAILED: ("red", "✖"),
}

# Keyed by Severity value so dashboard entries print with the same tags
_LEVEL_TAGS = {
    "info": "[bright_blue]\\[info][/]",
    "warn": "[yellow]\\[warn][/]",
    "error": "[bold red]\\[err][/]",
}

_DONE = "[bold green]✓[/]"
_FAILED = "[bold red]✗[/]"


# ─────────────────────────────────────────────────────────────────────────────
# Console output
# ─────────────────────────────────────────────────────────────────────────────


def _print(level: str, msg: str, mark: str = "") -> None:
    """Print ``HH:MM:SS [level] msg``; msg may contain Rich markup."""
    stamp = datetime.now().strftime("%H:%M:%S")
    tag = _LEVEL_TAGS.get(level, escape(f"[{level}]"))
    prefix = f"[dim]{stamp}[/] {tag}"
    if mark:
        prefix += f" {mark}"
    _console.print(f"{prefix} {msg}")


def info(msg: str, mark: str = "") -> None:
    _print("info", msg, mark)


def warn(msg: str, mark: str = "") -> None:
    _print("warn", msg, mark)


def error(msg: str, mark: str = "") -> None:
    _print("error", msg, mark)


def watch_started(endpoint: str) -> None:
    info(f"Watching proxy at [cyan]{endpoint}[/]")


def watch_stopped(updates: int) -> None:
    info(f"Stopped [dim]({format_count(updates)} updates applied)[/]", _DONE)


def stream_failed(reason: str) -> None:
    """Report a non-retryable stream failure."""
    error(f"Stream failed: {escape(reason)}", _FAILED)


def dashboard_entry(entry: LogEntry) -> None:
    """Echo a dashboard log entry; the message is printed literally."""
    _print(entry.severity.value, escape(entry.message))


def watch_summary(snapshot: Snapshot) -> None:
    """Log one periodic summary line for headless mode."""
    totals = snapshot.cumulative
    rates = snapshot.rates
    window = f"{rates.elapsed:.0f}s window" + (" [dim](partial)[/]" if rates.partial else "")
    info(
        f"slot [bold]{snapshot.current_slot}[/], "
        f"[cyan]{format_rate(rates.entries_per_sec)}[/] entries/s, "
        f"[magenta]{format_rate(rates.transactions_per_sec)}[/] tx/s, "
        f"{format_rate(rates.received_per_sec)} shreds/s, "
        f"[dim]{format_count(totals.total_transactions)} tx total, "
        f"{window}, up {format_duration(snapshot.uptime)}[/]"
    )


def config_created(path: str) -> None:
    """Log config file created."""
    info(f"Created config at [cyan]{path}[/]", _DONE)


def config_exists(path: str) -> None:
    """Log config file already present."""
    warn(f"Config already exists at [cyan]{path}[/] [dim](use --force to overwrite)[/]")


# ─────────────────────────────────────────────────────────────────────────────
# Structlog Configuration
# ─────────────────────────────────────────────────────────────────────────────


def _add_source(source: str) -> structlog.types.Processor:
    """Create a processor that adds a source field to log events."""

    def processor(
        logger: structlog.types.WrappedLogger,
        method_name: str,
        event_dict: structlog.types.EventDict,
    ) -> structlog.types.EventDict:
        event_dict["source"] = source
        return event_dict

    return processor


def configure(config: Config, source: str = "tui") -> None:
    """Configure structlog to write JSON Lines to a rotating log file.

    Nothing is written to the console by structlog: the TUI owns the
    terminal, and CLI commands print through the rich helpers above.
    Timestamps use local time.

    Args:
        config: Application config with paths and rotation settings
        source: Value of the ``source`` field on every record
    """
    # Ensure state directory exists for log file
    config.state_dir.mkdir(parents=True, exist_ok=True)

    # Set up rotating file handler for JSON output
    file_handler = logging.handlers.RotatingFileHandler(
        config.log_path,
        maxBytes=config.system.log_max_bytes,
        backupCount=config.system.log_backup_count,
        encoding="utf-8",
    )
    file_handler.setLevel(logging.INFO)

    stdlib_root = logging.getLogger()
    stdlib_root.setLevel(logging.INFO)

    # Clear any existing handlers
    stdlib_root.handlers.clear()

    file_handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processor=structlog.processors.JSONRenderer(),
            foreign_pre_chain=[
                structlog.contextvars.merge_contextvars,
                structlog.processors.TimeStamper(fmt="iso", utc=False, key="ts"),
                structlog.processors.add_log_level,
                _add_source(source),
                structlog.processors.format_exc_info,
            ],
        )
    )
    stdlib_root.addHandler(file_handler)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.processors.TimeStamper(fmt="iso", utc=False, key="ts"),
            structlog.processors.add_log_level,
            _add_source(source),
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

