"""CLI commands for shredstream-monitor."""

from __future__ import annotations

from typing import TYPE_CHECKING

import click

if TYPE_CHECKING:
    from shredstream_monitor.config import Config

_POSITIVE = click.FloatRange(min=0.0, min_open=True)


def _load_config(
    endpoint: str | None = None,
    window: float | None = None,
    tick_rate: float | None = None,
) -> Config:
    """Load config from disk and apply command-line overrides.

    Raises:
        click.ClickException: If the config file or an override is invalid.
    """
    from shredstream_monitor.config import Config
    from shredstream_monitor.stream import parse_endpoint

    try:
        cfg = Config.load()
        if endpoint is not None:
            parse_endpoint(endpoint)
            cfg.stream.endpoint = endpoint
        if window is not None:
            if window < cfg.metrics.bucket_resolution:
                raise ValueError(
                    f"--window must be >= bucket_resolution ({cfg.metrics.bucket_resolution}s)"
                )
            cfg.metrics.window_seconds = window
        if tick_rate is not None:
            cfg.tui.tick_interval = tick_rate / 1000.0
    except ValueError as e:
        raise click.ClickException(str(e)) from e
    return cfg


@click.group()
@click.version_option(package_name="shredstream-monitor")
def main() -> None:
    """Live dashboard for a shredstream proxy."""
    pass


@main.command()
@click.option("--endpoint", "-e", default=None, help="Proxy stream address (host:port)")
@click.option("--tick-rate", type=_POSITIVE, default=None, help="Repaint interval in milliseconds")
@click.option("--window", "-w", type=_POSITIVE, default=None, help="Rate window in seconds")
def tui(endpoint: str | None, tick_rate: float | None, window: float | None) -> None:
    """Launch interactive dashboard."""
    from shredstream_monitor.logging import configure
    from shredstream_monitor.tui import run_tui

    config = _load_config(endpoint=endpoint, window=window, tick_rate=tick_rate)
    configure(config, source="tui")
    run_tui(config)


@main.command()
@click.option("--endpoint", "-e", default=None, help="Proxy stream address (host:port)")
@click.option("--interval", "-i", type=_POSITIVE, default=5.0, help="Seconds between summaries")
@click.option(
    "--count", "-n", type=click.IntRange(min=0), default=0, help="Stop after N (0 = forever)"
)
@click.option("--window", "-w", type=_POSITIVE, default=None, help="Rate window in seconds")
def watch(endpoint: str | None, interval: float, count: int, window: float | None) -> None:
    """Print periodic summaries without the TUI."""
    import asyncio

    from shredstream_monitor.logging import configure

    config = _load_config(endpoint=endpoint, window=window)
    configure(config, source="watch")
    try:
        failed = asyncio.run(_watch(config, interval, count))
    except KeyboardInterrupt:
        return
    if failed:
        raise SystemExit(1)


async def _watch(config: Config, interval: float, count: int) -> bool:
    """Run the ingest pump and print a summary every ``interval`` seconds.

    Returns:
        True if the stream failed permanently.
    """
    import asyncio

    from shredstream_monitor import logging as console
    from shredstream_monitor.ingest import build_pump

    pump = build_pump(config)
    console.watch_started(config.stream.endpoint)
    task = asyncio.create_task(pump.run())
    last_entry = None
    printed = 0
    try:
        while count == 0 or printed < count:
            await asyncio.sleep(interval)
            snapshot = pump.publisher.latest()
            entries, _ = snapshot.logs_since(last_entry)
            for entry in entries:
                console.dashboard_entry(entry)
            if snapshot.logs:
                last_entry = snapshot.logs[-1]
            if snapshot.connection.is_terminal:
                console.stream_failed(snapshot.connection.reason)
                return True
            console.watch_summary(snapshot)
            printed += 1
        return False
    finally:
        pump.stop()
        try:
            await asyncio.wait_for(task, timeout=config.stream.connect_timeout)
        except (asyncio.TimeoutError, asyncio.CancelledError):
            task.cancel()
        console.watch_stopped(pump.publisher.latest().updates_applied)


@main.group()
def config() -> None:
    """Manage configuration."""
    pass


@config.command("init")
@click.option("--force", "-f", is_flag=True, help="Overwrite an existing config file")
def config_init(force: bool) -> None:
    """Write a config file with default values."""
    from shredstream_monitor import logging as console
    from shredstream_monitor.config import Config

    cfg = Config()
    if cfg.config_path.exists() and not force:
        console.config_exists(str(cfg.config_path))
        return
    cfg.save()
    console.config_created(str(cfg.config_path))


@config.command("show")
def config_show() -> None:
    """Display current configuration."""
    cfg = _load_config()

    click.echo(f"# Config file: {cfg.config_path}")
    click.echo(f"# Exists: {cfg.config_path.exists()}")
    click.echo()
    click.echo(cfg.to_toml().rstrip())
