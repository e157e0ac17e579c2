"""Terminal dashboard."""

from shredstream_monitor.tui.app import ShredstreamApp, run_tui

__all__ = ["ShredstreamApp", "run_tui"]
