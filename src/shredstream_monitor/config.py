"""Configuration system for shredstream-monitor."""

import math
from dataclasses import dataclass, field, fields, is_dataclass
from pathlib import Path

import tomlkit


@dataclass
class StreamConfig:
    """Proxy stream connection configuration."""

    endpoint: str = "127.0.0.1:50051"  # host:port of the proxy stream
    connect_timeout: float = 10.0  # Max seconds for a single connect attempt
    read_timeout: float = 0.25  # Max seconds to wait for a message before republishing


@dataclass
class MetricsConfig:
    """Rate window configuration."""

    window_seconds: float = 10.0  # Sliding window for per-second rates
    bucket_resolution: float = 0.1  # Increments closer than this share a bucket


@dataclass
class HistoryConfig:
    """Bounded history capacities."""

    slots: int = 50  # Last N distinct slots
    transactions: int = 20  # Last N sampled transaction signatures
    logs: int = 100  # Last N dashboard log entries


@dataclass
class ReconnectConfig:
    """Reconnect backoff configuration.

    delay(n) = min(initial_delay * multiplier^(n-1) * (1 + jitter'), max_delay)
    where jitter' is drawn uniformly from [0, jitter].
    """

    initial_delay: float = 1.0  # Initial reconnect delay (seconds)
    max_delay: float = 30.0  # Max reconnect delay (seconds)
    multiplier: float = 2.0  # Exponential backoff multiplier
    jitter: float = 0.25  # Max random fraction added to each delay


@dataclass
class TUIConfig:
    """TUI-specific configuration."""

    tick_interval: float = 0.1  # Seconds between repaints
    publish_interval: float = 0.1  # Min seconds between snapshot publishes while streaming
    recent_slots_shown: int = 15  # Slots listed on the overview tab


@dataclass
class SystemConfig:
    """Process-level settings."""

    # Log file rotation
    log_max_bytes: int = 5 * 1024 * 1024  # Max log file size (5MB)
    log_backup_count: int = 3  # Number of backup log files to keep


def _dataclass_to_table(obj: object) -> tomlkit.items.Table:
    """Convert a dataclass instance to a tomlkit Table recursively."""
    table = tomlkit.table()
    for f in fields(obj):  # type: ignore[arg-type]
        value = getattr(obj, f.name)
        if is_dataclass(value) and not isinstance(value, type):
            table.add(f.name, _dataclass_to_table(value))
        else:
            table.add(f.name, value)
    return table


@dataclass
class Config:
    """Main configuration container."""

    stream: StreamConfig = field(default_factory=StreamConfig)
    metrics: MetricsConfig = field(default_factory=MetricsConfig)
    history: HistoryConfig = field(default_factory=HistoryConfig)
    reconnect: ReconnectConfig = field(default_factory=ReconnectConfig)
    tui: TUIConfig = field(default_factory=TUIConfig)
    system: SystemConfig = field(default_factory=SystemConfig)

    @property
    def config_dir(self) -> Path:
        """Configuration directory."""
        return Path.home() / ".config" / "shredstream-monitor"

    @property
    def config_path(self) -> Path:
        """Path to config file."""
        return self.config_dir / "config.toml"

    @property
    def state_dir(self) -> Path:
        """State directory for logs and other expendable persistent state."""
        return Path.home() / ".local" / "state" / "shredstream-monitor"

    @property
    def log_path(self) -> Path:
        """Log file path.

        Logs are expendable persistent state, so they go in XDG_STATE_HOME.
        """
        return self.state_dir / "monitor.log"

    def to_toml(self) -> str:
        """Render the config as a TOML document."""
        doc = tomlkit.document()
        sections = ["stream", "metrics", "history", "reconnect", "tui", "system"]
        for name in sections:
            doc.add(name, _dataclass_to_table(getattr(self, name)))
            doc.add(tomlkit.nl())
        return tomlkit.dumps(doc)

    def save(self, path: Path | None = None) -> None:
        """Save config to TOML file."""
        path = path or self.config_path
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(self.to_toml())

    @classmethod
    def load(cls, path: Path | None = None) -> "Config":
        """Load config from TOML file, returning defaults for missing values.

        All defaults come from the dataclass definitions - no hardcoded values here.
        This ensures Config() and Config.load() use identical defaults.
        """
        defaults = cls()
        path = path or defaults.config_path
        if not path.exists():
            return defaults

        try:
            with open(path) as f:
                data = tomlkit.load(f)
        except tomlkit.exceptions.TOMLKitError as e:
            raise ValueError(f"Failed to parse config file {path}: {e}") from e

        return cls(
            stream=_load_stream_config(data.get("stream", {})),
            metrics=_load_metrics_config(data.get("metrics", {})),
            history=_load_history_config(data.get("history", {})),
            reconnect=_load_reconnect_config(data.get("reconnect", {})),
            tui=_load_tui_config(data.get("tui", {})),
            system=_load_system_config(data.get("system", {})),
        )


def _number(data: dict, key: str, default: float, section: str, *, integer: bool = False):
    """Read a numeric setting, raising ValueError for anything that isn't a finite number."""
    value = data.get(key, default)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"{section}.{key} must be a number, got {value!r}")
    if not math.isfinite(value):
        raise ValueError(f"{section}.{key} must be finite, got {value!r}")
    if integer:
        if not float(value).is_integer():
            raise ValueError(f"{section}.{key} must be an integer, got {value!r}")
        return int(value)
    return float(value)


def _load_stream_config(data: dict) -> StreamConfig:
    """Load stream config from TOML data, using dataclass defaults for missing fields."""
    d = StreamConfig()
    endpoint = data.get("endpoint", d.endpoint)
    connect_timeout = _number(data, "connect_timeout", d.connect_timeout, "stream")
    read_timeout = _number(data, "read_timeout", d.read_timeout, "stream")

    if not isinstance(endpoint, str) or not endpoint.strip():
        raise ValueError(f"stream.endpoint must be a non-empty string, got {endpoint!r}")
    if connect_timeout <= 0:
        raise ValueError(f"connect_timeout must be > 0, got {connect_timeout}")
    if read_timeout <= 0:
        raise ValueError(f"read_timeout must be > 0, got {read_timeout}")

    return StreamConfig(
        endpoint=str(endpoint),
        connect_timeout=connect_timeout,
        read_timeout=read_timeout,
    )


def _load_metrics_config(data: dict) -> MetricsConfig:
    """Load metrics config from TOML data."""
    d = MetricsConfig()
    window_seconds = _number(data, "window_seconds", d.window_seconds, "metrics")
    bucket_resolution = _number(data, "bucket_resolution", d.bucket_resolution, "metrics")

    if window_seconds <= 0:
        raise ValueError(f"window_seconds must be > 0, got {window_seconds}")
    if bucket_resolution <= 0 or bucket_resolution > window_seconds:
        raise ValueError(
            f"bucket_resolution must be in (0, window_seconds], got {bucket_resolution}"
        )

    return MetricsConfig(window_seconds=window_seconds, bucket_resolution=bucket_resolution)


def _load_history_config(data: dict) -> HistoryConfig:
    """Load history capacities from TOML data."""
    d = HistoryConfig()
    capacities = {
        name: _number(data, name, getattr(d, name), "history", integer=True)
        for name in ("slots", "transactions", "logs")
    }
    for name, value in capacities.items():
        if value < 1:
            raise ValueError(f"history.{name} must be >= 1, got {value}")
    return HistoryConfig(**capacities)


def _load_reconnect_config(data: dict) -> ReconnectConfig:
    """Load reconnect backoff config from TOML data."""
    d = ReconnectConfig()
    initial_delay = _number(data, "initial_delay", d.initial_delay, "reconnect")
    max_delay = _number(data, "max_delay", d.max_delay, "reconnect")
    multiplier = _number(data, "multiplier", d.multiplier, "reconnect")
    jitter = _number(data, "jitter", d.jitter, "reconnect")

    if initial_delay <= 0:
        raise ValueError(f"initial_delay must be > 0, got {initial_delay}")
    if max_delay < initial_delay:
        raise ValueError(f"max_delay must be >= initial_delay, got {max_delay}")
    if multiplier < 1:
        raise ValueError(f"multiplier must be >= 1, got {multiplier}")
    if jitter < 0:
        raise ValueError(f"jitter must be >= 0, got {jitter}")
    # Larger jitter lets a retry wait less than the one before it
    if jitter > multiplier - 1:
        raise ValueError(f"jitter must be <= multiplier - 1 ({multiplier - 1}), got {jitter}")

    return ReconnectConfig(
        initial_delay=initial_delay,
        max_delay=max_delay,
        multiplier=multiplier,
        jitter=jitter,
    )


def _load_tui_config(data: dict) -> TUIConfig:
    """Load TUI config from TOML data."""
    d = TUIConfig()
    tick_interval = _number(data, "tick_interval", d.tick_interval, "tui")
    publish_interval = _number(data, "publish_interval", d.publish_interval, "tui")
    recent_slots_shown = _number(
        data, "recent_slots_shown", d.recent_slots_shown, "tui", integer=True
    )

    if tick_interval <= 0:
        raise ValueError(f"tick_interval must be > 0, got {tick_interval}")
    if publish_interval < 0:
        raise ValueError(f"publish_interval must be >= 0, got {publish_interval}")
    if recent_slots_shown < 1:
        raise ValueError(f"recent_slots_shown must be >= 1, got {recent_slots_shown}")

    return TUIConfig(
        tick_interval=tick_interval,
        publish_interval=publish_interval,
        recent_slots_shown=recent_slots_shown,
    )


def _load_system_config(data: dict) -> SystemConfig:
    """Load system config from TOML data."""
    d = SystemConfig()
    log_max_bytes = _number(data, "log_max_bytes", d.log_max_bytes, "system", integer=True)
    log_backup_count = _number(
        data, "log_backup_count", d.log_backup_count, "system", integer=True
    )

    if log_max_bytes < 1024:
        raise ValueError(f"log_max_bytes must be >= 1024, got {log_max_bytes}")
    if log_backup_count < 0:
        raise ValueError(f"log_backup_count must be >= 0, got {log_backup_count}")

    return SystemConfig(log_max_bytes=log_max_bytes, log_backup_count=log_backup_count)
