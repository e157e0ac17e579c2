# src/shredstream_monitor/stream.py

"""TCP stream client for receiving proxy updates.

Wire format is newline-delimited JSON. Two message types:

    {"type": "update", "slot": 1, "entries": 5, "transactions": 12, ...}
    {"type": "status", "event": "connected" | "disconnected" | "error" | "rejected",
     "message": "..."}
"""

from __future__ import annotations

import asyncio
import json
import math
import time
from typing import Any, Protocol

from shredstream_monitor.models import ConnectionEvent, ConnectionEventKind, Update

DEFAULT_PORT = 50051

# Wire key -> Update field. Short keys are what the proxy sends; the long
# field names are accepted too.
_SLOT_FIELDS = {
    "slot": "slot",
    "entries": "entries_in_slot",
    "transactions": "transactions_in_slot",
    "recovered": "recovered_shreds",
}
# Proxy running totals stay None when absent so the previous baseline holds
_PROXY_FIELDS = {
    "received": "cumulative_received",
    "forwarded": "cumulative_forwarded",
    "failed": "cumulative_failed",
    "duplicates": "cumulative_duplicates",
}


class MalformedMessageError(ValueError):
    """A stream message could not be decoded into an Update."""


class StreamRejectedError(Exception):
    """The upstream refused the stream (non-retryable, e.g. auth rejected)."""


class StreamClient(Protocol):
    """What the ingest pump needs from a transport."""

    @property
    def connected(self) -> bool: ...

    async def connect(self) -> None: ...

    async def read_update(self, timeout: float) -> Update: ...

    async def disconnect(self) -> None: ...

    def close(self) -> None: ...


def parse_endpoint(endpoint: str) -> tuple[str, int]:
    """Split ``host:port`` into parts.

    Accepts ``http://``/``tcp://`` prefixes and a missing port (defaults to
    50051).

    Raises:
        ValueError: If the endpoint is empty or the port is not a valid number.
    """
    text = endpoint.strip()
    if "://" in text:
        text = text.split("://", 1)[1]
    text = text.rstrip("/")
    if not text:
        raise ValueError(f"Invalid endpoint: {endpoint!r}")

    if text.startswith("["):  # [ipv6]:port
        host, _, rest = text[1:].partition("]")
        port_text = rest.lstrip(":")
    elif text.count(":") == 1:
        host, port_text = text.split(":")
    else:
        host, port_text = text, ""

    if not port_text:
        return host, DEFAULT_PORT
    try:
        port = int(port_text)
    except ValueError as e:
        raise ValueError(f"Invalid port in endpoint {endpoint!r}") from e
    if not 0 < port < 65536:
        raise ValueError(f"Port out of range in endpoint {endpoint!r}")
    return host, port


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _wire_int(key: str, value: Any) -> int:
    """Convert a wire number to int, rejecting non-numbers and NaN/Infinity."""
    if not _is_number(value):
        raise MalformedMessageError(f"Field {key!r} is not a number: {value!r}")
    if isinstance(value, float) and not math.isfinite(value):
        raise MalformedMessageError(f"Field {key!r} is not finite: {value!r}")
    return int(value)


def decode_message(data: Any, now: float | None = None) -> Update:
    """Decode one parsed JSON message into an Update.

    Counter values are passed through as-is; range checks and clamping are
    the aggregator's job. Absent proxy running totals decode as None.

    Raises:
        MalformedMessageError: If the message has an unknown type or shape.
    """
    if not isinstance(data, dict):
        raise MalformedMessageError(f"Expected object, got {type(data).__name__}")
    timestamp = data.get("timestamp")
    if not _is_number(timestamp) or not math.isfinite(timestamp):
        timestamp = time.time() if now is None else now

    msg_type = data.get("type", "update")
    if msg_type == "status":
        try:
            kind = ConnectionEventKind(data.get("event"))
        except ValueError as e:
            raise MalformedMessageError(f"Unknown status event: {data.get('event')!r}") from e
        return Update.status_only(
            float(timestamp), ConnectionEvent(kind, str(data.get("message", "")))
        )
    if msg_type != "update":
        raise MalformedMessageError(f"Unknown message type: {msg_type!r}")

    values: dict[str, Any] = {}
    for key, field_name in _SLOT_FIELDS.items():
        value = data.get(key, data.get(field_name))
        values[field_name] = 0 if value is None else _wire_int(key, value)
    for key, field_name in _PROXY_FIELDS.items():
        value = data.get(key, data.get(field_name))
        values[field_name] = None if value is None else _wire_int(key, value)

    signatures = data.get("signatures", data.get("sample_transaction_signatures", []))
    if not isinstance(signatures, list):
        raise MalformedMessageError("Field 'signatures' must be a list")

    return Update(
        timestamp=float(timestamp),
        sample_transaction_signatures=tuple(str(s) if s is not None else "" for s in signatures),
        **values,
    )


class TcpStreamClient:
    """TCP client for the proxy update stream.

    Simple and stateless: connects or throws. The ingest pump handles
    reconnection.
    """

    def __init__(self, endpoint: str, connect_timeout: float = 10.0):
        self.endpoint = endpoint
        self.host, self.port = parse_endpoint(endpoint)
        self.connect_timeout = connect_timeout
        self._reader: asyncio.StreamReader | None = None
        self._writer: asyncio.StreamWriter | None = None

    @property
    def connected(self) -> bool:
        """Whether client is connected."""
        return self._writer is not None and not self._writer.is_closing()

    async def connect(self) -> None:
        """Open the stream.

        Raises:
            TimeoutError: If the connection isn't established within connect_timeout
            OSError: If the connection is refused or the host is unreachable
        """
        self._reader, self._writer = await asyncio.wait_for(
            asyncio.open_connection(self.host, self.port), timeout=self.connect_timeout
        )

    async def disconnect(self) -> None:
        """Close the stream and wait for the transport to shut down."""
        if self._writer:
            self._writer.close()
            try:
                await self._writer.wait_closed()
            except (ConnectionError, OSError):
                pass  # Already torn down by the peer
            self._writer = None
            self._reader = None

    def close(self) -> None:
        """Close the socket synchronously (doesn't wait for clean shutdown).

        Use this to interrupt blocking reads before cancelling tasks.
        """
        if self._writer:
            self._writer.close()

    async def read_message(self, timeout: float = 1.0) -> Any:
        """Read next raw JSON message with timeout.

        Raises:
            ConnectionError: If connection is lost
            TimeoutError: If no data received within timeout
            MalformedMessageError: If the line is not valid JSON
        """
        if not self._reader:
            raise ConnectionError("Not connected")

        line = await asyncio.wait_for(self._reader.readline(), timeout=timeout)
        if not line:
            raise ConnectionError("Connection closed by server")

        try:
            return json.loads(line.decode())
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise MalformedMessageError(f"Invalid JSON: {e}") from e

    async def read_update(self, timeout: float = 1.0) -> Update:
        """Read and decode the next message.

        A ``rejected`` status is raised rather than returned, since nothing
        more will arrive on this stream.

        Raises:
            ConnectionError: If connection is lost
            TimeoutError: If no data received within timeout
            MalformedMessageError: If the message can't be decoded
            StreamRejectedError: If the upstream rejected the stream
        """
        update = decode_message(await self.read_message(timeout))
        event = update.connection_event
        if event is not None and event.kind is ConnectionEventKind.REJECTED:
            raise StreamRejectedError(event.message or "rejected by upstream")
        return update
