# tests/test_stream.py
"""Tests for the stream decoder and TCP client."""

import asyncio
import json

import pytest

from shredstream_monitor.models import ConnectionEventKind
from shredstream_monitor.stream import (
    MalformedMessageError,
    StreamRejectedError,
    TcpStreamClient,
    decode_message,
    parse_endpoint,
)


class TestParseEndpoint:
    """Tests for parse_endpoint."""

    @pytest.mark.parametrize(
        ("endpoint", "expected"),
        [
            ("127.0.0.1:50051", ("127.0.0.1", 50051)),
            ("http://127.0.0.1:50051", ("127.0.0.1", 50051)),
            ("tcp://proxy.local:9000/", ("proxy.local", 9000)),
            ("proxy.local", ("proxy.local", 50051)),
            ("[::1]:7000", ("::1", 7000)),
            ("[::1]", ("::1", 50051)),
        ],
    )
    def test_valid(self, endpoint, expected):
        assert parse_endpoint(endpoint) == expected

    @pytest.mark.parametrize("endpoint", ["", "http://", "host:port", "host:70000"])
    def test_invalid(self, endpoint):
        with pytest.raises(ValueError):
            parse_endpoint(endpoint)


class TestDecodeMessage:
    """Tests for decode_message."""

    def test_update_with_short_keys(self):
        update = decode_message(
            {
                "type": "update",
                "timestamp": 1700000000.5,
                "slot": 100,
                "entries": 5,
                "transactions": 12,
                "recovered": 1,
                "received": 1000,
                "forwarded": 990,
                "failed": 2,
                "duplicates": 8,
                "signatures": ["sigA", "sigB"],
            }
        )
        assert update.timestamp == 1700000000.5
        assert update.slot == 100
        assert update.entries_in_slot == 5
        assert update.transactions_in_slot == 12
        assert update.recovered_shreds == 1
        assert update.cumulative_received == 1000
        assert update.cumulative_forwarded == 990
        assert update.cumulative_failed == 2
        assert update.cumulative_duplicates == 8
        assert update.sample_transaction_signatures == ("sigA", "sigB")
        assert update.connection_event is None
        assert update.has_counters

    def test_missing_fields(self):
        """Absent slot counts are 0; absent proxy totals stay None."""
        update = decode_message({"slot": 7}, now=42.0)
        assert update.slot == 7
        assert update.entries_in_slot == 0
        assert update.cumulative_received is None
        assert update.cumulative_duplicates is None
        assert update.sample_transaction_signatures == ()
        assert update.timestamp == 42.0

    def test_negative_values_pass_through(self):
        """Range checks belong to the aggregator, not the decoder."""
        update = decode_message({"slot": 1, "received": -5})
        assert update.cumulative_received == -5

    def test_null_proxy_total_is_absent(self):
        update = decode_message({"slot": 1, "received": None, "forwarded": 5})
        assert update.cumulative_received is None
        assert update.cumulative_forwarded == 5

    def test_non_finite_timestamp_uses_now(self):
        update = decode_message({"slot": 1, "timestamp": float("nan")}, now=42.0)
        assert update.timestamp == 42.0

    def test_nan_from_json_text_is_malformed(self):
        """json.loads accepts NaN and Infinity literals; they never reach int()."""
        for text in ('{"slot": NaN}', '{"slot": 1, "failed": Infinity}'):
            with pytest.raises(MalformedMessageError, match="not finite"):
                decode_message(json.loads(text))

    def test_status_message(self):
        update = decode_message({"type": "status", "event": "disconnected", "message": "eof"})
        assert not update.has_counters
        assert update.connection_event.kind is ConnectionEventKind.DISCONNECTED
        assert update.connection_event.message == "eof"

    @pytest.mark.parametrize(
        "message",
        [
            [1, 2, 3],
            {"type": "bogus"},
            {"type": "status", "event": "exploded"},
            {"slot": "one hundred"},
            {"slot": True},
            {"slot": 1, "signatures": "sigA"},
            {"slot": float("nan")},
            {"slot": 1, "received": float("inf")},
            {"slot": 1, "entries": float("-inf")},
        ],
    )
    def test_malformed(self, message):
        with pytest.raises(MalformedMessageError):
            decode_message(message)


async def start_server(lines: list[bytes], hold_open: float = 0.5):
    """Serve ``lines`` to each client on an ephemeral localhost port."""

    async def handle_client(reader, writer):
        for line in lines:
            writer.write(line)
        await writer.drain()
        await asyncio.sleep(hold_open)
        writer.close()

    server = await asyncio.start_server(handle_client, "127.0.0.1", 0)
    port = server.sockets[0].getsockname()[1]
    return server, f"127.0.0.1:{port}"


def encode(message: dict) -> bytes:
    return (json.dumps(message) + "\n").encode()


@pytest.mark.asyncio
async def test_client_reads_updates():
    """TcpStreamClient should receive and decode messages."""
    server, endpoint = await start_server(
        [encode({"type": "update", "slot": 5, "transactions": 3, "signatures": ["x"]})]
    )
    try:
        client = TcpStreamClient(endpoint)
        await client.connect()
        assert client.connected

        update = await client.read_update(timeout=2.0)
        assert update.slot == 5
        assert update.transactions_in_slot == 3

        await client.disconnect()
        assert not client.connected
    finally:
        server.close()
        await server.wait_closed()


@pytest.mark.asyncio
async def test_client_raises_on_server_close():
    """EOF from the server is a ConnectionError."""
    server, endpoint = await start_server([], hold_open=0.0)
    try:
        client = TcpStreamClient(endpoint)
        await client.connect()
        with pytest.raises(ConnectionError):
            await client.read_update(timeout=2.0)
        await client.disconnect()
    finally:
        server.close()
        await server.wait_closed()


@pytest.mark.asyncio
async def test_client_read_timeout():
    """No data within the timeout raises TimeoutError."""
    server, endpoint = await start_server([], hold_open=1.0)
    try:
        client = TcpStreamClient(endpoint)
        await client.connect()
        with pytest.raises(TimeoutError):
            await client.read_update(timeout=0.05)
        await client.disconnect()
    finally:
        server.close()
        await server.wait_closed()


@pytest.mark.asyncio
async def test_client_invalid_json():
    server, endpoint = await start_server([b"{not json\n"])
    try:
        client = TcpStreamClient(endpoint)
        await client.connect()
        with pytest.raises(MalformedMessageError):
            await client.read_update(timeout=2.0)
        await client.disconnect()
    finally:
        server.close()
        await server.wait_closed()


@pytest.mark.asyncio
async def test_client_nan_line_is_malformed_and_stream_continues():
    server, endpoint = await start_server([b'{"slot": NaN}\n', encode({"slot": 8})])
    try:
        client = TcpStreamClient(endpoint)
        await client.connect()
        with pytest.raises(MalformedMessageError):
            await client.read_update(timeout=2.0)
        update = await client.read_update(timeout=2.0)
        assert update.slot == 8
        await client.disconnect()
    finally:
        server.close()
        await server.wait_closed()


@pytest.mark.asyncio
async def test_client_raises_on_rejected_status():
    server, endpoint = await start_server(
        [encode({"type": "status", "event": "rejected", "message": "unauthenticated"})]
    )
    try:
        client = TcpStreamClient(endpoint)
        await client.connect()
        with pytest.raises(StreamRejectedError, match="unauthenticated"):
            await client.read_update(timeout=2.0)
        await client.disconnect()
    finally:
        server.close()
        await server.wait_closed()


@pytest.mark.asyncio
async def test_client_connect_refused():
    """Connecting to a closed port raises OSError."""
    server = await asyncio.start_server(lambda r, w: None, "127.0.0.1", 0)
    port = server.sockets[0].getsockname()[1]
    server.close()
    await server.wait_closed()

    client = TcpStreamClient(f"127.0.0.1:{port}", connect_timeout=2.0)
    with pytest.raises(OSError):
        await client.connect()


@pytest.mark.asyncio
async def test_read_without_connect():
    client = TcpStreamClient("127.0.0.1:1")
    with pytest.raises(ConnectionError):
        await client.read_update(timeout=0.1)
