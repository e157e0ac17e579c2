# src/shredstream_monitor/ingest.py
"""Ingest pump: drains the proxy stream into the aggregator.

Runs as its own asyncio task. It is the only code that touches the
Aggregator; the render side reads snapshots from the SnapshotPublisher and
asks for window resets through request_window_reset(), which just sets a
flag the pump services between reads.
"""

from __future__ import annotations

import asyncio
import threading
import time
from collections.abc import Awaitable, Callable

import structlog

from shredstream_monitor.aggregator import Aggregator
from shredstream_monitor.config import Config
from shredstream_monitor.models import ConnectionEvent, ConnectionStatus, Severity
from shredstream_monitor.publisher import SnapshotPublisher
from shredstream_monitor.stream import (
    MalformedMessageError,
    StreamClient,
    StreamRejectedError,
    TcpStreamClient,
)

log = structlog.get_logger()


class IngestPump:
    """Connects, streams, and reconnects with backoff until stopped.

    Lifecycle per attempt:
    1. Wait until the connection state machine allows a retry
    2. Open a fresh client (bounded by the client's connect timeout)
    3. Apply each decoded Update and publish snapshots (throttled)
    4. On stream end or error, report it and go back to 1

    A rejection moves the state machine to FAILED and the pump stops
    connecting, but keeps republishing and servicing resets until stopped.
    """

    def __init__(
        self,
        aggregator: Aggregator,
        publisher: SnapshotPublisher,
        client_factory: Callable[[], StreamClient] | None = None,
        *,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.aggregator = aggregator
        self.publisher = publisher
        config = aggregator.config
        self._read_timeout = config.stream.read_timeout
        self._publish_interval = config.tui.publish_interval
        self._client_factory = client_factory or (
            lambda: TcpStreamClient(config.stream.endpoint, config.stream.connect_timeout)
        )
        self._clock = clock
        self._sleep = sleep
        self._client: StreamClient | None = None
        self._stopping = False
        self._reset_requested = threading.Event()
        self._last_publish = float("-inf")

    @property
    def stopping(self) -> bool:
        return self._stopping

    def request_window_reset(self) -> None:
        """Ask for a metrics window reset. Safe to call from any thread."""
        self._reset_requested.set()

    def stop(self) -> None:
        """Stop issuing connect attempts and release the stream handle."""
        self._stopping = True
        if self._client is not None:
            # Unblocks a pending read so run() can exit promptly
            self._client.close()

    async def run(self) -> None:
        """Run until stop() is called."""
        log.info("ingest_started", endpoint=self.aggregator.config.stream.endpoint)
        self._publish(force=True)
        try:
            while not self._stopping:
                if self.aggregator.connection_state.is_terminal:
                    await self._idle()
                    continue
                if not await self._wait_for_retry():
                    break
                await self._connect_and_stream()
        finally:
            await self._release_client()
            self._publish(force=True)
            log.info("ingest_stopped")

    # ─────────────────────────────────────────────────────────────────────
    # Publishing and render-side requests
    # ─────────────────────────────────────────────────────────────────────

    def _publish(self, force: bool = False) -> None:
        now = self._clock()
        if not force and now - self._last_publish < self._publish_interval:
            return
        self.publisher.publish(self.aggregator.snapshot(now))
        self._last_publish = now

    def _service_requests(self) -> None:
        if self._reset_requested.is_set():
            self._reset_requested.clear()
            self.aggregator.reset_window(self._clock())
            self._publish(force=True)

    async def _idle(self) -> None:
        """One idle tick: service requests, republish so rates decay, sleep."""
        self._service_requests()
        self._publish()
        await self._sleep(self._read_timeout)

    async def _wait_for_retry(self) -> bool:
        """Sleep in short slices until a connect attempt is due.

        Returns:
            False if stop() was called while waiting.
        """
        while not self._stopping and not self.aggregator.retry_due(self._clock()):
            next_retry_at = self.aggregator.connection_state.next_retry_at
            remaining = (next_retry_at or 0.0) - self._clock()
            self._service_requests()
            self._publish()
            try:
                await self._sleep(max(0.0, min(self._read_timeout, remaining)))
            except asyncio.CancelledError:
                self._stopping = True
                raise
        return not self._stopping

    # ─────────────────────────────────────────────────────────────────────
    # Connection
    # ─────────────────────────────────────────────────────────────────────

    def _report(self, event: ConnectionEvent) -> None:
        self.aggregator.connection_event(event, self._clock())
        self._publish(force=True)

    async def _release_client(self) -> None:
        client, self._client = self._client, None
        if client is None:
            return
        try:
            await client.disconnect()
        except (ConnectionError, OSError) as e:
            log.debug("client_disconnect_failed", error=str(e))

    async def _connect_and_stream(self) -> None:
        self.aggregator.begin_connect(self._clock())
        self._publish(force=True)

        client = self._client_factory()
        self._client = client
        endpoint = self.aggregator.config.stream.endpoint
        try:
            await client.connect()
        except StreamRejectedError as e:
            log.error("stream_rejected", endpoint=endpoint, reason=str(e))
            self._report(ConnectionEvent.rejected(str(e)))
            await self._release_client()
            return
        except Exception as e:
            log.warning("connect_failed", endpoint=endpoint, error=_describe(e))
            await self._release_client()
            if not self._stopping:
                self._report(ConnectionEvent.error(f"connect failed: {_describe(e)}"))
            return

        if self._stopping:
            await self._release_client()
            return

        log.info("stream_connected", endpoint=endpoint)
        self._report(ConnectionEvent.connected())
        try:
            await self._stream(client)
        except StreamRejectedError as e:
            log.error("stream_rejected", endpoint=endpoint, reason=str(e))
            self._report(ConnectionEvent.rejected(str(e)))
        except ConnectionError as e:
            log.warning("stream_closed", endpoint=endpoint, error=str(e))
            if not self._stopping:
                self._report(ConnectionEvent.disconnected(str(e)))
        except Exception as e:
            # Any other transport failure is retried, never fatal
            log.exception("stream_failed", endpoint=endpoint)
            if not self._stopping:
                self._report(ConnectionEvent.error(_describe(e)))
        finally:
            await self._release_client()

    async def _stream(self, client: StreamClient) -> None:
        """Apply updates until the stream ends, errors, or reports a drop."""
        while not self._stopping:
            self._service_requests()
            try:
                update = await client.read_update(timeout=self._read_timeout)
            except TimeoutError:
                self._publish()  # Idle stream: keep rates decaying
                continue
            except MalformedMessageError as e:
                log.warning("malformed_message", error=str(e))
                now = self._clock()
                self.aggregator.log(Severity.WARN, f"Skipped malformed message: {e}", now)
                continue

            self.aggregator.apply(update, self._clock())
            self._publish(force=update.connection_event is not None)

            # An in-band disconnect/error status ends this stream
            if self.aggregator.connection_state.status is not ConnectionStatus.CONNECTED:
                return


def build_pump(
    config: Config, client_factory: Callable[[], StreamClient] | None = None
) -> IngestPump:
    """Wire an Aggregator, a SnapshotPublisher and an IngestPump together.

    The publisher starts out holding the aggregator's initial snapshot, so
    a renderer can read it before the pump has run at all.
    """
    aggregator = Aggregator(config)
    publisher = SnapshotPublisher(aggregator.snapshot(aggregator.started_at))
    return IngestPump(aggregator, publisher, client_factory)


def _describe(error: BaseException) -> str:
    text = str(error)
    return f"{type(error).__name__}: {text}" if text else type(error).__name__
