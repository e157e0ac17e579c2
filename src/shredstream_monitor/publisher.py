"""Latest-value-wins hand-off of Snapshots from ingest to render."""

import threading

from shredstream_monitor.models import Snapshot


class SnapshotPublisher:
    """Single-slot register holding the most recent Snapshot.

    Thread-safe: publish() can be called from the ingest side while latest()
    is called from the render side. The lock only guards a reference swap,
    so neither side waits on the other for more than that. Snapshots are
    immutable, so readers need no further locking. Older snapshots are simply
    dropped; nothing queues up behind a slow reader.
    """

    def __init__(self, initial: Snapshot) -> None:
        self._lock = threading.Lock()
        self._latest = initial
        self._published = 0

    def publish(self, snapshot: Snapshot) -> None:
        """Replace the held snapshot."""
        with self._lock:
            self._latest = snapshot
            self._published += 1

    def latest(self) -> Snapshot:
        """Return the most recent complete snapshot."""
        with self._lock:
            return self._latest

    @property
    def published_count(self) -> int:
        """Number of publish() calls so far."""
        with self._lock:
            return self._published
