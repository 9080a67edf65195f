"""
Best-effort persistence sink.

Fire-and-forget writes are queued on a bounded queue and executed by a
single background writer thread. Each queued write is attempted at most
once; failures are logged and never reach the caller. In-memory engine
state stays authoritative whatever the outcome.
"""

from typing import Any, Optional
import logging
import queue
import threading

from .gateway import PersistenceGateway

logger = logging.getLogger(__name__)

_STOP = object()


class PersistenceSink:
    """Non-blocking front for a ``PersistenceGateway``."""

    def __init__(self, gateway: PersistenceGateway, queue_size: int = 1000,
                 synchronous: bool = False):
        self.gateway = gateway
        self.synchronous = synchronous
        self.dropped = 0
        self.failed = 0

        self._queue: "queue.Queue" = queue.Queue(maxsize=queue_size)
        self._closed = False
        self._writer: Optional[threading.Thread] = None

        if not synchronous:
            self._writer = threading.Thread(
                target=self._run, name="persistence-writer", daemon=True
            )
            self._writer.start()

    def submit(self, method: str, *args: Any):
        """Queue a write; never blocks and never raises."""
        if self._closed:
            logger.debug(f"Sink closed, dropping {method}")
            self.dropped += 1
            return

        if self.synchronous:
            self._invoke(method, args)
            return

        try:
            self._queue.put_nowait((method, args))
        except queue.Full:
            self.dropped += 1
            logger.warning(f"Persistence queue full, dropping {method}")

    def request(self, method: str, *args: Any) -> Any:
        """Run a write inline and return its result, or None if it failed."""
        return self._invoke(method, args)

    def flush(self):
        """Block until every queued write has been attempted."""
        if self._writer is not None:
            self._queue.join()

    def close(self):
        """Drain outstanding writes and stop the writer thread."""
        if self._closed:
            return
        self._closed = True
        if self._writer is not None:
            self._queue.put(_STOP)
            self._writer.join()

    def _run(self):
        while True:
            item = self._queue.get()
            try:
                if item is _STOP:
                    return
                method, args = item
                self._invoke(method, args)
            finally:
                self._queue.task_done()

    def _invoke(self, method: str, args: tuple) -> Any:
        try:
            return getattr(self.gateway, method)(*args)
        except Exception as e:
            self.failed += 1
            logger.error(f"Persistence call {method} failed: {e}")
            return None
