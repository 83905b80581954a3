"""Background delivery of automation events to an external webhook."""

from __future__ import annotations

import logging
import queue
import threading
import time
from collections.abc import Callable
from typing import Any

import httpx

from ..core.config import AutomationSettings

LOGGER = logging.getLogger(__name__)

_STOP = object()
MAX_BACKOFF_SECONDS = 8.0


class EventDispatcher:
    """Queue events in memory and POST them from a single worker thread."""

    def __init__(
        self,
        settings: AutomationSettings,
        *,
        http_client: httpx.Client | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._settings = settings
        self._queue: queue.Queue[Any] = queue.Queue(maxsize=settings.queue_size)
        self._owns_client = http_client is None
        self._http = http_client or httpx.Client(timeout=settings.timeout_seconds)
        self._sleep = sleep
        self._lock = threading.Lock()
        self._worker: threading.Thread | None = None
        self._closed = False
        self.delivered = 0
        self.failed = 0

    @property
    def enabled(self) -> bool:
        """Return whether an endpoint is configured."""
        return bool(self._settings.webhook_url)

    def submit(self, event: dict[str, Any]) -> bool:
        """Queue ``event`` for delivery; never blocks."""
        if not self.enabled:
            return False
        with self._lock:
            if self._closed:
                return False
            self._ensure_worker()
            try:
                self._queue.put_nowait(event)
            except queue.Full:
                LOGGER.warning(
                    "Automation queue full; dropping %s event",
                    event.get("event", "unknown"),
                )
                return False
        return True

    def join(self) -> None:
        """Block until every queued event has been attempted."""
        self._queue.join()

    def close(self, timeout: float | None = 30.0) -> None:
        """Drain queued events, then stop the worker."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            worker = self._worker
        if worker is not None:
            self._queue.put(_STOP)
            worker.join(timeout)
            if worker.is_alive():
                LOGGER.warning("Automation worker did not finish within %ss", timeout)
        if self._owns_client:
            self._http.close()

    def deliver(self, event: dict[str, Any]) -> bool:
        """POST ``event`` with exponential backoff; return whether it succeeded."""
        url = self._settings.webhook_url
        if not url:
            return False
        attempts = self._settings.max_attempts
        for attempt in range(1, attempts + 1):
            try:
                response = self._http.post(
                    url, json=event, timeout=self._settings.timeout_seconds
                )
                response.raise_for_status()
                LOGGER.debug("Delivered %s event on attempt %d", event.get("event"), attempt)
                return True
            except httpx.HTTPError as exc:
                LOGGER.warning(
                    "Automation delivery attempt %d/%d failed: %s", attempt, attempts, exc
                )
            if attempt < attempts:
                delay = min(
                    self._settings.backoff_seconds * 2 ** (attempt - 1),
                    MAX_BACKOFF_SECONDS,
                )
                self._sleep(delay)
        LOGGER.error("Giving up on %s event after %d attempts", event.get("event"), attempts)
        return False

    def _ensure_worker(self) -> None:
        # Caller holds _lock.
        if self._worker is not None:
            return
        self._worker = threading.Thread(
            target=self._run, name="automation-dispatcher", daemon=True
        )
        self._worker.start()

    def _run(self) -> None:
        while True:
            item = self._queue.get()
            try:
                if item is _STOP:
                    return
                if self.deliver(item):
                    self.delivered += 1
                else:
                    self.failed += 1
            except Exception:  # pylint: disable=broad-except
                self.failed += 1
                LOGGER.error("Unexpected automation delivery error", exc_info=True)
            finally:
                self._queue.task_done()


__all__ = ["EventDispatcher"]
