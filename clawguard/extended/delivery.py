"""
clawguard/extended/delivery.py
───────────────────────────────
Delivery Buffer — batches classified entries and pushes them to an external
sink with bounded retry.

  enqueue()   append to the pending queue (oldest evicted past max_size)
  flush()     swap the queue out, POST it as one batch, requeue on failure

On failure the newest ``retry_keep`` entries of the failed batch go back in
front of anything enqueued meanwhile, and the whole queue is capped again
at ``max_size``. Only one flush runs at a time per buffer; a call that
finds a flush in flight returns ``{"status": "skipped"}``.
"""

from __future__ import annotations

import datetime
import logging
import threading
from collections import deque
from typing import Callable

from clawguard.extended.transport import TRANSPORT_ERRORS, is_success, post_json

logger = logging.getLogger("clawguard.delivery")

DEFAULT_BATCH_SIZE = 10
DEFAULT_FLUSH_INTERVAL = 5.0
DEFAULT_MAX_SIZE = 500
DEFAULT_RETRY_KEEP = 100
DEFAULT_TIMEOUT = 10.0


def _now_iso() -> str:
    return datetime.datetime.now(datetime.timezone.utc).isoformat().replace("+00:00", "Z")


class DeliveryBuffer:

    def __init__(self,
                 endpoint: str,
                 auth_header: str | None = None,
                 batch_size: int = DEFAULT_BATCH_SIZE,
                 flush_interval: float = DEFAULT_FLUSH_INTERVAL,
                 max_size: int = DEFAULT_MAX_SIZE,
                 retry_keep: int = DEFAULT_RETRY_KEEP,
                 timeout: float = DEFAULT_TIMEOUT,
                 transport: Callable[..., int] | None = None):
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        self.endpoint = endpoint
        self.auth_header = auth_header
        self.batch_size = max(1, int(batch_size))
        self.flush_interval = float(flush_interval)
        self.max_size = int(max_size)
        self.retry_keep = max(0, int(retry_keep))
        self.timeout = float(timeout)
        self._transport = transport or post_json

        self._pending: deque = deque(maxlen=self.max_size)
        self._lock = threading.Lock()
        self._flush_lock = threading.Lock()

        self.total_sent = 0
        self.total_failed = 0
        self.total_dropped = 0
        self.last_sent_at: str | None = None
        self.last_error: str | None = None

        self._stop = threading.Event()
        self._timer: threading.Thread | None = None

    # ── Queue ────────────────────────────────────────────────────────────────

    def enqueue(self, entry: dict) -> bool:
        """Queue one entry; True once the pending count reaches the batch size."""
        with self._lock:
            if len(self._pending) == self.max_size:
                self.total_dropped += 1
            self._pending.append(entry)
            return len(self._pending) >= self.batch_size

    def pending(self) -> list:
        with self._lock:
            return list(self._pending)

    def __len__(self) -> int:
        with self._lock:
            return len(self._pending)

    # ── Flush ────────────────────────────────────────────────────────────────

    def _headers(self) -> dict:
        return {"Authorization": self.auth_header} if self.auth_header else {}

    def flush(self) -> dict:
        if not self._flush_lock.acquire(blocking=False):
            return {"status": "skipped", "count": 0}
        try:
            with self._lock:
                if not self._pending:
                    return {"status": "empty", "count": 0}
                batch = list(self._pending)
                self._pending = deque(maxlen=self.max_size)

            payload = {
                "source":    "clawguard",
                "timestamp": _now_iso(),
                "count":     len(batch),
                "entries":   batch,
            }
            try:
                status = self._transport(self.endpoint, payload, self._headers(), self.timeout)
                error = None if is_success(status) else f"HTTP {status}"
            except TRANSPORT_ERRORS as e:
                error = str(e) or e.__class__.__name__
            except Exception as e:
                logger.exception("Unexpected error streaming to %s", self.endpoint)
                error = f"{e.__class__.__name__}: {e}"

            if error is None:
                with self._lock:
                    self.total_sent += len(batch)
                    self.last_sent_at = _now_iso()
                    self.last_error = None
                logger.info("Streamed %d entries to %s", len(batch), self.endpoint)
                return {"status": "sent", "count": len(batch)}

            keep = batch[-self.retry_keep:] if self.retry_keep else []
            with self._lock:
                merged = keep + list(self._pending)
                self._pending = deque(merged, maxlen=self.max_size)
                self.total_dropped += len(batch) - len(keep) + len(merged) - len(self._pending)
                self.total_failed += len(batch)
                self.last_error = error
            logger.error("Stream flush of %d entries failed: %s", len(batch), error)
            return {"status": "failed", "count": len(batch), "error": error}
        finally:
            self._flush_lock.release()

    def stats(self) -> dict:
        with self._lock:
            return {
                "totalSent":    self.total_sent,
                "totalFailed":  self.total_failed,
                "totalDropped": self.total_dropped,
                "lastSentAt":   self.last_sent_at,
                "lastError":    self.last_error,
                "bufferSize":   len(self._pending),
            }

    # ── Timer ────────────────────────────────────────────────────────────────

    def _run_timer(self) -> None:
        while not self._stop.wait(self.flush_interval):
            try:
                self.flush()
            except Exception:
                logger.exception("Stream flush tick failed")

    def start(self) -> None:
        if self._timer is not None and self._timer.is_alive():
            return
        self._stop.clear()
        self._timer = threading.Thread(target=self._run_timer, name="clawguard-flush", daemon=True)
        self._timer.start()
        logger.info("Streaming to %s every %.1fs (batch %d)",
                    self.endpoint, self.flush_interval, self.batch_size)

    def stop(self, final_flush: bool = True) -> None:
        self._stop.set()
        if self._timer is not None:
            self._timer.join(timeout=self.flush_interval + self.timeout)
            self._timer = None
        if final_flush:
            self.flush()
