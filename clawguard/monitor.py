"""
clawguard/monitor.py
─────────────────────
Activity monitor — wires the pipeline:

  change notifier → tailer → classifier → alert dispatcher
                                        → delivery buffer → sink
                                        → live fanout
                          → sequence detector (recent window) → fanout / alerts

Also serves snapshot queries over the raw session logs for the server and
CLI (``activity()``, ``sequences()``).
"""

from __future__ import annotations

import datetime
import logging
import os
import threading
from collections import deque
from concurrent.futures import ThreadPoolExecutor

from clawguard.config import Config
from clawguard.core import parser
from clawguard.core.classifier import SEVERITY_RANK, classify
from clawguard.core.record import ActivityRecord, parse_timestamp
from clawguard.extended import sequence
from clawguard.extended.alerts import AlertDispatcher
from clawguard.extended.delivery import DeliveryBuffer
from clawguard.extended.fanout import LiveFanout
from clawguard.extended.tailer import LogTailer
from clawguard.watcher import ChangeNotifier, find_session_files

logger = logging.getLogger("clawguard.monitor")

SNAPSHOT_LIMIT = 5000
SEEN_PER_RECORD = 4


def _now_iso() -> str:
    return datetime.datetime.now(datetime.timezone.utc).isoformat().replace("+00:00", "Z")


class ActivityMonitor:

    def __init__(self, config: Config,
                 fanout: LiveFanout | None = None,
                 dispatcher: AlertDispatcher | None = None,
                 buffer: DeliveryBuffer | None = None,
                 tailer: LogTailer | None = None):
        self.config = config
        self.fanout = fanout or LiveFanout()
        self.tailer = tailer or LogTailer()
        self.dispatcher = dispatcher or AlertDispatcher(
            enabled=config.alerts.enabled,
            webhook_url=config.alerts.webhook_url,
            levels=config.alerts.levels,
            telegram_chat_id=config.alerts.telegram_chat_id,
            on_sequences=config.alerts.on_sequences,
            timeout=config.alerts.timeout,
        )
        if buffer is None and config.streaming.active:
            buffer = DeliveryBuffer(
                endpoint=config.streaming.endpoint,
                auth_header=config.streaming.auth_header,
                batch_size=config.streaming.batch_size,
                flush_interval=config.streaming.flush_interval,
                max_size=config.streaming.max_size,
                retry_keep=config.streaming.retry_keep,
                timeout=config.streaming.timeout,
            )
        self.buffer = buffer

        self.notifier = ChangeNotifier(config.sessions_dirs, self.handle_change,
                                       interval=config.poll_interval)
        self._executor = ThreadPoolExecutor(max_workers=2, thread_name_prefix="clawguard-flush")
        self._recent: deque = deque(maxlen=config.detection.recent_size)
        self._seen_sequences: dict[tuple, float] = {}
        self._lock = threading.Lock()
        self.records_seen = 0
        self.records_by_level = {"low": 0, "medium": 0, "high": 0, "critical": 0}
        self.sequences_seen = 0
        self.running = False

    # ── Ingestion ────────────────────────────────────────────────────────────

    def entry_for(self, record: ActivityRecord, verdict: dict, source_id) -> dict:
        return {
            **record.to_dict(),
            "type":         "tool_call",
            "risk":         verdict,
            "_streamedAt":  _now_iso(),
            "_sessionFile": os.path.basename(str(source_id)),
        }

    def handle_change(self, source_id) -> list[dict]:
        """Process whatever was appended to ``source_id``; returns the new entries."""
        records = self.tailer.poll(source_id)
        entries = [self.ingest(record, source_id) for record in records]
        if records and self.config.detection.enabled:
            self._detect_recent()
        return entries

    def ingest(self, record: ActivityRecord, source_id=None) -> dict:
        verdict = classify(record, trusted_root=self.config.trusted_root)
        entry = self.entry_for(record, verdict, source_id or record.session_id or "")

        with self._lock:
            self.records_seen += 1
            self.records_by_level[verdict["level"]] += 1
            self._recent.append(record)

        if verdict["level"] in ("high", "critical"):
            logger.warning("[CLAWGUARD] %s risk: %s — %s", verdict["level"].upper(),
                           record.tool, "; ".join(verdict["flags"]))

        self.dispatcher.maybe_notify(record, verdict)

        if self.buffer is not None and self.buffer.enqueue(entry):
            self._executor.submit(self.buffer.flush)

        self.fanout.publish({"type": "activity", "entry": entry})
        return entry

    def _detect_recent(self) -> list[dict]:
        with self._lock:
            window = list(self._recent)
        found = sequence.detect(window, window_seconds=self.config.detection.window_seconds,
                                max_results=len(window) or 1)
        fresh = []
        with self._lock:
            for seq in found:
                key = (seq["type"], seq["timestamp"])
                if key in self._seen_sequences:
                    continue
                self._seen_sequences[key] = parse_timestamp(seq["timestamp"])
                fresh.append(seq)
            self.sequences_seen += len(fresh)
            self._prune_seen(window)

        for seq in fresh:
            logger.warning("[CLAWGUARD] Suspicious sequence: %s — %s", seq["type"], seq["description"])
            self.fanout.publish({"type": "sequence", "sequence": seq})
            self.dispatcher.notify_sequence(seq)
        return fresh

    def _prune_seen(self, window: list) -> None:
        """Forget sequences anchored before the recent window; caller holds the lock."""
        if window:
            oldest = min(record.epoch for record in window)
            for key in [k for k, at in self._seen_sequences.items() if at < oldest]:
                del self._seen_sequences[key]
        limit = SEEN_PER_RECORD * self._recent.maxlen
        while len(self._seen_sequences) > limit:
            del self._seen_sequences[next(iter(self._seen_sequences))]

    # ── Snapshot queries ─────────────────────────────────────────────────────

    def activity(self, limit: int = 50, min_level: str = "low") -> list[dict]:
        """Newest ``limit`` records from the session logs, classified."""
        floor = SEVERITY_RANK.get(min_level, 1)
        out = []
        for record in parser.load_activity(self.config.sessions_dirs, limit=SNAPSHOT_LIMIT):
            verdict = classify(record, trusted_root=self.config.trusted_root)
            if SEVERITY_RANK[verdict["level"]] < floor:
                continue
            out.append({**record.to_dict(), "risk": verdict, "category": verdict["category"]})
            if len(out) >= limit:
                break
        return out

    def sequences(self) -> dict:
        records = parser.load_activity(self.config.sessions_dirs, limit=SNAPSHOT_LIMIT)
        return sequence.scan(records,
                             window_seconds=self.config.detection.window_seconds,
                             max_results=self.config.detection.max_results)

    def stats(self) -> dict:
        with self._lock:
            data = {
                "recordsSeen":    self.records_seen,
                "recordsByLevel": dict(self.records_by_level),
                "sequencesSeen":  self.sequences_seen,
            }
        data["subscribers"] = self.fanout.subscriber_count
        data["fanoutDropped"] = self.fanout.dropped
        data["alertsSent"] = self.dispatcher.sent
        data["alertsFailed"] = self.dispatcher.failed
        data["streaming"] = self.buffer.stats() if self.buffer is not None else None
        return data

    # ── Lifecycle ────────────────────────────────────────────────────────────

    def start(self) -> None:
        # Existing history is served by snapshots; only appended lines stream.
        for path in find_session_files(self.config.sessions_dirs):
            self.tailer.prime(path)
        self.notifier.start()
        if self.buffer is not None:
            self.buffer.start()
        self.running = True
        logger.info("Monitoring %d session dir(s)", len(self.config.sessions_dirs))

    def stop(self) -> None:
        self.notifier.stop()
        if self.buffer is not None:
            self.buffer.stop()
        self._executor.shutdown(wait=True)
        self.dispatcher.close()
        self.running = False
