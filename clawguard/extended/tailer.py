"""
clawguard/extended/tailer.py
─────────────────────────────
Log Tailer — turns an append-only JSONL source into the records appended
since the previous poll, each exactly once.

Cursor per source is the number of lines already consumed. A source whose
line count drops below its cursor was rotated or truncated; the cursor
resets to 0 and the whole file is treated as new.
"""

from __future__ import annotations

import logging
import threading
from typing import Callable

from clawguard.core.parser import parse_line
from clawguard.core.record import ActivityRecord

logger = logging.getLogger("clawguard.tailer")


def _read_lines(source_id) -> list[str]:
    with open(source_id, encoding="utf-8", errors="replace") as f:
        return f.read().splitlines()


class LogTailer:
    """
    Offset-based incremental reader.

    Args:
        parser: ``(line, source_id) -> list[ActivityRecord]``; raising or
                returning nothing marks the line as skipped.
        reader: ``source_id -> list[str]``; defaults to reading a file.
    """

    def __init__(self,
                 parser: Callable[..., list[ActivityRecord]] = parse_line,
                 reader: Callable[..., list[str]] = _read_lines):
        self._parser = parser
        self._reader = reader
        self._cursors: dict = {}
        self._source_locks: dict = {}
        self._lock = threading.Lock()

    def _source_lock(self, source_id) -> threading.Lock:
        with self._lock:
            lock = self._source_locks.get(source_id)
            if lock is None:
                lock = self._source_locks[source_id] = threading.Lock()
            return lock

    def cursor(self, source_id) -> int:
        with self._lock:
            return self._cursors.get(source_id, 0)

    def forget(self, source_id) -> None:
        with self._lock:
            self._cursors.pop(source_id, None)
            self._source_locks.pop(source_id, None)

    def prime(self, source_id) -> int:
        """Skip everything currently in ``source_id``; returns the new cursor."""
        with self._source_lock(source_id):
            try:
                count = len(self._reader(source_id))
            except OSError as e:
                logger.debug("Cannot prime %s: %s", source_id, e)
                return self.cursor(source_id)
            with self._lock:
                self._cursors[source_id] = count
            return count

    def poll(self, source_id) -> list[ActivityRecord]:
        """Records from lines appended to ``source_id`` since the last poll."""
        with self._source_lock(source_id):
            try:
                lines = self._reader(source_id)
            except OSError as e:
                logger.debug("Cannot read %s: %s", source_id, e)
                return []

            consumed = self.cursor(source_id)
            if len(lines) < consumed:
                logger.info("Source %s shrank (%d < %d lines) — rereading from start",
                            source_id, len(lines), consumed)
                consumed = 0

            records: list[ActivityRecord] = []
            for line in lines[consumed:]:
                if not line.strip():
                    continue
                try:
                    records.extend(self._parser(line, source_id) or [])
                except Exception as e:
                    logger.debug("Skipping unparseable line in %s: %s", source_id, e)

            with self._lock:
                self._cursors[source_id] = len(lines)
            return records
