"""
clawguard/watcher.py
─────────────────────
Change notifier — a polling thread that fingerprints session files under
the watched directories and calls back with each path that changed.

Fingerprint is ``(size, mtime_ns)``. Files present when the notifier starts
are baselined, not reported. Any number of writes between two polls
produce one callback for that path.
"""

from __future__ import annotations

import glob
import logging
import os
import threading
from typing import Callable, Iterable

logger = logging.getLogger("clawguard.watcher")

DEFAULT_INTERVAL = 1.0


def find_session_files(dirs: Iterable[str]) -> list[str]:
    files: list[str] = []
    for base in dirs:
        base = os.path.expanduser(base)
        files.extend(glob.glob(os.path.join(base, "**", "*.jsonl"), recursive=True))
    return sorted(f for f in files if ".deleted." not in os.path.basename(f))


def _fingerprint(path: str) -> tuple[int, int] | None:
    try:
        st = os.stat(path)
    except OSError:
        return None
    return st.st_size, st.st_mtime_ns


class ChangeNotifier:

    def __init__(self, dirs: Iterable[str], callback: Callable[[str], None],
                 interval: float = DEFAULT_INTERVAL):
        self.dirs = list(dirs)
        self.callback = callback
        self.interval = interval
        self._known: dict[str, tuple[int, int]] = {}
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    def baseline(self) -> list[str]:
        """Record current fingerprints without reporting them."""
        self._known = {}
        for path in find_session_files(self.dirs):
            fp = _fingerprint(path)
            if fp is not None:
                self._known[path] = fp
        return list(self._known)

    def scan_once(self) -> list[str]:
        """Paths whose fingerprint changed (or appeared) since the last scan."""
        changed: list[str] = []
        current: dict[str, tuple[int, int]] = {}
        for path in find_session_files(self.dirs):
            fp = _fingerprint(path)
            if fp is None:
                continue
            current[path] = fp
            if self._known.get(path) != fp:
                changed.append(path)
        self._known = current
        return changed

    def poll(self) -> list[str]:
        changed = self.scan_once()
        for path in changed:
            logger.debug("Session file changed: %s", path)
            try:
                self.callback(path)
            except Exception as e:
                logger.error("Change callback failed for %s: %s", path, e)
        return changed

    def _run(self) -> None:
        logger.info("Watching %s (every %.1fs)", ", ".join(self.dirs), self.interval)
        while not self._stop.wait(self.interval):
            try:
                self.poll()
            except OSError as e:
                logger.error("Watcher error: %s", e)
        logger.info("Watcher stopped")

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self.baseline()
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="clawguard-watcher", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=self.interval + 1)
            self._thread = None
