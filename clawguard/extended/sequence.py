"""
clawguard/extended/sequence.py
───────────────────────────────
Sequence Detector — multi-step behaviour that single-event scoring misses.

Works over a snapshot of records: sorted ascending by timestamp, then for
every index each matcher in CATALOGUE looks at the record and a bounded
neighbourhood (forward while within the window, or a fixed burst span).

Pattern                          Trigger → correlated event
─────────────────────────────    ───────────────────────────────────────────
Credential Access → Network      credential path read → network exec
Credential Access → Web Fetch    credential path read → web_fetch
Multiple Privileged Operations   ≥3 sudo/destructive execs within ±3 records
Config Change → Restart          config write/edit → gateway restart/apply
Potential Data Leak via Message  send with credential-shaped text
SSH Key Access → Connection      ssh key read → ssh user@host
Clone → Package Install          git clone → package install (2 × window)
Download → Execute               download → execute
Password Manager → Outbound      vault read → network / web_fetch / send
Bulk File Enumeration            ≥10 reads in 20 records within 60 s
Persistence Mechanism            crontab / launchctl load / systemctl enable
Persistence via File             write under LaunchAgents, cron.d, systemd…
Media Capture                    camera, screen or microphone capture
Keychain Access                  security find-*-password / dump-keychain

The window boundary is inclusive. Burst matchers remember every member of
an emitted burst for the duration of one call so overlapping windows
report once.
"""

from __future__ import annotations

import json
import logging
import math
import time

from clawguard.core import predicates as p
from clawguard.core.record import ActivityRecord, sort_by_time

logger = logging.getLogger("clawguard.sequence")

DEFAULT_WINDOW_SECONDS = 300
DEFAULT_MAX_RESULTS = 20
ENUMERATION_WINDOW_SECONDS = 60
ENUMERATION_SPAN = 20
ENUMERATION_MIN_READS = 10
PRIVILEGED_NEIGHBOURS = 3
PRIVILEGED_MIN_TOTAL = 3

CREDENTIAL_NETWORK = "Credential Access → Network"
CREDENTIAL_WEB_FETCH = "Credential Access → Web Fetch"
PRIVILEGED_BURST = "Multiple Privileged Operations"
CONFIG_RESTART = "Config Change → Restart"
MESSAGE_LEAK = "Potential Data Leak via Message"
SSH_KEY_CONNECT = "SSH Key Access → Connection"
CLONE_INSTALL = "Clone → Package Install"
DOWNLOAD_EXECUTE = "Download → Execute"
VAULT_OUTBOUND = "Password Manager → Outbound"
BULK_ENUMERATION = "Bulk File Enumeration"
PERSISTENCE_COMMAND = "Persistence Mechanism"
PERSISTENCE_FILE = "Persistence via File"
MEDIA_CAPTURE = "Media Capture"
KEYCHAIN_ACCESS = "Keychain Access"

SEQUENCE_SEVERITY = {
    CREDENTIAL_NETWORK:   "critical",
    CREDENTIAL_WEB_FETCH: "critical",
    VAULT_OUTBOUND:       "critical",
    KEYCHAIN_ACCESS:      "critical",
    DOWNLOAD_EXECUTE:     "critical",
    MESSAGE_LEAK:         "high",
    PRIVILEGED_BURST:     "high",
    SSH_KEY_CONNECT:      "high",
    PERSISTENCE_COMMAND:  "high",
    PERSISTENCE_FILE:     "high",
    MEDIA_CAPTURE:        "high",
    CONFIG_RESTART:       "medium",
    CLONE_INSTALL:        "medium",
    BULK_ENUMERATION:     "medium",
}


# ── Helpers ──────────────────────────────────────────────────────────────────

def _is(record: ActivityRecord, *tools: str) -> bool:
    return record.tool_key in tools


def _path(record: ActivityRecord) -> str:
    return record.arg("path", "file_path")


def _command(record: ActivityRecord) -> str:
    return record.arg("command", "cmd")


def _action(record: ActivityRecord, **summaries) -> dict:
    return {"tool": record.tool, "timestamp": record.timestamp, **summaries}


def summarize(record: ActivityRecord, limit: int = 60) -> str:
    """Short human description of what a record did."""
    if _is(record, "exec"):
        return _command(record)[:limit] or "(command)"
    if _is(record, "web_fetch"):
        return record.arg("url") or "(url)"
    if _is(record, "message"):
        return f"{record.arg('action')} to {record.arg('target', 'channel')}"
    if _is(record, "read", "write", "edit"):
        return _path(record) or "(path)"
    return json.dumps(record.arguments or {}, default=str)[:limit]


def _sequence(type_: str, description: str, reason: str,
              anchor: ActivityRecord, actions: list[dict]) -> dict:
    return {
        "type":        type_,
        "description": description,
        "reason":      reason,
        "timestamp":   anchor.timestamp,
        "severity":    SEQUENCE_SEVERITY[type_],
        "actions":     actions,
    }


def _forward(records: list, i: int, window: float):
    """Records after ``i`` whose delta from ``records[i]`` is within ``window``."""
    start = records[i].epoch
    for j in range(i + 1, len(records)):
        if records[j].epoch - start > window:
            return
        yield records[j]


def _key(type_: str, record: ActivityRecord) -> tuple:
    return type_, round(record.epoch * 1000)


# ── Window matchers ──────────────────────────────────────────────────────────

def _credential_then_outbound(records, i, window, seen):
    current = records[i]
    path = _path(current)
    if not _is(current, "read") or not p.is_credential_path(path):
        return None
    for nxt in _forward(records, i, window):
        if _is(nxt, "exec") and p.is_network_command(_command(nxt)):
            return _sequence(
                CREDENTIAL_NETWORK,
                f"Read {path} then executed network command",
                "Sensitive file was read shortly before network activity, potential data exfiltration",
                current,
                [_action(current, summary=path), _action(nxt, summary=_command(nxt)[:100])],
            )
        if _is(nxt, "web_fetch"):
            url = nxt.arg("url")
            return _sequence(
                CREDENTIAL_WEB_FETCH,
                f"Read {path} then fetched {url}",
                "Sensitive file was read shortly before external request, potential credential leak",
                current,
                [_action(current, summary=path), _action(nxt, summary=url)],
            )
    return None


def _config_then_restart(records, i, window, seen):
    current = records[i]
    path = _path(current)
    if not _is(current, "write", "edit") or not p.is_config_file(path):
        return None
    for nxt in _forward(records, i, window):
        action = nxt.arg("action")
        if _is(nxt, "gateway") and action in ("restart", "config.apply"):
            return _sequence(
                CONFIG_RESTART,
                f"Modified {path} then triggered gateway restart",
                "Configuration change followed by restart, verify the changes were intentional",
                current,
                [_action(current, summary=path), _action(nxt, summary=f"gateway {action}")],
            )
    return None


def _ssh_key_then_connect(records, i, window, seen):
    current = records[i]
    path = _path(current)
    if not _is(current, "read") or not p.is_ssh_key_path(path):
        return None
    for nxt in _forward(records, i, window):
        if _is(nxt, "exec") and p.is_ssh_connect(_command(nxt)):
            return _sequence(
                SSH_KEY_CONNECT,
                "Read SSH key then initiated SSH connection",
                "SSH key was accessed before establishing connection, verify this was authorized",
                current,
                [_action(current, summary=path), _action(nxt, summary=_command(nxt)[:80])],
            )
    return None


def _clone_then_install(records, i, window, seen):
    current = records[i]
    if not _is(current, "exec") or not p.is_git_clone(_command(current)):
        return None
    for nxt in _forward(records, i, window * 2):
        if _is(nxt, "exec") and p.is_package_install(_command(nxt)):
            return _sequence(
                CLONE_INSTALL,
                "Cloned repository then ran package install",
                "Installing dependencies from a cloned repo is a supply chain risk if the repo is untrusted",
                current,
                [_action(current, summary=_command(current)[:80]),
                 _action(nxt, summary=_command(nxt)[:80])],
            )
    return None


def _download_then_execute(records, i, window, seen):
    current = records[i]
    if not _is(current, "exec") or not p.is_download_command(_command(current)):
        return None
    for nxt in _forward(records, i, window):
        if _is(nxt, "exec") and p.is_execute_command(_command(nxt)):
            return _sequence(
                DOWNLOAD_EXECUTE,
                "Downloaded file then executed something",
                "File was downloaded and executed shortly after, a classic malware pattern",
                current,
                [_action(current, summary=_command(current)[:80]),
                 _action(nxt, summary=_command(nxt)[:80])],
            )
    return None


def _vault_then_outbound(records, i, window, seen):
    current = records[i]
    if not _is(current, "exec") or not p.is_password_manager_command(_command(current)):
        return None
    for nxt in _forward(records, i, window):
        outbound = (
            (_is(nxt, "exec") and p.is_network_command(_command(nxt)))
            or _is(nxt, "web_fetch")
            or (_is(nxt, "message") and nxt.arg("action") == "send")
        )
        if outbound:
            return _sequence(
                VAULT_OUTBOUND,
                "Accessed password manager then sent data externally",
                "Credentials were accessed from password manager before outbound activity",
                current,
                [_action(current, summary=_command(current)[:60]),
                 _action(nxt, summary=summarize(nxt))],
            )
    return None


# ── Burst matchers ───────────────────────────────────────────────────────────

def _is_privileged_exec(record: ActivityRecord) -> bool:
    return _is(record, "exec") and p.is_privileged_command(_command(record))


def _privileged_burst(records, i, window, seen):
    current = records[i]
    if not _is_privileged_exec(current) or _key(PRIVILEGED_BURST, current) in seen:
        return None
    nearby = []
    for j in range(max(0, i - PRIVILEGED_NEIGHBOURS), min(len(records), i + PRIVILEGED_NEIGHBOURS + 1)):
        if j == i:
            continue
        other = records[j]
        if abs(other.epoch - current.epoch) <= window and _is_privileged_exec(other):
            nearby.append(other)
    if len(nearby) + 1 < PRIVILEGED_MIN_TOTAL:
        return None

    members = [current, *nearby]
    seen.update(_key(PRIVILEGED_BURST, r) for r in members)
    return _sequence(
        PRIVILEGED_BURST,
        f"{len(members)} dangerous commands executed in quick succession",
        "Rapid execution of privileged or destructive commands may indicate an automated attack or a mistake",
        current,
        [_action(r, summary=_command(r)[:100]) for r in members],
    )


def _bulk_enumeration(records, i, window, seen):
    current = records[i]
    if not _is(current, "read") or _key(BULK_ENUMERATION, current) in seen:
        return None
    reads = []
    for j in range(i, min(len(records), i + ENUMERATION_SPAN)):
        other = records[j]
        if other.epoch - current.epoch > ENUMERATION_WINDOW_SECONDS:
            break
        if _is(other, "read"):
            reads.append(other)
    if len(reads) < ENUMERATION_MIN_READS:
        return None

    seen.update(_key(BULK_ENUMERATION, r) for r in reads)
    return _sequence(
        BULK_ENUMERATION,
        f"{len(reads)} files read in under 1 minute",
        "Rapid file access may indicate reconnaissance or data harvesting",
        current,
        [_action(r, summary=_path(r)) for r in reads[:5]],
    )


# ── Single-event matchers ────────────────────────────────────────────────────

def _message_leak(records, i, window, seen):
    current = records[i]
    if not _is(current, "message") or current.arg("action") != "send":
        return None
    if not p.contains_credentials(current.arg("message", "text", "content")):
        return None
    return _sequence(
        MESSAGE_LEAK,
        "Message sent containing sensitive patterns",
        "Outbound message contains patterns that look like credentials or API keys",
        current,
        [_action(current, summary=f"message to {current.arg('target', 'channel')}")],
    )


def _persistence_command(records, i, window, seen):
    current = records[i]
    cmd = _command(current)
    if not _is(current, "exec") or not p.is_persistence_command(cmd):
        return None
    return _sequence(
        PERSISTENCE_COMMAND,
        "Created scheduled task or service",
        "Agent created a persistence mechanism, verify this was intentional",
        current,
        [_action(current, summary=cmd[:100])],
    )


def _persistence_file(records, i, window, seen):
    current = records[i]
    path = _path(current)
    if not _is(current, "write") or not p.is_persistence_path(path):
        return None
    return _sequence(
        PERSISTENCE_FILE,
        "Wrote to startup/scheduled task location",
        "File written to persistence location will run automatically",
        current,
        [_action(current, summary=path)],
    )


def _media_capture(records, i, window, seen):
    current = records[i]
    cmd = _command(current)
    if not _is(current, "exec") or not p.is_media_capture(cmd):
        return None
    return _sequence(
        MEDIA_CAPTURE,
        "Captured camera, screen, or audio",
        "Agent accessed camera, microphone or screen; verify this was requested",
        current,
        [_action(current, summary=cmd[:100])],
    )


def _keychain_access(records, i, window, seen):
    current = records[i]
    cmd = _command(current)
    if not _is(current, "exec") or not p.is_keychain_extraction(cmd):
        return None
    return _sequence(
        KEYCHAIN_ACCESS,
        "Extracted credentials from system keychain",
        "Agent accessed the system keychain, a high sensitivity operation",
        current,
        [_action(current, summary=cmd[:100])],
    )


CATALOGUE = [
    _credential_then_outbound,
    _privileged_burst,
    _config_then_restart,
    _message_leak,
    _ssh_key_then_connect,
    _clone_then_install,
    _download_then_execute,
    _vault_then_outbound,
    _bulk_enumeration,
    _persistence_command,
    _persistence_file,
    _media_capture,
    _keychain_access,
]


# ── Public API ───────────────────────────────────────────────────────────────

def _validate_window(window_seconds) -> float:
    if isinstance(window_seconds, bool) or not isinstance(window_seconds, (int, float)):
        raise ValueError(f"window must be a number of seconds, got {window_seconds!r}")
    if not math.isfinite(window_seconds) or window_seconds < 0:
        raise ValueError(f"window must be finite and non-negative, got {window_seconds!r}")
    return float(window_seconds)


def detect(records, window_seconds: float = DEFAULT_WINDOW_SECONDS,
           max_results: int = DEFAULT_MAX_RESULTS) -> list[dict]:
    """
    Find suspicious sequences in ``records``.

    Args:
        records:        ActivityRecords or plain dicts, in any order.
        window_seconds: Correlation window; must be finite.
        max_results:    Cap on the returned list.

    Returns:
        Sequences in discovery order, at most one per (type, timestamp).

    Raises:
        ValueError: window is not a finite non-negative number.
    """
    return _scan(records, _validate_window(window_seconds))[:max_results]


def _scan(records, window: float) -> list[dict]:
    ordered = sort_by_time(records)
    seen: set = set()
    unique: dict[tuple, dict] = {}
    for i in range(len(ordered)):
        for matcher in CATALOGUE:
            found = matcher(ordered, i, window, seen)
            if found is not None:
                unique[(found["type"], found["timestamp"])] = found
    return list(unique.values())


def scan(records, window_seconds: float = DEFAULT_WINDOW_SECONDS,
         max_results: int = DEFAULT_MAX_RESULTS) -> dict:
    """detect() wrapped in a result dict with severity rollup and timing."""
    start = time.perf_counter()
    found = _scan(records, _validate_window(window_seconds))
    sequences = found[:max_results]
    elapsed_ms = round((time.perf_counter() - start) * 1000, 3)

    severity = "none"
    if any(s["severity"] == "critical" for s in sequences):
        severity = "critical"
    elif any(s["severity"] == "high" for s in sequences):
        severity = "high"
    elif sequences:
        severity = "medium"

    if sequences:
        logger.warning("[CLAWGUARD] %d suspicious sequence(s) — severity=%s",
                       len(found), severity)

    return {
        "detected":  bool(sequences),
        "sequences": sequences,
        "total":     len(found),
        "severity":  severity,
        "layer":     "sequence_detector",
        "scan_ms":   elapsed_ms,
    }
