"""
clawguard/extended/alerts.py
─────────────────────────────
Alert Dispatcher — at most one outbound notification per qualifying record.

A record qualifies when alerts are enabled, a webhook URL is configured and
the verdict level is in the allow-list. The call runs on an executor so
ingestion never waits on it; failures are logged once and never retried.

Payload shape depends on the target:
  api.telegram.org → Bot API sendMessage body (chat_id, text)
  anything else    → {"type": "activity_alert", activity, risk, message}
"""

from __future__ import annotations

import datetime
import json
import logging
import threading
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from typing import Callable

from clawguard.core.record import ActivityRecord, coerce
from clawguard.extended.transport import TRANSPORT_ERRORS, is_success, post_json

logger = logging.getLogger("clawguard.alerts")

DEFAULT_LEVELS = ("high", "critical")
TELEGRAM_HOST = "api.telegram.org"


def _now_iso() -> str:
    return datetime.datetime.now(datetime.timezone.utc).isoformat().replace("+00:00", "Z")


def is_telegram(url: str | None) -> bool:
    return bool(url) and TELEGRAM_HOST in url


def activity_payload(record: ActivityRecord, verdict: dict) -> dict:
    level = str(verdict.get("level", "low"))
    flags = list(verdict.get("flags") or [])
    return {
        "type":      "activity_alert",
        "timestamp": _now_iso(),
        "activity": {
            "tool":      record.tool,
            "arguments": record.arguments,
            "timestamp": record.timestamp,
            "sessionId": record.session_id,
            "agent":     record.agent,
        },
        "risk": {"level": level, "flags": flags},
        "message": f"⚠️ {level.upper()} RISK: {record.tool} - {', '.join(flags)}",
    }


def telegram_activity_payload(record: ActivityRecord, verdict: dict, chat_id: str) -> dict:
    level = str(verdict.get("level", "low"))
    args = json.dumps(record.arguments, default=str)[:100]
    text = (f"⚠️ {level.upper()} RISK: {record.tool}\n\n"
            f"Flags: {', '.join(verdict.get('flags') or [])}\n"
            f"Args: {args}")
    return {"chat_id": chat_id, "text": text}


def sequence_payload(sequence: dict) -> dict:
    return {
        "type":      "sequence_alert",
        "timestamp": _now_iso(),
        "sequence":  sequence,
        "message":   f"🔗 SUSPICIOUS SEQUENCE: {sequence.get('type')} - {sequence.get('description')}",
    }


def telegram_sequence_payload(sequence: dict, chat_id: str) -> dict:
    steps = "\n".join(f"• {a.get('tool')}: {a.get('summary')}" for a in sequence.get("actions") or [])
    text = (f"🔗 SUSPICIOUS SEQUENCE: {sequence.get('type')}\n\n"
            f"{sequence.get('description')}\n{sequence.get('reason')}\n\n{steps}")
    return {"chat_id": chat_id, "text": text}


class AlertDispatcher:

    def __init__(self,
                 enabled: bool = False,
                 webhook_url: str | None = None,
                 levels=DEFAULT_LEVELS,
                 telegram_chat_id: str | None = None,
                 on_sequences: bool = False,
                 timeout: float = 10.0,
                 transport: Callable[..., int] | None = None,
                 executor: Executor | None = None):
        self.enabled = bool(enabled)
        self.webhook_url = webhook_url
        self.levels = frozenset(str(lv).lower() for lv in levels)
        self.telegram_chat_id = telegram_chat_id
        self.on_sequences = bool(on_sequences)
        self.timeout = float(timeout)
        self._transport = transport or post_json
        self._own_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(max_workers=4, thread_name_prefix="clawguard-alert")
        self._lock = threading.Lock()
        self.sent = 0
        self.failed = 0

    @property
    def active(self) -> bool:
        return self.enabled and bool(self.webhook_url)

    def qualifies(self, verdict: dict) -> bool:
        return self.active and str(verdict.get("level", "")).lower() in self.levels

    def _submit(self, payload: dict, label: str) -> Future:
        return self._executor.submit(self._send, payload, label)

    def _count(self, ok: bool) -> bool:
        with self._lock:
            if ok:
                self.sent += 1
            else:
                self.failed += 1
        return ok

    def _send(self, payload: dict, label: str) -> bool:
        try:
            status = self._transport(self.webhook_url, payload, {}, self.timeout)
        except TRANSPORT_ERRORS as e:
            logger.error("Failed to send alert for %s: %s", label, e)
            return self._count(False)
        except Exception:
            logger.exception("Unexpected error sending alert for %s", label)
            return self._count(False)
        if not is_success(status):
            logger.error("Failed to send alert for %s: HTTP %s", label, status)
            return self._count(False)
        logger.info("🔔 Alert sent for %s", label)
        return self._count(True)

    def _telegram_ready(self) -> bool:
        if is_telegram(self.webhook_url) and not self.telegram_chat_id:
            logger.error("Telegram alert skipped: telegramChatId not configured")
            return False
        return True

    def maybe_notify(self, record: ActivityRecord | dict, verdict: dict) -> Future | None:
        """Dispatch one alert if ``verdict`` qualifies; returns its future or None."""
        if not self.qualifies(verdict) or not self._telegram_ready():
            return None
        record = coerce(record)
        if is_telegram(self.webhook_url):
            payload = telegram_activity_payload(record, verdict, self.telegram_chat_id)
        else:
            payload = activity_payload(record, verdict)
        return self._submit(payload, f"{record.tool} ({verdict.get('level')})")

    def notify_sequence(self, sequence: dict) -> Future | None:
        if not (self.active and self.on_sequences) or not self._telegram_ready():
            return None
        if is_telegram(self.webhook_url):
            payload = telegram_sequence_payload(sequence, self.telegram_chat_id)
        else:
            payload = sequence_payload(sequence)
        return self._submit(payload, f"sequence {sequence.get('type')}")

    def close(self) -> None:
        if self._own_executor:
            self._executor.shutdown(wait=False)
