"""
clawguard.core.record
~~~~~~~~~~~~~~~~~~~~~~
Activity Record — one tool invocation emitted by the monitored agent.

Records are immutable once produced. Everything downstream (classifier,
sequence detector, delivery) reads them and builds new dicts; nothing
writes back into a record.

Timestamps are kept exactly as they appeared in the source (ISO-8601
string or epoch number) and parsed on demand through ``epoch``.
Unparseable or missing timestamps sort first as epoch 0.
"""

from __future__ import annotations

import datetime
import json
from dataclasses import dataclass, field
from typing import Any

_EPOCH_MS_THRESHOLD = 100_000_000_000   # numbers above this are milliseconds


def parse_timestamp(value: Any) -> float:
    """Return ``value`` as epoch seconds, or 0.0 when it cannot be parsed."""
    if value is None or isinstance(value, bool):
        return 0.0
    if isinstance(value, (int, float)):
        seconds = float(value)
        return seconds / 1000.0 if abs(seconds) > _EPOCH_MS_THRESHOLD else seconds
    if isinstance(value, datetime.datetime):
        dt = value
    elif isinstance(value, str):
        text = value.strip()
        if not text:
            return 0.0
        try:
            return parse_timestamp(float(text))
        except ValueError:
            pass
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        try:
            dt = datetime.datetime.fromisoformat(text)
        except ValueError:
            return 0.0
    else:
        return 0.0

    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=datetime.timezone.utc)
    return dt.timestamp()


def _coerce_arguments(raw: Any) -> dict:
    if isinstance(raw, dict):
        return dict(raw)
    if isinstance(raw, str) and raw:
        try:
            decoded = json.loads(raw)
        except (json.JSONDecodeError, ValueError):
            return {"raw": raw}
        return decoded if isinstance(decoded, dict) else {"raw": raw}
    return {}


@dataclass(frozen=True)
class ActivityRecord:
    id: str
    tool: str
    arguments: dict = field(default_factory=dict)
    timestamp: Any = None
    result: dict | None = None
    session_id: str | None = None
    agent: str | None = None

    @property
    def tool_key(self) -> str:
        """Lower-cased tool name; ``Read`` and ``read`` are the same tool."""
        return (self.tool or "").strip().lower()

    @property
    def epoch(self) -> float:
        return parse_timestamp(self.timestamp)

    def arg(self, *names: str) -> str:
        """First non-empty string argument among ``names``, else ``""``."""
        args = self.arguments if isinstance(self.arguments, dict) else {}
        for name in names:
            value = args.get(name)
            if isinstance(value, str) and value:
                return value
        return ""

    def to_dict(self) -> dict:
        return {
            "id":        self.id,
            "tool":      self.tool,
            "arguments": dict(self.arguments or {}),
            "timestamp": self.timestamp,
            "result":    self.result,
            "sessionId": self.session_id,
            "agent":     self.agent,
        }

    @classmethod
    def from_dict(cls, data: dict, session_id: str | None = None,
                  agent: str | None = None) -> ActivityRecord:
        """
        Build a record from a plain mapping.

        Accepts both ``sessionId`` and ``session_id`` spellings. ``arguments``
        given as a JSON string is decoded; anything else that is not a dict
        becomes an empty bag.
        """
        result = data.get("result")
        return cls(
            id=str(data.get("id") or ""),
            tool=str(data.get("tool") or data.get("name") or ""),
            arguments=_coerce_arguments(data.get("arguments")),
            timestamp=data.get("timestamp"),
            result=result if isinstance(result, dict) else None,
            session_id=data.get("sessionId") or data.get("session_id") or session_id,
            agent=data.get("agent") or agent,
        )


def coerce(record: ActivityRecord | dict) -> ActivityRecord:
    """Accept either a record or a plain dict wherever a record is expected."""
    if isinstance(record, ActivityRecord):
        return record
    if isinstance(record, dict):
        return ActivityRecord.from_dict(record)
    return ActivityRecord(id="", tool="")


def sort_by_time(records) -> list[ActivityRecord]:
    """Ascending by timestamp; stable, so same-instant records keep source order."""
    return sorted((coerce(r) for r in records), key=lambda r: r.epoch)
