"""
clawguard/core/parser.py
─────────────────────────
Session log parser — turns OpenClaw JSONL session files into ActivityRecords.

Line shapes understood:

  {"type": "session", "id": ..., "version": ..., "cwd": ...}
  {"type": "message", "id": ..., "timestamp": ...,
   "message": {"content": [{"type": "toolCall", "id", "name", "arguments"}]}}
  {"type": "message", "message": {"role": "toolResult", "toolCallId", ...}}
  {"tool": "exec", "arguments": {...}, "timestamp": ...}        (flat)

Anything else, including malformed JSON, yields no records.
"""

from __future__ import annotations

import json
import logging
import os
import pathlib
from dataclasses import dataclass, field

from clawguard.core.record import ActivityRecord

logger = logging.getLogger("clawguard.parser")

RESULT_SUMMARY_CHARS = 500

SESSION_HOME_CANDIDATES = (
    os.path.join("~", ".openclaw", "agents", "main", "sessions"),
    os.path.join("~", ".moltbot", "agents", "main", "sessions"),
    os.path.join("~", ".clawdbot", "agents", "main", "sessions"),
    os.path.join("~", ".openclaw", "sessions"),
    os.path.join("~", ".moltbot", "sessions"),
    os.path.join("~", ".clawdbot", "sessions"),
)


def default_sessions_dir() -> str:
    """First existing candidate sessions directory, else the OpenClaw default."""
    for candidate in SESSION_HOME_CANDIDATES:
        path = os.path.expanduser(candidate)
        if os.path.isdir(path):
            return path
    return os.path.expanduser(SESSION_HOME_CANDIDATES[0])


def agent_from_path(path) -> str | None:
    """``~/.openclaw/agents/main/sessions/x.jsonl`` → ``main``."""
    parts = pathlib.PurePath(str(path)).parts
    if "agents" in parts:
        idx = parts.index("agents")
        if idx + 1 < len(parts):
            return parts[idx + 1]
    return None


def session_id_from_path(path) -> str:
    name = pathlib.PurePath(str(path)).name
    return name[:-len(".jsonl")] if name.endswith(".jsonl") else name


def _load_json(line):
    if isinstance(line, bytes):
        line = line.decode("utf-8", errors="replace")
    if not isinstance(line, str) or not line.strip():
        return None
    try:
        entry = json.loads(line)
    except (json.JSONDecodeError, ValueError):
        logger.debug("Skipping malformed line: %.80s", line)
        return None
    return entry if isinstance(entry, dict) else None


def _tool_calls(entry: dict) -> list[dict]:
    message = entry.get("message")
    if not isinstance(message, dict):
        return []
    content = message.get("content")
    if not isinstance(content, list):
        return []
    return [item for item in content if isinstance(item, dict) and item.get("type") == "toolCall"]


def parse_line(line, source_id=None, agent: str | None = None) -> list[ActivityRecord]:
    """
    Parse one raw line into the tool-call records it carries.

    One assistant message may hold several tool calls, so the result is a
    list; non tool-call lines give an empty list.
    """
    entry = _load_json(line)
    if entry is None:
        return []

    session_id = session_id_from_path(source_id) if source_id else None
    if agent is None and source_id:
        agent = agent_from_path(source_id)

    if entry.get("type") == "message":
        return [
            ActivityRecord(
                id=str(item.get("id") or ""),
                tool=str(item.get("name") or ""),
                arguments=ActivityRecord.from_dict(item).arguments,
                timestamp=entry.get("timestamp"),
                session_id=session_id,
                agent=agent,
            )
            for item in _tool_calls(entry)
        ]

    if "type" not in entry and isinstance(entry.get("tool"), str):
        return [ActivityRecord.from_dict(entry, session_id=session_id, agent=agent)]

    return []


def summarize_result(content):
    if not content:
        return None
    if isinstance(content, str):
        text = content
    elif isinstance(content, list):
        text = next(
            (c.get("text") for c in content
             if isinstance(c, dict) and c.get("type") == "text" and c.get("text")),
            None,
        )
        if text is None:
            return json.dumps(content)[:RESULT_SUMMARY_CHARS]
    else:
        return json.dumps(content, default=str)[:RESULT_SUMMARY_CHARS]
    if len(text) > RESULT_SUMMARY_CHARS:
        return text[:RESULT_SUMMARY_CHARS] + "..."
    return text


# ── Whole sessions ───────────────────────────────────────────────────────────

@dataclass
class SessionInfo:
    id: str
    path: str
    size: int
    modified: float
    agent: str | None = None
    sessions_dir: str | None = None

    def to_dict(self) -> dict:
        return {
            "id":          self.id,
            "filename":    os.path.basename(self.path),
            "path":        self.path,
            "size":        self.size,
            "modified":    self.modified,
            "agent":       self.agent,
            "sessionsDir": self.sessions_dir,
        }


@dataclass
class Session:
    id: str | None = None
    metadata: dict | None = None
    records: list = field(default_factory=list)


def list_sessions(dirs) -> list[SessionInfo]:
    """Session files under ``dirs``, most recently modified first."""
    if isinstance(dirs, (str, os.PathLike)):
        dirs = [dirs]
    sessions: list[SessionInfo] = []
    for sessions_dir in dirs:
        sessions_dir = os.path.expanduser(str(sessions_dir))
        try:
            names = os.listdir(sessions_dir)
        except OSError as e:
            logger.warning("Cannot list sessions in %s: %s", sessions_dir, e)
            continue
        agent = agent_from_path(sessions_dir)
        for name in names:
            if not name.endswith(".jsonl") or ".deleted." in name:
                continue
            path = os.path.join(sessions_dir, name)
            try:
                st = os.stat(path)
            except OSError:
                continue
            sessions.append(SessionInfo(
                id=session_id_from_path(name), path=path, size=st.st_size,
                modified=st.st_mtime, agent=agent, sessions_dir=sessions_dir,
            ))
    sessions.sort(key=lambda s: s.modified, reverse=True)
    return sessions


def load_session(path, agent: str | None = None) -> Session | None:
    """Parse a whole session file, pairing tool calls with their results."""
    try:
        with open(path, encoding="utf-8", errors="replace") as f:
            lines = f.read().splitlines()
    except OSError as e:
        logger.error("Error reading session %s: %s", path, e)
        return None

    if agent is None:
        agent = agent_from_path(path)
    session = Session()
    calls: list[tuple[dict, dict]] = []
    results: dict[str, dict] = {}

    for line in lines:
        entry = _load_json(line)
        if entry is None:
            continue
        if entry.get("type") == "session":
            session.id = entry.get("id")
            session.metadata = {
                "version":   entry.get("version"),
                "timestamp": entry.get("timestamp"),
                "cwd":       entry.get("cwd"),
            }
        elif entry.get("type") == "message":
            for item in _tool_calls(entry):
                calls.append((item, entry))
            message = entry.get("message") or {}
            if message.get("role") == "toolResult" and message.get("toolCallId"):
                results[message["toolCallId"]] = {
                    "content": summarize_result(message.get("content")),
                    "isError": bool(message.get("isError")),
                    "details": message.get("details"),
                }
        elif "type" not in entry and isinstance(entry.get("tool"), str):
            calls.append((entry, entry))

    session_id = session.id or session_id_from_path(path)
    for item, entry in calls:
        call_id = str(item.get("id") or "")
        session.records.append(ActivityRecord(
            id=call_id,
            tool=str(item.get("name") or item.get("tool") or ""),
            arguments=ActivityRecord.from_dict(item).arguments,
            timestamp=entry.get("timestamp"),
            result=results.get(call_id),
            session_id=session_id,
            agent=agent,
        ))
    return session


def load_activity(dirs, limit: int = 1000) -> list[ActivityRecord]:
    """Most recent ``limit`` records across every session under ``dirs``, newest first."""
    records: list[ActivityRecord] = []
    for info in list_sessions(dirs):
        session = load_session(info.path, agent=info.agent)
        if session is not None:
            records.extend(session.records)
        if len(records) >= limit:
            break
    records.sort(key=lambda r: r.epoch, reverse=True)
    return records[:limit]
