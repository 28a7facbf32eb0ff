"""Tests for the incremental log tailer."""
import json
import threading

from clawguard.core.parser import parse_line
from clawguard.extended.tailer import LogTailer


def tool_line(call_id, tool="exec", ts="2026-02-01T10:00:00.000Z", **arguments):
    return json.dumps({
        "type": "message",
        "id": f"m-{call_id}",
        "timestamp": ts,
        "message": {"role": "assistant", "content": [
            {"type": "toolCall", "id": call_id, "name": tool, "arguments": arguments},
        ]},
    })


def write(path, lines, mode="a"):
    with open(path, mode, encoding="utf-8") as f:
        for line in lines:
            f.write(line + "\n")


def session_file(tmp_path, name="abc123.jsonl"):
    d = tmp_path / "agents" / "main" / "sessions"
    d.mkdir(parents=True)
    return d / name


def test_poll_returns_only_new_records(tmp_path):
    path = session_file(tmp_path)
    write(path, [tool_line(f"c{i}", command=f"echo {i}") for i in range(3)])
    tailer = LogTailer()

    first = tailer.poll(str(path))
    assert [r.id for r in first] == ["c0", "c1", "c2"]
    assert tailer.poll(str(path)) == []

    write(path, [tool_line("c3"), tool_line("c4")])
    assert [r.id for r in tailer.poll(str(path))] == ["c3", "c4"]
    assert tailer.cursor(str(path)) == 5


def test_records_carry_provenance(tmp_path):
    path = session_file(tmp_path)
    write(path, [tool_line("c1", tool="read", path="/etc/passwd")])
    record = LogTailer().poll(str(path))[0]
    assert record.session_id == "abc123"
    assert record.agent == "main"
    assert record.tool == "read"
    assert record.arguments == {"path": "/etc/passwd"}


def test_bad_lines_are_skipped_and_not_retried(tmp_path):
    path = session_file(tmp_path)
    write(path, ["{not json", tool_line("c1"), '{"type": "session", "id": "s"}'])
    tailer = LogTailer()
    assert [r.id for r in tailer.poll(str(path))] == ["c1"]
    assert tailer.cursor(str(path)) == 3

    write(path, [tool_line("c2")])
    assert [r.id for r in tailer.poll(str(path))] == ["c2"]


def test_shrunk_source_resets_cursor(tmp_path):
    path = session_file(tmp_path)
    write(path, [tool_line(f"old{i}") for i in range(5)])
    tailer = LogTailer()
    assert len(tailer.poll(str(path))) == 5

    write(path, [tool_line("new0"), tool_line("new1")], mode="w")
    assert [r.id for r in tailer.poll(str(path))] == ["new0", "new1"]
    assert tailer.cursor(str(path)) == 2


def test_missing_source_yields_nothing(tmp_path):
    assert LogTailer().poll(str(tmp_path / "nope.jsonl")) == []


def test_prime_skips_existing_content(tmp_path):
    path = session_file(tmp_path)
    write(path, [tool_line("c0"), tool_line("c1")])
    tailer = LogTailer()
    assert tailer.prime(str(path)) == 2
    write(path, [tool_line("c2")])
    assert [r.id for r in tailer.poll(str(path))] == ["c2"]


def test_parser_errors_are_skipped(tmp_path):
    path = session_file(tmp_path)
    write(path, ["boom", tool_line("ok")])

    def parser(line, source_id):
        if line == "boom":
            raise ValueError("bad line")
        return parse_line(line, source_id)

    assert [r.id for r in LogTailer(parser=parser).poll(str(path))] == ["ok"]


def test_concurrent_polls_emit_each_record_once(tmp_path):
    path = session_file(tmp_path)
    write(path, [tool_line(f"c{i}") for i in range(50)])
    tailer = LogTailer()
    emitted = []
    lock = threading.Lock()

    def worker():
        records = tailer.poll(str(path))
        with lock:
            emitted.extend(r.id for r in records)

    threads = [threading.Thread(target=worker) for _ in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert sorted(emitted) == sorted(f"c{i}" for i in range(50))
