"""Tests for the alert dispatcher."""
import http.client
import logging

from clawguard.extended.alerts import AlertDispatcher

RECORD = {"id": "c1", "tool": "exec", "arguments": {"command": "sudo rm -rf /"},
          "timestamp": "2026-02-01T10:00:00.000Z"}
CRITICAL = {"level": "critical", "category": "shell", "score": 4,
            "flags": ["CRITICAL: Privileged command execution"]}
LOW = {"level": "low", "category": "shell", "score": 1, "flags": []}


class FakeWebhook:
    def __init__(self, status=200, error=None):
        self.status = status
        self.error = error
        self.calls = []

    def __call__(self, url, payload, headers, timeout):
        self.calls.append((url, payload))
        if self.error:
            raise self.error
        return self.status


def dispatcher(hook, **kwargs):
    options = {"enabled": True, "webhook_url": "https://hooks.example/x", "transport": hook}
    options.update(kwargs)
    return AlertDispatcher(**options)


def test_qualifying_record_sends_exactly_one_alert():
    hook = FakeWebhook()
    d = dispatcher(hook)
    future = d.maybe_notify(RECORD, CRITICAL)
    assert future.result(timeout=5) is True
    [(url, payload)] = hook.calls
    assert url == "https://hooks.example/x"
    assert payload["type"] == "activity_alert"
    assert payload["risk"] == {"level": "critical", "flags": CRITICAL["flags"]}
    assert payload["activity"]["tool"] == "exec"
    assert payload["message"].startswith("⚠️ CRITICAL RISK: exec")
    d.close()


def test_level_outside_allow_list_is_ignored():
    hook = FakeWebhook()
    d = dispatcher(hook, levels=("critical",))
    assert d.maybe_notify(RECORD, LOW) is None
    assert d.maybe_notify(RECORD, dict(CRITICAL, level="high")) is None
    assert hook.calls == []


def test_disabled_or_missing_url_sends_nothing():
    hook = FakeWebhook()
    assert dispatcher(hook, enabled=False).maybe_notify(RECORD, CRITICAL) is None
    assert dispatcher(hook, webhook_url=None).maybe_notify(RECORD, CRITICAL) is None
    assert hook.calls == []


def test_failure_is_logged_not_raised(caplog):
    hook = FakeWebhook(error=OSError("network down"))
    d = dispatcher(hook)
    with caplog.at_level(logging.ERROR, logger="clawguard.alerts"):
        future = d.maybe_notify(RECORD, CRITICAL)
        assert future.result(timeout=5) is False
    assert "network down" in caplog.text
    assert d.failed == 1
    assert len(hook.calls) == 1


def test_error_status_counts_as_failure():
    d = dispatcher(FakeWebhook(status=502))
    assert d.maybe_notify(RECORD, CRITICAL).result(timeout=5) is False
    assert d.failed == 1


def test_telegram_payload():
    hook = FakeWebhook()
    d = dispatcher(hook, webhook_url="https://api.telegram.org/botX/sendMessage",
                   telegram_chat_id="42")
    d.maybe_notify(RECORD, CRITICAL).result(timeout=5)
    [(_, payload)] = hook.calls
    assert payload["chat_id"] == "42"
    assert payload["text"].startswith("⚠️ CRITICAL RISK: exec")
    assert "Flags: CRITICAL: Privileged command execution" in payload["text"]


def test_telegram_without_chat_id_is_skipped(caplog):
    hook = FakeWebhook()
    d = dispatcher(hook, webhook_url="https://api.telegram.org/botX/sendMessage")
    with caplog.at_level(logging.ERROR, logger="clawguard.alerts"):
        assert d.maybe_notify(RECORD, CRITICAL) is None
    assert "telegramChatId" in caplog.text
    assert hook.calls == []


def test_sequence_alerts_follow_flag():
    sequence = {"type": "Keychain Access", "description": "Extracted credentials",
                "reason": "r", "timestamp": "t", "actions": [{"tool": "exec", "summary": "security"}]}
    hook = FakeWebhook()
    assert dispatcher(hook, on_sequences=False).notify_sequence(sequence) is None

    d = dispatcher(hook, on_sequences=True)
    d.notify_sequence(sequence).result(timeout=5)
    [(_, payload)] = hook.calls
    assert payload["type"] == "sequence_alert"
    assert payload["sequence"] is sequence


def test_malformed_webhook_response_is_logged_and_counted(caplog):
    hook = FakeWebhook(error=http.client.BadStatusLine("garbage"))
    d = dispatcher(hook)
    with caplog.at_level(logging.ERROR, logger="clawguard.alerts"):
        future = d.maybe_notify(RECORD, CRITICAL)
        assert future.result(timeout=5) is False
    assert future.exception() is None
    assert "garbage" in caplog.text
    assert d.failed == 1
    d.close()


def test_unexpected_error_is_logged_and_counted(caplog):
    d = dispatcher(FakeWebhook(error=RuntimeError("boom")))
    with caplog.at_level(logging.ERROR, logger="clawguard.alerts"):
        assert d.maybe_notify(RECORD, CRITICAL).result(timeout=5) is False
    assert "Unexpected error sending alert" in caplog.text
    assert d.failed == 1
    d.close()


def test_counters_are_exact_under_concurrent_sends():
    hook = FakeWebhook()
    d = dispatcher(hook)
    futures = [d.maybe_notify(RECORD, CRITICAL) for _ in range(200)]
    assert all(f.result(timeout=5) for f in futures)
    assert d.sent == 200
    assert d.failed == 0
    d.close()
