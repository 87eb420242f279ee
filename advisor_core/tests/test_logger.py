import json
import logging

from advisor_core.infrastructure.logging.logger import JsonFormatter, log_event


def _record(message, **extra):
    record = logging.LogRecord("advisor_core", logging.INFO, __file__, 1, message, None, None)
    record.extra = extra
    return record


def test_redaction_hides_content_fields():
    record = _record("turn.start", trace_id="tr-1", text="I have chest pain after running", new_conversation=True)
    out = json.loads(JsonFormatter(redact_content=True).format(record))
    assert out["text"] == "[redacted 31 chars]"
    assert "chest pain" not in json.dumps(out)
    assert out["trace_id"] == "tr-1"
    assert out["new_conversation"] is True
    assert out["msg"] == "turn.start"


def test_content_is_kept_without_redaction():
    record = _record("turn.conversation_created", title="Sleep notes", conversation_id="c-1")
    out = json.loads(JsonFormatter().format(record))
    assert out["title"] == "Sleep notes"
    assert out["level"] == "INFO"
    assert out["ts"].endswith("Z")


def test_long_message_is_truncated_when_redacting():
    out = json.loads(JsonFormatter(redact_content=True).format(_record("x" * 100)))
    assert out["msg"] == "x" * 64


def test_log_event_merges_context_and_fields(caplog):
    with caplog.at_level(logging.INFO, logger="advisor_core"):
        log_event(logging.WARNING, "turn.fallback", {"trace_id": "tr-2"}, code="LLM_TIMEOUT")
    record = caplog.records[-1]
    assert record.levelno == logging.WARNING
    assert record.extra == {"trace_id": "tr-2", "code": "LLM_TIMEOUT"}
