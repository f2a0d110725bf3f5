import json
import logging

from kfbot.logging_config import JSONFormatter, LoggerAdapter, get_logger


def _record(**extra):
    record = logging.LogRecord("kfbot.test", logging.INFO, __file__, 1, "hello %s", ("world",), None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestJSONFormatter:
    def test_plain_record(self):
        entry = json.loads(JSONFormatter().format(_record()))

        assert entry["message"] == "hello world"
        assert entry["level"] == "INFO"
        assert entry["logger"] == "kfbot.test"
        assert "context" not in entry

    def test_context_keeps_unicode(self):
        output = JSONFormatter().format(_record(context={"text": "笔法"}))

        assert "笔法" in output
        assert json.loads(output)["context"] == {"text": "笔法"}


class TestLoggerAdapter:
    def test_merges_bound_and_call_context(self):
        adapter = LoggerAdapter(get_logger("test"), {"open_kfid": "wk-1", "msgid": "m1"})

        msg, kwargs = adapter.process("Reply sent", {"extra": {"context": {"msgid": "m2", "channel": "voice"}}})

        assert msg == "Reply sent"
        assert kwargs["extra"]["context"] == {"open_kfid": "wk-1", "msgid": "m2", "channel": "voice"}

    def test_bound_context_only(self):
        adapter = LoggerAdapter(get_logger("test"), {"touser": "wm-user"})

        _, kwargs = adapter.process("x", {})

        assert kwargs["extra"] == {"context": {"touser": "wm-user"}}

    def test_logger_namespace(self):
        assert get_logger("sync_service").name == "kfbot.sync_service"
