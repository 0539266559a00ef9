import json
import logging

from tgsession.config import Settings
from tgsession.logging_config import JSONFormatter, conversation_logger, get_logger, setup_logging


def _record(msg="hello", context=None):
    record = logging.LogRecord("tgsession.test", logging.INFO, __file__, 1, msg, None, None)
    if context is not None:
        record.context = context
    return record


class TestJSONFormatter:
    def test_basic_fields(self):
        payload = json.loads(JSONFormatter().format(_record()))

        assert payload["level"] == "INFO"
        assert payload["logger"] == "tgsession.test"
        assert payload["message"] == "hello"
        assert "context" not in payload

    def test_context_is_included(self):
        payload = json.loads(JSONFormatter().format(_record(context={"conversation": "1:2", "state": "меню"})))
        assert payload["context"] == {"conversation": "1:2", "state": "меню"}


class TestLoggers:
    def test_get_logger_namespace(self):
        assert get_logger("queue_service").name == "tgsession.queue_service"

    def test_conversation_logger_merges_context(self, caplog):
        log = conversation_logger(get_logger("dispatcher"), chat_id=100, user_id=200)

        with caplog.at_level(logging.INFO, logger="tgsession.dispatcher"):
            log.info("Routing command", context={"command": "start"})

        assert caplog.records[-1].context == {"chat_id": 100, "user_id": 200, "command": "start"}

    def test_setup_logging_installs_json_handler(self):
        root = logging.getLogger()
        saved_handlers, saved_level = root.handlers[:], root.level
        try:
            setup_logging("debug")

            assert root.level == logging.DEBUG
            assert isinstance(root.handlers[0].formatter, JSONFormatter)
            assert logging.getLogger("httpx").level == logging.WARNING
        finally:
            root.handlers[:] = saved_handlers
            root.setLevel(saved_level)


class TestSettings:
    def test_env_overrides(self, monkeypatch):
        monkeypatch.setenv("BOT_TOKEN", "42:env")
        monkeypatch.setenv("UPDATE_QUEUE_WAIT_SECONDS", "3")
        monkeypatch.setenv("STORE_BACKEND", "memory")

        settings = Settings()

        assert settings.bot_token == "42:env"
        assert settings.update_queue_wait_seconds == 3.0
        assert settings.store_backend == "memory"
        assert settings.max_state_transitions == 32
