"""Tests for the logging integration: record conversion, context and helpers."""

import logging
import threading
from unittest.mock import MagicMock

from cls_shipper.config import LoggingConfig
from cls_shipper.errors import AppError
from cls_shipper.log_fields import ErrorCategory, LogFields
from cls_shipper.logger import (
    CLSHandler,
    LogContextFilter,
    active_transport,
    configure_logging,
    create_log_context,
    format_safe_params,
    get_log_context,
    log_command_input,
    log_context,
    log_error_with_category,
    make_append_fields_fn,
    record_to_entry,
    reset_log_context,
    serialize_error,
    set_log_context,
    set_log_context_from_message,
    shutdown_logging,
)

from conftest import RecordingClient


def _record(level=logging.INFO, msg="hello %s", args=("world",), name="app.module", exc_info=None, **extra):
    record = logging.LogRecord(name, level, __file__, 10, msg, args, exc_info)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestRecordToEntry:
    def test_basic_fields(self):
        record = _record()

        entry = record_to_entry(record)

        assert entry.message == "hello world"
        assert entry.level == "info"
        assert entry.module == "app.module"
        assert entry.timestamp == int(record.created * 1000)
        assert entry.data is None

    def test_level_vocabulary(self):
        assert record_to_entry(_record(level=logging.WARNING)).level == "warn"
        assert record_to_entry(_record(level=logging.CRITICAL)).level == "fatal"
        assert record_to_entry(_record(level=logging.DEBUG)).level == "debug"

    def test_extra_fields_become_data(self):
        entry = record_to_entry(_record(requestId="r-1", durationMs=12, skipped=None))

        assert entry.data == {"requestId": "r-1", "durationMs": 12}

    def test_exc_info_is_serialized(self):
        try:
            raise ValueError("bad value")
        except ValueError as exc:
            record = _record(level=logging.ERROR, exc_info=(type(exc), exc, exc.__traceback__))

        error = record_to_entry(record).data[LogFields.ERROR]

        assert error["name"] == "ValueError"
        assert error["message"] == "bad value"
        assert "Traceback" in error["stack"]

    def test_exception_extra_is_serialized(self):
        entry = record_to_entry(_record(error=AppError("not found", status_code=404)))

        error = entry.data["error"]
        assert error["name"] == "AppError"
        assert error["status_code"] == 404
        assert error["is_operational"] is True


class TestSerializeError:
    def test_custom_attributes_kept(self):
        error = AppError("teapot", status_code=418)

        result = serialize_error(error)

        assert result["message"] == "teapot"
        assert result["status_code"] == 418
        assert "stack" in result


class TestLogContext:
    def test_empty_by_default(self):
        assert get_log_context() == {}

    def test_set_and_reset(self):
        token = set_log_context({LogFields.MESSAGE_ID: "m-1", LogFields.CONNECTION_ID: None})
        try:
            assert get_log_context() == {LogFields.MESSAGE_ID: "m-1"}
        finally:
            reset_log_context(token)
        assert get_log_context() == {}

    def test_context_manager_merges_and_restores(self):
        with log_context(messageId="m-1"):
            with log_context(conversationId="c-1"):
                assert get_log_context() == {"messageId": "m-1", "conversationId": "c-1"}
            assert get_log_context() == {"messageId": "m-1"}
        assert get_log_context() == {}

    def test_from_message(self):
        message = {"meta": {"messageId": "m-7", "conversationId": "c-7"}, "payload": {}}
        token = set_log_context_from_message(message, connection_id="conn-1")
        try:
            assert get_log_context() == {
                "messageId": "m-7",
                "conversationId": "c-7",
                "connectionId": "conn-1",
            }
        finally:
            reset_log_context(token)

    def test_filter_copies_context_to_record(self):
        record = _record()
        with log_context(messageId="m-2"):
            assert LogContextFilter().filter(record) is True

        assert record.messageId == "m-2"
        assert record_to_entry(record).data == {"messageId": "m-2"}


class TestCLSHandler:
    def test_emit_writes_entry_with_context(self):
        transport = MagicMock()
        handler = CLSHandler(transport)

        with log_context(conversationId="c-3"):
            handler.handle(_record(requestId="r-3"))

        transport.write.assert_called_once()
        entry = transport.write.call_args.args[0]
        assert entry.message == "hello world"
        assert entry.data == {"requestId": "r-3", "conversationId": "c-3"}

    def test_internal_loggers_not_mirrored(self):
        transport = MagicMock()
        handler = CLSHandler(transport)

        handler.handle(_record(name="cls_shipper.transport"))
        handler.handle(_record(name="urllib3.connectionpool"))

        transport.write.assert_not_called()

    def test_close_closes_transport(self):
        transport = MagicMock()
        handler = CLSHandler(transport)

        handler.close()

        transport.close.assert_called_once()

    def test_records_reach_cls_batch(self, make_transport):
        transport, client = make_transport()
        log = logging.getLogger("test.cls.handler")
        handler = CLSHandler(transport)
        log.addHandler(handler)
        try:
            log.warning("disk at %d%%", 91, extra={"mount": "/data"})
            assert transport.flush() is True
        finally:
            log.removeHandler(handler)

        contents = client.groups[0].logs[0].contents
        assert contents["level"] == "warn"
        assert contents["message"] == "disk at 91%"
        assert contents["module"] == "test.cls.handler"
        assert contents["mount"] == "/data"

    def test_uncopyable_extra_is_mirrored(self, make_transport, capsys):
        transport, client = make_transport()
        log = logging.getLogger("test.cls.handler.lock")
        handler = CLSHandler(transport)
        log.addHandler(handler)
        try:
            log.warning("conn state", extra={"lock": threading.Lock()})
        finally:
            log.removeHandler(handler)

        assert "Logging error" not in capsys.readouterr().err
        assert transport.pending_count == 1
        assert transport.flush() is True
        assert client.groups[0].logs[0].contents["message"] == "conn state"


class TestConfigureLogging:
    def test_without_cls_config_returns_none(self, restore_root_logger):
        assert configure_logging(LoggingConfig(level="INFO")) is None
        assert active_transport() is None

    def test_installs_and_shuts_down_handler(self, restore_root_logger, make_config):
        client = RecordingClient()
        transport = configure_logging(LoggingConfig(level="INFO"), make_config(), client=client)
        try:
            assert transport is not None
            assert active_transport() is transport

            logging.getLogger("test.configure").info("mirrored")
        finally:
            shutdown_logging()

        assert active_transport() is None
        assert transport.closed is True
        messages = [m for batch in client.batches() for m in batch]
        assert "mirrored" in messages

    def test_append_fields(self):
        fields = make_append_fields_fn(
            LoggingConfig(app_env="staging", app_id="demo", app_version="2.0.0")
        )()

        assert fields["appId"] == "demo"
        assert fields["version"] == "2.0.0"
        assert fields["environment"] == "staging"
        assert fields["hostname"]


class TestFormatSafeParams:
    def test_truncates_long_strings(self):
        result = format_safe_params("x" * 1005, max_length=1000)

        assert result.startswith("x" * 1000)
        assert result.endswith("... [truncated 5 chars]")

    def test_short_strings_untouched(self):
        assert format_safe_params("short") == "short"

    def test_redacts_sensitive_keys_recursively(self):
        params = {
            "url": "https://example.com",
            "apiKey": "sk-123",
            "nested": {"Password": "hunter2", "items": [{"accessToken": "t"}]},
        }

        result = format_safe_params(params)

        assert result == {
            "url": "https://example.com",
            "apiKey": "[REDACTED]",
            "nested": {"Password": "[REDACTED]", "items": [{"accessToken": "[REDACTED]"}]},
        }
        assert params["apiKey"] == "sk-123"

    def test_none_and_scalars_pass_through(self):
        assert format_safe_params(None) is None
        assert format_safe_params(42) == 42


class TestStructuredHelpers:
    def test_create_log_context_adds_timestamp(self):
        result = create_log_context({"eventType": "x"})

        assert result["eventType"] == "x"
        assert isinstance(result["timestamp"], int)

    def test_log_command_input(self, caplog):
        message = {
            "meta": {"messageId": "m-1", "conversationId": "c-1"},
            "payload": {"action": "aiTap", "params": {"prompt": "login", "token": "abc"}},
        }

        with caplog.at_level(logging.INFO, logger="test.commands"):
            log_command_input(logging.getLogger("test.commands"), message, connection_id="conn-1")

        record = caplog.records[-1]
        assert record.getMessage() == "Received command: aiTap"
        assert record.eventType == "command.receive"
        assert record.clientType == "web"
        assert record.connectionId == "conn-1"
        assert record.commandParams == {"prompt": "login", "token": "[REDACTED]"}
        assert record.commandOrigin == ""

    def test_log_error_with_category(self, caplog):
        error = AppError("upstream down", status_code=502)

        with caplog.at_level(logging.ERROR, logger="test.errors"):
            log_error_with_category(
                logging.getLogger("test.errors"),
                error,
                ErrorCategory.DEPENDENCY,
                {"path": "/api/logs"},
            )

        record = caplog.records[-1]
        assert record.levelno == logging.ERROR
        assert record.errorCategory == "dependency"
        assert record.errorCode == 502
        assert record.error is error
        assert record.path == "/api/logs"
        assert record.eventType == "error.occurred"
