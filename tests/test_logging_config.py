"""Tests for structured logging, request context and query timing."""

import json
import logging
import sys

import pytest

from pmsy.logging_config.config import LogFormat, LoggingConfig, LogLevel
from pmsy.logging_config.context import (
    RequestContext,
    bind_user,
    generate_request_id,
    get_context_dict,
    get_request_id,
    get_user_id,
)
from pmsy.logging_config.middleware import (
    CORRELATION_ID_HEADER,
    REQUEST_ID_HEADER,
    RequestTracingMiddleware,
    inbound_trace_id,
)
from pmsy.logging_config.performance import QueryTimer
from pmsy.logging_config.setup import (
    ConsoleFormatter,
    StructuredFormatter,
    configure_logging,
    get_logger,
)


def _record(msg="test", level=logging.INFO, name="test", lineno=1, exc_info=None):
    return logging.LogRecord(
        name=name, level=level, pathname="test.py",
        lineno=lineno, msg=msg, args=(), exc_info=exc_info,
    )


@pytest.fixture(autouse=True)
def _restore_root_logger():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


class TestLoggingConfig:
    """Tests for LoggingConfig defaults."""

    def test_default_config_values(self):
        config = LoggingConfig()
        assert config.level == LogLevel.INFO
        assert config.format == LogFormat.JSON
        assert config.include_caller is True
        assert config.service_name == "pmsy-api"
        assert config.slow_query_ms == 500.0

    def test_exclude_paths_default(self):
        assert LoggingConfig().exclude_paths == ["/health"]

    def test_env_overrides_ignore_unknown_values(self, monkeypatch):
        monkeypatch.setenv("PMSY_LOG_LEVEL", "verbose")
        monkeypatch.setenv("PMSY_LOG_FORMAT", "xml")
        assert LoggingConfig().with_env_overrides() == LoggingConfig()

    def test_level_numeric(self):
        assert LogLevel.WARNING.numeric == logging.WARNING

    def test_log_format_enum_values(self):
        assert LogFormat.JSON.value == "json"
        assert LogFormat.CONSOLE.value == "console"


class TestRequestContext:
    """Tests for request-scoped context variables."""

    def test_generate_request_id_unique(self):
        ids = {generate_request_id() for _ in range(100)}
        assert len(ids) == 100

    def test_context_sets_request_id(self):
        with RequestContext(request_id="req-1"):
            assert get_request_id() == "req-1"

    def test_correlation_id_defaults_to_request_id(self):
        with RequestContext(request_id="req-1") as ctx:
            assert ctx.correlation_id == "req-1"

    def test_auto_generates_request_id(self):
        with RequestContext() as ctx:
            assert len(ctx.request_id) == 36

    def test_context_cleanup_on_exit(self):
        with RequestContext(request_id="req-1"):
            bind_user("u1", "user")
        assert get_request_id() == ""
        assert get_user_id() == ""

    def test_bind_user(self):
        with RequestContext(request_id="req-1"):
            bind_user("u1", "admin")
            assert get_context_dict() == {
                "request_id": "req-1",
                "correlation_id": "req-1",
                "user_id": "u1",
                "role": "admin",
            }

    def test_user_not_inherited_by_new_request(self):
        with RequestContext(request_id="outer"):
            bind_user("u1", "user")
            with RequestContext(request_id="inner"):
                assert get_user_id() == ""

    def test_context_dict_empty_outside(self):
        assert get_context_dict() == {}

    def test_elapsed_ms(self):
        with RequestContext() as ctx:
            assert ctx.elapsed_ms >= 0


class TestStructuredFormatter:
    """Tests for JSON structured log formatting."""

    def test_formats_as_json(self):
        parsed = json.loads(StructuredFormatter().format(_record("hello world")))
        assert parsed["message"] == "hello world"
        assert parsed["level"] == "INFO"
        assert parsed["logger"] == "test"
        assert parsed["service"] == "pmsy-api"
        assert "timestamp" in parsed

    def test_caller_info_toggle(self):
        with_caller = json.loads(StructuredFormatter().format(_record(lineno=42)))
        assert with_caller["line"] == 42
        without = json.loads(StructuredFormatter(include_caller=False).format(_record()))
        assert "line" not in without

    def test_includes_request_context(self):
        with RequestContext(request_id="ctx-test"):
            bind_user("u1", "user")
            parsed = json.loads(StructuredFormatter().format(_record()))
        assert parsed["request_id"] == "ctx-test"
        assert parsed["user_id"] == "u1"
        assert parsed["role"] == "user"

    def test_formats_exception(self):
        try:
            raise ValueError("test error")
        except ValueError:
            record = _record("failed", logging.ERROR, exc_info=sys.exc_info())
        parsed = json.loads(StructuredFormatter().format(record))
        assert parsed["exception"]["type"] == "ValueError"

    def test_includes_access_fields(self):
        record = _record()
        record.table = "tasks"
        record.operation = "select"
        record.decision = "restricted"
        record.duration_ms = 4.2
        parsed = json.loads(StructuredFormatter().format(record))
        assert parsed["table"] == "tasks"
        assert parsed["operation"] == "select"
        assert parsed["decision"] == "restricted"
        assert parsed["duration_ms"] == 4.2

    def test_ignores_unknown_extras(self):
        record = _record()
        record.sql = "SELECT secret"
        parsed = json.loads(StructuredFormatter().format(record))
        assert "sql" not in parsed


class TestConsoleFormatter:
    """Tests for colored console log formatting."""

    def test_formats_readable_output(self):
        output = ConsoleFormatter().format(_record("hello", name="pmsy.rest"))
        assert "pmsy.rest" in output
        assert "hello" in output

    def test_includes_context_info(self):
        with RequestContext(request_id="abc"):
            output = ConsoleFormatter().format(_record())
        assert "request_id=abc" in output

    def test_has_color_codes(self):
        assert "\033[31m" in ConsoleFormatter().format(_record(level=logging.ERROR))


class TestConfigureLogging:
    """Tests for the configure_logging setup function."""

    def test_json_format(self):
        configure_logging(LoggingConfig(format=LogFormat.JSON))
        root = logging.getLogger()
        assert len(root.handlers) == 1
        assert isinstance(root.handlers[0].formatter, StructuredFormatter)

    def test_console_format(self):
        configure_logging(LoggingConfig(format=LogFormat.CONSOLE))
        assert isinstance(logging.getLogger().handlers[0].formatter, ConsoleFormatter)

    def test_sets_log_level(self):
        configure_logging(LoggingConfig(level=LogLevel.DEBUG))
        assert logging.getLogger().level == logging.DEBUG

    def test_quiets_sql_echo(self):
        configure_logging()
        assert logging.getLogger("sqlalchemy.engine").level >= logging.WARNING

    def test_env_var_override_level(self, monkeypatch):
        monkeypatch.setenv("PMSY_LOG_LEVEL", "debug")
        config = configure_logging(LoggingConfig(level=LogLevel.ERROR))
        assert config.level == LogLevel.DEBUG
        assert logging.getLogger().level == logging.DEBUG

    def test_env_var_override_format(self, monkeypatch):
        monkeypatch.setenv("PMSY_LOG_FORMAT", "CONSOLE")
        configure_logging(LoggingConfig(format=LogFormat.JSON))
        assert isinstance(logging.getLogger().handlers[0].formatter, ConsoleFormatter)

    def test_get_logger_returns_logger(self):
        logger = get_logger("pmsy.test")
        assert isinstance(logger, logging.Logger)
        assert logger.name == "pmsy.test"


class TestQueryTimer:
    """Tests for slow query reporting."""

    def test_records_duration(self):
        with QueryTimer("select", table="tasks") as timer:
            pass
        assert timer.duration_ms >= 0

    def test_slow_query_warning(self, caplog):
        with caplog.at_level(logging.DEBUG, logger="pmsy.logging_config.performance"):
            with QueryTimer("select", table="tasks", threshold_ms=0.000001):
                sum(range(1000))
        (record,) = [r for r in caplog.records if r.levelno == logging.WARNING]
        assert "Slow query: select on tasks" in record.getMessage()
        assert record.table == "tasks"

    def test_fast_query_is_debug(self, caplog):
        with caplog.at_level(logging.DEBUG, logger="pmsy.logging_config.performance"):
            with QueryTimer("count", table="tasks", threshold_ms=60_000):
                pass
        assert all(r.levelno == logging.DEBUG for r in caplog.records)

    def test_exception_propagates(self):
        with pytest.raises(RuntimeError):
            with QueryTimer("select", table="tasks"):
                raise RuntimeError("boom")


class TestMiddleware:
    """Tests for request tracing middleware setup."""

    def test_middleware_default_config(self):
        middleware = RequestTracingMiddleware(app=None)
        assert middleware.config.exclude_paths == ["/health"]

    def test_middleware_custom_config(self):
        config = LoggingConfig(exclude_paths=["/metrics"])
        assert RequestTracingMiddleware(app=None, config=config).config is config

    def test_header_constants(self):
        assert REQUEST_ID_HEADER == "X-Request-ID"
        assert CORRELATION_ID_HEADER == "X-Correlation-ID"

    def test_inbound_trace_id_accepted(self):
        headers = [(b"x-request-id", b"req-123")]
        assert inbound_trace_id(headers, REQUEST_ID_HEADER) == "req-123"

    def test_inbound_trace_id_rejects_unsafe_values(self):
        assert inbound_trace_id([(b"x-request-id", b"a b\nc")], REQUEST_ID_HEADER) is None
        assert inbound_trace_id([(b"x-request-id", b"x" * 200)], REQUEST_ID_HEADER) is None

    def test_inbound_trace_id_missing(self):
        assert inbound_trace_id([], CORRELATION_ID_HEADER) is None
