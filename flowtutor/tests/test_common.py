"""
Tests for the shared infrastructure: configuration, errors, validation,
clocks, serialization, logging and the Redis client factory.
"""

import datetime
import enum
import json
import logging
import unittest
from unittest.mock import AsyncMock, patch

import pydantic
import pytest
from redis.exceptions import RedisError

from flowtutor.common import redis as redis_module
from flowtutor.common.clock import FixedClock, SystemClock, calendar_date
from flowtutor.common.config import AppConfig, LedgerConfig, LoggingConfig, RedisConfig, reload_config
from flowtutor.common.error_handling import (
    ConfigurationError,
    ConflictError,
    ErrorCode,
    FlowTutorError,
    NotFoundError,
    StorageUnavailableError,
    TransientError,
    ValidationError,
    convert_exception,
    log_error,
    retry,
)
from flowtutor.common.logger import JsonFormatter, LoggerAdapter, configure_logger, with_context
from flowtutor.common.serialization import serialize, to_json
from flowtutor.common.validation import (
    require_enum,
    require_non_empty,
    require_positive_int,
    require_probability,
    require_range,
)

UTC = datetime.timezone.utc


class Color(enum.Enum):
    RED = "red"
    BLUE = "blue"


class TestConfig(unittest.TestCase):
    """Test configuration loading."""

    def test_defaults(self):
        config = AppConfig()
        self.assertTrue(config.storage.is_memory)
        self.assertFalse(config.redis.enabled)
        self.assertEqual(config.ledger.max_retries, 5)
        self.assertEqual(config.ledger.reference_timezone, "UTC")
        self.assertEqual(config.ledger.calendar_days, 30)

    def test_invalid_values(self):
        with self.assertRaises(pydantic.ValidationError):
            LedgerConfig(reference_timezone="Mars/Olympus_Mons")
        with self.assertRaises(pydantic.ValidationError):
            LedgerConfig(max_retries=-1)

    def test_redis_connection_string(self):
        config = RedisConfig(host="cache", port=6380, db=2, password="secret", use_ssl=True)
        self.assertEqual(config.connection_string, "rediss://:secret@cache:6380/2")

    def test_tzinfo(self):
        self.assertEqual(LedgerConfig(reference_timezone="Asia/Seoul").tzinfo.key, "Asia/Seoul")


def test_config_from_yaml_file(tmp_path):
    path = tmp_path / "flowtutor.yaml"
    path.write_text(
        "storage:\n"
        "  url: sqlite+aiosqlite:///ledger.db\n"
        "ledger:\n"
        "  max_retries: 3\n"
        "  reference_timezone: Asia/Seoul\n"
    )

    config = reload_config(str(path))
    assert config.storage.url == "sqlite+aiosqlite:///ledger.db"
    assert config.ledger.max_retries == 3
    assert config.ledger.reference_timezone == "Asia/Seoul"


def test_config_from_json_file(tmp_path):
    path = tmp_path / "flowtutor.json"
    path.write_text(json.dumps({"redis": {"enabled": True, "host": "cache"}}))

    config = reload_config(str(path))
    assert config.redis.enabled is True
    assert config.redis.host == "cache"


def test_environment_beats_config_file(tmp_path, monkeypatch):
    path = tmp_path / "flowtutor.yaml"
    path.write_text("ledger:\n  max_retries: 3\n")
    monkeypatch.setenv("FLOWTUTOR_LEDGER__MAX_RETRIES", "9")

    config = reload_config(str(path))
    assert config.ledger.max_retries == 9


def test_missing_config_file_uses_defaults(tmp_path):
    config = reload_config(str(tmp_path / "absent.yaml"))
    assert config.ledger.max_retries == 5


def test_malformed_config_file_raises(tmp_path):
    path = tmp_path / "flowtutor.json"
    path.write_text("{not json")

    with pytest.raises(ConfigurationError) as excinfo:
        reload_config(str(path))
    assert excinfo.value.code == ErrorCode.CONFIGURATION_ERROR
    assert excinfo.value.config_key == "config_path"


class TestErrors(unittest.TestCase):
    """Test the error taxonomy."""

    def test_codes(self):
        self.assertEqual(ValidationError("bad", field="amount").code, ErrorCode.VALIDATION_ERROR)
        self.assertEqual(NotFoundError("plant", "p1").code, ErrorCode.NOT_FOUND_ERROR)
        self.assertEqual(ConflictError("record", "k").code, ErrorCode.CONFLICT_ERROR)
        self.assertEqual(TransientError("grant_xp", attempts=6).code, ErrorCode.TRANSIENT_ERROR)
        self.assertEqual(StorageUnavailableError("commit").code, ErrorCode.STORAGE_UNAVAILABLE)

    def test_storage_unavailable_is_transient(self):
        self.assertIsInstance(StorageUnavailableError("commit"), TransientError)

    def test_str(self):
        self.assertEqual(str(NotFoundError("plant", "p1")), "[not_found_error] plant with ID p1 not found")

    def test_to_dict(self):
        error = ValidationError("amount must be positive", field="amount")
        data = error.to_dict()
        self.assertEqual(data["code"], "validation_error")
        self.assertEqual(data["details"], {"field": "amount"})
        self.assertEqual(data["exception_type"], "ValidationError")

    def test_cause_in_details(self):
        error = TransientError("grant_xp", attempts=6, cause=ConflictError("record", "k"))
        data = error.to_dict()
        self.assertEqual(data["details"]["attempts"], 6)
        self.assertEqual(data["details"]["cause"]["type"], "ConflictError")
        self.assertEqual(data["severity"], "error")

    def test_convert_exception(self):
        original = ConflictError("record", "k")
        self.assertIs(convert_exception(original, context={"user_id": "alice"}), original)
        self.assertEqual(original.context, {"user_id": "alice"})

        converted = convert_exception(KeyError("x"))
        self.assertIsInstance(converted, FlowTutorError)
        self.assertIsInstance(converted.cause, KeyError)


def test_log_error(caplog):
    with caplog.at_level(logging.ERROR, logger="flowtutor.errors"):
        logged = log_error(NotFoundError("plant", "p1"), include_stack_trace=False, context={"user_id": "alice"})
        wrapped = log_error(KeyError("x"), include_stack_trace=False)

    assert isinstance(logged, NotFoundError)
    assert isinstance(wrapped.cause, KeyError)
    assert "not_found_error" in caplog.text
    assert "user_id=alice" in caplog.text
    assert "cause=KeyError" in caplog.text


class TestRetry(unittest.TestCase):
    """Test the retry decorator."""

    def test_retries_then_succeeds(self):
        calls = []

        @retry(max_retries=3, retry_delay=0.0, jitter=0.0, retry_exceptions=(ConflictError,))
        def flaky():
            calls.append(1)
            if len(calls) < 3:
                raise ConflictError("record", "k")
            return "ok"

        self.assertEqual(flaky(), "ok")
        self.assertEqual(len(calls), 3)

    def test_gives_up(self):
        calls = []

        @retry(max_retries=2, retry_delay=0.0, jitter=0.0)
        def always_fails():
            calls.append(1)
            raise RuntimeError("nope")

        with self.assertRaises(RuntimeError):
            always_fails()
        self.assertEqual(len(calls), 3)

    def test_ignored_exceptions_are_not_retried(self):
        calls = []

        @retry(max_retries=5, retry_delay=0.0, ignore_exceptions=(ValidationError,))
        def invalid():
            calls.append(1)
            raise ValidationError("bad")

        with self.assertRaises(ValidationError):
            invalid()
        self.assertEqual(len(calls), 1)


@pytest.mark.asyncio
async def test_async_retry():
    calls = []
    retried = []

    @retry(
        max_retries=3,
        retry_delay=0.0,
        jitter=0.0,
        on_retry=lambda attempt, error, delay: retried.append(attempt)
    )
    async def flaky():
        calls.append(1)
        if len(calls) < 2:
            raise ConflictError("record", "k")
        return "ok"

    assert await flaky() == "ok"
    assert retried == [1]


class TestValidation(unittest.TestCase):
    """Test input validators."""

    def test_require_range(self):
        self.assertEqual(require_range(0.5, "x", 0, 1), 0.5)
        for bad in (-0.1, 1.1, float("nan"), float("inf"), "0.5", None, True):
            with self.assertRaises(ValidationError):
                require_range(bad, "x", 0, 1)

    def test_require_probability(self):
        self.assertEqual(require_probability(1, "p"), 1.0)
        with self.assertRaises(ValidationError):
            require_probability(2, "p")

    def test_require_positive_int(self):
        self.assertEqual(require_positive_int(3, "n"), 3)
        self.assertEqual(require_positive_int(0, "n", allow_zero=True), 0)
        for bad in (0, -1, 1.0, True, "3"):
            with self.assertRaises(ValidationError):
                require_positive_int(bad, "n")

    def test_require_non_empty(self):
        self.assertEqual(require_non_empty("alice", "user_id"), "alice")
        with self.assertRaises(ValidationError) as ctx:
            require_non_empty("   ", "user_id")
        self.assertEqual(ctx.exception.field, "user_id")

    def test_require_enum(self):
        self.assertIs(require_enum(Color.RED, Color, "color"), Color.RED)
        self.assertIs(require_enum("blue", Color, "color"), Color.BLUE)
        self.assertIs(require_enum("red".upper(), Color, "color"), Color.RED)
        with self.assertRaises(ValidationError):
            require_enum("green", Color, "color")


class TestClock(unittest.TestCase):
    """Test clocks and calendar dates."""

    def test_fixed_clock(self):
        clock = FixedClock(datetime.datetime(2024, 1, 1, 23, 30))
        self.assertEqual(clock.now().tzinfo, UTC)
        clock.advance(hours=1)
        self.assertEqual(clock.now(), datetime.datetime(2024, 1, 2, 0, 30, tzinfo=UTC))

    def test_system_clock_is_aware(self):
        self.assertIsNotNone(SystemClock().now().tzinfo)

    def test_calendar_date(self):
        moment = datetime.datetime(2024, 3, 1, 16, 0, tzinfo=UTC)
        self.assertEqual(calendar_date(moment, UTC), datetime.date(2024, 3, 1))
        self.assertEqual(
            calendar_date(moment, LedgerConfig(reference_timezone="Asia/Seoul").tzinfo),
            datetime.date(2024, 3, 2)
        )


class TestSerialization(unittest.TestCase):
    """Test JSON-safe serialization."""

    def test_serialize(self):
        data = serialize({
            "when": datetime.datetime(2024, 1, 1, tzinfo=UTC),
            "day": datetime.date(2024, 1, 1),
            "color": Color.RED,
            "tags": {"b", "a"},
        })
        self.assertEqual(data, {
            "when": "2024-01-01T00:00:00+00:00",
            "day": "2024-01-01",
            "color": "red",
            "tags": ["a", "b"],
        })

    def test_to_json(self):
        self.assertEqual(json.loads(to_json({"a": None, "b": 1}, exclude_none=True)), {"b": 1})


class TestLogging(unittest.TestCase):
    """Test the JSON formatter and context adapters."""

    def test_json_formatter_includes_context(self):
        logger = logging.getLogger("flowtutor.tests.json")
        adapter = LoggerAdapter(logger, {"user_id": "alice"}).with_context(plant_id="p1")
        _, kwargs = adapter.process("watered", {})

        record = logger.makeRecord(
            logger.name, logging.INFO, __file__, 1, "watered", None, None, extra=kwargs["extra"]
        )
        payload = json.loads(JsonFormatter().format(record))

        self.assertEqual(payload["message"], "watered")
        self.assertEqual(payload["user_id"], "alice")
        self.assertEqual(payload["plant_id"], "p1")

    def test_with_context(self):
        adapter = with_context("flowtutor.tests", user_id="bob")
        self.assertEqual(adapter.extra, {"user_id": "bob"})
        self.assertEqual(adapter.logger.name, "flowtutor.tests")


def test_configure_logger_writes_json_file(tmp_path):
    log_file = tmp_path / "logs" / "flowtutor.log"
    settings = LoggingConfig(level="debug", use_json=True, file_path=str(log_file))

    logger = configure_logger(settings, name="flowtutor.tests.file")
    configure_logger(settings, name="flowtutor.tests.file")
    assert len(logger.handlers) == 2

    LoggerAdapter(logger, {"user_id": "alice"}).info("seeded")
    for handler in logger.handlers:
        handler.flush()

    payload = json.loads(log_file.read_text().splitlines()[-1])
    assert payload["message"] == "seeded"
    assert payload["level"] == "INFO"
    assert payload["user_id"] == "alice"


def test_redis_client_disabled():
    assert redis_module.get_redis_client(RedisConfig(enabled=False)) is None


@pytest.mark.asyncio
async def test_redis_client_singleton_and_reset():
    await redis_module.reset_redis_client()

    client = redis_module.get_redis_client(RedisConfig(enabled=True, host="cache"))
    assert client is redis_module.get_redis_client(RedisConfig(enabled=True, host="other"))

    with patch.object(client, "aclose", AsyncMock(side_effect=RedisError("gone"))):
        await redis_module.reset_redis_client()

    assert redis_module._redis_client is None
