"""Tests for logging formatters, filters and setup."""

import io
import json
import logging
import sys

import pytest

from rider_matching.core.correlation import CorrelationFilter, with_correlation
from rider_matching.match_logging import setup_logging
from rider_matching.match_logging.filters import PIIFilter
from rider_matching.match_logging.formatters import DevFormatter, JSONFormatter
from rider_matching.matching.engine import MatchingEngine
from rider_matching.settings import MatchingSettings
from tests.factories import FakeLocator, make_candidate, make_request


def make_record(msg: str, **extra) -> logging.LogRecord:
    record = logging.LogRecord(
        name="rider_matching.test",
        level=logging.INFO,
        pathname="test.py",
        lineno=10,
        msg=msg,
        args=(),
        exc_info=None,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    yield root
    root.handlers[:] = handlers
    root.setLevel(level)


@pytest.mark.unit
class TestPIIFilter:
    def test_masks_email(self):
        record = make_record("rider john@example.com requested a trip")
        PIIFilter().filter(record)

        assert "[EMAIL]" in record.msg
        assert "john@example.com" not in record.msg

    def test_masks_phone(self):
        record = make_record("rider phone 555-123-4567")
        PIIFilter().filter(record)

        assert "[PHONE]" in record.msg
        assert "555-123-4567" not in record.msg

    def test_leaves_ids_untouched(self):
        record = make_record("Matching for trip trip-42 finished: driver=driver-7")
        PIIFilter().filter(record)

        assert record.msg == "Matching for trip trip-42 finished: driver=driver-7"

    def test_always_passes_record(self):
        assert PIIFilter().filter(make_record("anything"))

    def test_masks_string_arguments(self):
        record = make_record("Starting matching for rider %s on trip %s")
        record.args = ("jane@example.com", 42)
        PIIFilter().filter(record)

        assert record.getMessage() == "Starting matching for rider [EMAIL] on trip 42"

    def test_masks_rider_id_attribute(self):
        record = make_record("matched", rider_id="555-123-4567")
        PIIFilter().filter(record)

        assert record.rider_id == "[PHONE]"


@pytest.mark.unit
class TestJSONFormatter:
    def test_base_fields(self):
        output = json.loads(JSONFormatter(environment="test").format(make_record("hello")))

        assert output["level"] == "INFO"
        assert output["logger"] == "rider_matching.test"
        assert output["message"] == "hello"
        assert output["env"] == "test"
        assert "timestamp" in output

    def test_context_fields(self):
        record = make_record("matched", trip_id="trip-1", driver_id="d1", correlation_id="c1")

        output = json.loads(JSONFormatter().format(record))

        assert output["trip_id"] == "trip-1"
        assert output["driver_id"] == "d1"
        assert output["correlation_id"] == "c1"
        assert "rider_id" not in output

    def test_exception_included(self):
        try:
            raise RuntimeError("boom")
        except RuntimeError:
            record = make_record("failed")
            record.exc_info = sys.exc_info()

        output = json.loads(JSONFormatter().format(record))

        assert "RuntimeError: boom" in output["exception"]


@pytest.mark.unit
class TestDevFormatter:
    def test_includes_correlation_id(self):
        record = make_record("hello")
        with with_correlation("trip-9"):
            CorrelationFilter().filter(record)

        output = DevFormatter().format(record)

        assert "[corr=trip-9]" in output
        assert "rider_matching.test: hello" in output

    def test_appends_rider_and_driver(self):
        record = make_record("matched", rider_id="rider-1", driver_id="driver-7")

        output = DevFormatter().format(record)

        assert output.endswith("matched [rider_id=rider-1 driver_id=driver-7]")
        assert "[corr=-]" in output

    def test_omits_missing_parties(self):
        output = DevFormatter().format(make_record("hello"))

        assert output.endswith("rider_matching.test: hello")


@pytest.mark.unit
class TestSetupLogging:
    def test_text_output(self, restore_root_logger, capsys):
        setup_logging(level="DEBUG")

        logging.getLogger("rider_matching.test").info("call 555-123-4567")

        captured = capsys.readouterr().out
        assert "[PHONE]" in captured
        assert "[corr=-]" in captured
        assert restore_root_logger.level == logging.DEBUG

    def test_json_output(self, restore_root_logger, capsys):
        setup_logging(level="INFO", json_output=True, environment="production")

        with with_correlation("trip-1", trip_id="trip-1"):
            logging.getLogger("rider_matching.test").info("matched")

        output = json.loads(capsys.readouterr().out.strip().splitlines()[-1])
        assert output["env"] == "production"
        assert output["trip_id"] == "trip-1"
        assert output["correlation_id"] == "trip-1"

    def test_quiets_http_client_loggers(self, restore_root_logger):
        setup_logging()

        assert logging.getLogger("httpx").level == logging.WARNING
        assert logging.getLogger("httpcore").level == logging.WARNING


@pytest.mark.unit
class TestMatchingLogContext:
    async def test_engine_records_carry_rider_and_driver(self, restore_root_logger):
        stream = io.StringIO()
        setup_logging(level="INFO", json_output=True, stream=stream)
        settings = MatchingSettings(retry_delay_ms=0, initial_search_radius_km=10.0)
        engine = MatchingEngine(
            locator=FakeLocator([[make_candidate("driver-7")]]), settings=settings
        )

        await engine.find_match(make_request("trip-9"))

        records = [json.loads(line) for line in stream.getvalue().splitlines()]
        engine_records = [r for r in records if r["logger"] == "rider_matching.matching.engine"]
        started = next(r for r in engine_records if r["message"].startswith("Starting"))
        finished = next(r for r in engine_records if r["message"].startswith("Matching for"))

        assert started["rider_id"] == "rider-trip-9"
        assert started["trip_id"] == "trip-9"
        assert "driver_id" not in started
        assert finished["rider_id"] == "rider-trip-9"
        assert finished["driver_id"] == "driver-7"
        assert finished["correlation_id"] == "trip-9"

    async def test_failed_match_has_no_driver(self, restore_root_logger):
        stream = io.StringIO()
        setup_logging(level="INFO", json_output=True, stream=stream)
        settings = MatchingSettings(max_attempts=1, initial_search_radius_km=10.0)
        engine = MatchingEngine(locator=FakeLocator([[]]), settings=settings)

        await engine.find_match(make_request("trip-9"))

        records = [json.loads(line) for line in stream.getvalue().splitlines()]
        finished = next(r for r in records if r["message"].startswith("Matching for"))
        assert finished["rider_id"] == "rider-trip-9"
        assert "driver_id" not in finished
