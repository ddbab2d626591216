"""
Tests for Logging Infrastructure
"""
import json
import logging
from io import StringIO

import pytest

from delivery_market.core.exceptions import DeliveryAlreadyClaimedError
from delivery_market.core.logging import (
    JSONFormatter,
    ReadableFormatter,
    generate_correlation_id,
    get_correlation_id,
    get_logger,
    log_async_operation,
    mask_phone,
    set_correlation_id,
)


@pytest.fixture
def log_stream() -> StringIO:
    return StringIO()


@pytest.fixture
def json_handler(log_stream: StringIO):
    handler = logging.StreamHandler(log_stream)
    handler.setFormatter(JSONFormatter())
    yield handler
    handler.close()


class TestCorrelationId:
    """Tests for correlation ID management"""

    @pytest.mark.unit
    def test_generate_correlation_id(self):
        cid = generate_correlation_id()

        assert len(cid) == 8
        assert cid.isalnum()

    @pytest.mark.unit
    def test_set_and_get_correlation_id(self):
        assert set_correlation_id("test1234") == "test1234"
        assert get_correlation_id() == "test1234"

    @pytest.mark.unit
    def test_set_correlation_id_generates_if_none(self):
        result = set_correlation_id(None)
        assert len(result) == 8


class TestJSONFormatter:
    """Tests for JSON log formatting"""

    @pytest.mark.unit
    def test_json_format_basic(self, log_stream, json_handler):
        logger = logging.getLogger("test_json_basic")
        logger.addHandler(json_handler)
        logger.setLevel(logging.INFO)

        logger.info("Test message")

        log_entry = json.loads(log_stream.getvalue())
        assert log_entry["level"] == "INFO"
        assert log_entry["message"] == "Test message"
        assert log_entry["app"] == "delivery-market"
        assert log_entry["logger"] == "test_json_basic"

    @pytest.mark.unit
    def test_json_format_with_correlation_id(self, log_stream, json_handler):
        set_correlation_id("testcorr")
        logger = logging.getLogger("test_json_corr")
        logger.addHandler(json_handler)
        logger.setLevel(logging.INFO)

        logger.info("Correlated message")

        assert json.loads(log_stream.getvalue())["correlation_id"] == "testcorr"

    @pytest.mark.unit
    def test_json_format_with_exception(self, log_stream, json_handler):
        logger = logging.getLogger("test_json_exc")
        logger.addHandler(json_handler)
        logger.setLevel(logging.ERROR)

        try:
            raise ValueError("Test error")
        except ValueError:
            logger.error("Error occurred", exc_info=True)

        log_entry = json.loads(log_stream.getvalue())
        assert "ValueError" in log_entry["exception"]

    @pytest.mark.unit
    def test_hebrew_is_not_escaped(self, log_stream, json_handler):
        logger = logging.getLogger("test_json_hebrew")
        logger.addHandler(json_handler)
        logger.setLevel(logging.INFO)

        logger.info("משלוח חדש נוצר")

        assert "משלוח חדש נוצר" in log_stream.getvalue()


class TestStructuredLogger:

    @pytest.mark.unit
    def test_logger_with_extra_data(self, log_stream, json_handler):
        logger = get_logger("test.extra")
        logger.addHandler(json_handler)
        logger.setLevel(logging.INFO)

        logger.info("Message with data", extra_data={"delivery_id": "abc", "fee": 1875})

        log_entry = json.loads(log_stream.getvalue())
        assert log_entry["extra"] == {"delivery_id": "abc", "fee": 1875}
        assert log_entry["delivery_id"] == "abc"
        assert "fee" not in log_entry

    @pytest.mark.unit
    def test_phone_numbers_are_masked(self, log_stream, json_handler):
        logger = get_logger("test.phone")
        logger.addHandler(json_handler)
        logger.setLevel(logging.INFO)

        logger.info("Driver joined", extra_data={"driver_id": "driver-1", "driver_phone": "0501234567"})

        log_entry = json.loads(log_stream.getvalue())
        assert log_entry["driver_id"] == "driver-1"
        assert log_entry["extra"]["driver_phone"] == "050123****"
        assert "0501234567" not in log_stream.getvalue()

    @pytest.mark.unit
    def test_location_points_at_the_caller(self, log_stream, json_handler):
        logger = get_logger("test.location")
        logger.addHandler(json_handler)
        logger.setLevel(logging.INFO)

        logger.info("Here", extra_data={"fee": 1})

        location = json.loads(log_stream.getvalue())["location"]
        assert location.startswith("test_logging:test_location_points_at_the_caller:")

    @pytest.mark.unit
    def test_readable_format_inlines_extra_data(self, log_stream):
        handler = logging.StreamHandler(log_stream)
        handler.setFormatter(ReadableFormatter())
        logger = get_logger("test.readable")
        logger.addHandler(handler)
        logger.setLevel(logging.INFO)
        set_correlation_id("readable")

        logger.info("Claimed", extra_data={"delivery_id": "d1", "driver_phone": "0501234567"})
        handler.close()

        line = log_stream.getvalue()
        assert "[readable]" in line
        assert "delivery_id=d1" in line
        assert "driver_phone=050123****" in line


@pytest.mark.unit
@pytest.mark.parametrize(
    "phone,masked",
    [
        ("0501234567", "050123****"),
        ("123", "****"),
        (None, None),
    ],
)
def test_mask_phone(phone, masked):
    assert mask_phone(phone) == masked


class TestAsyncLoggingDecorator:

    @pytest.mark.unit
    async def test_log_async_operation_success(self):
        @log_async_operation("test_operation")
        async def success_func():
            return "success"

        assert await success_func() == "success"
        assert success_func.__name__ == "success_func"

    @pytest.mark.unit
    async def test_log_async_operation_failure(self, caplog):
        @log_async_operation("failing_operation")
        async def failing_func():
            raise ValueError("Test failure")

        with caplog.at_level(logging.WARNING):
            with pytest.raises(ValueError):
                await failing_func()

        assert "Failed failing_operation" in caplog.text

    @pytest.mark.unit
    async def test_log_async_operation_records_error_code(self, caplog):
        @log_async_operation("claim_delivery")
        async def claim():
            raise DeliveryAlreadyClaimedError("d1", "assigned")

        with caplog.at_level(logging.WARNING):
            with pytest.raises(DeliveryAlreadyClaimedError):
                await claim()

        record = next(r for r in caplog.records if r.getMessage().startswith("Failed claim_delivery"))
        assert record.extra_data["error_code"] == "ERR_2002"
        assert record.extra_data["error_type"] == "DeliveryAlreadyClaimedError"
