import json
import logging
import sys

from shared.core import get_logger, job_context
from shared.core.logging_config import SecurityFilter, StructuredFormatter


def make_record(logger_name="campus_orders.test", msg="hello", extra_fields=None, **attrs):
    record = logging.LogRecord(logger_name, logging.INFO, __file__, 10, msg, None, None)
    if extra_fields is not None:
        record.extra_fields = extra_fields
    for key, value in attrs.items():
        setattr(record, key, value)
    return record


def test_formatter_emits_json_with_custom_fields():
    record = make_record(extra_fields={"order_number": "ORD20261019120000001"}, bound_fields={"component": "payments"})
    doc = json.loads(StructuredFormatter().format(record))

    assert doc["message"] == "hello"
    assert doc["level"] == "INFO"
    assert doc["custom"] == {"component": "payments", "order_number": "ORD20261019120000001"}
    assert "trace" not in doc


def test_job_context_is_attached_and_reset():
    formatter = StructuredFormatter()
    with job_context("order-payment-timeout-sweep") as run_id:
        doc = json.loads(formatter.format(make_record()))
    assert doc["job"] == {"name": "order-payment-timeout-sweep", "run_id": run_id}
    assert "job" not in json.loads(formatter.format(make_record()))


def test_exception_details_are_included():
    try:
        raise RuntimeError("boom")
    except RuntimeError:
        record = make_record(exc_info=sys.exc_info())
    doc = json.loads(StructuredFormatter().format(record))
    assert doc["error"]["type"] == "RuntimeError"
    assert doc["error"]["message"] == "boom"


def test_secrets_are_redacted():
    record = make_record(msg="login with password=hunter2 and token: abc.def")
    SecurityFilter().filter(record)
    message = record.getMessage()
    assert "hunter2" not in message
    assert "abc.def" not in message
    assert message.count("***REDACTED***") == 2


def test_bound_logger_passes_fields(caplog):
    logger = get_logger("campus_orders.bound", component="order-sweep")
    with caplog.at_level(logging.INFO, logger="campus_orders.bound"):
        logger.info("tick", extra={'extra_fields': {'cancelled': 2}})
    record = caplog.records[-1]
    assert record.bound_fields == {"component": "order-sweep"}
    assert record.extra_fields == {"cancelled": 2}
