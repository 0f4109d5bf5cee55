"""
Tests for structured logging.
"""

import json
import logging
from decimal import Decimal
from io import StringIO
from uuid import uuid4

from closure_kernel.exceptions import ClosureLockedError
from closure_kernel.logging_config import LogContext, StructuredFormatter, get_logger


def _format(record_fn) -> dict:
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    logger = logging.getLogger("closure_kernel.test_format")
    logger.addHandler(handler)
    try:
        record_fn(logger)
    finally:
        logger.removeHandler(handler)
    return json.loads(stream.getvalue().strip().split("\n")[-1])


class TestStructuredFormatter:
    def test_one_json_line_with_extras(self):
        closure_id = uuid4()

        payload = _format(
            lambda log: log.info(
                "closure_created",
                extra={"closure_id": closure_id, "variance": Decimal("500")},
            )
        )

        assert payload["message"] == "closure_created"
        assert payload["level"] == "INFO"
        assert payload["closure_id"] == str(closure_id)
        assert payload["variance"] == "500"

    def test_context_fields_included(self):
        with LogContext.bind(school_id="school-1", academic_year="2025-2026"):
            payload = _format(lambda log: log.info("something"))

        assert payload["school_id"] == "school-1"
        assert payload["academic_year"] == "2025-2026"

    def test_context_restored_on_exit(self):
        with LogContext.bind(school_id="outer"):
            with LogContext.bind(school_id="inner"):
                assert LogContext.get_all()["school_id"] == "inner"
            assert LogContext.get_all()["school_id"] == "outer"
        assert "school_id" not in LogContext.get_all()

    def test_kernel_error_fields_rendered(self):
        def emit(log):
            try:
                raise ClosureLockedError("c-1", "update")
            except ClosureLockedError:
                log.error("blocked", exc_info=True)

        payload = _format(emit)

        assert payload["exc_type"] == "ClosureLockedError"
        assert payload["exc_code"] == "CLOSURE_LOCKED"
        assert payload["exc_closure_id"] == "c-1"
        assert "traceback" in payload


class TestGetLogger:
    def test_namespaced(self):
        assert get_logger("services.x").name == "closure_kernel.services.x"
