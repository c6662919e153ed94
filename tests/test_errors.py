from typing import get_args

import pytest
from microloop import AggregateError, RejectedError
from microloop.errors import ErrorCode, ErrorReporter, as_exception


def test_reporter_logs_code_message_and_details(caplog: pytest.LogCaptureFixture):
	reporter = ErrorReporter("main")
	try:
		raise RuntimeError("reported")
	except RuntimeError as exc:
		with caplog.at_level("ERROR"):
			reporter.report(exc, code="system", details={"job": 3})

	[record] = caplog.records
	message = record.getMessage()
	assert "code=system" in message
	assert "message=reported" in message
	assert "'job': 3" in message
	assert "'scheduler': 'main'" in message
	assert "Traceback" in message


def test_reporter_message_override(caplog: pytest.LogCaptureFixture):
	with caplog.at_level("ERROR"):
		ErrorReporter().report(ValueError("raw"), code="microtask", message="custom")

	assert "message=custom" in caplog.records[0].getMessage()


def test_error_codes_are_declared():
	codes = set(get_args(ErrorCode))

	assert {"microtask", "macrotask", "promise.unhandled", "timer.later"} <= codes


def test_as_exception_wraps_plain_reasons():
	error = KeyError("k")

	assert as_exception(error) is error
	wrapped = as_exception({"code": 1})
	assert isinstance(wrapped, RejectedError)
	assert wrapped.reason == {"code": 1}


def test_aggregate_error_keeps_reasons():
	error = AggregateError(("a", ValueError("b")))

	assert error.errors[0] == "a"
	assert isinstance(error.errors[1], ValueError)
	assert str(error) == "All promises were rejected"
	assert repr(AggregateError([])) == "AggregateError([])"
