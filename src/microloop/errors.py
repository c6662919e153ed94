from __future__ import annotations

import logging
import traceback
from collections.abc import Sequence
from typing import Any, Literal

logger = logging.getLogger(__name__)

ErrorCode = Literal[
	"microtask",
	"macrotask",
	"promise.unhandled",
	"rejection.callback",
	"timer.later",
	"timer.repeat",
	"timer.debounce",
	"system",
]


class MicroloopError(Exception):
	"""Base class for errors raised by the scheduler core."""


class NoSchedulerError(MicroloopError, RuntimeError):
	"""Raised when a Promise is created outside of an entered scheduler."""


class SchedulerHaltedError(MicroloopError, RuntimeError):
	"""Raised when work is scheduled on a closed scheduler."""


class SchedulerReentryError(MicroloopError, RuntimeError):
	"""Raised when the loop is driven from inside one of its own jobs."""


class SchedulerMismatchError(MicroloopError, ValueError):
	"""Raised when a Promise is used with a scheduler it is not bound to."""


class InvalidStateError(MicroloopError):
	"""Raised when reading a value or reason the Promise does not hold."""


class AggregateError(MicroloopError):
	"""Rejection reason of ``Promise.any`` when every input rejected."""

	errors: list[Any]

	def __init__(self, errors: Sequence[Any], message: str = "All promises were rejected"):
		super().__init__(message)
		self.errors = list(errors)

	def __repr__(self) -> str:
		return f"AggregateError({self.errors!r})"


class RejectedError(MicroloopError):
	"""Carries a non-exception rejection reason into Python code."""

	reason: Any

	def __init__(self, reason: Any):
		super().__init__(f"Promise rejected with {reason!r}")
		self.reason = reason


class UnhandledErrorEvent(MicroloopError):
	"""Raised when an ``"error"`` event is emitted without listeners."""

	payload: Any

	def __init__(self, payload: Any):
		super().__init__(f"Unhandled error event: {payload!r}")
		self.payload = payload


def as_exception(reason: Any) -> BaseException:
	if isinstance(reason, BaseException):
		return reason
	return RejectedError(reason)


def _format_stack(exc: BaseException) -> str:
	return "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))


class ErrorReporter:
	"""Error reporter bound to a scheduler."""

	__slots__: tuple[str, ...] = ("_name",)
	_name: str | None

	def __init__(self, name: str | None = None) -> None:
		self._name = name

	def report(
		self,
		exc: BaseException,
		*,
		code: ErrorCode,
		details: dict[str, Any] | None = None,
		message: str | None = None,
	) -> None:
		payload_details = dict(details) if details is not None else {}
		if self._name is not None:
			payload_details.setdefault("scheduler", self._name)

		stack = _format_stack(exc)
		payload_message = message or str(exc)

		logger.error(
			"microloop error code=%s message=%s details=%s\n%s",
			code,
			payload_message,
			payload_details,
			stack,
		)


__all__ = [
	"AggregateError",
	"ErrorCode",
	"ErrorReporter",
	"InvalidStateError",
	"MicroloopError",
	"NoSchedulerError",
	"RejectedError",
	"SchedulerHaltedError",
	"SchedulerMismatchError",
	"SchedulerReentryError",
	"UnhandledErrorEvent",
	"as_exception",
]
