"""Delayed and repeating callbacks on the scheduler's logical clock.

All helpers here are plain clients of ``Scheduler.schedule_macrotask``. The
module-level functions use the current scheduler; a :class:`TimerRegistry`
binds one explicitly and can cancel everything it created.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, Generic, ParamSpec, TypeVar

from microloop.errors import ErrorCode
from microloop.promise import Promise
from microloop.queues import MacrotaskHandle
from microloop.scheduler import Scheduler, validate_delay

P = ParamSpec("P")
R = TypeVar("R")

logger = logging.getLogger(__name__)


def _report(
	scheduler: Scheduler,
	exc: BaseException,
	code: ErrorCode,
	fn: Callable[..., Any],
	**details: Any,
) -> None:
	scheduler.reporter.report(exc, code=code, details={"callback": repr(fn), **details})


def _schedule_later(
	scheduler: Scheduler,
	delay_ms: float,
	fn: Callable[P, Any],
	*args: P.args,
	**kwargs: P.kwargs,
) -> MacrotaskHandle:
	def _run() -> None:
		try:
			fn(*args, **kwargs)
		except Exception as exc:
			# Surface the error and keep the loop going
			_report(scheduler, exc, "timer.later", fn, delay_ms=delay_ms)

	return scheduler.schedule_macrotask(_run, delay_ms)


def later(
	delay_ms: float, fn: Callable[P, Any], *args: P.args, **kwargs: P.kwargs
) -> MacrotaskHandle:
	"""
	Schedule `fn(*args, **kwargs)` to run after `delay_ms` of logical time on the
	current scheduler. Returns a handle; call .cancel() to cancel.
	"""
	return _schedule_later(Scheduler.current(), delay_ms, fn, *args, **kwargs)


class RepeatHandle:
	handle: MacrotaskHandle | None
	cancelled: bool
	runs: int
	on_cancel: Callable[[], None] | None

	def __init__(self) -> None:
		self.handle = None
		self.cancelled = False
		self.runs = 0
		self.on_cancel = None

	def cancel(self) -> None:
		if self.cancelled:
			return
		self.cancelled = True
		if self.handle is not None:
			self.handle.cancel()
			self.handle = None
		if self.on_cancel is not None:
			self.on_cancel()


def _schedule_repeat(
	scheduler: Scheduler,
	interval_ms: float,
	fn: Callable[P, Any],
	*args: P.args,
	**kwargs: P.kwargs,
) -> RepeatHandle:
	interval = validate_delay(interval_ms, "repeat() interval")
	if interval == 0:
		raise ValueError("repeat() interval must be > 0")
	handle = RepeatHandle()

	def _tick() -> None:
		handle.handle = None
		if handle.cancelled:
			return
		handle.runs += 1
		try:
			fn(*args, **kwargs)
		except Exception as exc:
			_report(scheduler, exc, "timer.repeat", fn, interval_ms=interval)
		# The next interval starts counting after this run completes
		if not handle.cancelled and not scheduler.is_closed():
			handle.handle = scheduler.schedule_macrotask(_tick, interval)

	handle.handle = scheduler.schedule_macrotask(_tick, interval)
	return handle


def repeat(
	interval_ms: float, fn: Callable[P, Any], *args: P.args, **kwargs: P.kwargs
) -> RepeatHandle:
	"""
	Repeatedly run `fn(*args, **kwargs)` every `interval_ms` of logical time.
	Returns a handle with .cancel() to stop future runs. ``run_until_idle``
	only returns once the handle is cancelled.
	"""
	return _schedule_repeat(Scheduler.current(), interval_ms, fn, *args, **kwargs)


def sleep(
	delay_ms: float, value: Any = None, *, scheduler: Scheduler | None = None
) -> Promise[Any]:
	"""Promise fulfilled with ``value`` from a macrotask ``delay_ms`` from now."""
	resolvers = Promise.with_resolvers(scheduler=scheduler)
	resolvers.promise.scheduler.schedule_macrotask(
		lambda: resolvers.resolve(value), delay_ms
	)
	return resolvers.promise


class TimerRegistry:
	"""Tracks timers created through it so they can be cancelled together."""

	_handles: set[MacrotaskHandle]
	_repeats: set[RepeatHandle]
	scheduler: Scheduler
	name: str | None

	def __init__(self, scheduler: Scheduler | None = None, name: str | None = None) -> None:
		self._handles = set()
		self._repeats = set()
		self.scheduler = scheduler if scheduler is not None else Scheduler.current()
		self.name = name

	def __len__(self) -> int:
		return len(self._handles) + len(self._repeats)

	def discard(self, handle: MacrotaskHandle | RepeatHandle | None) -> None:
		if handle is None:
			return
		if isinstance(handle, RepeatHandle):
			self._repeats.discard(handle)
		else:
			self._handles.discard(handle)

	def later(
		self,
		delay_ms: float,
		fn: Callable[P, Any],
		*args: P.args,
		**kwargs: P.kwargs,
	) -> MacrotaskHandle:
		tracked_box: list[_TrackedMacrotaskHandle] = []

		def _wrapped() -> Any:
			try:
				return fn(*args, **kwargs)
			finally:
				self.discard(tracked_box[0] if tracked_box else None)

		handle = _schedule_later(self.scheduler, delay_ms, _wrapped)
		tracked = _TrackedMacrotaskHandle(handle, self)
		tracked_box.append(tracked)
		self._handles.add(tracked)
		return tracked

	def repeat(
		self,
		interval_ms: float,
		fn: Callable[P, Any],
		*args: P.args,
		**kwargs: P.kwargs,
	) -> RepeatHandle:
		handle = _schedule_repeat(self.scheduler, interval_ms, fn, *args, **kwargs)
		handle.on_cancel = lambda: self.discard(handle)
		self._repeats.add(handle)
		return handle

	def cancel(self, handle: MacrotaskHandle | RepeatHandle) -> None:
		handle.cancel()
		self.discard(handle)

	def cancel_all(self) -> None:
		count = len(self)
		for handle in list(self._handles):
			handle.cancel()
		for repeat_handle in list(self._repeats):
			repeat_handle.cancel()
		if count:
			logger.debug("Timer registry %s cancelled %d timers", self.name, count)
		self._handles.clear()
		self._repeats.clear()


class _TrackedMacrotaskHandle(MacrotaskHandle):
	"""Registry-owned handle that leaves the registry when cancelled directly."""

	__slots__: tuple[str, ...] = ("_registry",)
	_registry: TimerRegistry

	def __init__(self, handle: MacrotaskHandle, registry: TimerRegistry) -> None:
		super().__init__(handle._job, handle.scheduler)  # pyright: ignore[reportPrivateUsage]
		self._registry = registry

	def cancel(self) -> bool:
		cancelled = super().cancel()
		self._registry.discard(self)
		return cancelled


@dataclass(frozen=True, slots=True)
class Debounced(Generic[P, R]):
	fn: Callable[P, R]
	delay_ms: float
	scheduler: Scheduler
	_handle: MacrotaskHandle | None = field(
		default=None, init=False, repr=False, compare=False
	)

	@property
	def pending(self) -> bool:
		return self._handle is not None

	def cancel(self) -> None:
		if self._handle is not None:
			self._handle.cancel()
			object.__setattr__(self, "_handle", None)

	def __call__(self, *args: P.args, **kwargs: P.kwargs) -> None:
		if self._handle is not None:
			self._handle.cancel()

		def _run() -> None:
			object.__setattr__(self, "_handle", None)
			try:
				self.fn(*args, **kwargs)
			except Exception as exc:
				_report(
					self.scheduler,
					exc,
					"timer.debounce",
					self.fn,
					debounced=True,
					delay_ms=self.delay_ms,
				)

		handle = self.scheduler.schedule_macrotask(_run, self.delay_ms)
		object.__setattr__(self, "_handle", handle)


def debounced(
	fn: Callable[P, R], delay_ms: int | float, *, scheduler: Scheduler | None = None
) -> Debounced[P, R]:
	"""Return a debounced wrapper around ``fn`` (delay in logical milliseconds)."""
	if not callable(fn):
		raise TypeError("debounced() requires a callable")
	if isinstance(delay_ms, bool) or not isinstance(delay_ms, (int, float)):
		raise TypeError("debounced() delay must be a number (ms)")
	if not math.isfinite(delay_ms) or delay_ms < 0:
		raise ValueError("debounced() delay must be finite and >= 0")
	target = scheduler if scheduler is not None else Scheduler.current()
	return Debounced(fn=fn, delay_ms=float(delay_ms), scheduler=target)


__all__ = [
	"Debounced",
	"RepeatHandle",
	"TimerRegistry",
	"debounced",
	"later",
	"repeat",
	"sleep",
]
