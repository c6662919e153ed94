"""Deterministic single-threaded event loop.

The scheduler owns two queues and a logical clock:

- a FIFO microtask queue, drained completely after every macrotask (and once
  before the first one), including microtasks queued during the drain;
- a macrotask queue ordered by ``(due_time, sequence)``, where the logical
  clock jumps to a macrotask's due time when it is popped.

Nothing here is global. A scheduler becomes the *current* scheduler only while
it is entered with ``with scheduler:``, which is what lets ``Promise.resolve``
and friends find it without an explicit ``scheduler=`` argument.
"""

from __future__ import annotations

import itertools
import logging
import math
from collections.abc import Callable
from contextvars import ContextVar, Token
from dataclasses import dataclass
from enum import Enum
from types import TracebackType
from typing import TYPE_CHECKING, Any, Literal

from microloop.env import SchedulerConfig
from microloop.errors import (
	ErrorReporter,
	NoSchedulerError,
	SchedulerHaltedError,
	SchedulerMismatchError,
	SchedulerReentryError,
	as_exception,
)
from microloop.queues import (
	Job,
	JobCallback,
	JobKind,
	MacrotaskHandle,
	MacrotaskQueue,
	MicrotaskQueue,
)

if TYPE_CHECKING:
	from microloop.promise import Promise

logger = logging.getLogger(__name__)

UnhandledRejectionCallback = Callable[["Promise[Any]", Any], object]


class SchedulerState(Enum):
	IDLE = "idle"
	RUNNING_MACROTASK = "running_macrotask"
	DRAINING_MICROTASKS = "draining_microtasks"
	HALTED = "halted"


@dataclass(slots=True)
class DrainStats:
	ticks: int = 0
	microtasks_run: int = 0
	macrotasks_run: int = 0
	last_drain: int = 0
	max_drain: int = 0


def validate_delay(delay_ms: float, what: str = "delay") -> float:
	if isinstance(delay_ms, bool) or not isinstance(delay_ms, (int, float)):
		raise TypeError(f"{what} must be a number (ms)")
	if not math.isfinite(delay_ms) or delay_ms < 0:
		raise ValueError(f"{what} must be finite and >= 0")
	return float(delay_ms)


class Scheduler:
	config: SchedulerConfig
	name: str | None
	reporter: ErrorReporter
	_state: SchedulerState
	_now: float
	_sequence: "itertools.count[int]"
	_microtasks: MicrotaskQueue
	_macrotasks: MacrotaskQueue
	_running: bool
	_stats: DrainStats
	_rejections: dict[int, "Promise[Any]"]
	_rejection_callbacks: list[UnhandledRejectionCallback]
	_tokens: list[Token["Scheduler | None"]]

	def __init__(
		self, config: SchedulerConfig | None = None, *, name: str | None = None
	) -> None:
		self.config = config if config is not None else SchedulerConfig.from_env()
		self.name = name
		self.reporter = ErrorReporter(name)
		self._state = SchedulerState.IDLE
		self._now = 0.0
		self._sequence = itertools.count()
		self._microtasks = MicrotaskQueue()
		self._macrotasks = MacrotaskQueue()
		self._running = False
		self._stats = DrainStats()
		self._rejections = {}
		self._rejection_callbacks = []
		self._tokens = []

	# --- Context ---
	@classmethod
	def current(cls) -> "Scheduler":
		scheduler = CURRENT_SCHEDULER.get()
		if scheduler is None:
			raise NoSchedulerError(
				"No scheduler is active. Enter one with `with scheduler:` "
				+ "or pass `scheduler=` explicitly."
			)
		return scheduler

	@classmethod
	def current_or_none(cls) -> "Scheduler | None":
		return CURRENT_SCHEDULER.get()

	def __enter__(self) -> "Scheduler":
		self._tokens.append(CURRENT_SCHEDULER.set(self))
		return self

	def __exit__(
		self,
		exc_type: type[BaseException] | None = None,
		exc_val: BaseException | None = None,
		exc_tb: TracebackType | None = None,
	) -> Literal[False]:
		if self._tokens:
			CURRENT_SCHEDULER.reset(self._tokens.pop())
		return False

	# --- Introspection ---
	@property
	def state(self) -> SchedulerState:
		return self._state

	@property
	def stats(self) -> DrainStats:
		return self._stats

	@property
	def pending_microtasks(self) -> int:
		return len(self._microtasks)

	@property
	def pending_macrotasks(self) -> int:
		return len(self._macrotasks)

	def current_logical_time(self) -> float:
		return self._now

	def next_due_time(self) -> float | None:
		return self._macrotasks.peek_due_time()

	def has_pending_work(self) -> bool:
		return bool(self._microtasks) or bool(self._macrotasks)

	def is_closed(self) -> bool:
		return self._state is SchedulerState.HALTED

	# --- Scheduling ---
	def _check_open(self) -> None:
		if self._state is SchedulerState.HALTED:
			raise SchedulerHaltedError(f"{self!r} is closed")

	def schedule_microtask(self, callback: JobCallback) -> None:
		self._check_open()
		if not callable(callback):
			raise TypeError("schedule_microtask() requires a callable")
		self._microtasks.push(Job(JobKind.MICROTASK, next(self._sequence), callback))

	def schedule_macrotask(
		self, callback: JobCallback, delay_ms: float = 0
	) -> MacrotaskHandle:
		self._check_open()
		if not callable(callback):
			raise TypeError("schedule_macrotask() requires a callable")
		delay = validate_delay(delay_ms)
		job = Job(
			JobKind.MACROTASK,
			next(self._sequence),
			callback,
			due_time=self._now + delay,
		)
		self._macrotasks.push(job)
		return MacrotaskHandle(job, self)

	def cancel_macrotask(self, handle: MacrotaskHandle) -> bool:
		"""Remove a queued macrotask. Returns False if it already ran or was cancelled."""
		if handle.scheduler is not self:
			raise SchedulerMismatchError("Handle belongs to a different scheduler")
		cancelled = self._macrotasks.cancel(handle._job)  # pyright: ignore[reportPrivateUsage]
		if cancelled:
			logger.debug("Cancelled macrotask seq=%s", handle.sequence)
		return cancelled

	# --- Driving ---
	def _enter_run(self) -> bool:
		if self._running:
			raise SchedulerReentryError(
				"The scheduler cannot be driven from inside one of its own jobs"
			)
		if self._state is SchedulerState.HALTED:
			return False
		self._running = True
		return True

	def _exit_run(self) -> None:
		self._running = False
		if self._state is not SchedulerState.HALTED:
			self._state = SchedulerState.IDLE

	def _execute(self, job: Job) -> None:
		try:
			job.callback()
		except SchedulerReentryError:
			raise
		except Exception as exc:
			code = "microtask" if job.kind is JobKind.MICROTASK else "macrotask"
			self.reporter.report(
				exc,
				code=code,
				details={"callback": repr(job.callback), "sequence": job.sequence},
			)
		finally:
			job.done = True

	def _run_next_macrotask(self) -> None:
		job = self._macrotasks.pop()
		if job.due_time is not None and job.due_time > self._now:
			self._now = job.due_time
		self._state = SchedulerState.RUNNING_MACROTASK
		self._stats.macrotasks_run += 1
		self._execute(job)

	def _drain_microtasks(self) -> int:
		self._state = SchedulerState.DRAINING_MICROTASKS
		threshold = self.config.drain_warning_threshold
		count = 0
		warned = False
		while True:
			while self._microtasks:
				self._execute(self._microtasks.pop())
				count += 1
				if threshold is not None and not warned and count > threshold:
					warned = True
					logger.warning(
						"Microtask drain exceeded %d jobs without yielding to macrotasks. "
						+ "This is most often caused by a promise chain that keeps queueing "
						+ "new reactions.",
						threshold,
					)
				if self._state is SchedulerState.HALTED:
					return count
			# Rejection callbacks may queue more microtasks; they belong to this drain.
			self._end_tick()
			if not self._microtasks:
				break
		self._stats.ticks += 1
		self._stats.microtasks_run += count
		self._stats.last_drain = count
		self._stats.max_drain = max(self._stats.max_drain, count)
		return count

	def run_microtasks(self) -> int:
		"""Drain the microtask queue only. Returns the number of jobs run."""
		if not self._enter_run():
			return 0
		try:
			return self._drain_microtasks()
		finally:
			self._exit_run()

	def run_until_idle(self) -> None:
		"""Run until both queues are empty.

		Microtasks queued before the call run first, then each macrotask is
		followed by a complete microtask drain.
		"""
		if not self._enter_run():
			return
		try:
			self._drain_microtasks()
			while self._state is not SchedulerState.HALTED and self._macrotasks:
				self._run_next_macrotask()
				if self._state is SchedulerState.HALTED:
					break
				self._drain_microtasks()
		finally:
			self._exit_run()

	def step_microtask(self) -> bool:
		"""Run exactly one microtask, if any. Returns whether work remains."""
		if not self._enter_run():
			return False
		try:
			if self._microtasks:
				self._state = SchedulerState.DRAINING_MICROTASKS
				self._execute(self._microtasks.pop())
				self._stats.microtasks_run += 1
				if not self._microtasks and self._state is not SchedulerState.HALTED:
					self._end_tick()
		finally:
			self._exit_run()
		return self.has_pending_work()

	def step_macrotask(self) -> bool:
		"""Run exactly one macrotask, if any. Returns whether work remains.

		Queued microtasks are left alone; callers stepping by hand are
		responsible for draining them first if they want loop ordering.
		"""
		if not self._enter_run():
			return False
		try:
			if self._macrotasks:
				self._run_next_macrotask()
				if not self._microtasks and self._state is not SchedulerState.HALTED:
					self._end_tick()
		finally:
			self._exit_run()
		return self.has_pending_work()

	def close(self) -> None:
		"""Halt the scheduler and discard queued work."""
		if self._state is SchedulerState.HALTED:
			return
		dropped = len(self._microtasks) + len(self._macrotasks)
		self._microtasks.clear()
		self._macrotasks.clear()
		self._rejections.clear()
		self._state = SchedulerState.HALTED
		logger.debug("Scheduler %s closed, dropped %d queued jobs", self.name, dropped)

	# --- Unhandled rejections ---
	def on_unhandled_rejection(
		self, callback: UnhandledRejectionCallback
	) -> Callable[[], None]:
		"""Register ``callback(promise, reason)``. Returns an unsubscribe function."""
		self._rejection_callbacks.append(callback)

		def _unsubscribe() -> None:
			if callback in self._rejection_callbacks:
				self._rejection_callbacks.remove(callback)

		return _unsubscribe

	def _track_rejection(self, promise: "Promise[Any]") -> None:
		self._rejections[id(promise)] = promise

	def _untrack_rejection(self, promise: "Promise[Any]") -> None:
		self._rejections.pop(id(promise), None)

	def _end_tick(self) -> None:
		if not self._rejections:
			return
		pending = list(self._rejections.values())
		self._rejections.clear()
		for promise in pending:
			if promise.handled:
				continue
			self._report_unhandled(promise)

	def _report_unhandled(self, promise: "Promise[Any]") -> None:
		reason = promise.reason
		if not self._rejection_callbacks:
			if self.config.report_unhandled:
				self.reporter.report(
					as_exception(reason),
					code="promise.unhandled",
					details={"promise": repr(promise)},
					message=f"Unhandled promise rejection: {reason!r}",
				)
			return
		for callback in list(self._rejection_callbacks):
			try:
				callback(promise, reason)
			except Exception as exc:
				self.reporter.report(
					exc,
					code="rejection.callback",
					details={"callback": repr(callback)},
				)

	def __repr__(self) -> str:
		label = f" {self.name}" if self.name else ""
		return (
			f"<Scheduler{label} {self._state.value} t={self._now:g} "
			+ f"micro={len(self._microtasks)} macro={len(self._macrotasks)}>"
		)


def create_scheduler(
	config: SchedulerConfig | None = None, *, name: str | None = None
) -> Scheduler:
	return Scheduler(config, name=name)


CURRENT_SCHEDULER: ContextVar["Scheduler | None"] = ContextVar(
	"microloop_scheduler", default=None
)


__all__ = [
	"CURRENT_SCHEDULER",
	"DrainStats",
	"Scheduler",
	"SchedulerState",
	"UnhandledRejectionCallback",
	"create_scheduler",
	"validate_delay",
]
