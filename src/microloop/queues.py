"""FIFO microtask queue and time-ordered macrotask queue."""

from __future__ import annotations

import heapq
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
	from microloop.scheduler import Scheduler

JobCallback = Callable[[], object]


class JobKind(Enum):
	MICROTASK = "microtask"
	MACROTASK = "macrotask"


@dataclass(slots=True)
class Job:
	"""A zero-argument unit of deferred work.

	``due_time`` is only set for macrotasks. ``sequence`` is the insertion
	counter of the owning scheduler and breaks ties between equal due times.
	"""

	kind: JobKind
	sequence: int
	callback: JobCallback
	due_time: float | None = None
	cancelled: bool = False
	queued: bool = False
	done: bool = False

	def sort_key(self) -> tuple[float, int]:
		assert self.due_time is not None
		return (self.due_time, self.sequence)


class MicrotaskQueue:
	_jobs: deque[Job]

	def __init__(self) -> None:
		self._jobs = deque()

	def push(self, job: Job) -> None:
		if job.kind is not JobKind.MICROTASK:
			raise ValueError(f"Expected a microtask, got {job.kind.value}")
		self._jobs.append(job)

	def pop(self) -> Job:
		return self._jobs.popleft()

	def clear(self) -> None:
		self._jobs.clear()

	def __len__(self) -> int:
		return len(self._jobs)

	def __bool__(self) -> bool:
		return bool(self._jobs)


@dataclass(order=True, slots=True)
class _HeapEntry:
	key: tuple[float, int]
	job: Job = field(compare=False)


class MacrotaskQueue:
	"""Min-heap of macrotasks ordered by ``(due_time, sequence)``.

	Cancelled entries stay in the heap and are skipped when they surface; the
	live count is tracked separately so ``len()`` stays exact.
	"""

	_heap: list[_HeapEntry]
	_live: int

	def __init__(self) -> None:
		self._heap = []
		self._live = 0

	def push(self, job: Job) -> None:
		if job.kind is not JobKind.MACROTASK or job.due_time is None:
			raise ValueError("Macrotask queue entries need a due time")
		heapq.heappush(self._heap, _HeapEntry(job.sort_key(), job))
		job.queued = True
		self._live += 1

	def _discard_cancelled(self) -> None:
		while self._heap and self._heap[0].job.cancelled:
			heapq.heappop(self._heap)

	def peek(self) -> Job | None:
		self._discard_cancelled()
		if not self._heap:
			return None
		return self._heap[0].job

	def peek_due_time(self) -> float | None:
		job = self.peek()
		return job.due_time if job is not None else None

	def pop(self) -> Job:
		self._discard_cancelled()
		if not self._heap:
			raise IndexError("pop from an empty macrotask queue")
		entry = heapq.heappop(self._heap)
		entry.job.queued = False
		self._live -= 1
		return entry.job

	def cancel(self, job: Job) -> bool:
		if job.cancelled or not job.queued:
			return False
		job.cancelled = True
		job.queued = False
		self._live -= 1
		return True

	def clear(self) -> None:
		for entry in self._heap:
			if entry.job.queued:
				entry.job.cancelled = True
				entry.job.queued = False
		self._heap.clear()
		self._live = 0

	def __len__(self) -> int:
		return self._live

	def __bool__(self) -> bool:
		return self._live > 0


class MacrotaskHandle:
	"""Cancellable reference to a queued macrotask."""

	__slots__: tuple[str, ...] = ("_job", "_scheduler")
	_job: Job
	_scheduler: "Scheduler"

	def __init__(self, job: Job, scheduler: "Scheduler") -> None:
		self._job = job
		self._scheduler = scheduler

	@property
	def scheduler(self) -> "Scheduler":
		return self._scheduler

	@property
	def sequence(self) -> int:
		return self._job.sequence

	def cancel(self) -> bool:
		return self._scheduler.cancel_macrotask(self)

	def cancelled(self) -> bool:
		return self._job.cancelled

	def done(self) -> bool:
		return self._job.done

	def when(self) -> float:
		assert self._job.due_time is not None
		return self._job.due_time

	def __repr__(self) -> str:
		if self._job.cancelled:
			status = "cancelled"
		elif self._job.done:
			status = "done"
		else:
			status = "pending"
		return f"<MacrotaskHandle seq={self._job.sequence} when={self._job.due_time} {status}>"


__all__ = [
	"Job",
	"JobCallback",
	"JobKind",
	"MacrotaskHandle",
	"MacrotaskQueue",
	"MicrotaskQueue",
]
