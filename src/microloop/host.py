"""Run a scheduler against wall-clock time inside an async application."""

from __future__ import annotations

import logging
import math

import anyio

from microloop.scheduler import Scheduler

logger = logging.getLogger(__name__)


async def run_realtime(scheduler: Scheduler, *, time_scale: float = 1.0) -> None:
	"""Drive ``scheduler`` until both of its queues are empty.

	Logical milliseconds map to ``time_scale / 1000`` real seconds, measured
	from the moment this coroutine starts; ``time_scale=0`` runs macrotasks as
	fast as possible while still yielding to the host loop between them.
	Other tasks on the host loop may schedule work on ``scheduler`` while this
	coroutine sleeps; their delays count from the scheduler's logical time.
	"""
	if isinstance(time_scale, bool) or not isinstance(time_scale, (int, float)):
		raise TypeError("time_scale must be a number")
	if not math.isfinite(time_scale) or time_scale < 0:
		raise ValueError("time_scale must be finite and >= 0")

	started_at = anyio.current_time()
	origin = scheduler.current_logical_time()

	while not scheduler.is_closed():
		scheduler.run_microtasks()
		due = scheduler.next_due_time()
		if due is None:
			return

		target = started_at + (due - origin) / 1000.0 * time_scale
		remaining = target - anyio.current_time()
		if remaining > 0:
			await anyio.sleep(remaining)
			# Macrotasks may have been added or cancelled while sleeping.
			continue
		scheduler.step_macrotask()
		await anyio.sleep(0)

	logger.debug("run_realtime() stopped: %r is closed", scheduler)


__all__ = ["run_realtime"]
