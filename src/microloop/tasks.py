"""Drive ``async def`` coroutines with the scheduler's microtask queue.

A coroutine spawned here runs synchronously until its first ``await``. Each
``await promise`` suspends it; the promise's reaction resumes it from a
microtask, so awaiting always costs at least one microtask, even for a
promise that is already settled.
"""

from __future__ import annotations

import inspect
from collections.abc import Callable, Coroutine
from functools import partial, wraps
from typing import Any, ParamSpec, TypeVar

from microloop.errors import SchedulerMismatchError
from microloop.promise import Promise, Resolvers
from microloop.scheduler import Scheduler

P = ParamSpec("P")
T = TypeVar("T")


class _CoroutineRunner:
	__slots__: tuple[str, ...] = ("_coro", "_scheduler", "_resolvers")
	_coro: Coroutine[Any, Any, Any]
	_scheduler: Scheduler
	_resolvers: Resolvers

	def __init__(
		self,
		coro: Coroutine[Any, Any, Any],
		scheduler: Scheduler,
		resolvers: Resolvers,
	) -> None:
		self._coro = coro
		self._scheduler = scheduler
		self._resolvers = resolvers

	def step(self, error: BaseException | None = None) -> None:
		try:
			if error is None:
				awaited = self._coro.send(None)
			else:
				awaited = self._coro.throw(error)
		except StopIteration as stop:
			self._resolvers.resolve(stop.value)
			return
		except Exception as exc:
			self._resolvers.reject(exc)
			return

		if not isinstance(awaited, Promise):
			self._fail_next(
				TypeError(
					f"Coroutines driven by microloop can only await promises, got {awaited!r}"
				)
			)
			return
		if awaited.scheduler is not self._scheduler:
			self._fail_next(
				SchedulerMismatchError("Awaited a promise bound to a different scheduler")
			)
			return
		awaited.then(self._resume, self._resume)

	def _resume(self, _: Any) -> None:
		self.step()

	def _fail_next(self, error: BaseException) -> None:
		self._scheduler.schedule_microtask(partial(self.step, error))


def spawn(
	coro: Coroutine[Any, Any, T], *, scheduler: Scheduler | None = None
) -> Promise[T]:
	"""Start ``coro`` and return a Promise for its result."""
	if not inspect.iscoroutine(coro):
		raise TypeError(f"spawn() requires a coroutine, got {type(coro).__name__}")
	try:
		resolvers = Promise.with_resolvers(scheduler=scheduler)
	except BaseException:
		coro.close()
		raise
	runner = _CoroutineRunner(coro, resolvers.promise.scheduler, resolvers)
	runner.step()
	return resolvers.promise


def async_fn(
	fn: Callable[P, Coroutine[Any, Any, T]],
) -> Callable[P, Promise[T]]:
	"""Decorate an ``async def`` so calling it spawns it on the current scheduler."""
	if not inspect.iscoroutinefunction(fn):
		raise TypeError("async_fn() requires an async function")

	@wraps(fn)
	def wrapper(*args: P.args, **kwargs: P.kwargs) -> Promise[T]:
		return spawn(fn(*args, **kwargs))

	return wrapper


__all__ = ["async_fn", "spawn"]
