"""Promise combinators built on ``then`` and the resolving functions only."""

from __future__ import annotations

from collections.abc import Callable, Iterable
from typing import Any, Literal, TypedDict

from microloop.errors import AggregateError
from microloop.promise import Promise, Resolvers
from microloop.scheduler import Scheduler


class FulfilledResult(TypedDict):
	status: Literal["fulfilled"]
	value: Any


class RejectedResult(TypedDict):
	status: Literal["rejected"]
	reason: Any


SettledResult = FulfilledResult | RejectedResult


def _pick_scheduler(items: list[Any], scheduler: Scheduler | None) -> Scheduler:
	if scheduler is not None:
		return scheduler
	for item in items:
		if isinstance(item, Promise):
			return item.scheduler
	return Scheduler.current()


def _prepare(
	inputs: Iterable[Any], scheduler: Scheduler | None
) -> tuple[Resolvers, list[Promise[Any]] | None]:
	"""Create the combinator's own Promise and coerce every input.

	A failure while iterating or coercing rejects the combinator Promise and
	yields ``None`` in place of the input list.
	"""
	try:
		items = list(inputs)
	except Exception as exc:
		resolvers = Promise.with_resolvers(scheduler=_pick_scheduler([], scheduler))
		resolvers.reject(exc)
		return resolvers, None
	target = _pick_scheduler(items, scheduler)
	resolvers = Promise.with_resolvers(scheduler=target)
	try:
		promises = [Promise.resolve(item, scheduler=target) for item in items]
	except Exception as exc:
		resolvers.reject(exc)
		return resolvers, None
	return resolvers, promises


def all_(inputs: Iterable[Any], *, scheduler: Scheduler | None = None) -> Promise[list[Any]]:
	"""Fulfill with every value in input order, or reject with the first reason."""
	resolvers, promises = _prepare(inputs, scheduler)
	if promises is None:
		return resolvers.promise
	if not promises:
		resolvers.resolve([])
		return resolvers.promise

	values: list[Any] = [None] * len(promises)
	remaining = len(promises)

	def _store(index: int) -> Callable[[Any], None]:
		def _on_fulfilled(value: Any) -> None:
			nonlocal remaining
			values[index] = value
			remaining -= 1
			if remaining == 0:
				resolvers.resolve(values)

		return _on_fulfilled

	for index, promise in enumerate(promises):
		promise.then(_store(index), resolvers.reject)
	return resolvers.promise


def race(inputs: Iterable[Any], *, scheduler: Scheduler | None = None) -> Promise[Any]:
	"""Settle like whichever input settles first. Never settles on empty input."""
	resolvers, promises = _prepare(inputs, scheduler)
	if promises is None:
		return resolvers.promise
	for promise in promises:
		promise.then(resolvers.resolve, resolvers.reject)
	return resolvers.promise


def any_(inputs: Iterable[Any], *, scheduler: Scheduler | None = None) -> Promise[Any]:
	"""Fulfill with the first fulfillment, or reject with an :class:`AggregateError`."""
	resolvers, promises = _prepare(inputs, scheduler)
	if promises is None:
		return resolvers.promise
	if not promises:
		resolvers.reject(AggregateError([]))
		return resolvers.promise

	errors: list[Any] = [None] * len(promises)
	remaining = len(promises)

	def _store(index: int) -> Callable[[Any], None]:
		def _on_rejected(reason: Any) -> None:
			nonlocal remaining
			errors[index] = reason
			remaining -= 1
			if remaining == 0:
				resolvers.reject(AggregateError(errors))

		return _on_rejected

	for index, promise in enumerate(promises):
		promise.then(resolvers.resolve, _store(index))
	return resolvers.promise


def all_settled(
	inputs: Iterable[Any], *, scheduler: Scheduler | None = None
) -> Promise[list[SettledResult]]:
	"""Wait for every input and fulfill with index-aligned status records."""
	resolvers, promises = _prepare(inputs, scheduler)
	if promises is None:
		return resolvers.promise
	if not promises:
		resolvers.resolve([])
		return resolvers.promise

	results: list[Any] = [None] * len(promises)
	remaining = len(promises)

	def _record(index: int, result: SettledResult) -> None:
		nonlocal remaining
		results[index] = result
		remaining -= 1
		if remaining == 0:
			resolvers.resolve(results)

	for index, promise in enumerate(promises):
		promise.then(
			lambda value, index=index: _record(
				index, {"status": "fulfilled", "value": value}
			),
			lambda reason, index=index: _record(
				index, {"status": "rejected", "reason": reason}
			),
		)
	return resolvers.promise


__all__ = [
	"FulfilledResult",
	"RejectedResult",
	"SettledResult",
	"all_",
	"all_settled",
	"any_",
	"race",
]
