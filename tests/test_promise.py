from typing import Any

import pytest
from microloop import (
	Fulfilled,
	InvalidStateError,
	Promise,
	PromiseState,
	Rejected,
	Scheduler,
	SchedulerConfig,
	SchedulerMismatchError,
	is_thenable,
)
from microloop.promise import PlainValue, Thenable, probe
from microloop.timers import sleep


def test_executor_runs_synchronously():
	calls: list[str] = []

	def executor(resolve: Any, reject: Any) -> None:
		calls.append("executor")

	promise = Promise(executor)
	calls.append("after")

	assert calls == ["executor", "after"]
	assert promise.state is PromiseState.PENDING


def test_resolve_with_plain_value_settles_synchronously():
	promise = Promise(lambda resolve, reject: resolve(5))

	assert promise.state is PromiseState.FULFILLED
	assert promise.value == 5
	assert promise.outcome == Fulfilled(5)


def test_executor_exception_rejects():
	error = RuntimeError("executor-boom")

	def executor(resolve: Any, reject: Any) -> None:
		raise error

	promise = Promise.create(executor)
	promise.catch(lambda _: None)

	assert promise.state is PromiseState.REJECTED
	assert promise.reason is error


def test_exception_after_resolve_is_ignored():
	def executor(resolve: Any, reject: Any) -> None:
		resolve("ok")
		raise RuntimeError("too late")

	promise = Promise(executor)

	assert promise.value == "ok"


def test_double_settlement_is_ignored():
	def executor(resolve: Any, reject: Any) -> None:
		resolve(1)
		resolve(2)
		reject("nope")

	promise = Promise(executor)

	assert promise.state is PromiseState.FULFILLED
	assert promise.value == 1


def test_reading_the_wrong_side_raises():
	pending = Promise.with_resolvers().promise
	fulfilled = Promise.resolve(1)

	with pytest.raises(InvalidStateError):
		_ = pending.value
	with pytest.raises(InvalidStateError):
		_ = pending.reason
	with pytest.raises(InvalidStateError):
		_ = fulfilled.reason


def test_rejection_reasons_are_not_unwrapped(scheduler: Scheduler):
	inner = Promise.resolve(1)
	promise = Promise.reject(inner)
	promise.catch(lambda _: None)

	assert promise.state is PromiseState.REJECTED
	assert promise.reason is inner


def test_non_callable_executor_raises():
	with pytest.raises(TypeError):
		Promise(42)  # pyright: ignore[reportArgumentType]


def test_then_chain_runs_before_any_macrotask(scheduler: Scheduler):
	record: list[Any] = []
	scheduler.schedule_macrotask(lambda: record.append("macro"))

	Promise.resolve(1).then(lambda v: v + 1).then(record.append)
	scheduler.run_until_idle()

	assert record == [2, "macro"]


def test_handler_throw_rejects_downstream(scheduler: Scheduler):
	error = ValueError("boom")
	caught: list[Any] = []

	def explode(_: Any) -> Any:
		raise error

	Promise.resolve(1).then(explode).catch(caught.append)
	scheduler.run_until_idle()

	assert caught == [error]
	assert str(caught[0]) == "boom"


def test_reactions_interleave_in_fifo_order(scheduler: Scheduler):
	order: list[str] = []
	Promise.resolve().then(lambda _: order.append("a1")).then(lambda _: order.append("a2"))
	Promise.resolve().then(lambda _: order.append("b1")).then(lambda _: order.append("b2"))

	scheduler.run_until_idle()

	assert order == ["a1", "b1", "a2", "b2"]


def test_reactions_fire_in_registration_order(scheduler: Scheduler):
	order: list[int] = []
	resolvers = Promise.with_resolvers()
	for index in range(4):
		resolvers.promise.then(lambda _, index=index: order.append(index))

	resolvers.resolve("go")
	assert order == []
	scheduler.run_until_idle()

	assert order == [0, 1, 2, 3]


def test_then_before_and_after_settlement_are_equivalent(scheduler: Scheduler):
	before: list[Any] = []
	after: list[Any] = []
	resolvers = Promise.with_resolvers()

	early = resolvers.promise.then(lambda v: v * 2)
	early.then(before.append)
	resolvers.resolve(21)
	late = resolvers.promise.then(lambda v: v * 2)
	late.then(after.append)

	scheduler.run_until_idle()

	assert before == after == [42]
	assert early.value == late.value == 42


def test_settled_promise_never_changes(scheduler: Scheduler):
	calls: list[Any] = []
	resolvers = Promise.with_resolvers()
	resolvers.promise.then(calls.append, calls.append)

	resolvers.resolve("first")
	resolvers.reject("second")
	resolvers.resolve("third")
	scheduler.run_until_idle()

	assert resolvers.promise.value == "first"
	assert calls == ["first"]


def test_missing_handlers_pass_the_outcome_through(scheduler: Scheduler):
	values: list[Any] = []
	reasons: list[Any] = []

	Promise.resolve(1).catch(lambda _: "unused").then(values.append)
	Promise.reject("e").then(lambda v: "unused").catch(reasons.append)
	scheduler.run_until_idle()

	assert values == [1]
	assert reasons == ["e"]


def test_non_callable_handlers_are_ignored(scheduler: Scheduler):
	values: list[Any] = []
	Promise.resolve(7).then(42).then(values.append)  # pyright: ignore[reportArgumentType]
	scheduler.run_until_idle()

	assert values == [7]


def test_catch_can_recover(scheduler: Scheduler):
	values: list[Any] = []
	Promise.reject("e").catch(lambda r: f"recovered from {r}").then(values.append)
	scheduler.run_until_idle()

	assert values == ["recovered from e"]


def test_handler_returning_promise_is_adopted(scheduler: Scheduler):
	values: list[Any] = []
	Promise.resolve(3).then(lambda v: sleep(10, v * 10)).then(values.append)

	scheduler.run_until_idle()

	assert values == [30]
	assert scheduler.current_logical_time() == 10.0


def test_adopting_a_promise_takes_two_microtasks(scheduler: Scheduler):
	inner = Promise.resolve(3)
	outer = Promise(lambda resolve, reject: resolve(inner))

	assert outer.state is PromiseState.PENDING
	# First microtask calls inner.then, second runs the reaction
	scheduler.step_microtask()
	assert outer.state is PromiseState.PENDING
	scheduler.step_microtask()
	assert outer.value == 3


def test_adopting_a_rejected_promise(scheduler: Scheduler):
	inner = Promise.reject("inner")
	outer = Promise.resolve(None).then(lambda _: inner)
	caught: list[Any] = []
	outer.catch(caught.append)

	scheduler.run_until_idle()

	assert caught == ["inner"]


class _Thenable:
	def __init__(self, calls: list[tuple[str, Any]]) -> None:
		self.calls = calls

	def then(self, resolve: Any, reject: Any) -> None:
		for kind, payload in self.calls:
			if kind == "resolve":
				resolve(payload)
			elif kind == "reject":
				reject(payload)
			else:
				raise payload


def test_foreign_thenable_is_adopted(scheduler: Scheduler):
	promise = Promise.resolve(_Thenable([("resolve", "adopted")]))

	assert promise.state is PromiseState.PENDING
	scheduler.run_until_idle()
	assert promise.value == "adopted"


def test_thenable_calling_back_repeatedly_settles_once(scheduler: Scheduler):
	thenable = _Thenable(
		[("resolve", 1), ("resolve", 2), ("reject", "x"), ("raise", RuntimeError("late"))]
	)
	promise = Promise.resolve(thenable)
	scheduler.run_until_idle()

	assert promise.value == 1


def test_thenable_raising_before_settling_rejects(scheduler: Scheduler):
	error = RuntimeError("then-boom")
	promise = Promise.resolve(_Thenable([("raise", error)]))
	promise.catch(lambda _: None)
	scheduler.run_until_idle()

	assert promise.reason is error


def test_thenable_resolving_with_another_thenable(scheduler: Scheduler):
	nested = _Thenable([("resolve", _Thenable([("resolve", "deep")]))])
	promise = Promise.resolve(nested)
	scheduler.run_until_idle()

	assert promise.value == "deep"


def test_then_lookup_failure_rejects(scheduler: Scheduler):
	error = LookupError("no then for you")

	class Hostile:
		@property
		def then(self) -> Any:
			raise error

	promise = Promise.resolve(Hostile())
	promise.catch(lambda _: None)

	assert promise.reason is error


def test_thenable_that_never_calls_back_stays_pending(scheduler: Scheduler):
	promise = Promise.resolve(_Thenable([]))
	scheduler.run_until_idle()

	assert promise.state is PromiseState.PENDING


def test_resolving_with_itself_is_a_type_error(scheduler: Scheduler):
	resolvers = Promise.with_resolvers()
	resolvers.promise.catch(lambda _: None)
	resolvers.resolve(resolvers.promise)

	assert isinstance(resolvers.promise.reason, TypeError)


def test_classes_are_not_thenables():
	assert probe(Promise) == PlainValue(Promise)
	assert not is_thenable(_Thenable)
	assert is_thenable(_Thenable([]))
	assert isinstance(probe(Promise.resolve(1)), Thenable)
	assert probe(None) == PlainValue(None)


def test_static_resolve_returns_same_promise():
	promise = Promise.resolve(1)

	assert Promise.resolve(promise) is promise


def test_static_resolve_of_foreign_promise_raises(scheduler: Scheduler):
	other = Scheduler(SchedulerConfig())
	foreign = Promise.resolve(1, scheduler=other)

	with pytest.raises(SchedulerMismatchError):
		Promise.resolve(foreign, scheduler=scheduler)


def test_adopting_a_foreign_promise_rejects(scheduler: Scheduler):
	other = Scheduler(SchedulerConfig())
	foreign = Promise.resolve(1, scheduler=other)
	resolvers = Promise.with_resolvers()
	resolvers.promise.catch(lambda _: None)

	resolvers.resolve(foreign)

	assert isinstance(resolvers.promise.reason, SchedulerMismatchError)


def test_promise_is_bound_to_its_scheduler(scheduler: Scheduler):
	other = Scheduler(SchedulerConfig())
	promise = Promise.resolve(1, scheduler=other)
	values: list[Any] = []
	promise.then(values.append)

	scheduler.run_until_idle()
	assert values == []
	other.run_until_idle()
	assert values == [1]


def test_long_then_chain_does_not_recurse(scheduler: Scheduler):
	promise = Promise.resolve(0)
	for _ in range(5000):
		promise = promise.then(lambda v: v + 1)

	scheduler.run_until_idle()

	assert promise.value == 5000


def test_long_adoption_chain_does_not_recurse(scheduler: Scheduler):
	first = Promise.with_resolvers()
	current = first
	for _ in range(2000):
		nxt = Promise.with_resolvers()
		nxt.resolve(current.promise)
		current = nxt

	first.resolve("bottom")
	scheduler.run_until_idle()

	assert current.promise.value == "bottom"


# --- finally_ ---
def test_finally_passes_value_through(scheduler: Scheduler):
	calls: list[str] = []
	values: list[Any] = []
	Promise.resolve(1).finally_(lambda: calls.append("cleanup")).then(values.append)

	scheduler.run_until_idle()

	assert calls == ["cleanup"]
	assert values == [1]


def test_finally_passes_rejection_through(scheduler: Scheduler):
	calls: list[str] = []
	reasons: list[Any] = []
	Promise.reject("e").finally_(lambda: calls.append("cleanup")).catch(reasons.append)

	scheduler.run_until_idle()

	assert calls == ["cleanup"]
	assert reasons == ["e"]


def test_finally_throw_replaces_outcome(scheduler: Scheduler):
	error = RuntimeError("cleanup-boom")
	reasons: list[Any] = []

	def cleanup() -> None:
		raise error

	Promise.resolve(1).finally_(cleanup).catch(reasons.append)
	scheduler.run_until_idle()

	assert reasons == [error]


def test_finally_rejected_thenable_replaces_outcome(scheduler: Scheduler):
	reasons: list[Any] = []
	Promise.resolve(1).finally_(lambda: Promise.reject("cleanup")).catch(reasons.append)

	scheduler.run_until_idle()

	assert reasons == ["cleanup"]


def test_finally_waits_for_returned_promise(scheduler: Scheduler):
	seen: list[tuple[Any, float]] = []
	Promise.resolve("v").finally_(lambda: sleep(25)).then(
		lambda v: seen.append((v, scheduler.current_logical_time()))
	)

	scheduler.run_until_idle()

	assert seen == [("v", 25.0)]


def test_outcome_records(scheduler: Scheduler):
	fulfilled = Promise.resolve(1)
	rejected = Promise.reject("r")
	rejected.catch(lambda _: None)

	assert fulfilled.outcome == Fulfilled(1)
	assert rejected.outcome == Rejected("r")
	assert Promise.with_resolvers().promise.outcome is None
	assert fulfilled.done() and rejected.done()


def test_repr():
	assert repr(Promise.resolve(1)) == "<Promise fulfilled value=1>"
	rejected = Promise.reject("r")
	rejected.catch(lambda _: None)
	assert repr(rejected) == "<Promise rejected reason='r'>"
	assert repr(Promise.with_resolvers().promise) == "<Promise pending>"
