"""Settle-once Promise bound to a :class:`~microloop.scheduler.Scheduler`.

Resolution follows the thenable-adoption procedure: resolving with a value
that exposes a callable ``then`` does not settle the Promise. Instead a
microtask calls that ``then`` with a fresh pair of guarded resolving functions,
so the Promise adopts the thenable's eventual state. Every step of an adoption
or ``then`` chain goes through the microtask queue, never through recursion.
"""

from __future__ import annotations

from collections.abc import Callable, Generator, Iterable
from dataclasses import dataclass
from enum import Enum
from functools import partial
from typing import TYPE_CHECKING, Any, Generic, NamedTuple, TypeVar

from microloop.errors import InvalidStateError, SchedulerMismatchError, as_exception
from microloop.scheduler import Scheduler

if TYPE_CHECKING:
	from microloop.combinators import SettledResult

T = TypeVar("T")

ResolveFn = Callable[..., None]
RejectFn = Callable[..., None]
Executor = Callable[[ResolveFn, RejectFn], object]


class PromiseState(Enum):
	PENDING = "pending"
	FULFILLED = "fulfilled"
	REJECTED = "rejected"


# --- Settlement outcomes ---
@dataclass(frozen=True, slots=True)
class Fulfilled:
	value: Any


@dataclass(frozen=True, slots=True)
class Rejected:
	reason: Any


Outcome = Fulfilled | Rejected


# --- Thenable probe ---
@dataclass(frozen=True, slots=True)
class PlainValue:
	value: Any


@dataclass(frozen=True, slots=True)
class Thenable:
	target: Any
	then: Callable[..., Any]


Resolution = PlainValue | Thenable


def probe(value: Any) -> Resolution:
	"""Classify ``value`` for resolution.

	Anything with a callable ``then`` attribute is a thenable, except classes,
	whose ``then`` is an unbound function. Errors raised while looking ``then``
	up propagate to the caller.
	"""
	if value is None or isinstance(value, type):
		return PlainValue(value)
	then = getattr(value, "then", None)
	if callable(then):
		return Thenable(value, then)
	return PlainValue(value)


def is_thenable(value: Any) -> bool:
	try:
		return isinstance(probe(value), Thenable)
	except Exception:
		return False


def call_handler(handler: Callable[[Any], Any], argument: Any) -> Outcome:
	"""Run a user callback, turning a raised exception into a rejection."""
	try:
		return Fulfilled(handler(argument))
	except Exception as exc:
		return Rejected(exc)


class _ResolvingFunctions:
	"""Resolve/reject pair sharing one already-resolved flag."""

	__slots__: tuple[str, ...] = ("promise", "already_resolved")
	promise: "Promise[Any]"
	already_resolved: bool

	def __init__(self, promise: "Promise[Any]") -> None:
		self.promise = promise
		self.already_resolved = False

	def resolve(self, value: Any = None) -> None:
		if self.already_resolved:
			return
		self.already_resolved = True
		self.promise._resolve(value)  # pyright: ignore[reportPrivateUsage]

	def reject(self, reason: Any = None) -> None:
		if self.already_resolved:
			return
		self.already_resolved = True
		self.promise._settle(Rejected(reason))  # pyright: ignore[reportPrivateUsage]


@dataclass(slots=True)
class _Reaction:
	on_fulfilled: Callable[[Any], Any] | None
	on_rejected: Callable[[Any], Any] | None
	downstream: _ResolvingFunctions


def _run_reaction(reaction: _Reaction, outcome: Outcome) -> None:
	if isinstance(outcome, Fulfilled):
		handler = reaction.on_fulfilled
		argument = outcome.value
	else:
		handler = reaction.on_rejected
		argument = outcome.reason

	if handler is not None:
		outcome = call_handler(handler, argument)

	if isinstance(outcome, Fulfilled):
		reaction.downstream.resolve(outcome.value)
	else:
		reaction.downstream.reject(outcome.reason)


class Resolvers(NamedTuple):
	promise: "Promise[Any]"
	resolve: ResolveFn
	reject: RejectFn


class Promise(Generic[T]):
	"""A value that becomes available, or fails, at most once."""

	__slots__: tuple[str, ...] = (
		"_scheduler",
		"_state",
		"_outcome",
		"_reactions",
		"_handled",
		"__weakref__",
	)
	_scheduler: Scheduler
	_state: PromiseState
	_outcome: Outcome | None
	_reactions: list[_Reaction]
	_handled: bool

	def __init__(self, executor: Executor, *, scheduler: Scheduler | None = None):
		if not callable(executor):
			raise TypeError("Promise executor must be callable")
		self._scheduler = scheduler if scheduler is not None else Scheduler.current()
		self._state = PromiseState.PENDING
		self._outcome = None
		self._reactions = []
		self._handled = False

		functions = _ResolvingFunctions(self)
		try:
			executor(functions.resolve, functions.reject)
		except Exception as exc:
			functions.reject(exc)

	@classmethod
	def create(
		cls, executor: Executor, *, scheduler: Scheduler | None = None
	) -> "Promise[Any]":
		return cls(executor, scheduler=scheduler)

	@classmethod
	def with_resolvers(cls, *, scheduler: Scheduler | None = None) -> Resolvers:
		"""Return a pending Promise together with its resolve/reject functions."""
		box: list[tuple[ResolveFn, RejectFn]] = []
		promise = cls(lambda resolve, reject: box.append((resolve, reject)), scheduler=scheduler)
		resolve, reject = box[0]
		return Resolvers(promise, resolve, reject)

	# --- Introspection ---
	@property
	def scheduler(self) -> Scheduler:
		return self._scheduler

	@property
	def state(self) -> PromiseState:
		return self._state

	@property
	def outcome(self) -> Outcome | None:
		return self._outcome

	@property
	def handled(self) -> bool:
		"""Whether any reaction was ever attached."""
		return self._handled

	@property
	def value(self) -> T:
		if not isinstance(self._outcome, Fulfilled):
			raise InvalidStateError(f"Promise is {self._state.value}, not fulfilled")
		return self._outcome.value

	@property
	def reason(self) -> Any:
		if not isinstance(self._outcome, Rejected):
			raise InvalidStateError(f"Promise is {self._state.value}, not rejected")
		return self._outcome.reason

	def done(self) -> bool:
		return self._state is not PromiseState.PENDING

	# --- Resolution procedure ---
	def _resolve(self, value: Any) -> None:
		if value is self:
			self._settle(Rejected(TypeError("Chaining cycle detected for promise")))
			return
		if isinstance(value, Promise) and value._scheduler is not self._scheduler:
			self._settle(
				Rejected(
					SchedulerMismatchError(
						"Cannot adopt a promise bound to a different scheduler"
					)
				)
			)
			return
		try:
			resolution = probe(value)
		except Exception as exc:
			self._settle(Rejected(exc))
			return
		if isinstance(resolution, PlainValue):
			self._settle(Fulfilled(resolution.value))
			return
		self._scheduler.schedule_microtask(partial(self._adopt, resolution))

	def _adopt(self, thenable: Thenable) -> None:
		functions = _ResolvingFunctions(self)
		try:
			thenable.then(functions.resolve, functions.reject)
		except Exception as exc:
			functions.reject(exc)

	def _settle(self, outcome: Outcome) -> None:
		if self._state is not PromiseState.PENDING:
			raise InvalidStateError(f"Promise already {self._state.value}")
		self._outcome = outcome
		if isinstance(outcome, Fulfilled):
			self._state = PromiseState.FULFILLED
		else:
			self._state = PromiseState.REJECTED
			if not self._handled:
				self._scheduler._track_rejection(self)  # pyright: ignore[reportPrivateUsage]

		reactions = self._reactions
		self._reactions = []
		for reaction in reactions:
			self._scheduler.schedule_microtask(partial(_run_reaction, reaction, outcome))

	# --- Reactions ---
	def then(
		self,
		on_fulfilled: Callable[[Any], Any] | None = None,
		on_rejected: Callable[[Any], Any] | None = None,
	) -> "Promise[Any]":
		downstream = Promise(_pending_executor, scheduler=self._scheduler)
		reaction = _Reaction(
			on_fulfilled if callable(on_fulfilled) else None,
			on_rejected if callable(on_rejected) else None,
			_ResolvingFunctions(downstream),
		)
		if self._state is PromiseState.PENDING:
			self._reactions.append(reaction)
		else:
			assert self._outcome is not None
			if self._state is PromiseState.REJECTED and not self._handled:
				self._scheduler._untrack_rejection(self)  # pyright: ignore[reportPrivateUsage]
			self._scheduler.schedule_microtask(
				partial(_run_reaction, reaction, self._outcome)
			)
		self._handled = True
		return downstream

	def catch(self, on_rejected: Callable[[Any], Any] | None) -> "Promise[Any]":
		return self.then(None, on_rejected)

	def finally_(self, on_settled: Callable[[], Any] | None) -> "Promise[T]":
		"""Run ``on_settled()`` on either outcome and pass the outcome through.

		A throw from ``on_settled``, or a rejected thenable it returns, replaces
		the outcome with that rejection.
		"""
		if not callable(on_settled):
			return self.then(on_settled, on_settled)
		scheduler = self._scheduler

		def _on_fulfilled(value: Any) -> Any:
			waited = Promise.resolve(on_settled(), scheduler=scheduler)
			return waited.then(lambda _: value)

		def _on_rejected(reason: Any) -> Any:
			waited = Promise.resolve(on_settled(), scheduler=scheduler)
			return waited.then(lambda _: Promise.reject(reason, scheduler=scheduler))

		return self.then(_on_fulfilled, _on_rejected)

	def __await__(self) -> Generator["Promise[T]", None, T]:
		yield self
		if isinstance(self._outcome, Fulfilled):
			return self._outcome.value
		if isinstance(self._outcome, Rejected):
			raise as_exception(self._outcome.reason)
		raise InvalidStateError("Promise resumed before it settled")

	def __repr__(self) -> str:
		if isinstance(self._outcome, Fulfilled):
			return f"<Promise fulfilled value={self._outcome.value!r}>"
		if isinstance(self._outcome, Rejected):
			return f"<Promise rejected reason={self._outcome.reason!r}>"
		return "<Promise pending>"

	# --- Static constructors ---
	@staticmethod
	def resolve(value: Any = None, *, scheduler: Scheduler | None = None) -> "Promise[Any]":
		if isinstance(value, Promise):
			if scheduler is None or value._scheduler is scheduler:
				return value
			raise SchedulerMismatchError(
				"Promise.resolve() received a promise bound to a different scheduler"
			)
		resolvers = Promise.with_resolvers(scheduler=scheduler)
		resolvers.resolve(value)
		return resolvers.promise

	@staticmethod
	def reject(reason: Any = None, *, scheduler: Scheduler | None = None) -> "Promise[Any]":
		resolvers = Promise.with_resolvers(scheduler=scheduler)
		resolvers.reject(reason)
		return resolvers.promise

	# --- Combinators ---
	@staticmethod
	def all(
		inputs: Iterable[Any], *, scheduler: Scheduler | None = None
	) -> "Promise[list[Any]]":
		from microloop.combinators import all_

		return all_(inputs, scheduler=scheduler)

	@staticmethod
	def race(inputs: Iterable[Any], *, scheduler: Scheduler | None = None) -> "Promise[Any]":
		from microloop.combinators import race

		return race(inputs, scheduler=scheduler)

	@staticmethod
	def any(inputs: Iterable[Any], *, scheduler: Scheduler | None = None) -> "Promise[Any]":
		from microloop.combinators import any_

		return any_(inputs, scheduler=scheduler)

	@staticmethod
	def all_settled(
		inputs: Iterable[Any], *, scheduler: Scheduler | None = None
	) -> "Promise[list[SettledResult]]":
		from microloop.combinators import all_settled

		return all_settled(inputs, scheduler=scheduler)


def _pending_executor(resolve: ResolveFn, reject: RejectFn) -> None:
	return None


__all__ = [
	"Executor",
	"Fulfilled",
	"Outcome",
	"PlainValue",
	"Promise",
	"PromiseState",
	"Rejected",
	"Resolution",
	"Resolvers",
	"Thenable",
	"call_handler",
	"is_thenable",
	"probe",
]
