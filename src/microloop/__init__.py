from microloop.combinators import (
	FulfilledResult,
	RejectedResult,
	SettledResult,
	all_,
	all_settled,
	any_,
	race,
)
from microloop.env import SchedulerConfig
from microloop.errors import (
	AggregateError,
	InvalidStateError,
	MicroloopError,
	NoSchedulerError,
	RejectedError,
	SchedulerHaltedError,
	SchedulerMismatchError,
	SchedulerReentryError,
	UnhandledErrorEvent,
)
from microloop.events import EventEmitter, wait_for
from microloop.host import run_realtime
from microloop.promise import (
	Fulfilled,
	Promise,
	PromiseState,
	Rejected,
	Resolvers,
	is_thenable,
)
from microloop.queues import JobKind, MacrotaskHandle
from microloop.scheduler import (
	DrainStats,
	Scheduler,
	SchedulerState,
	create_scheduler,
)
from microloop.tasks import async_fn, spawn
from microloop.timers import (
	Debounced,
	RepeatHandle,
	TimerRegistry,
	debounced,
	later,
	repeat,
	sleep,
)

__all__ = [
	"AggregateError",
	"Debounced",
	"DrainStats",
	"EventEmitter",
	"Fulfilled",
	"FulfilledResult",
	"InvalidStateError",
	"JobKind",
	"MacrotaskHandle",
	"MicroloopError",
	"NoSchedulerError",
	"Promise",
	"PromiseState",
	"Rejected",
	"RejectedError",
	"RejectedResult",
	"RepeatHandle",
	"Resolvers",
	"Scheduler",
	"SchedulerConfig",
	"SchedulerHaltedError",
	"SchedulerMismatchError",
	"SchedulerReentryError",
	"SchedulerState",
	"SettledResult",
	"TimerRegistry",
	"UnhandledErrorEvent",
	"all_",
	"all_settled",
	"any_",
	"async_fn",
	"create_scheduler",
	"debounced",
	"is_thenable",
	"later",
	"race",
	"repeat",
	"run_realtime",
	"sleep",
	"spawn",
	"wait_for",
]
