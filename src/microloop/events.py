"""Synchronous event emitter with a promise bridge."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from microloop.errors import UnhandledErrorEvent
from microloop.promise import Promise
from microloop.scheduler import Scheduler

logger = logging.getLogger(__name__)

Listener = Callable[..., Any]

ERROR_EVENT = "error"


@dataclass(slots=True, eq=False)
class _Registration:
	listener: Listener
	once: bool


class EventEmitter:
	"""Named events dispatched synchronously, in registration order.

	Emitting ``"error"`` with nobody listening raises the payload (wrapped in
	:class:`UnhandledErrorEvent` when it is not an exception).
	"""

	_events: dict[str, list[_Registration]]

	def __init__(self) -> None:
		self._events = {}

	def on(self, event: str, listener: Listener) -> "EventEmitter":
		if not callable(listener):
			raise TypeError("Event listeners must be callable")
		self._events.setdefault(event, []).append(_Registration(listener, once=False))
		return self

	def once(self, event: str, listener: Listener) -> "EventEmitter":
		if not callable(listener):
			raise TypeError("Event listeners must be callable")
		self._events.setdefault(event, []).append(_Registration(listener, once=True))
		return self

	def off(self, event: str, listener: Listener) -> "EventEmitter":
		registrations = self._events.get(event)
		if not registrations:
			return self
		# Remove the most recently added registration, like Node does
		for index in range(len(registrations) - 1, -1, -1):
			if registrations[index].listener == listener:
				del registrations[index]
				break
		if not registrations:
			del self._events[event]
		return self

	def remove_all_listeners(self, event: str | None = None) -> "EventEmitter":
		if event is None:
			self._events.clear()
		else:
			self._events.pop(event, None)
		return self

	def emit(self, event: str, *args: Any) -> bool:
		registrations = self._events.get(event)
		if not registrations:
			if event == ERROR_EVENT:
				payload = args[0] if args else None
				if isinstance(payload, BaseException):
					raise payload
				raise UnhandledErrorEvent(payload)
			return False

		# Listeners added or removed while emitting only affect later emits
		for registration in list(registrations):
			if registration.once:
				self._remove_registration(event, registration)
			registration.listener(*args)
		return True

	def _remove_registration(self, event: str, registration: _Registration) -> None:
		registrations = self._events.get(event)
		if registrations is None:
			return
		if registration in registrations:
			registrations.remove(registration)
		if not registrations:
			del self._events[event]

	def listeners(self, event: str) -> list[Listener]:
		return [r.listener for r in self._events.get(event, [])]

	def listener_count(self, event: str) -> int:
		return len(self._events.get(event, []))

	def event_names(self) -> list[str]:
		return list(self._events)


def wait_for(
	emitter: EventEmitter, event: str, *, scheduler: Scheduler | None = None
) -> Promise[tuple[Any, ...]]:
	"""Promise for the argument tuple of the next ``event`` emission.

	Rejects with the error payload if ``"error"`` is emitted first.
	"""
	resolvers = Promise.with_resolvers(scheduler=scheduler)

	def _on_event(*args: Any) -> None:
		if event != ERROR_EVENT:
			emitter.off(ERROR_EVENT, _on_error)
		resolvers.resolve(args)

	def _on_error(error: Any = None, *_: Any) -> None:
		emitter.off(event, _on_event)
		logger.debug("wait_for(%r) rejected by an error event", event)
		resolvers.reject(error)

	emitter.once(event, _on_event)
	if event != ERROR_EVENT:
		emitter.once(ERROR_EVENT, _on_error)
	return resolvers.promise


__all__ = ["ERROR_EVENT", "EventEmitter", "Listener", "wait_for"]
