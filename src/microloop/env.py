"""Environment-driven configuration for schedulers."""

from __future__ import annotations

import os
from dataclasses import dataclass

ENV_MICROLOOP_DRAIN_WARNING = "MICROLOOP_DRAIN_WARNING"
ENV_MICROLOOP_REPORT_UNHANDLED = "MICROLOOP_REPORT_UNHANDLED"

DEFAULT_DRAIN_WARNING_THRESHOLD = 10_000

_UNSET = object()


def read_drain_warning_threshold() -> int | None:
	raw = os.environ.get(ENV_MICROLOOP_DRAIN_WARNING)
	if raw is None or raw == "":
		return DEFAULT_DRAIN_WARNING_THRESHOLD
	if raw in {"0", "off", "none"}:
		return None
	try:
		value = int(raw)
	except ValueError as exc:
		raise ValueError(
			f"{ENV_MICROLOOP_DRAIN_WARNING} must be an integer, got {raw!r}"
		) from exc
	if value < 0:
		raise ValueError(f"{ENV_MICROLOOP_DRAIN_WARNING} must be >= 0, got {value}")
	return value


def read_report_unhandled() -> bool:
	value = os.environ.get(ENV_MICROLOOP_REPORT_UNHANDLED)
	if value is None:
		return True
	return value not in {"0", "false", "False"}


@dataclass(frozen=True, slots=True)
class SchedulerConfig:
	"""Tunables for a :class:`~microloop.scheduler.Scheduler`.

	- drain_warning_threshold: log one warning when a single microtask drain
	  runs more jobs than this. ``None`` disables the diagnostic. Draining is
	  never cut short.
	- report_unhandled: log unhandled rejections when no callback is
	  registered on the scheduler.
	"""

	drain_warning_threshold: int | None = DEFAULT_DRAIN_WARNING_THRESHOLD
	report_unhandled: bool = True

	@classmethod
	def from_env(
		cls,
		*,
		drain_warning_threshold: "int | None | object" = _UNSET,
		report_unhandled: "bool | object" = _UNSET,
	) -> "SchedulerConfig":
		"""Build a config from the environment; explicit arguments win."""
		threshold = (
			read_drain_warning_threshold()
			if drain_warning_threshold is _UNSET
			else drain_warning_threshold
		)
		report = (
			read_report_unhandled()
			if report_unhandled is _UNSET
			else report_unhandled
		)
		return cls(
			drain_warning_threshold=threshold,  # pyright: ignore[reportArgumentType]
			report_unhandled=bool(report),
		)


__all__ = [
	"DEFAULT_DRAIN_WARNING_THRESHOLD",
	"ENV_MICROLOOP_DRAIN_WARNING",
	"ENV_MICROLOOP_REPORT_UNHANDLED",
	"SchedulerConfig",
	"read_drain_warning_threshold",
	"read_report_unhandled",
]
