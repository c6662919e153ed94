from collections.abc import Iterator

import pytest
from microloop import Scheduler, SchedulerConfig


@pytest.fixture(autouse=True)
def scheduler() -> Iterator[Scheduler]:
	sched = Scheduler(SchedulerConfig(), name="test")
	with sched:
		yield sched
