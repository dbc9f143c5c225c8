"""
Discrete-event kernel built on SimPy.

SimPy's Environment provides the virtual clock and the time-ordered event
queue (events due at the same instant fire in the order they were
scheduled). This module adds what the queueing model needs on top of it:
a run loop that checks stop conditions after every event, processes with
an observable Ready/Suspended/Terminated state, and a seedable random
variate source.

All times are virtual; nothing here reads the wall clock.
"""
from __future__ import annotations

import math
from enum import Enum
from typing import Any, Callable, Generator, List, Optional

import numpy as np
import simpy
from simpy.core import EmptySchedule

from .errors import SchedulerError


# -----------------------------
# Random variates
# -----------------------------
class RandomSource:
    """Seedable stream of random variates shared by one simulation run."""

    def __init__(self, seed: Optional[int] = None) -> None:
        self.seed = seed
        self._rng = np.random.default_rng(seed)

    def exponential(self, mean: float) -> float:
        if mean <= 0:
            raise ValueError("Exponential mean must be > 0")
        return float(self._rng.exponential(mean))

    def uniform(self, low: float, high: float) -> float:
        return float(self._rng.uniform(low, high))

    def uniform01(self) -> float:
        return float(self._rng.random())

    def integer(self, low: int, high: int) -> int:
        """Uniform integer in the closed range [low, high]."""
        return int(self._rng.integers(low, high + 1))

    def draws(self, n: int) -> List[float]:
        """One uniform(0, 1) draw per slot, consumed in slot order."""
        return [self.uniform01() for _ in range(n)]


# -----------------------------
# Enums
# -----------------------------
class EventKind(str, Enum):
    ARRIVAL = "arrival"
    SERVICE_COMPLETE = "service_complete"
    REFRESH = "refresh"


class ProcessState(str, Enum):
    READY = "ready"
    SUSPENDED = "suspended"
    TERMINATED = "terminated"


class StopReason(str, Enum):
    CONVERGED = "converged"
    TIME_LIMIT = "time_limit"
    EXHAUSTED = "exhausted"


# -----------------------------
# Processes
# -----------------------------
ProcessBody = Callable[["Process"], Generator[simpy.events.Event, Any, Any]]


class Process:
    """A cooperative unit of execution driven by the scheduler.

    The body is a generator function receiving its own Process; it suspends
    only by yielding the events returned from ``hold_for``, ``wait_until``
    or ``suspend_on``. Local variables of the body survive every suspension.
    """

    def __init__(self, scheduler: "Scheduler", body: ProcessBody, name: str, kind: EventKind) -> None:
        self.scheduler = scheduler
        self.name = name
        self.kind = kind
        self.state = ProcessState.READY
        self._event = scheduler.env.process(self._drive(body(self)))

    def __repr__(self) -> str:
        return f"<Process {self.name} {self.state.value}>"

    @property
    def event(self) -> simpy.events.Process:
        """The SimPy process event; it fires when the body returns."""
        return self._event

    @property
    def is_alive(self) -> bool:
        return self.state is not ProcessState.TERMINATED

    def _drive(self, gen):
        try:
            result = yield from gen
        finally:
            self.state = ProcessState.TERMINATED
        return result

    def _wake(self, _event: simpy.events.Event) -> None:
        if self.state is ProcessState.SUSPENDED:
            self.state = ProcessState.READY

    def suspend_on(self, event: simpy.events.Event) -> simpy.events.Event:
        """Mark the process suspended until ``event`` is processed."""
        if event.callbacks is None:
            # already processed; yielding it resumes at once
            return event
        self.state = ProcessState.SUSPENDED
        event.callbacks.append(self._wake)
        return event

    def hold_for(self, duration: float) -> simpy.events.Timeout:
        """Resume after ``duration`` units of virtual time."""
        if duration < 0:
            raise ValueError(f"Negative hold duration: {duration}")
        timeout = self.scheduler.env.timeout(duration, value=self.kind)
        return self.suspend_on(timeout)

    def wait_until(self, signal: simpy.events.Event) -> simpy.events.Event:
        """Resume when ``signal`` fires."""
        return self.suspend_on(signal)


# -----------------------------
# Scheduler
# -----------------------------
class Scheduler:
    def __init__(self, env: Optional[simpy.Environment] = None) -> None:
        self.env = env if env is not None else simpy.Environment()
        self.events_processed: int = 0

    @property
    def now(self) -> float:
        return float(self.env.now)

    def peek(self) -> float:
        """Due time of the next event, or infinity when none is pending."""
        return float(self.env.peek())

    def schedule(
        self,
        delay: float,
        callback: Callable[[], None],
        kind: Optional[EventKind] = None,
    ) -> simpy.events.Event:
        """Call ``callback()`` after ``delay`` units of virtual time.

        The event's value is ``kind``; untagged callbacks carry ``None``.
        """
        if delay < 0:
            raise ValueError(f"Negative delay: {delay}")
        event = self.env.timeout(delay, value=kind)
        event.callbacks.append(lambda _ev: callback())
        return event

    def signal(self) -> simpy.events.Event:
        """A fresh, untriggered event processes can wait on."""
        return self.env.event()

    def spawn(self, body: ProcessBody, name: str, kind: EventKind = EventKind.SERVICE_COMPLETE) -> Process:
        return Process(self, body, name, kind)

    def step(self) -> None:
        """Pop the earliest event, advance the clock to it and fire it."""
        due = self.env.peek()
        if due < self.env.now:
            raise SchedulerError(f"Event due at {due} is behind the clock ({self.env.now})")
        self.env.step()
        self.events_processed += 1

    def settle(self) -> None:
        """Fire every event due at the current instant."""
        while self.env.peek() == self.env.now:
            self.step()

    def run(self, until_signal: Optional[simpy.events.Event] = None, max_time: float = math.inf) -> StopReason:
        """Run until ``until_signal`` fires or the clock reaches ``max_time``.

        Both conditions are checked after every event, the signal first.
        An event due after ``max_time`` is never fired: the clock stops at
        ``max_time`` instead. Pending events are left in the queue when the
        loop stops.
        """
        while True:
            due = self.env.peek()
            if due > max_time and not math.isinf(due):
                if max_time > self.env.now:
                    self.env.run(until=max_time)
                return StopReason.TIME_LIMIT
            try:
                self.step()
            except EmptySchedule:
                return StopReason.EXHAUSTED
            if until_signal is not None and until_signal.triggered:
                return StopReason.CONVERGED
            if self.now >= max_time:
                return StopReason.TIME_LIMIT
