"""
Servers and the shared queue-length snapshot the load balancers read.
"""
from __future__ import annotations

from typing import List, Optional, Sequence

import simpy

from .errors import QueueOverflowError
from .kernel import Process, Scheduler


# -----------------------------
# Facility
# -----------------------------
class Facility:
    """A single-slot server with a bounded FIFO wait queue.

    The slot is a ``simpy.Resource`` of capacity one. Releasing it grants the
    head of the wait queue synchronously, so occupancy is transferred before
    control returns to the scheduler.
    """

    def __init__(self, scheduler: Scheduler, server_id: int, capacity: int = 200) -> None:
        self.scheduler = scheduler
        self.server_id = server_id
        self.capacity = capacity
        self._slot = simpy.Resource(scheduler.env, capacity=1)

        self.total_busy_time: float = 0.0
        self.jobs_served: int = 0
        self.cumulative_response_time: float = 0.0
        self._busy_since: Optional[float] = None

    def __repr__(self) -> str:
        return f"<Facility {self.server_id} busy={self.num_busy()} queue={self.qlength()}>"

    def qlength(self) -> int:
        return len(self._slot.queue)

    def num_busy(self) -> int:
        return self._slot.count

    def load(self) -> int:
        """Customers waiting plus the one in service."""
        return self.qlength() + self.num_busy()

    def reserve(self, process: Process) -> simpy.resources.resource.Request:
        """Request the slot for ``process``; yield the result to wait for it."""
        if self.qlength() >= self.capacity:
            raise QueueOverflowError(self.server_id, self.capacity)
        request = self._slot.request()
        request.callbacks.append(self._on_grant)
        return process.suspend_on(request)

    def _on_grant(self, _event: simpy.events.Event) -> None:
        self._busy_since = self.scheduler.now

    def release(self, request: simpy.resources.resource.Request) -> None:
        if self._busy_since is not None:
            self.total_busy_time += self.scheduler.now - self._busy_since
            self._busy_since = None
        self.jobs_served += 1
        self._slot.release(request)

    def record_response(self, response_time: float) -> None:
        self.cumulative_response_time += response_time

    def mean_response_time(self) -> float:
        if self.jobs_served == 0:
            return 0.0
        return self.cumulative_response_time / self.jobs_served

    def utilization(self, now: Optional[float] = None) -> float:
        """Fraction of elapsed virtual time the slot was held, service in progress included."""
        now = self.scheduler.now if now is None else now
        if now <= 0:
            return 0.0
        busy = self.total_busy_time
        if self._busy_since is not None:
            busy += now - self._busy_since
        return busy / now


# -----------------------------
# Queue-length cache
# -----------------------------
class QueueLengthCache:
    """Per-server ``qlength + num_busy`` as of the last refresh."""

    def __init__(self, facilities: Sequence[Facility]) -> None:
        self._facilities = list(facilities)
        self.lengths: List[int] = [0] * len(self._facilities)
        self.refreshed_at: Optional[float] = None
        self.refresh_count: int = 0

    def __len__(self) -> int:
        return len(self.lengths)

    def __getitem__(self, server_id: int) -> int:
        return self.lengths[server_id]

    def snapshot(self) -> List[int]:
        return list(self.lengths)

    def refresh(self) -> None:
        for i, facility in enumerate(self._facilities):
            self.lengths[i] = facility.load()
        if self._facilities:
            self.refreshed_at = self._facilities[0].scheduler.now
        self.refresh_count += 1

    def increment(self, server_id: int) -> None:
        self.lengths[server_id] += 1


def queue_length_refresher(process: Process, cache: QueueLengthCache, period: float):
    """Overwrite the cache every ``period`` time units, starting now."""
    while True:
        cache.refresh()
        yield process.hold_for(period)
