"""
Exceptions raised by the lbsim kernel and configuration layer.
"""
from __future__ import annotations


class SimulationError(Exception):
    """Base class for every error raised by lbsim."""


class SchedulerError(SimulationError):
    """The event queue is inconsistent with the virtual clock."""


class ConfigError(SimulationError, ValueError):
    """Run parameters rejected before the simulation starts."""


class QueueOverflowError(SimulationError):
    """A server's wait queue is full and another customer was routed to it.

    SimPy re-raises a failed process by calling ``type(exc)(*exc.args)``, so
    the constructor arguments are kept as the exception args.
    """

    def __init__(self, server_id: int, capacity: int) -> None:
        super().__init__(server_id, capacity)
        self.server_id = server_id
        self.capacity = capacity

    def __str__(self) -> str:
        return (
            f"System is broken! Queue overflow on server {self.server_id} "
            f"(capacity {self.capacity})"
        )
