"""
Load balancing strategies.

Each strategy picks the server for one arriving customer. They share a
single interface, ``choose() -> int``, and are selected once per run by
``create_balancer``.
"""
from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING, Dict, Sequence, Type

if TYPE_CHECKING:
    from .simulation import SimulationContext


class Strategy(str, Enum):
    RANDOM = "random"
    ROUND_ROBIN = "round_robin"
    SHORTEST_QUEUE = "shortest_queue"
    SHORTEST_QUEUE_STALE = "shortest_queue_stale"
    IMPROVED = "improved"

    @property
    def label(self) -> str:
        return STRATEGY_LABELS[self]


STRATEGY_LABELS: Dict[Strategy, str] = {
    Strategy.RANDOM: "Random",
    Strategy.ROUND_ROBIN: "Round Robin",
    Strategy.SHORTEST_QUEUE: "Up-to-Date Shortest Queue",
    Strategy.SHORTEST_QUEUE_STALE: "Stale Shortest Queue",
    Strategy.IMPROVED: "Improved",
}


def select_shortest(lengths: Sequence[int], draws: Sequence[float]) -> int:
    """Index of the minimum length; ties go to the smallest draw.

    A unique minimum wins without consulting the draws.
    """
    best = 0
    for i in range(1, len(lengths)):
        if lengths[i] < lengths[best]:
            best = i
        elif lengths[i] == lengths[best] and draws[i] < draws[best]:
            best = i
    return best


# -----------------------------
# Base
# -----------------------------
class LoadBalancer:
    strategy: Strategy
    # Whether the periodic queue-length refresher must run for this strategy
    needs_refresher: bool = False

    def __init__(self, context: "SimulationContext") -> None:
        self.context = context
        self.num_servers = len(context.facilities)

    def choose(self) -> int:
        raise NotImplementedError


class RandomLoadBalancer(LoadBalancer):
    strategy = Strategy.RANDOM

    def choose(self) -> int:
        return self.context.rng.integer(0, self.num_servers - 1)


class RoundRobinLoadBalancer(LoadBalancer):
    strategy = Strategy.ROUND_ROBIN

    def __init__(self, context: "SimulationContext") -> None:
        super().__init__(context)
        self.counter: int = 0

    def choose(self) -> int:
        server_id = self.counter % self.num_servers
        self.counter += 1
        return server_id


class ShortestQueueLoadBalancer(LoadBalancer):
    """Shortest queue with lengths read from the servers at decision time."""

    strategy = Strategy.SHORTEST_QUEUE

    def choose(self) -> int:
        cache = self.context.cache
        cache.refresh()
        draws = self.context.rng.draws(self.num_servers)
        return select_shortest(cache.lengths, draws)


class ShortestQueueStaleLoadBalancer(LoadBalancer):
    """Shortest queue with lengths only as fresh as the last periodic refresh."""

    strategy = Strategy.SHORTEST_QUEUE_STALE
    needs_refresher = True

    def choose(self) -> int:
        draws = self.context.rng.draws(self.num_servers)
        return select_shortest(self.context.cache.lengths, draws)


class ImprovedLoadBalancer(ShortestQueueStaleLoadBalancer):
    """Stale shortest queue that counts its own assignments into the cache.

    The increment is only undone by the next periodic refresh.
    """

    strategy = Strategy.IMPROVED

    def choose(self) -> int:
        server_id = super().choose()
        self.context.cache.increment(server_id)
        return server_id


BALANCERS: Dict[Strategy, Type[LoadBalancer]] = {
    cls.strategy: cls
    for cls in (
        RandomLoadBalancer,
        RoundRobinLoadBalancer,
        ShortestQueueLoadBalancer,
        ShortestQueueStaleLoadBalancer,
        ImprovedLoadBalancer,
    )
}


def create_balancer(strategy: Strategy, context: "SimulationContext") -> LoadBalancer:
    return BALANCERS[Strategy(strategy)](context)
