"""
Simulation driver: N independent single-queue servers fed by a Poisson
arrival stream through one load balancer.

One ``Simulation`` is one run. All mutable state of the run lives in its
``SimulationContext``, so several runs can coexist in a process.
"""
from __future__ import annotations

import time
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional, Tuple

import numpy as np

from .balancers import LoadBalancer, create_balancer
from .config import RunParameters
from .facility import Facility, QueueLengthCache, queue_length_refresher
from .kernel import EventKind, Process, RandomSource, Scheduler, StopReason
from .stats import DelayTable, StoppingRule


# -----------------------------
# Model records
# -----------------------------
@dataclass
class Customer:
    id: int
    arrival_time: float
    service_time: float
    server_id: int


@dataclass
class SimulationContext:
    scheduler: Scheduler
    rng: RandomSource
    facilities: List[Facility]
    cache: QueueLengthCache
    table: DelayTable


@dataclass
class ServerStats:
    server_id: int
    utilization: float
    mean_response_time: float
    jobs_served: int
    customers_routed: int
    queue_length: int
    in_service: int


@dataclass
class SimulationResult:
    strategy: str
    seed: Optional[int]
    stop_reason: StopReason
    stopping_rule: str
    sim_time: float
    arrivals: int
    samples: int
    mean_response_time: float
    half_width: float
    confidence_level: float
    confidence_interval: Tuple[float, float]
    relative_precision: float
    server_mean_response_time: float
    events_processed: int
    servers: List[ServerStats] = field(default_factory=list)
    wall_runtime_seconds: Optional[float] = None

    @property
    def converged(self) -> bool:
        return self.stop_reason is StopReason.CONVERGED

    def to_dict(self) -> Dict[str, Any]:
        out = asdict(self)
        out["stop_reason"] = self.stop_reason.value
        for key in ("half_width", "relative_precision"):
            # JSON has no infinity
            if not np.isfinite(out[key]):
                out[key] = None
        out["confidence_interval"] = [v if np.isfinite(v) else None for v in out["confidence_interval"]]
        return out


# -----------------------------
# Simulation
# -----------------------------
class Simulation:
    def __init__(self, params: RunParameters, stopping_rule: Optional[StoppingRule] = None) -> None:
        params.validate()
        self.params = params
        scheduler = Scheduler()
        facilities = [Facility(scheduler, i, params.queue_capacity) for i in range(params.num_servers)]
        rule = stopping_rule if stopping_rule is not None else params.stopping_rule()
        self.context = SimulationContext(
            scheduler=scheduler,
            rng=RandomSource(params.seed),
            facilities=facilities,
            cache=QueueLengthCache(facilities),
            table=DelayTable(rule, confidence_level=params.confidence_level),
        )
        self.balancer: LoadBalancer = create_balancer(params.strategy, self.context)
        self.converged = scheduler.signal()

        self.arrivals: int = 0
        # Server chosen for each arrival, in arrival order
        self.assignments: List[int] = []
        self.refresher: Optional[Process] = None
        self.generator: Optional[Process] = None
        self._started = False
        self._wall_start: Optional[float] = None

    # Convenience accessors
    @property
    def scheduler(self) -> Scheduler:
        return self.context.scheduler

    @property
    def facilities(self) -> List[Facility]:
        return self.context.facilities

    @property
    def cache(self) -> QueueLengthCache:
        return self.context.cache

    @property
    def table(self) -> DelayTable:
        return self.context.table

    # --------------- Processes ---------------
    def _customer_generator(self, proc: Process):
        rng = self.context.rng
        mean_interarrival = 1.0 / self.params.arrival_rate
        mean_service = 1.0 / self.params.service_rate
        while True:
            yield proc.hold_for(rng.exponential(mean_interarrival))
            self.arrivals += 1
            service_time = rng.exponential(mean_service)
            server_id = self.balancer.choose()
            self.assignments.append(server_id)
            customer = Customer(
                id=self.arrivals,
                arrival_time=self.scheduler.now,
                service_time=service_time,
                server_id=server_id,
            )
            self.scheduler.spawn(
                lambda p, c=customer: self._serve(p, c),
                name=f"customer-{customer.id}",
                kind=EventKind.SERVICE_COMPLETE,
            )

    def _serve(self, proc: Process, customer: Customer):
        facility = self.facilities[customer.server_id]
        request = facility.reserve(proc)
        yield request
        yield proc.hold_for(customer.service_time)
        facility.release(request)

        response_time = self.scheduler.now - customer.arrival_time
        facility.record_response(response_time)
        if self.table.record(response_time) and not self.converged.triggered:
            self.converged.succeed(self.table.count)

    def _progress_logger(self, interval: float) -> None:
        """Print a progress line every ``interval`` units of virtual time."""
        elapsed_sim = self.scheduler.now
        remaining_sim = max(0.0, self.params.max_time - elapsed_sim)
        wall_elapsed = time.time() - (self._wall_start or time.time())
        line = (
            f"[sim-progress] sim_elapsed={elapsed_sim:.2f}, sim_remaining={remaining_sim:.2f}, "
            f"samples={self.table.count}, wall_elapsed_s={wall_elapsed:.2f}"
        )
        if elapsed_sim > 0:
            est_wall_remaining = wall_elapsed * (remaining_sim / elapsed_sim)
            line += f", est_wall_remaining_s={est_wall_remaining:.2f}"
        print(line)
        self.scheduler.schedule(interval, lambda: self._progress_logger(interval))

    # --------------- Run ---------------
    def start(self) -> None:
        if self._started:
            return
        self._started = True
        self._wall_start = time.time()
        if self.balancer.needs_refresher:
            self.refresher = self.scheduler.spawn(
                lambda p: queue_length_refresher(p, self.cache, self.params.refresh_period),
                name="refresher",
                kind=EventKind.REFRESH,
            )
        self.generator = self.scheduler.spawn(
            self._customer_generator,
            name="generator",
            kind=EventKind.ARRIVAL,
        )
        if self.params.progress_interval is not None:
            interval = self.params.progress_interval
            self.scheduler.schedule(interval, lambda: self._progress_logger(interval))

    def run(self) -> SimulationResult:
        self.start()
        reason = self.scheduler.run(until_signal=self.converged, max_time=self.params.max_time)
        return self.result(reason)

    def result(self, reason: StopReason) -> SimulationResult:
        now = self.scheduler.now
        table = self.table
        routed = np.bincount(np.asarray(self.assignments, dtype=int), minlength=self.params.num_servers)
        servers = [
            ServerStats(
                server_id=f.server_id,
                utilization=f.utilization(now),
                mean_response_time=f.mean_response_time(),
                jobs_served=f.jobs_served,
                customers_routed=int(routed[f.server_id]),
                queue_length=f.qlength(),
                in_service=f.num_busy(),
            )
            for f in self.facilities
        ]
        level = table.confidence_level
        return SimulationResult(
            strategy=self.balancer.strategy.value,
            seed=self.params.seed,
            stop_reason=reason,
            stopping_rule=table.rule.describe(),
            sim_time=now,
            arrivals=self.arrivals,
            samples=table.count,
            mean_response_time=table.mean,
            half_width=table.half_width(level),
            confidence_level=level,
            confidence_interval=table.interval(level),
            relative_precision=table.relative_precision(level),
            server_mean_response_time=float(np.mean([s.mean_response_time for s in servers])),
            events_processed=self.scheduler.events_processed,
            servers=servers,
            wall_runtime_seconds=None if self._wall_start is None else time.time() - self._wall_start,
        )


def run_simulation(params: RunParameters, stopping_rule: Optional[StoppingRule] = None) -> SimulationResult:
    return Simulation(params, stopping_rule).run()
