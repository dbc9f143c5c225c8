import pytest

from lbsim.balancers import (
    ImprovedLoadBalancer,
    RandomLoadBalancer,
    RoundRobinLoadBalancer,
    ShortestQueueLoadBalancer,
    ShortestQueueStaleLoadBalancer,
    Strategy,
    create_balancer,
    select_shortest,
)
from lbsim.facility import Facility, QueueLengthCache
from lbsim.kernel import RandomSource, Scheduler
from lbsim.simulation import SimulationContext
from lbsim.stats import DelayTable


class FixedDraws(RandomSource):
    """Random source whose per-server draws are scripted."""

    def __init__(self, draws):
        super().__init__(0)
        self.scripted = list(draws)
        self.calls = 0

    def draws(self, n):
        self.calls += 1
        assert n == len(self.scripted)
        return list(self.scripted)


def make_context(num_servers=5, rng=None):
    sched = Scheduler()
    facilities = [Facility(sched, i) for i in range(num_servers)]
    return SimulationContext(
        scheduler=sched,
        rng=rng if rng is not None else RandomSource(11),
        facilities=facilities,
        cache=QueueLengthCache(facilities),
        table=DelayTable(),
    )


def occupy(ctx, loads):
    """Put ``loads[i]`` long-running customers on server i."""
    for server_id, n in enumerate(loads):
        fac = ctx.facilities[server_id]
        for _ in range(n):
            def body(proc, fac=fac):
                request = fac.reserve(proc)
                yield request
                yield proc.hold_for(1000.0)
                fac.release(request)
            ctx.scheduler.spawn(body, name=f"busy-{server_id}")
    ctx.scheduler.settle()


def test_round_robin_cycles_through_servers():
    ctx = make_context()
    lb = RoundRobinLoadBalancer(ctx)
    assert [lb.choose() for _ in range(12)] == [0, 1, 2, 3, 4, 0, 1, 2, 3, 4, 0, 1]


def test_round_robin_ignores_load():
    ctx = make_context(3)
    occupy(ctx, [4, 0, 0])
    lb = RoundRobinLoadBalancer(ctx)
    assert [lb.choose() for _ in range(4)] == [0, 1, 2, 0]


def test_random_stays_in_range_and_is_seeded():
    a = RandomLoadBalancer(make_context(rng=RandomSource(5)))
    b = RandomLoadBalancer(make_context(rng=RandomSource(5)))
    picks = [a.choose() for _ in range(300)]
    assert picks == [b.choose() for _ in range(300)]
    assert set(picks) == {0, 1, 2, 3, 4}


@pytest.mark.parametrize("draws", [
    [0.1, 0.9, 0.5, 0.3, 0.7],
    [0.9, 0.1, 0.2, 0.3, 0.4],
    [0.0, 0.99, 0.0, 0.0, 0.0],
])
def test_unique_minimum_wins_regardless_of_draws(draws):
    assert select_shortest([3, 1, 2, 5, 4], draws) == 1


def test_tie_goes_to_smallest_draw_among_tied():
    lengths = [2, 0, 0, 3, 0]
    # server 3 has the smallest draw overall but is not tied at the minimum
    draws = [0.1, 0.9, 0.5, 0.05, 0.7]
    assert select_shortest(lengths, draws) == 2
    assert select_shortest(lengths, draws) == 2


def test_shortest_queue_reads_live_lengths():
    ctx = make_context(rng=FixedDraws([0.5, 0.4, 0.3, 0.2, 0.9]))
    occupy(ctx, [1, 1, 1, 1, 0])
    lb = ShortestQueueLoadBalancer(ctx)
    assert lb.choose() == 4
    assert ctx.cache.snapshot() == [1, 1, 1, 1, 0]
    assert ctx.rng.calls == 1


def test_shortest_queue_draws_one_value_per_server_each_decision():
    seed = 99
    ctx = make_context(rng=RandomSource(seed))
    occupy(ctx, [0, 2, 2, 2, 2])
    lb = ShortestQueueLoadBalancer(ctx)
    assert lb.choose() == 0
    reference = RandomSource(seed)
    reference.draws(5)
    assert ctx.rng.uniform01() == reference.uniform01()


def test_shortest_queue_tie_break_is_reproducible():
    picks = []
    for _ in range(2):
        ctx = make_context(rng=RandomSource(2024))
        lb = ShortestQueueLoadBalancer(ctx)
        picks.append([lb.choose() for _ in range(20)])
    assert picks[0] == picks[1]


def test_stale_policy_ignores_current_queues():
    ctx = make_context(rng=FixedDraws([0.5, 0.4, 0.3, 0.2, 0.9]))
    occupy(ctx, [0, 0, 0, 3, 0])
    lb = ShortestQueueStaleLoadBalancer(ctx)
    # cache was never refreshed: every server looks empty, server 3 has the smallest draw
    assert lb.choose() == 3
    assert ctx.cache.snapshot() == [0, 0, 0, 0, 0]
    ctx.cache.refresh()
    assert lb.choose() == 2


def test_improved_increments_chosen_entry():
    ctx = make_context(rng=FixedDraws([0.5, 0.4, 0.3, 0.2, 0.9]))
    lb = ImprovedLoadBalancer(ctx)
    before = ctx.cache.snapshot()
    chosen = lb.choose()
    assert chosen == 3
    after = ctx.cache.snapshot()
    assert after[chosen] == before[chosen] + 1
    assert [a for i, a in enumerate(after) if i != chosen] == [b for i, b in enumerate(before) if i != chosen]


def test_improved_increment_only_undone_by_refresh():
    ctx = make_context(rng=FixedDraws([0.5, 0.4, 0.3, 0.2, 0.9]))
    lb = ImprovedLoadBalancer(ctx)
    picks = [lb.choose() for _ in range(6)]
    # ties resolved by draw order 3, 2, 1, 0, 4, then 3 again
    assert picks == [3, 2, 1, 0, 4, 3]
    assert ctx.cache.snapshot() == [1, 1, 1, 2, 1]
    # no customers were actually placed, so the refresh wipes every increment
    ctx.cache.refresh()
    assert ctx.cache.snapshot() == [0, 0, 0, 0, 0]


def test_factory_and_refresher_flags():
    ctx = make_context()
    expected = {
        Strategy.RANDOM: (RandomLoadBalancer, False),
        Strategy.ROUND_ROBIN: (RoundRobinLoadBalancer, False),
        Strategy.SHORTEST_QUEUE: (ShortestQueueLoadBalancer, False),
        Strategy.SHORTEST_QUEUE_STALE: (ShortestQueueStaleLoadBalancer, True),
        Strategy.IMPROVED: (ImprovedLoadBalancer, True),
    }
    for strategy, (cls, refresher) in expected.items():
        lb = create_balancer(strategy, ctx)
        assert type(lb) is cls
        assert lb.needs_refresher is refresher
        assert lb.strategy is strategy
    assert type(create_balancer("improved", ctx)) is ImprovedLoadBalancer


def test_strategy_labels():
    assert Strategy.SHORTEST_QUEUE.label == "Up-to-Date Shortest Queue"
