from core.infra.rate import RateGovernor
from core.models import CrawlConfig, CrawlSettings

from conftest import run


def config(limit):
    return CrawlConfig(crawl_settings=CrawlSettings(max_requests_per_hour=limit))


def test_admits_immediately_under_budget(clock):
    governor = RateGovernor(clock=clock, sleep=clock.sleep)

    async def scenario():
        for _ in range(3):
            await governor.admit(config(3))

    run(scenario())
    assert clock.sleeps == []
    assert governor.used == 3


def test_suspends_until_oldest_admission_leaves_window(clock):
    governor = RateGovernor(clock=clock, sleep=clock.sleep, margin=5)
    start = clock.now

    async def scenario():
        await governor.admit(config(2))
        clock.now += 100
        await governor.admit(config(2))
        await governor.admit(config(2))

    run(scenario())
    assert clock.sleeps == [3600 - 100 + 5]
    assert clock.now == start + 3605


def test_never_exceeds_budget_in_any_rolling_hour(clock):
    governor = RateGovernor(clock=clock, sleep=clock.sleep)
    admitted = []

    async def scenario():
        for _ in range(25):
            await governor.admit(config(10))
            admitted.append(clock.now)
            clock.now += 60

    run(scenario())
    for t in admitted:
        in_window = [a for a in admitted if t <= a < t + 3600]
        assert len(in_window) <= 10


def test_budget_follows_current_config(clock):
    governor = RateGovernor(clock=clock, sleep=clock.sleep)

    async def scenario():
        await governor.admit(config(1))
        # a larger budget read at the next run admits straight away
        await governor.admit(config(5))

    run(scenario())
    assert clock.sleeps == []
