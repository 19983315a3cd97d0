import asyncio

import pytest

from tracking.poller import Poller


class CountingService:
    def __init__(self, cycle_s=0.0, fail=False):
        self.cycle_s = cycle_s
        self.fail = fail
        self.started = 0
        self.finished = 0

    async def run_cycle(self, *, wait=False):
        self.started += 1
        await asyncio.sleep(self.cycle_s)
        self.finished += 1
        if self.fail:
            raise RuntimeError("cycle exploded")
        return []


@pytest.mark.asyncio
async def test_poller_runs_immediately_and_repeats():
    service = CountingService()
    poller = Poller(service, interval_s=0.01, grace_s=1.0)

    poller.start()
    await asyncio.sleep(0.1)
    await poller.stop()

    assert service.started >= 3
    assert poller.running is False


@pytest.mark.asyncio
async def test_stop_waits_for_in_flight_cycle():
    service = CountingService(cycle_s=0.05)
    poller = Poller(service, interval_s=10.0, grace_s=1.0)

    poller.start()
    await asyncio.sleep(0.01)
    await poller.stop()

    assert service.started == 1
    assert service.finished == 1


@pytest.mark.asyncio
async def test_stop_cancels_cycle_after_grace_period():
    service = CountingService(cycle_s=5.0)
    poller = Poller(service, interval_s=10.0, grace_s=0.05)

    poller.start()
    await asyncio.sleep(0.01)
    await poller.stop()

    assert service.started == 1
    assert service.finished == 0


@pytest.mark.asyncio
async def test_failing_cycle_does_not_kill_the_loop():
    service = CountingService(fail=True)
    poller = Poller(service, interval_s=0.01, grace_s=1.0)

    poller.start()
    await asyncio.sleep(0.1)
    assert poller.running is True
    await poller.stop()

    assert service.started >= 2
