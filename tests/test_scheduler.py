import asyncio

from olympusbank.scheduler import SyncScheduler, SyncTrigger


def test_trigger_runs_pass_and_counts() -> None:
    seen = []

    async def run_pass(reason: SyncTrigger) -> bool:
        seen.append(reason)
        return True

    async def scenario():
        scheduler = SyncScheduler(run_pass, initial_delay=0, interval=3600)
        result = await scheduler.trigger(SyncTrigger.MANUAL)
        return scheduler, result

    scheduler, result = asyncio.run(scenario())

    assert result is True
    assert seen == [SyncTrigger.MANUAL]
    assert scheduler.completed_passes == 1


def test_background_triggers_are_dropped_while_pass_runs() -> None:
    seen = []

    async def scenario():
        release = asyncio.Event()

        async def run_pass(reason: SyncTrigger) -> bool:
            seen.append(reason)
            if reason is SyncTrigger.PERIODIC:
                await release.wait()
            return True

        scheduler = SyncScheduler(run_pass, initial_delay=0, interval=3600)
        running = asyncio.create_task(scheduler.trigger(SyncTrigger.PERIODIC))
        await asyncio.sleep(0)
        assert scheduler.pass_in_flight

        skipped = await scheduler.trigger(SyncTrigger.VISIBILITY)
        manual = asyncio.create_task(scheduler.trigger(SyncTrigger.MANUAL))
        await asyncio.sleep(0)
        assert seen == [SyncTrigger.PERIODIC]

        release.set()
        return scheduler, skipped, await running, await manual

    scheduler, skipped, periodic_result, manual_result = asyncio.run(scenario())

    assert skipped is False
    assert periodic_result is True
    assert manual_result is True
    assert seen == [SyncTrigger.PERIODIC, SyncTrigger.MANUAL]
    assert scheduler.skipped_passes == 1
    assert scheduler.completed_passes == 2


def test_visibility_flip_schedules_pass() -> None:
    seen = []

    async def run_pass(reason: SyncTrigger) -> bool:
        seen.append(reason)
        return True

    async def scenario():
        scheduler = SyncScheduler(run_pass, initial_delay=0, interval=3600)
        assert scheduler.set_visibility(True) is None
        assert scheduler.set_visibility(False) is None
        task = scheduler.set_visibility(True)
        assert task is not None
        return await task

    assert asyncio.run(scenario()) is True
    assert seen == [SyncTrigger.VISIBILITY]


def test_timers_run_until_stopped(logger) -> None:
    seen = []
    interest_calls = []

    async def run_pass(reason: SyncTrigger) -> bool:
        seen.append(reason)
        if reason is SyncTrigger.CATCH_UP:
            raise RuntimeError("remote exploded")
        return True

    async def interest_job() -> bool:
        interest_calls.append(True)
        return False

    async def scenario():
        scheduler = SyncScheduler(
            run_pass,
            interest_job=interest_job,
            initial_delay=0,
            interval=0.01,
            interest_interval=0.01,
            logger=logger,
        )
        await scheduler.start()
        assert scheduler.running
        await asyncio.sleep(0.1)
        await scheduler.stop()
        return scheduler

    scheduler = asyncio.run(scenario())

    assert seen[0] is SyncTrigger.STARTUP
    assert seen[1] is SyncTrigger.CATCH_UP
    assert SyncTrigger.PERIODIC in seen
    assert interest_calls
    assert not scheduler.running
    assert logger.events("sync_pass_failed")


def test_failing_visibility_pass_is_logged(logger) -> None:
    async def run_pass(reason: SyncTrigger) -> bool:
        raise RuntimeError("remote exploded")

    async def scenario():
        scheduler = SyncScheduler(run_pass, initial_delay=0, interval=3600, logger=logger)
        scheduler.set_visibility(False)
        task = scheduler.set_visibility(True)
        return await task

    assert asyncio.run(scenario()) is False
    assert logger.events("sync_pass_failed")[0]["trigger"] == "visibility"
