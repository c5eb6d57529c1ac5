import asyncio

from countdown import Countdown, IDLE, TICKING, COMPLETE


def test_fires_once_after_n_ticks():
    fired = []
    timer = Countdown(5, lambda: fired.append(1))
    for _ in range(4):
        timer.tick()
    assert timer.state == TICKING and timer.remaining == 1
    assert fired == []
    timer.tick()
    assert timer.complete and fired == [1]
    timer.tick()
    timer.tick()
    assert fired == [1]
    assert timer.remaining == 0


def test_zero_seconds_completes_immediately():
    fired = []
    timer = Countdown(0, lambda: fired.append(1))
    assert timer.state == IDLE
    timer.start()
    assert timer.state == COMPLETE
    assert fired == [1]


def test_advance_and_progress():
    timer = Countdown(10)
    timer.advance(4.7)
    assert timer.remaining == 6
    assert timer.progress == 40
    timer.advance(100)
    assert timer.complete and timer.progress == 100


def test_reset_returns_to_idle():
    fired = []
    timer = Countdown(1, lambda: fired.append(1))
    timer.tick()
    timer.reset(3)
    assert timer.state == IDLE and timer.remaining == 3
    timer.advance(3)
    assert fired == [1, 1]


def test_run_until_complete():
    fired = []
    timer = Countdown(3, lambda: fired.append(1))
    asyncio.run(timer.run(interval=0))
    assert timer.complete and fired == [1]


def test_cancelled_run_does_not_fire():
    fired = []
    timer = Countdown(100, lambda: fired.append(1))

    async def scenario():
        task = asyncio.create_task(timer.run(interval=0.01))
        await asyncio.sleep(0.03)
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    asyncio.run(scenario())
    assert not timer.complete
    assert fired == []
