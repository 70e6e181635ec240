import asyncio

from countdown import Countdown


def _recorder():
    calls = []

    async def on_save():
        calls.append("save")

    async def on_expire():
        calls.append("expire")

    return calls, on_save, on_expire


def test_every_tenth_tick_saves_and_zero_expires():
    calls, on_save, on_expire = _recorder()
    countdown = Countdown(25, on_save=on_save, on_expire=on_expire)

    async def drive():
        for _ in range(30):
            await countdown.tick()

    asyncio.run(drive())

    # saves at 20 and 10, expiry exactly once at 0
    assert calls == ["save", "save", "expire"]
    assert countdown.remaining == 0
    assert countdown.expired is True


def test_failing_save_does_not_stop_the_countdown():
    async def on_save():
        raise RuntimeError("store down")

    countdown = Countdown(11, on_save=on_save)
    asyncio.run(countdown.tick())
    assert countdown.remaining == 10
    assert countdown.expired is False


def test_reset_clears_expiry():
    countdown = Countdown(1)
    asyncio.run(countdown.tick())
    assert countdown.expired is True

    countdown.reset(90)
    assert countdown.remaining == 90
    assert countdown.expired is False


def test_task_ticks_and_cancels():
    calls, on_save, on_expire = _recorder()

    async def scenario():
        countdown = Countdown(3, on_save=on_save, on_expire=on_expire, tick_seconds=0.01)
        countdown.start()
        assert countdown.running
        await asyncio.sleep(0.2)
        return countdown

    countdown = asyncio.run(scenario())
    assert countdown.expired is True
    assert calls == ["expire"]


def test_cancel_stops_ticking():
    async def scenario():
        countdown = Countdown(100, tick_seconds=0.01)
        countdown.start()
        await asyncio.sleep(0.05)
        countdown.cancel()
        stopped_at = countdown.remaining
        await asyncio.sleep(0.05)
        return countdown, stopped_at

    countdown, stopped_at = asyncio.run(scenario())
    assert countdown.running is False
    assert countdown.remaining == stopped_at
    assert 80 < stopped_at <= 100
