import asyncio
import sys

sys.path.insert(0, '.')

from strategy.cooldown import CooldownState
from strategy.execution_types import Trade
from strategy.position_closer import CloserRegistry, CloserState, PositionCloser
from tests.fakes import START_TS, FakeClock, FakeTransport, RecordingNotifier, already_closed


def _closer(trade, transport, notifier, clock, cooldown=None, sleep=None):
    return PositionCloser(
        trade,
        transport,
        notifier,
        cooldown or CooldownState(clock=clock),
        clock=clock,
        sleep=sleep or clock.sleep,
    )


def test_closer_waits_until_sixty_seconds_after_update():
    async def _run():
        clock = FakeClock()
        trade = Trade(id='t1', updated_at=START_TS - 10)
        transport = FakeTransport(trades=[trade])
        closer = _closer(trade, transport, RecordingNotifier(), clock)

        assert closer.deadline == START_TS + 50
        assert closer.state == CloserState.WAITING
        await closer.run()

        assert clock.sleeps == [50]
        assert transport.closed == ['t1']
        assert closer.state == CloserState.CLOSED

    asyncio.run(_run())


def test_closer_with_past_deadline_closes_immediately():
    async def _run():
        clock = FakeClock()
        trade = Trade(id='t1', updated_at=START_TS - 300)
        transport = FakeTransport(trades=[trade])
        closer = _closer(trade, transport, RecordingNotifier(), clock)

        await closer.run()

        assert clock.sleeps == []
        assert transport.closed == ['t1']

    asyncio.run(_run())


def test_losing_close_locks_trading_and_reports_pnl():
    async def _run():
        clock = FakeClock()
        cooldown = CooldownState(clock=clock)
        trade = Trade(id='t1', updated_at=START_TS - 60)
        transport = FakeTransport(trades=[trade])
        transport.close_pnl['t1'] = -50
        notifier = RecordingNotifier()

        closed = await _closer(trade, transport, notifier, clock, cooldown=cooldown).run()

        assert closed.pnl == -50
        assert cooldown.read() == START_TS + 600
        assert cooldown.read() >= clock() + 600
        assert len(notifier.texts) == 1
        assert '-50' in notifier.texts[0]
        assert notifier.messages[0][0] == 'U-test'

    asyncio.run(_run())


def test_profitable_close_leaves_cooldown_unchanged():
    async def _run():
        clock = FakeClock()
        cooldown = CooldownState(locked_until=START_TS - 5, clock=clock)
        trade = Trade(id='t1', updated_at=START_TS - 60)
        transport = FakeTransport(trades=[trade])
        transport.close_pnl['t1'] = 20
        notifier = RecordingNotifier()

        await _closer(trade, transport, notifier, clock, cooldown=cooldown).run()

        assert cooldown.read() == START_TS - 5
        assert '20' in notifier.texts[0]

    asyncio.run(_run())


def test_registry_does_not_schedule_a_trade_twice():
    async def _run():
        clock = FakeClock()
        gate = asyncio.Event()

        async def gated_sleep(seconds):
            await gate.wait()

        trade = Trade(id='t1', updated_at=START_TS)
        transport = FakeTransport(trades=[trade])
        notifier = RecordingNotifier()
        registry = CloserRegistry(
            lambda t: _closer(t, transport, notifier, clock, sleep=gated_sleep)
        )

        assert registry.schedule(trade) is True
        assert registry.schedule(trade) is False
        assert registry.in_flight() == ['t1']
        assert 't1' in registry

        gate.set()
        await registry.wait_all()
        await asyncio.sleep(0)

        assert transport.closed == ['t1']
        assert len(registry) == 0

    asyncio.run(_run())


def test_failing_closer_does_not_affect_others():
    async def _run():
        clock = FakeClock()
        cooldown = CooldownState(clock=clock)
        trades = [Trade(id='bad', updated_at=START_TS - 60), Trade(id='good', updated_at=START_TS - 60)]
        transport = FakeTransport(trades=trades)
        transport.fail_close['bad'] = already_closed('bad')
        notifier = RecordingNotifier()
        registry = CloserRegistry(lambda t: _closer(t, transport, notifier, clock, cooldown=cooldown))

        for trade in trades:
            registry.schedule(trade)
        bad = registry.get('bad')
        await registry.wait_all()
        await asyncio.sleep(0)

        assert bad.state == CloserState.FAILED
        assert transport.closed == ['good']
        assert len(notifier.texts) == 1
        assert len(registry) == 0

        # a failed trade can be picked up again
        transport.fail_close.clear()
        assert registry.schedule(trades[0]) is True
        await registry.wait_all()
        assert transport.closed == ['good', 'bad']

    asyncio.run(_run())


def test_cancel_all_stops_waiting_closers():
    async def _run():
        clock = FakeClock()

        async def forever(seconds):
            await asyncio.Event().wait()

        trade = Trade(id='t1', updated_at=START_TS)
        transport = FakeTransport(trades=[trade])
        registry = CloserRegistry(
            lambda t: _closer(t, transport, RecordingNotifier(), clock, sleep=forever)
        )
        registry.schedule(trade)
        closer = registry.get('t1')
        await asyncio.sleep(0)

        assert await registry.cancel_all() == 1
        await asyncio.sleep(0)

        assert closer.state == CloserState.CANCELLED
        assert transport.closed == []
        assert len(registry) == 0

    asyncio.run(_run())


class BrokenNotifier(RecordingNotifier):
    async def push(self, recipient_id, text):
        raise ConnectionError('push down')


def test_losing_close_locks_trading_even_when_report_fails():
    async def _run():
        clock = FakeClock()
        cooldown = CooldownState(clock=clock)
        trade = Trade(id='t1', updated_at=START_TS - 60)
        transport = FakeTransport(trades=[trade])
        transport.close_pnl['t1'] = -50
        registry = CloserRegistry(
            lambda t: _closer(t, transport, BrokenNotifier(), clock, cooldown=cooldown)
        )

        registry.schedule(trade)
        closer = registry.get('t1')
        await registry.wait_all()

        assert transport.closed == ['t1']
        assert closer.state == CloserState.CLOSED
        assert closer.closed_trade.pnl == -50
        assert cooldown.read() >= clock() + 600

    asyncio.run(_run())
