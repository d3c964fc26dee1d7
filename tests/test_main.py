import asyncio
import os
import signal
import sys

import pytest

sys.path.insert(0, '.')

import main
from config import Config, ConfigError
from monitoring.async_utils import cancel_on_signals
from strategy.execution_types import Trade
from strategy.market_maker import MarketMaker
from tests.fakes import START_TS, TRADING_CFG, FakeClock, FakeTransport, RecordingNotifier, make_executions

posix_only = pytest.mark.skipif(sys.platform == 'win32', reason='needs POSIX signals')


class ScriptedMarketMaker:
    def __init__(self, error):
        self.error = error
        self.runs = 0

    async def run(self):
        self.runs += 1
        raise self.error


@posix_only
def test_sigterm_cancels_the_task():
    async def _run():
        task = asyncio.create_task(asyncio.sleep(3600))
        assert cancel_on_signals(task) == [signal.SIGTERM]
        await asyncio.sleep(0)
        os.kill(os.getpid(), signal.SIGTERM)
        with pytest.raises(asyncio.CancelledError):
            await task

    asyncio.run(_run())


@posix_only
def test_sigterm_during_dwell_shuts_down_and_exits_zero(monkeypatch):
    clock = FakeClock()

    async def dwell_until_terminated(seconds):
        os.kill(os.getpid(), signal.SIGTERM)
        await asyncio.Event().wait()

    transport = FakeTransport(
        executions=make_executions(100, 101),
        trades=[Trade(id='t1', updated_at=START_TS)],
    )
    market_maker = MarketMaker(
        transport,
        RecordingNotifier(),
        trading_cfg=TRADING_CFG,
        clock=clock,
        sleep=dwell_until_terminated,
    )
    monkeypatch.setattr(main, 'build_market_maker', lambda config_obj=None: market_maker)

    assert main.cli() == 0
    assert market_maker.shutdown_count == 1
    assert sorted(transport.cancelled) == ['buy-1', 'sell-2']
    assert transport.closed == ['t1']
    names = transport.call_names()
    assert names.index('cancel_order') < names.index('close_trade')


def test_cli_returns_zero_on_keyboard_interrupt(monkeypatch):
    market_maker = ScriptedMarketMaker(KeyboardInterrupt())
    monkeypatch.setattr(main, 'build_market_maker', lambda config_obj=None: market_maker)

    assert main.cli() == 0
    assert market_maker.runs == 1


def test_cli_propagates_fatal_errors(monkeypatch):
    # an uncaught exception out of cli() makes the interpreter exit with status 1
    market_maker = ScriptedMarketMaker(RuntimeError('venue exploded'))
    monkeypatch.setattr(main, 'build_market_maker', lambda config_obj=None: market_maker)

    with pytest.raises(RuntimeError, match='venue exploded'):
        main.cli()
    assert market_maker.runs == 1


def test_build_market_maker_fails_fast_without_credentials():
    with pytest.raises(ConfigError, match='exchange.token_id'):
        main.build_market_maker(Config(data={'exchange': {}, 'notifier': {}}))
