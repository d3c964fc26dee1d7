import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable, Dict, Iterable, List, Optional, Set

import aiohttp

from api.metrics import metrics
from config import config
from ingest.quoine_rest import QuoineAPIError
from strategy.cooldown import CooldownState
from strategy.execution_types import Band, Execution, Order, Trade
from strategy.position_closer import CloserRegistry, PositionCloser


logger = logging.getLogger(__name__)

BAND_PCT = 0.01

# Failures of a single venue call; anything else is a bug and goes to the top-level handler
VENUE_ERRORS = (QuoineAPIError, aiohttp.ClientError, asyncio.TimeoutError)


class CycleOutcome(Enum):
    COOLDOWN = "cooldown"
    EMPTY_WINDOW = "empty_window"
    TRADED = "traded"
    PARTIAL_BRACKET = "partial_bracket"


@dataclass
class BracketResult:
    band: Band
    orders: Dict[str, Order] = field(default_factory=dict)
    errors: Dict[str, Exception] = field(default_factory=dict)

    @property
    def complete(self) -> bool:
        return not self.errors and len(self.orders) == 2


def compute_band(executions: Iterable[Execution]) -> Optional[Band]:
    """Bid 1% under the window low, ask 1% over the window high.

    Returns None for an empty window.
    """
    prices = [execution.price for execution in executions]
    if not prices:
        return None
    return Band(low=min(prices) * (1 - BAND_PCT), high=max(prices) * (1 + BAND_PCT))


class MarketMaker:
    """Place a bracket around the last minute of prices, then hand fills to closers."""

    def __init__(
        self,
        transport,
        notifier,
        cooldown: Optional[CooldownState] = None,
        trading_cfg=None,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.transport = transport
        self.notifier = notifier
        self.clock = clock
        self.sleep = sleep
        self.cooldown = cooldown or CooldownState(clock=clock)

        cfg = trading_cfg if trading_cfg is not None else config.section('trading')
        self.order_quantity = float(cfg.get('order_quantity', 0.01))
        self.execution_window_s = int(cfg.get('execution_window_s', 60))
        self.dwell_s = float(cfg.get('dwell_s', 60))
        self.close_delay_s = float(cfg.get('close_delay_s', 60))
        self.loss_cooldown_s = float(cfg.get('loss_cooldown_s', 600))
        self.empty_window_backoff_s = float(cfg.get('empty_window_backoff_s', 5))

        self.trade_log: List[Trade] = []
        self._seen_trade_ids: Set[str] = set()
        self.closers = CloserRegistry(self._make_closer)
        self.running = False
        self.shutdown_count = 0

    def _make_closer(self, trade: Trade) -> PositionCloser:
        return PositionCloser(
            trade,
            self.transport,
            self.notifier,
            self.cooldown,
            close_delay_s=self.close_delay_s,
            loss_cooldown_s=self.loss_cooldown_s,
            clock=self.clock,
            sleep=self.sleep,
        )

    async def run_cycle(self) -> CycleOutcome:
        now = self.clock()
        locked_until = self.cooldown.read()
        if now < locked_until:
            wait = locked_until - now
            logger.info("Cooldown active; waiting %.1fs before trading", wait)
            await self.sleep(wait)
            metrics.record_cycle(CycleOutcome.COOLDOWN.value)
            return CycleOutcome.COOLDOWN

        executions = await self.transport.fetch_executions(int(now) - self.execution_window_s)
        band = compute_band(executions)
        if band is None:
            logger.warning(
                "No executions in the last %ss; retrying in %.1fs",
                self.execution_window_s,
                self.empty_window_backoff_s,
            )
            await self.sleep(self.empty_window_backoff_s)
            metrics.record_cycle(CycleOutcome.EMPTY_WINDOW.value)
            return CycleOutcome.EMPTY_WINDOW

        metrics.update_band(band.low, band.high)
        logger.info(
            "Band from %d executions: %.2f - %.2f",
            len(executions),
            band.low,
            band.high,
        )
        bracket = await self.place_bracket(band)
        if bracket.complete:
            outcome = CycleOutcome.TRADED
        else:
            outcome = CycleOutcome.PARTIAL_BRACKET
            logger.warning("Bracket incomplete; failed sides: %s", ", ".join(sorted(bracket.errors)))

        await self.sleep(self.dwell_s)

        await self.cancel_live_orders()
        await self.hand_off_positions()
        metrics.record_cycle(outcome.value)
        return outcome

    async def place_bracket(self, band: Band) -> BracketResult:
        result = BracketResult(band=band)
        for side, price in (('buy', band.low), ('sell', band.high)):
            try:
                order = await self.transport.place_limit_order(side, self.order_quantity, price)
            except VENUE_ERRORS as exc:
                result.errors[side] = exc
                metrics.record_order_failure(side)
                logger.error("Placing %s order @ %.2f failed: %s", side, price, exc)
                continue
            result.orders[side] = order
            metrics.record_order_placed(side)
            logger.info(
                "Placed %s order %s @ %.2f, qty=%s",
                side,
                order.id,
                price,
                self.order_quantity,
            )
        return result

    async def cancel_live_orders(self) -> int:
        orders = await self.transport.fetch_orders(status='live')
        cancelled = 0
        for order in orders:
            if await self._cancel_quietly(order.id) is not None:
                cancelled += 1
        return cancelled

    async def _cancel_quietly(self, order_id: str) -> Optional[Order]:
        """Cancel ``order_id``; an order that already filled or was cancelled is a no-op."""
        try:
            order = await self.transport.cancel_order(order_id)
        except VENUE_ERRORS as exc:
            metrics.record_cancel_failure()
            logger.warning("Cancel of order %s failed: %s", order_id, exc)
            return None
        metrics.record_order_cancelled()
        logger.info("Cancelled order %s", order_id)
        return order

    async def hand_off_positions(self) -> int:
        trades = await self.transport.fetch_trades(status='open')
        scheduled = 0
        for trade in trades:
            if trade.id not in self._seen_trade_ids:
                self._seen_trade_ids.add(trade.id)
                self.trade_log.append(trade)
            if self.closers.schedule(trade):
                scheduled += 1
            else:
                logger.debug("Trade %s already has a closer in flight", trade.id)
        if trades:
            logger.info(
                "%d open trades, %d new closers, %d in flight",
                len(trades),
                scheduled,
                len(self.closers),
            )
        return scheduled

    async def run(self, max_cycles: Optional[int] = None) -> None:
        """Trade until interrupted; always finishes with ``shutdown()``."""
        self.running = True
        cycles = 0
        try:
            while self.running and (max_cycles is None or cycles < max_cycles):
                await self.run_cycle()
                cycles += 1
        except (KeyboardInterrupt, asyncio.CancelledError):
            logger.info("Interrupted.")
        except Exception as exc:
            logger.exception("Trading loop failed")
            await self.notifier.send_alert(str(exc) or repr(exc))
            raise
        finally:
            self.running = False
            await self.shutdown()

    async def shutdown(self) -> None:
        if self.shutdown_count:
            return
        self.shutdown_count += 1

        pending = await self.closers.cancel_all()
        if pending:
            logger.info("Cancelled %d pending position closers", pending)

        logger.info("Cancelling all orders ...")
        try:
            orders = await self.transport.fetch_orders(status='live')
        except Exception as exc:
            logger.error("Listing live orders during shutdown failed: %s", exc)
            orders = []
        for order in orders:
            try:
                await self._cancel_quietly(order.id)
            except Exception as exc:
                logger.error("Cancel of order %s during shutdown failed: %s", order.id, exc)

        logger.info("Closing all trades ...")
        try:
            trades = await self.transport.fetch_trades(status='open')
        except Exception as exc:
            logger.error("Listing open trades during shutdown failed: %s", exc)
            trades = []
        for trade in trades:
            try:
                closed = await self.transport.close_trade(trade.id)
            except Exception as exc:
                logger.error("Close of trade %s during shutdown failed: %s", trade.id, exc)
                continue
            metrics.record_trade_closed(closed.pnl)
            logger.info("Closed trade %s, pnl=%s", closed.id, closed.pnl)

        try:
            await self.transport.close()
        except Exception as exc:
            logger.warning("Closing exchange session failed: %s", exc)
