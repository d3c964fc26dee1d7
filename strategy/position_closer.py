import asyncio
import logging
import time
from enum import Enum
from typing import Awaitable, Callable, Dict, List, Optional

from api.metrics import metrics
from strategy.cooldown import CooldownState
from strategy.execution_types import Trade


logger = logging.getLogger(__name__)

CLOSE_DELAY_S = 60.0
LOSS_COOLDOWN_S = 600.0


class CloserState(Enum):
    WAITING = "waiting"
    CLOSED = "closed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class PositionCloser:
    """Close one trade ``close_delay_s`` after its last update.

    A losing close locks new trading for ``loss_cooldown_s`` seconds.
    """

    def __init__(
        self,
        trade: Trade,
        transport,
        notifier,
        cooldown: CooldownState,
        close_delay_s: float = CLOSE_DELAY_S,
        loss_cooldown_s: float = LOSS_COOLDOWN_S,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.trade = trade
        self.transport = transport
        self.notifier = notifier
        self.cooldown = cooldown
        self.close_delay_s = close_delay_s
        self.loss_cooldown_s = loss_cooldown_s
        self.clock = clock
        self.sleep = sleep
        self.state = CloserState.WAITING
        self.closed_trade: Optional[Trade] = None

    @property
    def deadline(self) -> float:
        return self.trade.updated_at + self.close_delay_s

    async def run(self) -> Trade:
        delay = self.deadline - self.clock()
        if delay > 0:
            logger.info("Trade %s closes in %.1fs", self.trade.id, delay)
            await self.sleep(delay)

        closed = await self.transport.close_trade(self.trade.id)
        self.closed_trade = closed
        self.state = CloserState.CLOSED
        metrics.record_trade_closed(closed.pnl)
        logger.info("Closed trade %s, pnl=%s", closed.id, closed.pnl)

        if closed.is_loss:
            self.cooldown.extend(self.clock() + self.loss_cooldown_s)

        # The trade is already closed; a failed report must not mark it FAILED
        try:
            await self.notifier.report_trade(closed)
        except Exception as exc:
            logger.error("Reporting closed trade %s failed: %s", closed.id, exc)
        return closed


class CloserRegistry:
    """In-flight closer tasks keyed by trade id."""

    def __init__(self, factory: Callable[[Trade], PositionCloser]):
        self._factory = factory
        self._tasks: Dict[str, asyncio.Task] = {}
        self._closers: Dict[str, PositionCloser] = {}

    def __contains__(self, trade_id: str) -> bool:
        return trade_id in self._tasks

    def __len__(self) -> int:
        return len(self._tasks)

    def in_flight(self) -> List[str]:
        return list(self._tasks)

    def get(self, trade_id: str) -> Optional[PositionCloser]:
        return self._closers.get(trade_id)

    def schedule(self, trade: Trade) -> bool:
        """Start a closer for ``trade`` unless one is already running."""
        if trade.id in self._tasks:
            return False
        closer = self._factory(trade)
        task = asyncio.create_task(self._supervise(closer), name=f"close-trade-{trade.id}")
        self._tasks[trade.id] = task
        self._closers[trade.id] = closer
        task.add_done_callback(lambda t, trade_id=trade.id: self._forget(trade_id, t))
        metrics.update_closers_in_flight(len(self._tasks))
        return True

    async def _supervise(self, closer: PositionCloser) -> Optional[Trade]:
        try:
            return await closer.run()
        except asyncio.CancelledError:
            closer.state = CloserState.CANCELLED
            raise
        except Exception as exc:
            closer.state = CloserState.FAILED
            metrics.record_closer_failure()
            logger.error("Closing trade %s failed: %s", closer.trade.id, exc)
            return None

    def _forget(self, trade_id: str, task: asyncio.Task) -> None:
        if self._tasks.get(trade_id) is not task:
            return
        self._tasks.pop(trade_id, None)
        self._closers.pop(trade_id, None)
        metrics.update_closers_in_flight(len(self._tasks))

    async def wait_all(self) -> None:
        tasks = list(self._tasks.values())
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def cancel_all(self) -> int:
        tasks = list(self._tasks.values())
        for task in tasks:
            if not task.done():
                task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        return len(tasks)
