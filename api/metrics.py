import logging
from prometheus_client import Counter, Gauge, start_http_server
from typing import Optional


logger = logging.getLogger(__name__)

_METRICS_SERVER_STARTED = False


class MetricsCollector:
    def __init__(self):
        self.cycles = Counter('mm_cycles_total', 'Trading loop iterations by outcome', ['outcome'])

        self.orders_placed = Counter('mm_orders_placed_total', 'Total bracket orders placed', ['side'])
        self.order_failures = Counter('mm_order_failures_total', 'Bracket orders rejected or failed', ['side'])
        self.orders_cancelled = Counter('mm_orders_cancelled_total', 'Total orders cancelled')
        self.cancel_failures = Counter('mm_cancel_failures_total', 'Cancel requests that failed')

        self.trades_closed = Counter('mm_trades_closed_total', 'Trades closed', ['outcome'])
        self.closer_failures = Counter('mm_closer_failures_total', 'Position closers that ended with an error')
        self.closers_in_flight = Gauge('mm_closers_in_flight', 'Position closers currently waiting or closing')
        self.pnl_realized = Gauge('mm_pnl_realized_total', 'Total realized PnL')

        self.cooldown_until = Gauge('mm_cooldown_until_seconds', 'Epoch seconds until which trading is locked')
        self.band_low = Gauge('mm_band_low', 'Last computed bid price')
        self.band_high = Gauge('mm_band_high', 'Last computed ask price')

    def record_cycle(self, outcome: str):
        self.cycles.labels(outcome=outcome).inc()

    def record_order_placed(self, side: str):
        self.orders_placed.labels(side=side).inc()

    def record_order_failure(self, side: str):
        self.order_failures.labels(side=side).inc()

    def record_order_cancelled(self):
        self.orders_cancelled.inc()

    def record_cancel_failure(self):
        self.cancel_failures.inc()

    def record_trade_closed(self, pnl: Optional[float]):
        if pnl is None:
            self.trades_closed.labels(outcome='unknown').inc()
            return
        self.trades_closed.labels(outcome='loss' if pnl < 0 else 'win').inc()
        if pnl >= 0:
            self.pnl_realized.inc(pnl)
        else:
            self.pnl_realized.dec(abs(float(pnl)))

    def record_closer_failure(self):
        self.closer_failures.inc()

    def update_closers_in_flight(self, count: int):
        self.closers_in_flight.set(count)

    def update_cooldown(self, locked_until: float):
        self.cooldown_until.set(locked_until)

    def update_band(self, low: float, high: float):
        self.band_low.set(low)
        self.band_high.set(high)


def start_metrics_server(port: int = 9090) -> bool:
    """Expose metrics on ``port``; later calls are no-ops. Returns True if it started."""
    global _METRICS_SERVER_STARTED
    if _METRICS_SERVER_STARTED:
        return False
    try:
        start_http_server(port)
    except OSError as exc:
        raise RuntimeError(f"Unable to bind Prometheus metrics server on port {port}") from exc
    _METRICS_SERVER_STARTED = True
    logger.info("Prometheus metrics server started on port %s", port)
    return True

metrics = MetricsCollector()
