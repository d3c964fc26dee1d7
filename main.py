import asyncio
import logging
import sys

from api.alerts import LineNotifier
from api.metrics import start_metrics_server
from config import config, validate_credentials
from monitoring.async_utils import cancel_on_signals
from monitoring.logging_utils import setup_logging
from strategy.market_maker import MarketMaker
from strategy.transports.quoine import QuoineTransport


logger = logging.getLogger(__name__)


def build_market_maker(config_obj=None) -> MarketMaker:
    cfg = config_obj or config
    validate_credentials(cfg)
    return MarketMaker(
        QuoineTransport(),
        LineNotifier(),
        trading_cfg=cfg.section('trading'),
    )


async def main():
    market_maker = build_market_maker(config)

    port = int(config.section('monitoring').get('prometheus_port', 0) or 0)
    if port:
        start_metrics_server(port)

    task = asyncio.current_task()
    if task is not None:
        cancel_on_signals(task)

    await market_maker.run()


def cli() -> int:
    setup_logging(config.section('monitoring').get('log_level', 'INFO'))
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        # asyncio.run re-raises SIGINT after the loop has already cleaned up
        logger.info("Stopped by user")
    return 0


if __name__ == "__main__":
    sys.exit(cli())
