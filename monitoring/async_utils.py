import asyncio
import logging
import signal
from typing import Iterable, List


logger = logging.getLogger(__name__)


def cancel_on_signals(
    task: asyncio.Task,
    signals: Iterable[int] = (signal.SIGTERM,),
) -> List[int]:
    """Cancel ``task`` when one of ``signals`` arrives, so its cleanup runs.

    SIGINT is left to ``asyncio.run``, which already cancels the main task.
    Returns the signals that could be installed.
    """
    loop = asyncio.get_running_loop()
    installed: List[int] = []
    for sig in signals:
        try:
            loop.add_signal_handler(sig, task.cancel)
        except (NotImplementedError, RuntimeError, ValueError) as exc:
            logger.debug("Signal handler for %s not installed: %s", sig, exc)
            continue
        installed.append(sig)
    return installed
