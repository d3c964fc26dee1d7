import datetime
import logging
import aiohttp
from typing import Optional
from config import config
from strategy.execution_types import Trade


logger = logging.getLogger(__name__)

DEFAULT_PUSH_URL = 'https://api.line.me/v2/bot/message/push'


class LineNotifier:
    """Push plain-text messages to a single LINE user."""

    def __init__(
        self,
        channel_token: Optional[str] = None,
        user_id: Optional[str] = None,
        push_url: Optional[str] = None,
    ):
        notifier_cfg = config.section('notifier')
        token = channel_token or notifier_cfg.get('channel_token')
        recipient = user_id or notifier_cfg.get('user_id')
        self.push_url = push_url or notifier_cfg.get('push_url') or DEFAULT_PUSH_URL
        # Unresolved ${ENV} placeholders count as not configured
        if token and recipient and not str(token).startswith('${') and not str(recipient).startswith('${'):
            self.channel_token = token
            self.user_id = recipient
            self.enabled = True
        else:
            self.channel_token = None
            self.user_id = None
            self.enabled = False

    async def push(self, recipient_id: str, text: str) -> None:
        if not self.enabled:
            logger.warning("[Notifier] %s", text)
            return

        payload = {
            'to': recipient_id,
            'messages': [{'type': 'text', 'text': text}],
        }
        try:
            async with aiohttp.ClientSession() as session:
                async with session.post(
                    self.push_url,
                    json=payload,
                    headers={
                        'Authorization': f'Bearer {self.channel_token}',
                        'Content-Type': 'application/json',
                    },
                    timeout=aiohttp.ClientTimeout(total=5)
                ) as response:
                    if response.status != 200:
                        logger.error(
                            "[Notifier] Push failed with status %s",
                            response.status,
                        )
        except Exception as e:
            logger.error("[Notifier] Push error: %s", e)

    async def send_alert(self, text: str) -> None:
        await self.push(self.user_id, text)

    async def report_trade(self, trade: Trade) -> None:
        await self.send_alert(
            f"{datetime.datetime.now()}: A trade was closed with {trade.pnl} pnl."
        )
