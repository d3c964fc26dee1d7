import asyncio
import logging
from typing import Any, Dict, List, Optional

from config import config
from ingest.quoine_rest import QuoineAPIError, QuoineRESTClient

from strategy.execution_types import Execution, Order, Trade, as_float


__all__ = ["QuoineTransport", "QuoineAPIError"]

logger = logging.getLogger(__name__)


class QuoineTransport:
    """Thin adapter around the Quoine REST API with typed responses."""

    def __init__(
        self,
        rest: Optional[QuoineRESTClient] = None,
        product_id: Optional[int] = None,
        leverage_level: Optional[int] = None,
        funding_currency: Optional[str] = None,
    ) -> None:
        exchange_cfg = config.section("exchange")
        self.product_id = int(product_id or exchange_cfg.get("product_id", 5))
        self.leverage_level = int(leverage_level or exchange_cfg.get("leverage_level", 25))
        self.funding_currency = funding_currency or exchange_cfg.get("funding_currency", "JPY")
        self._rest = rest
        self._lock = asyncio.Lock()

    def _client(self) -> QuoineRESTClient:
        if self._rest is None:
            self._rest = QuoineRESTClient()
        return self._rest

    async def fetch_executions(self, since_ts: int) -> List[Execution]:
        rest = self._client()
        payload = await rest.get(
            f"/executions?product_id={self.product_id}&timestamp={since_ts}",
            signed=False,
        )
        executions: List[Execution] = []
        for item in self._models(payload):
            price = as_float(item.get("price"))
            if price is None or price <= 0:
                logger.warning("Dropping execution %s with unusable price %r", item.get("id"), item.get("price"))
                continue
            executions.append(Execution.from_payload(item))
        return executions

    async def fetch_orders(self, status: str = "live") -> List[Order]:
        rest = self._client()
        payload = await rest.get(f"/orders?status={status}")
        return [Order.from_payload(item) for item in self._models(payload)]

    async def fetch_order(self, order_id: str) -> Order:
        rest = self._client()
        payload = await rest.get(f"/orders/{order_id}")
        return Order.from_payload(payload)

    async def place_limit_order(self, side: str, quantity: float, price: float) -> Order:
        rest = self._client()
        body = {
            "order_type": "limit",
            "product_id": self.product_id,
            "side": side,
            "quantity": quantity,
            "price": price,
            "leverage_level": self.leverage_level,
            "funding_currency": self.funding_currency,
        }
        payload = await rest.post(f"/orders?product_id={self.product_id}", body=body)
        return Order.from_payload(payload)

    async def cancel_order(self, order_id: str) -> Order:
        rest = self._client()
        payload = await rest.put(f"/orders/{order_id}/cancel")
        return Order.from_payload(payload)

    async def fetch_trades(self, status: str = "open") -> List[Trade]:
        rest = self._client()
        payload = await rest.get(f"/trades?status={status}")
        return [Trade.from_payload(item) for item in self._models(payload)]

    async def close_trade(self, trade_id: str) -> Trade:
        rest = self._client()
        payload = await rest.put(f"/trades/{trade_id}/close")
        return Trade.from_payload(payload)

    async def close(self) -> None:
        async with self._lock:
            if self._rest:
                try:
                    await self._rest.close()
                finally:
                    self._rest = None

    @staticmethod
    def _models(payload: Any) -> List[Dict[str, Any]]:
        # /orders and /trades paginate under "models"; /executions is a bare list
        if isinstance(payload, dict):
            payload = payload.get("models") or []
        if not isinstance(payload, list):
            return []
        return [item for item in payload if isinstance(item, dict)]
