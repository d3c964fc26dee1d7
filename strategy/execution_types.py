from dataclasses import dataclass, field
from typing import Any, Dict, Optional


def as_float(value: Any) -> Optional[float]:
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


@dataclass(frozen=True)
class Execution:
    """A single matched trade from the venue's tape."""

    id: str
    quantity: float
    price: float
    taker_side: str
    created_at: float

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "Execution":
        return cls(
            id=str(payload.get("id")),
            quantity=as_float(payload.get("quantity")) or 0.0,
            price=as_float(payload.get("price")) or 0.0,
            taker_side=payload.get("taker_side") or "",
            created_at=as_float(payload.get("created_at")) or 0.0,
        )


@dataclass
class Order:
    id: str
    status: Optional[str] = None
    side: Optional[str] = None
    order_type: Optional[str] = None
    quantity: Optional[float] = None
    filled_quantity: Optional[float] = None
    price: Optional[float] = None
    leverage_level: Optional[int] = None
    product_id: Optional[int] = None
    funding_currency: Optional[str] = None
    created_at: Optional[float] = None
    updated_at: Optional[float] = None
    raw: Dict[str, Any] = field(default_factory=dict, repr=False)

    @property
    def is_live(self) -> bool:
        return self.status == "live"

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "Order":
        leverage = payload.get("leverage_level")
        product_id = payload.get("product_id")
        return cls(
            id=str(payload.get("id")),
            status=payload.get("status"),
            side=payload.get("side"),
            order_type=payload.get("order_type"),
            quantity=as_float(payload.get("quantity")),
            filled_quantity=as_float(payload.get("filled_quantity")),
            price=as_float(payload.get("price")),
            leverage_level=int(leverage) if leverage is not None else None,
            product_id=int(product_id) if product_id is not None else None,
            funding_currency=payload.get("funding_currency"),
            created_at=as_float(payload.get("created_at")),
            updated_at=as_float(payload.get("updated_at")),
            raw=payload,
        )


@dataclass
class Trade:
    """An open (or just closed) leveraged position."""

    id: str
    pnl: Optional[float] = None
    status: Optional[str] = None
    side: Optional[str] = None
    quantity: Optional[float] = None
    open_price: Optional[float] = None
    close_price: Optional[float] = None
    created_at: float = 0.0
    updated_at: float = 0.0
    raw: Dict[str, Any] = field(default_factory=dict, repr=False)

    @property
    def is_loss(self) -> bool:
        return self.pnl is not None and self.pnl < 0

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "Trade":
        return cls(
            id=str(payload.get("id")),
            pnl=as_float(payload.get("pnl")),
            status=payload.get("status"),
            side=payload.get("side"),
            quantity=as_float(payload.get("quantity")),
            open_price=as_float(payload.get("open_price")),
            close_price=as_float(payload.get("close_price")),
            created_at=as_float(payload.get("created_at")) or 0.0,
            updated_at=as_float(payload.get("updated_at")) or 0.0,
            raw=payload,
        )


@dataclass(frozen=True)
class Band:
    low: float
    high: float
