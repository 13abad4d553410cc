"""
Laminar Order Book Models

Models for order books, orders and the events the book module emits.
Move u64 values arrive as JSON strings and are coerced to int.
"""

from __future__ import annotations

from enum import IntEnum
from typing import ClassVar, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..execution.encoding import normalize_address
from ..execution.models import OrderId, Side, TimeInForce


class OrderState(IntEnum):
    """Order lifecycle state."""

    OPEN = 0
    PARTIALLY_FILLED = 1
    CLOSED = 2


class MoveStruct(BaseModel):
    """Base for decoded Move structs; u8 enums may arrive as numeric strings."""

    @field_validator("side", "time_in_force", "state", "reason", mode="before", check_fields=False)
    @classmethod
    def coerce_int_enum(cls, v):
        if isinstance(v, str) and v.isdigit():
            return int(v)
        return v


class Id(BaseModel):
    """GUID of a book or order: creator address plus creation number."""

    creation_num: int = Field(..., description="GUID creation number")
    addr: str = Field(..., description="Creator address")

    @field_validator("addr")
    @classmethod
    def normalize_addr(cls, v: str) -> str:
        return normalize_address(v)

    def to_order_id(self) -> OrderId:
        return OrderId(creation_num=self.creation_num, addr=self.addr)

    @classmethod
    def from_order_id(cls, order_id: OrderId) -> "Id":
        return cls(creation_num=order_id.creation_num, addr=order_id.addr)

    def __str__(self) -> str:
        return f"{self.addr}:{self.creation_num}"

    model_config = ConfigDict(frozen=True)


class TypeInfo(BaseModel):
    """Move ``TypeInfo``; module and struct names arrive hex encoded."""

    account_address: str
    module_name: str
    struct_name: str

    @field_validator("module_name", "struct_name", mode="before")
    @classmethod
    def decode_hex_name(cls, v: str) -> str:
        if isinstance(v, str) and v.startswith("0x"):
            return bytes.fromhex(v[2:]).decode("utf-8")
        return v

    def __str__(self) -> str:
        return f"{self.account_address}::{self.module_name}::{self.struct_name}"


class Instrument(BaseModel):
    """Static parameters of an order book."""

    owner: str
    price_decimals: int
    size_decimals: int
    min_size_amount: int
    base_decimals: int
    quote_decimals: int


class Order(MoveStruct):
    """A resting or historical order."""

    id: Id
    side: Side
    price: int
    size: int
    post_only: bool = False
    remaining_size: int = 0
    state: OrderState = OrderState.OPEN
    fills: List["FillEvent"] = Field(default_factory=list)


class OrderBook(BaseModel):
    """Both sides of a book, keyed by price (bids descending, asks ascending)."""

    id: Id
    instrument: Instrument
    bids: Dict[int, List[Order]] = Field(default_factory=dict)
    asks: Dict[int, List[Order]] = Field(default_factory=dict)
    type_tags: List[str] = Field(default_factory=list)

    @property
    def best_bid(self) -> Optional[int]:
        return max(self.bids) if self.bids else None

    @property
    def best_ask(self) -> Optional[int]:
        return min(self.asks) if self.asks else None

    @property
    def spread(self) -> Optional[int]:
        if self.best_bid is None or self.best_ask is None:
            return None
        return self.best_ask - self.best_bid


# =============================================================================
# Events (stored in the user's OrderBookStore)
# =============================================================================


class LaminarEvent(MoveStruct):
    """Base class for book events; ``EVENT_STORE_FIELD`` names the handle field."""

    EVENT_STORE_FIELD: ClassVar[str] = ""

    book_id: Id
    time: int = 0


class CreateOrderBookEvent(LaminarEvent):
    EVENT_STORE_FIELD: ClassVar[str] = "create_orderbook_events"

    creator: str
    base: TypeInfo
    quote: TypeInfo
    price_decimals: int
    size_decimals: int
    min_size_amount: int
    base_decimals: int
    quote_decimals: int


class PlaceOrderEvent(LaminarEvent):
    EVENT_STORE_FIELD: ClassVar[str] = "place_order_events"

    order_id: Id
    side: Side
    price: int
    size: int
    time_in_force: TimeInForce
    post_only: bool


class AmendOrderEvent(LaminarEvent):
    EVENT_STORE_FIELD: ClassVar[str] = "amend_order_events"

    order_id: Id
    amend_id: Id
    side: Side
    price: int
    size: int


class CancelOrderEvent(LaminarEvent):
    EVENT_STORE_FIELD: ClassVar[str] = "cancel_order_events"

    order_id: Id
    cancel_id: Id
    side: Side
    reason: int = 0


class FillEvent(LaminarEvent):
    EVENT_STORE_FIELD: ClassVar[str] = "fill_events"

    order_id: Id
    side: Side
    price: int
    fill_size: int
    fee: int
    fee_rate: int
    remaining_size: int
    is_maker: bool


Order.model_rebuild()
