"""
Order book and event decoding for the Laminar book module.
"""

from .models import (
    OrderState,
    Id,
    TypeInfo,
    Instrument,
    Order,
    OrderBook,
    LaminarEvent,
    CreateOrderBookEvent,
    PlaceOrderEvent,
    AmendOrderEvent,
    CancelOrderEvent,
    FillEvent,
)

from .decoder import (
    OrderBookDecodeError,
    decode_order_queue,
    decode_book_side,
    decode_orderbook,
    decode_events,
    reconstruct_order,
)

__all__ = [
    # Models
    "OrderState",
    "Id",
    "TypeInfo",
    "Instrument",
    "Order",
    "OrderBook",
    "LaminarEvent",
    "CreateOrderBookEvent",
    "PlaceOrderEvent",
    "AmendOrderEvent",
    "CancelOrderEvent",
    "FillEvent",
    # Decoding
    "OrderBookDecodeError",
    "decode_order_queue",
    "decode_book_side",
    "decode_orderbook",
    "decode_events",
    "reconstruct_order",
]
