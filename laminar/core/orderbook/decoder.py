"""
Order book decoding.

The book module stores each side as a splay tree resource:

    {
      "id": {...}, "instrument": {...},
      "tree": {
        "nodes": [{"key": "<price>", "value": <OrderQueue>, ...}, ...],
        "removed_nodes": ["<index>", ...],
        ...
      }
    }

Each ``OrderQueue`` is an index-linked list: ``head.value`` points into
``nodes``, every node's ``next.value`` points to the following one and
``u64::MAX`` terminates the list.
"""

import logging
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Type, TypeVar

from pydantic import ValidationError as PydanticValidationError

from ..execution.encoding import U64_MAX
from .models import (
    AmendOrderEvent,
    CancelOrderEvent,
    FillEvent,
    Id,
    Instrument,
    LaminarEvent,
    Order,
    OrderBook,
    OrderState,
    PlaceOrderEvent,
)

logger = logging.getLogger(__name__)

E = TypeVar("E", bound=LaminarEvent)


class OrderBookDecodeError(ValueError):
    """Resource data does not have the expected book layout."""


def _tree(side: Mapping[str, Any]) -> Mapping[str, Any]:
    # Resources either hold the tree directly or under a single wrapper field
    if "nodes" in side:
        return side
    for key in ("tree", "bids", "asks"):
        if isinstance(side.get(key), Mapping) and "nodes" in side[key]:
            return side[key]
    raise OrderBookDecodeError("book side has no splay tree nodes")


def decode_order_queue(queue: Mapping[str, Any]) -> List[Order]:
    """Walk one price level's linked queue from head to the u64::MAX sentinel."""
    nodes = queue.get("nodes", [])
    orders: List[Order] = []
    current = int(queue["head"]["value"])
    seen = set()
    while current != U64_MAX:
        if current in seen:
            raise OrderBookDecodeError(f"order queue cycles at index {current}")
        seen.add(current)
        try:
            node = nodes[current]
        except IndexError as e:
            raise OrderBookDecodeError(f"order queue points past its nodes: {current}") from e
        wrapped = node["value"]["vec"]
        if not wrapped:
            raise OrderBookDecodeError(f"order queue node {current} is empty")
        orders.append(Order.model_validate(wrapped[0]))
        current = int(node["next"]["value"])
    return orders


def decode_book_side(side: Mapping[str, Any]) -> Dict[int, List[Order]]:
    """Price -> orders (queue order) for every live tree node."""
    tree = _tree(side)
    removed = {int(i) for i in tree.get("removed_nodes", [])}
    levels: Dict[int, List[Order]] = {}
    for index, node in enumerate(tree["nodes"]):
        if index in removed:
            continue
        levels[int(node["key"])] = decode_order_queue(node["value"])
    return levels


def decode_orderbook(
    bids: Optional[Mapping[str, Any]],
    asks: Optional[Mapping[str, Any]],
    type_tags: Sequence[str] = (),
) -> OrderBook:
    """
    Combine the bids and asks resources of one book.

    Bids come back best-first (descending price), asks ascending.
    """
    if bids is None and asks is None:
        raise OrderBookDecodeError("either bids or asks must be provided")
    header = bids if bids is not None else asks
    try:
        book_id = Id.model_validate(header["id"])
        instrument = Instrument.model_validate(header["instrument"])
        bid_levels = decode_book_side(bids) if bids is not None else {}
        ask_levels = decode_book_side(asks) if asks is not None else {}
    except (KeyError, TypeError, PydanticValidationError) as e:
        raise OrderBookDecodeError(f"malformed order book resource: {e}") from e

    return OrderBook(
        id=book_id,
        instrument=instrument,
        bids=dict(sorted(bid_levels.items(), reverse=True)),
        asks=dict(sorted(ask_levels.items())),
        type_tags=list(type_tags),
    )


def decode_events(model: Type[E], events: Iterable[Any]) -> List[E]:
    """Decode node events (objects with ``.data`` or raw dicts) into ``model``."""
    decoded: List[E] = []
    for event in events:
        data = event.data if hasattr(event, "data") else event.get("data", event)
        decoded.append(model.model_validate(data))
    return decoded


def reconstruct_order(
    order_id: Id,
    place: PlaceOrderEvent,
    amends: Sequence[AmendOrderEvent],
    cancel: Optional[CancelOrderEvent],
    fills: Sequence[FillEvent],
) -> Order:
    """
    Rebuild an order from its event history.

    The latest amend sets price and size. Remaining size comes from the last
    fill, or the full size when nothing filled. Closed when fully filled or
    cancelled, PartiallyFilled after any fill, otherwise Open.
    """
    if amends:
        price, size = amends[-1].price, amends[-1].size
    else:
        price, size = place.price, place.size

    remaining = fills[-1].remaining_size if fills else size

    if remaining == 0 or cancel is not None:
        state = OrderState.CLOSED
    elif fills:
        state = OrderState.PARTIALLY_FILLED
    else:
        state = OrderState.OPEN

    return Order(
        id=order_id,
        side=place.side,
        price=price,
        size=size,
        post_only=place.post_only,
        remaining_size=remaining,
        state=state,
        fills=list(fills),
    )
