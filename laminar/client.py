"""
Laminar client.

High level entry point tying together the node gateway, the per-account
sequencer, the transaction builder and the submission orchestrator.

Usage:
    async with await LaminarClient.connect() as client:
        outcome = await client.place_order(market=1, side="bid", price=100, size=10)
        if outcome.is_success:
            book = await client.fetch_orderbook(1)
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, List, Optional, Sequence, Type, TypeVar, Union

import structlog

from .config import Settings, get_settings, load_profile
from .core.execution import encoding
from .core.execution.models import (
    AmendOrder,
    CancelOrder,
    CreateOrderBook,
    Deposit,
    OrderId,
    Outcome,
    PlaceLimitOrder,
    PlaceMarketOrder,
    RegisterForCoin,
    RegisterUser,
    Side,
    TimeInForce,
    TransactionIntent,
    Withdraw,
)
from .core.execution.orchestrator import SubmissionOrchestrator
from .core.execution.poller import Clock, ConfirmationPoller, SystemClock
from .core.execution.sequencer import Sequencer
from .core.execution.tx_builder import BOOK_MODULE, Market, TransactionBuilder
from .core.orderbook.decoder import decode_events, decode_orderbook, reconstruct_order
from .core.orderbook.models import (
    AmendOrderEvent,
    CancelOrderEvent,
    CreateOrderBookEvent,
    FillEvent,
    Id,
    LaminarEvent,
    Order,
    OrderBook,
    PlaceOrderEvent,
)
from .core.recovery.errors import NotFoundError, ValidationError
from .core.recovery.strategies import RetryConfig
from .providers.node import NodeGateway
from .wallet.signer import Ed25519Signer, Signer

logger = logging.getLogger(__name__)
log = structlog.stdlib.get_logger(__name__)

E = TypeVar("E", bound=LaminarEvent)

EVENT_PAGE_SIZE = 100

OrderRef = Union[Id, OrderId, str]


def _as_id(order_id: OrderRef) -> Id:
    if isinstance(order_id, Id):
        return order_id
    parsed = _as_order_id(order_id)
    try:
        return Id.from_order_id(parsed)
    except ValueError as e:
        raise ValidationError(f"invalid order id {order_id!r}: {e}", field_name="order_id", value=order_id) from e


def _as_order_id(order_id: OrderRef) -> OrderId:
    if isinstance(order_id, OrderId):
        return order_id
    if isinstance(order_id, Id):
        return order_id.to_order_id()
    try:
        return OrderId.parse(order_id)
    except (ValueError, AttributeError) as e:
        raise ValidationError(f"invalid order id {order_id!r}: {e}", field_name="order_id", value=order_id) from e


class LaminarClient:
    """
    Trading and read client for one Laminar deployment and one account.

    Every write returns an ``Outcome`` (Confirmed, Failed or Expired) and may
    be issued concurrently with others from the same account; sequence
    numbers are handed out by the shared ``Sequencer``.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        signer: Optional[Signer] = None,
        gateway: Optional[NodeGateway] = None,
        clock: Optional[Clock] = None,
    ):
        self.settings = settings or get_settings()
        s = self.settings

        if not s.dex_address:
            raise ValidationError("dex_address is not configured", field_name="dex_address")

        if signer is None:
            if not s.private_key:
                raise ValidationError("private_key is not configured", field_name="private_key")
            signer = Ed25519Signer(s.private_key)
        self.signer = signer

        account = s.account_address or getattr(signer, "address", "")
        if not account:
            raise ValidationError("account_address is not configured", field_name="account_address")
        self.account_address = encoding.normalize_address(account)
        self.dex_address = encoding.normalize_address(s.dex_address)

        self.gateway = gateway or NodeGateway(
            s.node_url,
            timeout=s.request_timeout_seconds,
            retry_config=RetryConfig(
                max_attempts=s.max_request_attempts,
                initial_delay_seconds=s.retry_initial_delay_seconds,
                max_delay_seconds=s.retry_max_delay_seconds,
            ),
        )
        self.clock = clock or SystemClock()
        self.sequencer = Sequencer(
            self.gateway.get_sequence_number,
            rollback_unsubmitted=s.rollback_unsubmitted,
        )
        self.builder = TransactionBuilder(self.dex_address, s.markets, collateral_coin=s.collateral_coin)
        self.orchestrator = SubmissionOrchestrator(
            self.gateway,
            self.sequencer,
            self.builder,
            self.signer,
            chain_id=s.chain_id,
            max_gas_amount=s.max_gas_amount,
            gas_unit_price=s.gas_unit_price,
            expiration_window_seconds=s.expiration_window_seconds,
            max_resubmits=s.max_resubmits,
            estimate_gas=s.estimate_gas,
            gas_estimate_multiplier=s.gas_estimate_multiplier,
            clock=self.clock,
            poller=ConfirmationPoller(
                self.gateway,
                clock=self.clock,
                initial_interval=s.poll_interval_seconds,
                backoff_factor=s.poll_backoff_factor,
                max_interval=s.poll_max_interval_seconds,
                expiration_grace=s.expiration_grace_seconds,
            ),
        )

    # =========================================================================
    # Construction
    # =========================================================================

    @classmethod
    async def connect(
        cls,
        settings: Optional[Settings] = None,
        signer: Optional[Signer] = None,
        gateway: Optional[NodeGateway] = None,
        clock: Optional[Clock] = None,
    ) -> "LaminarClient":
        """
        Create a client and prime it against the node.

        Resolves the chain id (unless configured) and seeds the sequencer
        from the account's on-chain sequence number.
        """
        client = cls(settings, signer=signer, gateway=gateway, clock=clock)
        try:
            if client.settings.chain_id is None:
                await client.update_chain_id()
            await client.sequencer.resync(client.account_address)
        except BaseException:
            await client.aclose()
            raise
        log.info(
            "client_connected",
            account=client.account_address,
            dex=client.dex_address,
            chain_id=client.chain_id,
        )
        return client

    @classmethod
    async def connect_with_strings(
        cls,
        node_url: str,
        dex_address: str,
        private_key: str,
        account_address: Optional[str] = None,
        gateway: Optional[NodeGateway] = None,
        **overrides: Any,
    ) -> "LaminarClient":
        """Connect from plain strings; other settings come from ``overrides`` or the environment."""
        settings = Settings(
            node_url=node_url,
            dex_address=dex_address,
            private_key=private_key,
            account_address=account_address or "",
            **overrides,
        )
        return await cls.connect(settings, gateway=gateway)

    @classmethod
    async def connect_with_config(
        cls,
        config_path: Union[str, Path],
        profile_name: str = "default",
        dex_address: Optional[str] = None,
        gateway: Optional[NodeGateway] = None,
        **overrides: Any,
    ) -> "LaminarClient":
        """Connect using an account profile from an Aptos CLI ``config.yaml``."""
        profile = load_profile(config_path, profile_name)
        base = get_settings()
        settings = base.model_copy(
            update={
                "account_address": profile.account,
                "private_key": profile.private_key,
                "node_url": profile.rest_url or base.node_url,
                "dex_address": dex_address or base.dex_address,
                **overrides,
            }
        )
        return await cls.connect(settings, gateway=gateway)

    async def aclose(self) -> None:
        """Wait for detached submissions to release their numbers, then close HTTP."""
        await self.orchestrator.aclose()
        await self.gateway.close()

    async def close(self) -> None:
        await self.aclose()

    async def __aenter__(self) -> "LaminarClient":
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.aclose()

    # =========================================================================
    # Chain state
    # =========================================================================

    @property
    def chain_id(self) -> Optional[int]:
        return self.orchestrator.chain_id

    async def update_chain_id(self) -> int:
        """Refresh the chain id from the node (it changes on network resets)."""
        info = await self.gateway.get_index()
        self.orchestrator.chain_id = info.chain_id
        logger.info(f"Chain id is {info.chain_id}")
        return info.chain_id

    async def get_sequence_number(self) -> int:
        """On-chain sequence number of the trading account."""
        return await self.gateway.get_sequence_number(self.account_address)

    # =========================================================================
    # Writes
    # =========================================================================

    async def submit(self, intent: TransactionIntent) -> Outcome:
        """Run any intent through the orchestrator for this account."""
        return await self.orchestrator.execute(intent, self.account_address)

    async def place_order(
        self,
        market: int,
        side: Union[Side, str, int],
        price: int,
        size: int,
        time_in_force: Union[TimeInForce, str, int] = TimeInForce.GTC,
        post_only: bool = False,
    ) -> Outcome:
        return await self.submit(
            PlaceLimitOrder(
                market=market,
                side=side,
                price=price,
                size=size,
                time_in_force=time_in_force,
                post_only=post_only,
            )
        )

    async def place_market_order(self, market: int, side: Union[Side, str, int], size: int) -> Outcome:
        return await self.submit(PlaceMarketOrder(market=market, side=side, size=size))

    async def amend_order(
        self,
        market: int,
        order_id: OrderRef,
        side: Union[Side, str, int],
        price: int,
        size: int,
    ) -> Outcome:
        return await self.submit(
            AmendOrder(market=market, order_id=_as_order_id(order_id), side=side, price=price, size=size)
        )

    async def cancel_order(self, market: int, order_id: OrderRef, side: Union[Side, str, int]) -> Outcome:
        return await self.submit(CancelOrder(market=market, order_id=_as_order_id(order_id), side=side))

    async def deposit(self, amount: int, coin: Optional[str] = None) -> Outcome:
        """Move ``amount`` of ``coin`` (default: the collateral coin) into the book account."""
        return await self.submit(Deposit(amount=amount, coin=coin))

    async def withdraw(self, amount: int, coin: Optional[str] = None) -> Outcome:
        return await self.submit(Withdraw(amount=amount, coin=coin))

    async def register_user(self) -> Outcome:
        """Create the account's OrderBookStore so it can trade."""
        return await self.submit(RegisterUser())

    async def register_for_coin(self, coin: str) -> Outcome:
        return await self.submit(RegisterForCoin(coin=coin))

    async def create_orderbook(
        self,
        base: str,
        quote: str,
        price_decimals: int,
        size_decimals: int,
        min_size_amount: int,
    ) -> Outcome:
        return await self.submit(
            CreateOrderBook(
                base=base,
                quote=quote,
                price_decimals=price_decimals,
                size_decimals=size_decimals,
                min_size_amount=min_size_amount,
            )
        )

    # =========================================================================
    # Order books
    # =========================================================================

    def _resolve_market(self, market: Union[int, Market]) -> Market:
        if isinstance(market, Market):
            return market
        if market not in self.builder.markets:
            raise ValidationError(f"unknown market id: {market!r}", field_name="market", value=market)
        return self.builder.markets[market]

    def _book_type(self, side_struct: str, market: Market) -> str:
        return f"{self.dex_address}::{BOOK_MODULE}::{side_struct}<{market.base}, {market.quote}>"

    async def fetch_orderbook(self, market: Union[int, Market]) -> OrderBook:
        """
        Fetch and decode both sides of a book.

        Args:
            market: Configured market id, or explicit ``Market`` coordinates

        Raises:
            NotFoundError: The book owner holds neither side of the book
        """
        m = self._resolve_market(market)
        bids = await self.gateway.get_account_resource(m.book_owner, self._book_type("OrderBookBids", m))
        asks = await self.gateway.get_account_resource(m.book_owner, self._book_type("OrderBookAsks", m))
        if bids is None and asks is None:
            raise NotFoundError(
                f"order book <{m.base}, {m.quote}> not found under {m.book_owner}",
                resource=self._book_type("OrderBookBids", m),
            )
        return decode_orderbook(
            bids.data if bids is not None else None,
            asks.data if asks is not None else None,
            type_tags=[m.base, m.quote],
        )

    # =========================================================================
    # Events
    # =========================================================================

    @property
    def _event_store(self) -> str:
        return f"{self.dex_address}::{BOOK_MODULE}::OrderBookStore"

    async def _dex_events(self, model: Type[E]) -> List[E]:
        """All events of one kind from the account's OrderBookStore, oldest first."""
        events = []
        start = 0
        while True:
            page = await self.gateway.get_account_events(
                self.account_address,
                self._event_store,
                model.EVENT_STORE_FIELD,
                start=start,
                limit=EVENT_PAGE_SIZE,
            )
            events.extend(page)
            if len(page) < EVENT_PAGE_SIZE:
                break
            start += len(page)
        return decode_events(model, events)

    async def fetch_order_books(self) -> List[CreateOrderBookEvent]:
        """Creation events of every book this account created."""
        return await self._dex_events(CreateOrderBookEvent)

    async def fetch_all_place_events(self, book_id: Id) -> List[PlaceOrderEvent]:
        return [e for e in await self._dex_events(PlaceOrderEvent) if e.book_id == book_id]

    async def fetch_all_amend_events(self, book_id: Id) -> List[AmendOrderEvent]:
        return [e for e in await self._dex_events(AmendOrderEvent) if e.book_id == book_id]

    async def fetch_all_cancel_events(self, book_id: Id) -> List[CancelOrderEvent]:
        return [e for e in await self._dex_events(CancelOrderEvent) if e.book_id == book_id]

    async def fetch_all_fill_events(self, book_id: Id) -> List[FillEvent]:
        return [e for e in await self._dex_events(FillEvent) if e.book_id == book_id]

    async def get_place_event(self, order_id: OrderRef) -> PlaceOrderEvent:
        """
        Raises:
            NotFoundError: No order with this id was placed by the account
        """
        oid = _as_id(order_id)
        for event in await self._dex_events(PlaceOrderEvent):
            if event.order_id == oid:
                return event
        raise NotFoundError(f"order {oid} not found", resource=str(oid))

    async def get_amend_events(self, order_id: OrderRef) -> List[AmendOrderEvent]:
        oid = _as_id(order_id)
        await self.get_place_event(oid)
        return self._matching(await self._dex_events(AmendOrderEvent), oid)

    async def get_cancel_event(self, order_id: OrderRef) -> Optional[CancelOrderEvent]:
        oid = _as_id(order_id)
        matches = self._matching(await self._dex_events(CancelOrderEvent), oid)
        return matches[0] if matches else None

    async def get_fill_events(self, order_id: OrderRef) -> List[FillEvent]:
        oid = _as_id(order_id)
        await self.get_place_event(oid)
        return self._matching(await self._dex_events(FillEvent), oid)

    async def get_order(self, order_id: OrderRef) -> Order:
        """Reconstruct an order's current state from its place/amend/cancel/fill events."""
        oid = _as_id(order_id)
        place = await self.get_place_event(oid)
        amends = self._matching(await self._dex_events(AmendOrderEvent), oid)
        cancel = await self.get_cancel_event(oid)
        fills = self._matching(await self._dex_events(FillEvent), oid)
        return reconstruct_order(oid, place, amends, cancel, fills)

    @staticmethod
    def _matching(events: Sequence[E], order_id: Id) -> List[E]:
        return [e for e in events if getattr(e, "order_id", None) == order_id]

    # =========================================================================
    # Account resources
    # =========================================================================

    async def is_user_registered(self) -> bool:
        """Whether the account holds an OrderBookStore (i.e. may trade)."""
        resource = await self.gateway.get_account_resource(self.account_address, self._event_store)
        return resource is not None

    async def is_registered_for_coin(self, coin: str) -> bool:
        resource = await self.gateway.get_account_resource(self.account_address, f"0x1::coin::CoinStore<{coin}>")
        return resource is not None

    async def does_coin_exist(self, coin: str) -> bool:
        """Whether ``CoinInfo`` for ``coin`` is published under the coin's own address."""
        try:
            tag = encoding.parse_type_tag(coin)
        except encoding.EncodingError as e:
            raise ValidationError(f"invalid coin type {coin!r}: {e}", field_name="coin", value=coin) from e
        if tag[0] != "struct":
            return False
        resource = await self.gateway.get_account_resource(tag[1], f"0x1::coin::CoinInfo<{coin}>")
        return resource is not None

    async def get_coin_balance(self, coin: str) -> int:
        """
        Raises:
            NotFoundError: The account is not registered for ``coin``
        """
        resource_type = f"0x1::coin::CoinStore<{coin}>"
        resource = await self.gateway.get_account_resource(self.account_address, resource_type)
        if resource is None:
            raise NotFoundError(f"{resource_type} not found for {self.account_address}", resource=resource_type)
        return int(resource.data["coin"]["value"])
