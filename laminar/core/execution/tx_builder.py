"""
Transaction builder for Laminar entry functions.
"""

from dataclasses import dataclass
from typing import Any, Mapping, Optional, Tuple

from ..recovery.errors import ValidationError
from . import encoding
from .models import (
    AmendOrder,
    CancelOrder,
    ChainMetadata,
    CreateOrderBook,
    Deposit,
    EntryFunction,
    OrderId,
    PlaceLimitOrder,
    PlaceMarketOrder,
    RegisterForCoin,
    RegisterUser,
    Side,
    TimeInForce,
    TransactionIntent,
    UnsignedTransaction,
    Withdraw,
)


BOOK_MODULE = "book"
MANAGED_COIN_ADDRESS = "0x1"
MANAGED_COIN_MODULE = "managed_coin"

U8_MAX = 2**8 - 1


@dataclass(frozen=True)
class Market:
    """Order book coordinates: coin pair and the account holding the book."""
    base: str
    quote: str
    book_owner: str


def _check_u64(name: str, value: Any, positive: bool = True) -> None:
    if not isinstance(value, int) or isinstance(value, bool):
        raise ValidationError(f"{name} must be an integer, got {value!r}", field_name=name, value=value)
    if positive and value <= 0:
        raise ValidationError(f"{name} must be positive, got {value}", field_name=name, value=value)
    if value < 0 or value > encoding.U64_MAX:
        raise ValidationError(f"{name} out of u64 range: {value}", field_name=name, value=value)


def _check_type_tag(name: str, tag: Any) -> None:
    if not isinstance(tag, str):
        raise ValidationError(f"{name} must be a Move type tag string", field_name=name, value=tag)
    try:
        encoding.parse_type_tag(tag)
    except encoding.EncodingError as e:
        raise ValidationError(f"invalid {name}: {e}", field_name=name, value=tag) from e


def _check_address(name: str, address: Any) -> None:
    try:
        encoding.address_bytes(address)
    except encoding.EncodingError as e:
        raise ValidationError(f"invalid {name}: {e}", field_name=name, value=address) from e


class TransactionBuilder:
    """
    Builds unsigned transactions from intents.

    Pure and clock-free: the same intent, sender, sequence number and chain
    metadata always produce byte-identical signing messages. Expiration is
    supplied by the caller through ``ChainMetadata``.
    """

    def __init__(
        self,
        dex_address: str,
        markets: Optional[Mapping[int, Any]] = None,
        collateral_coin: str = "0x1::aptos_coin::AptosCoin",
    ):
        _check_address("dex_address", dex_address)
        self.dex_address = dex_address
        self.markets = {
            int(market_id): Market(m.base, m.quote, m.book_owner)
            for market_id, m in (markets or {}).items()
        }
        self.collateral_coin = collateral_coin

    # =========================================================================
    # Validation
    # =========================================================================

    def validate(self, intent: TransactionIntent) -> None:
        """Reject malformed intents. Never touches the network."""
        if isinstance(intent, PlaceLimitOrder):
            self._market(intent.market)
            self._side(intent.side)
            _check_u64("price", intent.price)
            _check_u64("size", intent.size)
            self._time_in_force(intent.time_in_force)
            if not isinstance(intent.post_only, bool):
                raise ValidationError("post_only must be a bool", field_name="post_only", value=intent.post_only)
        elif isinstance(intent, PlaceMarketOrder):
            self._market(intent.market)
            self._side(intent.side)
            _check_u64("size", intent.size)
        elif isinstance(intent, AmendOrder):
            self._market(intent.market)
            self._order_id(intent.order_id)
            self._side(intent.side)
            _check_u64("price", intent.price)
            _check_u64("size", intent.size)
        elif isinstance(intent, CancelOrder):
            self._market(intent.market)
            self._order_id(intent.order_id)
            self._side(intent.side)
        elif isinstance(intent, (Deposit, Withdraw)):
            _check_u64("amount", intent.amount)
            if intent.coin is not None:
                _check_type_tag("coin", intent.coin)
        elif isinstance(intent, RegisterForCoin):
            _check_type_tag("coin", intent.coin)
        elif isinstance(intent, CreateOrderBook):
            _check_type_tag("base", intent.base)
            _check_type_tag("quote", intent.quote)
            for name in ("price_decimals", "size_decimals"):
                value = getattr(intent, name)
                if not isinstance(value, int) or isinstance(value, bool) or not 0 <= value <= U8_MAX:
                    raise ValidationError(f"{name} must fit in a u8, got {value!r}", field_name=name, value=value)
            _check_u64("min_size_amount", intent.min_size_amount)
        elif isinstance(intent, RegisterUser):
            pass
        else:
            raise ValidationError(f"unsupported intent: {type(intent).__name__}")

    def _market(self, market_id: Any) -> Market:
        market = self.markets.get(market_id) if isinstance(market_id, int) else None
        if market is None:
            raise ValidationError(f"unknown market id: {market_id!r}", field_name="market", value=market_id)
        return market

    @staticmethod
    def _side(side: Any) -> Side:
        try:
            return Side.parse(side)
        except (ValueError, KeyError) as e:
            raise ValidationError(f"unknown side: {side!r}", field_name="side", value=side) from e

    @staticmethod
    def _time_in_force(tif: Any) -> TimeInForce:
        try:
            return TimeInForce.parse(tif)
        except (ValueError, KeyError) as e:
            raise ValidationError(
                f"unknown time in force: {tif!r}", field_name="time_in_force", value=tif
            ) from e

    @staticmethod
    def _order_id(order_id: Any) -> None:
        if not isinstance(order_id, OrderId):
            raise ValidationError(
                f"order_id must be an OrderId, got {type(order_id).__name__}",
                field_name="order_id",
                value=order_id,
            )
        _check_u64("order_id.creation_num", order_id.creation_num, positive=False)
        _check_address("order_id.addr", order_id.addr)

    # =========================================================================
    # Payloads
    # =========================================================================

    def _book_call(self, function: str, market: Market, args: Tuple[bytes, ...]) -> EntryFunction:
        return EntryFunction(
            module_address=self.dex_address,
            module_name=BOOK_MODULE,
            function=function,
            type_args=(market.base, market.quote),
            args=(encoding.encode_address(market.book_owner),) + args,
        )

    def payload(self, intent: TransactionIntent) -> EntryFunction:
        """Map a validated intent onto its entry function call."""
        if isinstance(intent, PlaceLimitOrder):
            return self._book_call(
                "place_limit_order",
                self._market(intent.market),
                (
                    encoding.encode_u8(self._side(intent.side)),
                    encoding.encode_u64(intent.price),
                    encoding.encode_u64(intent.size),
                    encoding.encode_u8(self._time_in_force(intent.time_in_force)),
                    encoding.encode_bool(intent.post_only),
                ),
            )

        if isinstance(intent, PlaceMarketOrder):
            return self._book_call(
                "place_market_order",
                self._market(intent.market),
                (
                    encoding.encode_u8(self._side(intent.side)),
                    encoding.encode_u64(intent.size),
                ),
            )

        if isinstance(intent, AmendOrder):
            return self._book_call(
                "amend_order",
                self._market(intent.market),
                (
                    encoding.encode_u64(intent.order_id.creation_num),
                    encoding.encode_u8(self._side(intent.side)),
                    encoding.encode_u64(intent.price),
                    encoding.encode_u64(intent.size),
                ),
            )

        if isinstance(intent, CancelOrder):
            return self._book_call(
                "cancel_order",
                self._market(intent.market),
                (
                    encoding.encode_u64(intent.order_id.creation_num),
                    encoding.encode_u8(self._side(intent.side)),
                ),
            )

        if isinstance(intent, (Deposit, Withdraw)):
            return EntryFunction(
                module_address=self.dex_address,
                module_name=BOOK_MODULE,
                function="deposit" if isinstance(intent, Deposit) else "withdraw",
                type_args=(intent.coin or self.collateral_coin,),
                args=(encoding.encode_u64(intent.amount),),
            )

        if isinstance(intent, RegisterUser):
            return EntryFunction(
                module_address=self.dex_address,
                module_name=BOOK_MODULE,
                function="register_user",
            )

        if isinstance(intent, RegisterForCoin):
            return EntryFunction(
                module_address=MANAGED_COIN_ADDRESS,
                module_name=MANAGED_COIN_MODULE,
                function="register",
                type_args=(intent.coin,),
            )

        if isinstance(intent, CreateOrderBook):
            return EntryFunction(
                module_address=self.dex_address,
                module_name=BOOK_MODULE,
                function="create_orderbook",
                type_args=(intent.base, intent.quote),
                args=(
                    encoding.encode_u8(intent.price_decimals),
                    encoding.encode_u8(intent.size_decimals),
                    encoding.encode_u64(intent.min_size_amount),
                ),
            )

        raise ValidationError(f"unsupported intent: {type(intent).__name__}")

    def build(
        self,
        intent: TransactionIntent,
        sender: str,
        sequence_number: int,
        metadata: ChainMetadata,
    ) -> UnsignedTransaction:
        """
        Assemble an unsigned transaction.

        Args:
            intent: The logical action
            sender: Signing account address
            sequence_number: Number reserved from the sequencer
            metadata: Chain id, gas parameters and absolute expiration

        Returns:
            UnsignedTransaction ready to be signed
        """
        self.validate(intent)
        _check_address("sender", sender)
        _check_u64("sequence_number", sequence_number, positive=False)
        _check_u64("max_gas_amount", metadata.max_gas_amount)
        _check_u64("gas_unit_price", metadata.gas_unit_price, positive=False)
        _check_u64("expiration_timestamp_secs", metadata.expiration_timestamp_secs)
        if not isinstance(metadata.chain_id, int) or not 0 < metadata.chain_id <= U8_MAX:
            raise ValidationError(
                f"chain_id must fit in a u8, got {metadata.chain_id!r}",
                field_name="chain_id",
                value=metadata.chain_id,
            )

        return UnsignedTransaction(
            sender=encoding.normalize_address(sender),
            sequence_number=sequence_number,
            payload=self.payload(intent),
            max_gas_amount=metadata.max_gas_amount,
            gas_unit_price=metadata.gas_unit_price,
            expiration_timestamp_secs=metadata.expiration_timestamp_secs,
            chain_id=metadata.chain_id,
            intent=intent,
        )
