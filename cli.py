#!/usr/bin/env python3
"""Simple CLI for trading on Laminar from a terminal"""

import argparse
import asyncio
import sys
from typing import List, Optional

from laminar.client import LaminarClient
from laminar.config import get_settings
from laminar.core.execution.models import Outcome
from laminar.core.orderbook.models import OrderBook
from laminar.core.recovery.errors import LaminarError
from laminar.logging_config import setup_logging


def print_outcome(outcome: Outcome) -> None:
    """Pretty print a submission outcome"""
    if outcome.is_success:
        print(f"✅ Confirmed {outcome.tx_hash}")
        print(f"   Version: {outcome.version}  Gas used: {outcome.gas_used}  Seq: {outcome.sequence_number}")
        for event in outcome.effects:
            print(f"   • {event.type.split('::')[-1]} {event.data}")
    elif outcome.is_expired:
        print(f"⌛ Expired {outcome.tx_hash} (seq {outcome.sequence_number})")
        print(f"   {outcome.reason}")
    else:
        category = outcome.category.value if outcome.category else "unknown"
        print(f"❌ Failed [{category}] {outcome.reason}")
        if outcome.tx_hash:
            print(f"   Tx: {outcome.tx_hash}")


def print_orderbook(book: OrderBook, depth: int = 10) -> None:
    """Pretty print both sides of a book"""
    print(f"\n📖 Order Book {book.id}")
    if book.type_tags:
        print(f"Pair: {' / '.join(book.type_tags)}")
    print("=" * 50)

    asks = list(book.asks.items())[:depth]
    for price, orders in reversed(asks):
        size = sum(o.remaining_size or o.size for o in orders)
        print(f"  ASK {price:>14} {size:>14} ({len(orders)})")

    spread = book.spread
    print("-" * 50 + (f" spread {spread}" if spread is not None else ""))

    for price, orders in list(book.bids.items())[:depth]:
        size = sum(o.remaining_size or o.size for o in orders)
        print(f"  BID {price:>14} {size:>14} ({len(orders)})")


async def cli_book(client: LaminarClient, market: int, depth: int):
    book = await client.fetch_orderbook(market)
    print_orderbook(book, depth)


async def cli_place(
    client: LaminarClient,
    market: int,
    side: str,
    price: Optional[int],
    size: int,
    tif: str,
    post_only: bool,
):
    if price is None:
        print(f"🚀 Market {side} {size} on market {market}...")
        outcome = await client.place_market_order(market, side, size)
    else:
        print(f"🚀 Limit {side} {size} @ {price} on market {market}...")
        outcome = await client.place_order(market, side, price, size, time_in_force=tif, post_only=post_only)
    print_outcome(outcome)


async def cli_cancel(client: LaminarClient, market: int, order_id: str, side: str):
    print(f"🗑️  Cancelling {order_id}...")
    print_outcome(await client.cancel_order(market, order_id, side))


async def cli_transfer(client: LaminarClient, command: str, amount: int, coin: Optional[str]):
    action = client.deposit if command == "deposit" else client.withdraw
    print(f"💸 {command.title()} {amount} {coin or client.settings.collateral_coin}...")
    print_outcome(await action(amount, coin))


async def cli_sequence(client: LaminarClient):
    on_chain = await client.get_sequence_number()
    state = client.sequencer.get_state(client.account_address)
    print(f"Account:  {client.account_address}")
    print(f"On-chain: {on_chain}")
    if state:
        print(f"Next:     {state.next_sequence}")
        print(f"In flight: {sorted(state.in_flight) or '-'}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Laminar DEX CLI")
    parser.add_argument("--profile", help="Aptos CLI profile name to trade with")
    parser.add_argument("--config", default=".aptos/config.yaml", help="Aptos CLI config file")
    parser.add_argument("--log-level", help="Override LAMINAR_LOG_LEVEL")
    subparsers = parser.add_subparsers(dest="command")

    book_parser = subparsers.add_parser("book", help="Show an order book")
    book_parser.add_argument("market", type=int, help="Market id")
    book_parser.add_argument("--depth", type=int, default=10, help="Price levels per side")

    place_parser = subparsers.add_parser("place", help="Place a limit order (or market order without --price)")
    place_parser.add_argument("market", type=int, help="Market id")
    place_parser.add_argument("side", choices=["bid", "ask", "buy", "sell"])
    place_parser.add_argument("size", type=int, help="Size in base lots")
    place_parser.add_argument("--price", type=int, help="Limit price in ticks")
    place_parser.add_argument("--tif", default="GTC", choices=["GTC", "IOC", "FOK"])
    place_parser.add_argument("--post-only", action="store_true")

    cancel_parser = subparsers.add_parser("cancel", help="Cancel an order")
    cancel_parser.add_argument("market", type=int, help="Market id")
    cancel_parser.add_argument("order_id", help="Order id as <addr>:<creation_num>")
    cancel_parser.add_argument("side", choices=["bid", "ask", "buy", "sell"])

    for name in ("deposit", "withdraw"):
        transfer_parser = subparsers.add_parser(name, help=f"{name.title()} collateral")
        transfer_parser.add_argument("amount", type=int)
        transfer_parser.add_argument("--coin", help="Coin type (default: configured collateral)")

    subparsers.add_parser("sequence", help="Show sequence number state")

    return parser


async def main(argv: Optional[List[str]] = None, gateway=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return

    setup_logging(args.log_level)

    if args.profile:
        client = await LaminarClient.connect_with_config(args.config, args.profile, gateway=gateway)
    else:
        client = await LaminarClient.connect(get_settings(), gateway=gateway)

    async with client:
        command = args.command.lower()

        if command == "book":
            await cli_book(client, args.market, args.depth)

        elif command == "place":
            await cli_place(client, args.market, args.side, args.price, args.size, args.tif, args.post_only)

        elif command == "cancel":
            await cli_cancel(client, args.market, args.order_id, args.side)

        elif command in ("deposit", "withdraw"):
            await cli_transfer(client, command, args.amount, args.coin)

        elif command == "sequence":
            await cli_sequence(client)

        else:
            print(f"❌ Unknown command: {command}")
            parser.print_help()


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except LaminarError as e:
        print(f"❌ Error: {e.message}")
        sys.exit(1)
