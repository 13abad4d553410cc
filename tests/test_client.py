"""
Tests for the LaminarClient facade against an in-memory node.
"""

import asyncio

import pytest
import pytest_asyncio

import laminar.client as client_module
from conftest import BASE, BOOK_OWNER, DEX, PRIVATE_KEY, QUOTE, FakeNode
from laminar import LaminarClient, OrderState, Settings
from laminar.core.execution.encoding import U64_MAX, normalize_address
from laminar.core.execution.models import OutcomeStatus
from laminar.core.orderbook.models import Id
from laminar.core.recovery.errors import NotFoundError, ValidationError
from laminar.providers.node_models import AccountResource, NodeEvent


TRADER_BOOK_ID = {"creation_num": "1", "addr": BOOK_OWNER}


def make_settings(**overrides) -> Settings:
    values = dict(
        dex_address=DEX,
        private_key=PRIVATE_KEY,
        markets={1: {"base": BASE, "quote": QUOTE, "book_owner": BOOK_OWNER}},
        chain_id=None,
        account_address="",
    )
    values.update(overrides)
    return Settings(**values)


@pytest_asyncio.fixture
async def client(node, clock):
    c = await LaminarClient.connect(make_settings(), gateway=node, clock=clock)
    yield c
    await c.aclose()


def store_key(client, field_name):
    return (client.account_address, f"{client.dex_address}::book::OrderBookStore", field_name)


def event(data) -> NodeEvent:
    return NodeEvent(type="0xdea::book::Event", data=data)


def order_event_data(order_num: int, **fields):
    data = {"book_id": TRADER_BOOK_ID, "order_id": {"creation_num": str(order_num), "addr": "0xa11ce"}, "time": "1"}
    data.update(fields)
    return data


# =============================================================================
# Construction
# =============================================================================

class TestConnect:
    """Tests for building and priming a client."""

    @pytest.mark.asyncio
    async def test_connect_resolves_chain_and_sequence(self, node, clock, signer):
        node.set_sequence(signer.address, 5)

        client = await LaminarClient.connect(make_settings(), gateway=node, clock=clock)

        assert client.chain_id == 4
        assert client.account_address == signer.address
        assert client.sequencer.get_state(client.account_address).next_sequence == 5
        await client.aclose()
        assert node.closed

    @pytest.mark.asyncio
    async def test_configured_chain_id_skips_lookup(self, node, clock):
        client = await LaminarClient.connect(make_settings(chain_id=2), gateway=node, clock=clock)

        assert client.chain_id == 2
        assert node.index_calls == 0
        await client.aclose()

    def test_missing_dex_address(self, node):
        with pytest.raises(ValidationError):
            LaminarClient(make_settings(dex_address=""), gateway=node)

    def test_missing_private_key(self, node, monkeypatch):
        monkeypatch.delenv("APTOS_PRIVATE_KEY", raising=False)

        with pytest.raises(ValidationError):
            LaminarClient(make_settings(private_key=""), gateway=node)

    @pytest.mark.asyncio
    async def test_connect_with_strings(self, node):
        client = await LaminarClient.connect_with_strings("http://localhost:8080", DEX, PRIVATE_KEY, gateway=node)

        assert client.dex_address == normalize_address(DEX)
        await client.aclose()

    @pytest.mark.asyncio
    async def test_connect_with_config(self, node, tmp_path, signer):
        config = tmp_path / "config.yaml"
        config.write_text(
            "profiles:\n"
            "  trader:\n"
            f"    account: \"{signer.address}\"\n"
            f"    private_key: \"{PRIVATE_KEY}\"\n"
            "    rest_url: \"https://fullnode.devnet.example\"\n"
        )

        client = await LaminarClient.connect_with_config(config, "trader", dex_address=DEX, gateway=node)

        assert client.account_address == signer.address
        assert client.settings.node_url == "https://fullnode.devnet.example"
        await client.aclose()

    @pytest.mark.asyncio
    async def test_context_manager_closes(self, node, clock):
        async with await LaminarClient.connect(make_settings(), gateway=node, clock=clock):
            pass

        assert node.closed


# =============================================================================
# Writes
# =============================================================================

class TestWrites:
    """Tests for trading actions."""

    @pytest.mark.asyncio
    async def test_place_order(self, client, node):
        outcome = await client.place_order(1, "bid", 100, 10)

        assert outcome.status == OutcomeStatus.CONFIRMED
        assert node.submitted[0].raw.payload.function == "place_limit_order"

    @pytest.mark.asyncio
    async def test_concurrent_orders(self, client, node):
        outcomes = await asyncio.gather(*[client.place_order(1, "ask", 100 + i, 1) for i in range(4)])

        assert sorted(o.sequence_number for o in outcomes) == [0, 1, 2, 3]

    @pytest.mark.asyncio
    async def test_cancel_with_string_order_id(self, client, node):
        outcome = await client.cancel_order(1, "0xa11ce:12", "bid")

        assert outcome.is_success
        assert node.submitted[0].raw.payload.function == "cancel_order"

    @pytest.mark.asyncio
    async def test_cancel_with_bad_order_id(self, client, node):
        with pytest.raises(ValidationError):
            await client.cancel_order(1, "no-separator", "bid")
        assert node.submitted == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("order_id", ["not-an-id", "0xa11ce:twelve", "0xzz:12"])
    async def test_reads_reject_bad_order_id(self, client, order_id):
        for read in (
            client.get_place_event,
            client.get_amend_events,
            client.get_cancel_event,
            client.get_fill_events,
            client.get_order,
        ):
            with pytest.raises(ValidationError) as exc_info:
                await read(order_id)
            assert exc_info.value.field_name == "order_id"

    @pytest.mark.asyncio
    async def test_invalid_order_is_failed_outcome(self, client, node):
        outcome = await client.place_order(9, "bid", 100, 10)

        assert outcome.status == OutcomeStatus.FAILED
        assert node.submitted == []

    @pytest.mark.asyncio
    async def test_deposit_withdraw_and_registration(self, client, node):
        await client.deposit(500)
        await client.withdraw(200, coin=QUOTE)
        await client.register_user()
        await client.register_for_coin(QUOTE)
        await client.amend_order(1, Id(creation_num=3, addr="0xa11ce"), "bid", 101, 5)
        await client.place_market_order(1, "sell", 2)
        await client.create_orderbook(BASE, QUOTE, 2, 3, 10)

        functions = [s.raw.payload.function for s in node.submitted]
        assert functions == [
            "deposit",
            "withdraw",
            "register_user",
            "register",
            "amend_order",
            "place_market_order",
            "create_orderbook",
        ]


# =============================================================================
# Order books
# =============================================================================

def side(key, levels):
    nodes = []
    for price, orders in levels:
        queue_nodes = []
        for i, o in enumerate(orders):
            nxt = i + 1 if i + 1 < len(orders) else U64_MAX
            queue_nodes.append({"next": {"value": str(nxt)}, "value": {"vec": [o]}})
        nodes.append({"key": str(price), "value": {"head": {"value": "0" if orders else str(U64_MAX)}, "nodes": queue_nodes}})
    return {
        "id": TRADER_BOOK_ID,
        "instrument": {
            "owner": BOOK_OWNER,
            "price_decimals": 2,
            "size_decimals": 2,
            "min_size_amount": "1",
            "base_decimals": 8,
            "quote_decimals": 6,
        },
        key: {"nodes": nodes, "removed_nodes": []},
    }


def resting(num, side_value, price, size):
    return {
        "id": {"creation_num": str(num), "addr": "0xa11ce"},
        "side": side_value,
        "price": str(price),
        "size": str(size),
        "post_only": False,
        "remaining_size": str(size),
        "state": 0,
        "fills": [],
    }


class TestOrderBooks:
    """Tests for reading order books."""

    @pytest.mark.asyncio
    async def test_fetch_orderbook(self, client, node):
        owner = normalize_address(BOOK_OWNER)
        bids_type = f"{client.dex_address}::book::OrderBookBids<{BASE}, {QUOTE}>"
        asks_type = f"{client.dex_address}::book::OrderBookAsks<{BASE}, {QUOTE}>"
        node.resources[(owner, bids_type)] = AccountResource(type=bids_type, data=side("bids", [(99, [resting(1, 0, 99, 4)])]))
        node.resources[(owner, asks_type)] = AccountResource(type=asks_type, data=side("asks", [(101, [resting(2, 1, 101, 3)])]))

        book = await client.fetch_orderbook(1)

        assert book.best_bid == 99
        assert book.best_ask == 101
        assert book.type_tags == [BASE, QUOTE]

    @pytest.mark.asyncio
    async def test_missing_book(self, client):
        with pytest.raises(NotFoundError):
            await client.fetch_orderbook(1)

    @pytest.mark.asyncio
    async def test_unknown_market(self, client):
        with pytest.raises(ValidationError):
            await client.fetch_orderbook(42)


# =============================================================================
# Events and orders
# =============================================================================

class TestEvents:
    """Tests for event queries and order reconstruction."""

    def seed(self, client, node):
        node.events[store_key(client, "place_order_events")] = [
            event(order_event_data(12, side=0, price="100", size="10", time_in_force=0, post_only=False)),
            event(order_event_data(13, side=1, price="110", size="4", time_in_force=0, post_only=True)),
            event(
                dict(
                    order_event_data(14, side=0, price="90", size="1", time_in_force=0, post_only=False),
                    book_id={"creation_num": "9", "addr": BOOK_OWNER},
                )
            ),
        ]
        node.events[store_key(client, "amend_order_events")] = [
            event(order_event_data(12, amend_id={"creation_num": "20", "addr": "0xa11ce"}, side=0, price="101", size="8")),
        ]
        node.events[store_key(client, "fill_events")] = [
            event(
                order_event_data(
                    12, side=0, price="101", fill_size="3", fee="0", fee_rate="0", remaining_size="5", is_maker=True
                )
            ),
        ]
        node.events[store_key(client, "cancel_order_events")] = [
            event(order_event_data(13, cancel_id={"creation_num": "21", "addr": "0xa11ce"}, side=1, reason=0)),
        ]

    @pytest.mark.asyncio
    async def test_fetch_all_place_events_filters_by_book(self, client, node):
        self.seed(client, node)

        events = await client.fetch_all_place_events(Id(creation_num=1, addr=BOOK_OWNER))

        assert [e.order_id.creation_num for e in events] == [12, 13]

    @pytest.mark.asyncio
    async def test_event_paging(self, client, node, monkeypatch):
        self.seed(client, node)
        monkeypatch.setattr(client_module, "EVENT_PAGE_SIZE", 2)

        events = await client.fetch_all_place_events(Id(creation_num=9, addr=BOOK_OWNER))

        assert [e.order_id.creation_num for e in events] == [14]

    @pytest.mark.asyncio
    async def test_get_order_partially_filled(self, client, node):
        self.seed(client, node)

        order = await client.get_order("0xa11ce:12")

        assert order.state == OrderState.PARTIALLY_FILLED
        assert (order.price, order.size, order.remaining_size) == (101, 8, 5)

    @pytest.mark.asyncio
    async def test_get_order_cancelled(self, client, node):
        self.seed(client, node)

        order = await client.get_order(Id(creation_num=13, addr="0xa11ce"))

        assert order.state == OrderState.CLOSED
        assert order.post_only is True

    @pytest.mark.asyncio
    async def test_unknown_order(self, client, node):
        self.seed(client, node)

        with pytest.raises(NotFoundError):
            await client.get_place_event("0xa11ce:99")
        with pytest.raises(NotFoundError):
            await client.get_fill_events("0xa11ce:99")
        with pytest.raises(NotFoundError):
            await client.get_amend_events("0xa11ce:99")
        assert await client.get_cancel_event("0xa11ce:99") is None

    @pytest.mark.asyncio
    async def test_fetch_order_books_empty(self, client):
        assert await client.fetch_order_books() == []


# =============================================================================
# Account resources
# =============================================================================

class TestAccount:
    """Tests for registration and balance lookups."""

    @pytest.mark.asyncio
    async def test_registration_checks(self, client, node):
        store = f"{client.dex_address}::book::OrderBookStore"
        assert await client.is_user_registered() is False

        node.resources[(client.account_address, store)] = AccountResource(type=store)

        assert await client.is_user_registered() is True

    @pytest.mark.asyncio
    async def test_coin_balance(self, client, node):
        coin_store = f"0x1::coin::CoinStore<{QUOTE}>"
        node.resources[(client.account_address, coin_store)] = AccountResource(
            type=coin_store, data={"coin": {"value": "12345"}, "frozen": False}
        )

        assert await client.is_registered_for_coin(QUOTE) is True
        assert await client.get_coin_balance(QUOTE) == 12345

    @pytest.mark.asyncio
    async def test_coin_balance_unregistered(self, client):
        with pytest.raises(NotFoundError):
            await client.get_coin_balance(QUOTE)

    @pytest.mark.asyncio
    async def test_does_coin_exist_checks_coin_address(self, client, node):
        info = f"0x1::coin::CoinInfo<{QUOTE}>"
        node.resources[(normalize_address(DEX), info)] = AccountResource(type=info)

        assert await client.does_coin_exist(QUOTE) is True
        assert await client.does_coin_exist(BASE) is False

    @pytest.mark.asyncio
    async def test_sequence_number_from_chain(self, client, node):
        await client.place_order(1, "bid", 100, 1)

        assert await client.get_sequence_number() == 1
