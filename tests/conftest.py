"""
Shared fixtures: an in-memory node, a manual clock and a wired orchestrator.
"""

import asyncio
from typing import Any, Callable, Dict, List, Optional, Union

import pytest

from laminar.core.execution.encoding import normalize_address
from laminar.core.execution.models import SignedTransaction
from laminar.core.execution.orchestrator import SubmissionOrchestrator
from laminar.core.execution.poller import Clock
from laminar.core.execution.sequencer import Sequencer
from laminar.core.execution.tx_builder import Market, TransactionBuilder
from laminar.core.recovery.errors import NetworkError
from laminar.providers.node_models import (
    AccountResource,
    ChainTransaction,
    EventGuid,
    LedgerInfo,
    NodeEvent,
    SimulationResult,
)
from laminar.wallet.signer import Ed25519Signer


DEX = "0xdea"
BOOK_OWNER = "0xb00c"
BASE = "0x1::aptos_coin::AptosCoin"
QUOTE = "0xdea::coins::USDC"
PRIVATE_KEY = "0x" + "01" * 32
START_TIME = 1_700_000_000.0


class ManualClock(Clock):
    """Clock whose sleeps advance virtual time instead of waiting."""

    def __init__(self, now: float = START_TIME):
        self.now = now
        self.sleeps: List[float] = []

    def time(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds
        await asyncio.sleep(0)


SubmitAction = Union[BaseException, Callable[[SignedTransaction], Any], str]


class FakeNode:
    """
    In-memory stand-in for the node gateway.

    ``submit_script`` is consumed one entry per submit: an exception is
    raised, a callable is invoked with the signed transaction (and may raise),
    ``"drop"`` accepts the transaction but never commits it.
    """

    def __init__(self, chain_id: int = 4, sequence: int = 0):
        self.chain_id = chain_id
        self.default_sequence = sequence
        self.sequences: Dict[str, int] = {}
        self.submit_script: List[SubmitAction] = []
        self.submitted: List[SignedTransaction] = []
        self.transactions: Dict[str, ChainTransaction] = {}
        self.resources: Dict[tuple, AccountResource] = {}
        self.events: Dict[tuple, List[NodeEvent]] = {}
        self.commit_success = True
        self.vm_status_on_failure = "Move abort in 0xdea::book: EINSUFFICIENT_BALANCE(0x1)"
        self.lookup_failures = 0
        self.index_calls = 0
        self.sequence_calls = 0
        self.sequence_failure: Optional[BaseException] = None
        self.simulations: List[SignedTransaction] = []
        self.simulation_result = SimulationResult(success=True, vm_status="Executed successfully", gas_used=1200)
        self.closed = False

    def set_sequence(self, account: str, value: int) -> None:
        self.sequences[normalize_address(account)] = value

    async def get_index(self) -> LedgerInfo:
        self.index_calls += 1
        return LedgerInfo(chain_id=self.chain_id, ledger_version=100, ledger_timestamp=int(START_TIME * 1e6))

    async def get_sequence_number(self, account: str) -> int:
        self.sequence_calls += 1
        await asyncio.sleep(0)
        if self.sequence_failure is not None:
            raise self.sequence_failure
        return self.sequences.get(normalize_address(account), self.default_sequence)

    async def submit(self, signed: SignedTransaction) -> str:
        self.submitted.append(signed)
        await asyncio.sleep(0)
        if self.submit_script:
            action = self.submit_script.pop(0)
            if isinstance(action, BaseException):
                raise action
            if action == "drop":
                return signed.hash
            if callable(action):
                action(signed)
        self.commit(signed)
        return signed.hash

    def commit(self, signed: SignedTransaction) -> None:
        sender = normalize_address(signed.raw.sender)
        current = self.sequences.get(sender, self.default_sequence)
        self.sequences[sender] = max(current, signed.sequence_number + 1)
        self.transactions[signed.hash] = ChainTransaction(
            type="user_transaction",
            hash=signed.hash,
            sender=sender,
            sequence_number=signed.sequence_number,
            version=1000 + len(self.transactions),
            success=self.commit_success,
            vm_status="Executed successfully" if self.commit_success else self.vm_status_on_failure,
            gas_used=850,
            events=[
                NodeEvent(
                    type="0x1::coin::WithdrawEvent",
                    data={"amount": "850"},
                    guid=EventGuid(creation_number=3, account_address=sender),
                ),
                NodeEvent(
                    type=f"{DEX}::book::PlaceOrderEvent",
                    data={"price": "100"},
                    sequence_number=7,
                    guid=EventGuid(creation_number=5, account_address=sender),
                ),
            ],
        )

    async def get_transaction_by_hash(self, tx_hash: str) -> Optional[ChainTransaction]:
        await asyncio.sleep(0)
        if self.lookup_failures:
            self.lookup_failures -= 1
            raise NetworkError("lookup timed out")
        return self.transactions.get(tx_hash)

    async def simulate(self, signed: SignedTransaction) -> SimulationResult:
        self.simulations.append(signed)
        return self.simulation_result

    async def get_account_resource(self, account: str, resource_type: str) -> Optional[AccountResource]:
        return self.resources.get((normalize_address(account), resource_type))

    async def get_account_events(
        self,
        account: str,
        event_handle: str,
        field_name: str,
        start: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> List[NodeEvent]:
        events = self.events.get((normalize_address(account), event_handle, field_name), [])
        start = start or 0
        end = start + limit if limit is not None else None
        return events[start:end]

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def node():
    return FakeNode()


@pytest.fixture
def signer():
    return Ed25519Signer(PRIVATE_KEY)


@pytest.fixture
def sender(signer):
    return signer.address


@pytest.fixture
def markets():
    return {1: Market(base=BASE, quote=QUOTE, book_owner=BOOK_OWNER)}


@pytest.fixture
def builder(markets):
    return TransactionBuilder(DEX, markets)


@pytest.fixture
def sequencer(node):
    return Sequencer(node.get_sequence_number)


@pytest.fixture
def make_orchestrator(node, sequencer, builder, signer, clock):
    def factory(**kwargs: Any) -> SubmissionOrchestrator:
        return SubmissionOrchestrator(node, sequencer, builder, signer, clock=clock, **kwargs)

    return factory
