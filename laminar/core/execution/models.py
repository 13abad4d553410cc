"""
Transaction execution models and types.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum, IntEnum
from typing import Any, Dict, List, Optional, Tuple

from ..recovery.errors import ErrorCategory
from . import encoding


# =============================================================================
# Order enums (wire values match the deployed Move module)
# =============================================================================


class Side(IntEnum):
    """Order side."""
    BID = 0
    ASK = 1

    @classmethod
    def parse(cls, value: Any) -> "Side":
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            key = value.strip().lower()
            if key in ("bid", "buy"):
                return cls.BID
            if key in ("ask", "sell"):
                return cls.ASK
            raise ValueError(f"unknown side: {value!r}")
        return cls(value)


class TimeInForce(IntEnum):
    """Limit order time in force."""
    GTC = 0     # Good till cancelled
    IOC = 1     # Immediate or cancel
    FOK = 2     # Fill or kill

    @classmethod
    def parse(cls, value: Any) -> "TimeInForce":
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            return cls[value.strip().upper()]
        return cls(value)


# =============================================================================
# Intents
# =============================================================================


@dataclass(frozen=True)
class OrderId:
    """On-chain order identifier: the creator's address and its GUID creation number."""
    creation_num: int
    addr: str

    @classmethod
    def parse(cls, value: str) -> "OrderId":
        """Parse the ``addr:creation_num`` display form."""
        addr, sep, num = value.rpartition(":")
        if not sep or not addr:
            raise ValueError(f"order id must look like '<addr>:<creation_num>', got {value!r}")
        return cls(creation_num=int(num), addr=addr)

    def __str__(self) -> str:
        return f"{self.addr}:{self.creation_num}"


@dataclass(frozen=True)
class TransactionIntent:
    """Base class for logical actions; carries no sequence number."""


@dataclass(frozen=True)
class PlaceLimitOrder(TransactionIntent):
    market: int
    side: Side
    price: int
    size: int
    time_in_force: TimeInForce = TimeInForce.GTC
    post_only: bool = False


@dataclass(frozen=True)
class PlaceMarketOrder(TransactionIntent):
    market: int
    side: Side
    size: int


@dataclass(frozen=True)
class AmendOrder(TransactionIntent):
    market: int
    order_id: OrderId
    side: Side
    price: int
    size: int


@dataclass(frozen=True)
class CancelOrder(TransactionIntent):
    market: int
    order_id: OrderId
    side: Side


@dataclass(frozen=True)
class Deposit(TransactionIntent):
    amount: int
    coin: Optional[str] = None


@dataclass(frozen=True)
class Withdraw(TransactionIntent):
    amount: int
    coin: Optional[str] = None


@dataclass(frozen=True)
class RegisterUser(TransactionIntent):
    pass


@dataclass(frozen=True)
class RegisterForCoin(TransactionIntent):
    coin: str


@dataclass(frozen=True)
class CreateOrderBook(TransactionIntent):
    base: str
    quote: str
    price_decimals: int
    size_decimals: int
    min_size_amount: int


# =============================================================================
# Transactions
# =============================================================================


@dataclass(frozen=True)
class ChainMetadata:
    """Chain parameters stamped onto every transaction."""
    chain_id: int
    max_gas_amount: int
    gas_unit_price: int
    expiration_timestamp_secs: int


@dataclass(frozen=True)
class EntryFunction:
    """A call to ``address::module::function<type_args>(args)``."""
    module_address: str
    module_name: str
    function: str
    type_args: Tuple[str, ...] = ()
    args: Tuple[bytes, ...] = ()

    @property
    def function_id(self) -> str:
        return f"{self.module_address}::{self.module_name}::{self.function}"

    def to_bcs(self) -> bytes:
        return encoding.entry_function_bytes(
            self.module_address,
            self.module_name,
            self.function,
            self.type_args,
            self.args,
        )


@dataclass(frozen=True)
class UnsignedTransaction:
    """Intent plus sender, sequence number and chain metadata. Never mutated."""
    sender: str
    sequence_number: int
    payload: EntryFunction
    max_gas_amount: int
    gas_unit_price: int
    expiration_timestamp_secs: int
    chain_id: int
    intent: Optional[TransactionIntent] = field(default=None, compare=False)

    def to_bcs(self) -> bytes:
        return encoding.raw_transaction_bytes(
            self.sender,
            self.sequence_number,
            self.payload.to_bcs(),
            self.max_gas_amount,
            self.gas_unit_price,
            self.expiration_timestamp_secs,
            self.chain_id,
        )

    def signing_message(self) -> bytes:
        """Canonical bytes handed to the signer."""
        return encoding.signing_message(self.to_bcs())


@dataclass(frozen=True)
class SignedTransaction:
    """Unsigned transaction plus Ed25519 authenticator. ``hash`` is the idempotency key."""
    raw: UnsignedTransaction
    public_key: bytes
    signature: bytes

    def to_bcs(self) -> bytes:
        return encoding.signed_transaction_bytes(self.raw.to_bcs(), self.public_key, self.signature)

    @property
    def hash(self) -> str:
        return encoding.transaction_hash(self.to_bcs())

    @property
    def sequence_number(self) -> int:
        return self.raw.sequence_number

    @property
    def expiration_timestamp_secs(self) -> int:
        return self.raw.expiration_timestamp_secs


# =============================================================================
# Submission lifecycle
# =============================================================================


class SubmissionState(str, Enum):
    """SubmissionRecord lifecycle state."""
    BUILDING = "building"
    SIGNED = "signed"
    SUBMITTED = "submitted"
    POLLING = "polling"
    CONFIRMED = "confirmed"
    FAILED = "failed"
    EXPIRED = "expired"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL_STATES


_TERMINAL_STATES = {SubmissionState.CONFIRMED, SubmissionState.FAILED, SubmissionState.EXPIRED}


class ReleaseOutcome(str, Enum):
    """Why a reserved sequence number is being handed back."""
    CONFIRMED = "confirmed"          # Chain executed it; high-water mark passes it
    FAILED = "failed"                # Burned
    EXPIRED = "expired"              # Burned; chain may still consider it
    UNSUBMITTED = "unsubmitted"      # Never reached the node


class OutcomeStatus(str, Enum):
    CONFIRMED = "confirmed"
    FAILED = "failed"
    EXPIRED = "expired"


@dataclass
class ChainEvent:
    """An event emitted by a committed transaction."""
    type: str
    data: Dict[str, Any] = field(default_factory=dict)
    sequence_number: Optional[int] = None
    account_address: Optional[str] = None
    creation_number: Optional[int] = None


@dataclass
class Outcome:
    """Terminal result of one logical submission."""
    status: OutcomeStatus
    submission_id: str = ""
    tx_hash: Optional[str] = None
    sequence_number: Optional[int] = None

    # Failure info
    category: Optional[ErrorCategory] = None
    reason: Optional[str] = None
    vm_status: Optional[str] = None

    # Confirmation details
    version: Optional[int] = None
    gas_used: Optional[int] = None
    effects: List[ChainEvent] = field(default_factory=list)

    attempts: int = 0
    expiration_timestamp_secs: Optional[int] = None

    @property
    def is_success(self) -> bool:
        return self.status == OutcomeStatus.CONFIRMED

    @property
    def is_expired(self) -> bool:
        return self.status == OutcomeStatus.EXPIRED

    def __str__(self) -> str:
        if self.status == OutcomeStatus.CONFIRMED:
            return f"Confirmed({self.tx_hash}, version={self.version})"
        if self.status == OutcomeStatus.EXPIRED:
            return f"Expired({self.tx_hash})"
        category = self.category.value if self.category else "unknown"
        return f"Failed({category}: {self.reason})"


@dataclass
class SubmissionRecord:
    """
    Tracks one logical submission across build/sign/submit/poll.

    May span several signed transactions when resubmitted with a fresh
    sequence number. Once terminal, further transitions are ignored.
    """
    intent: TransactionIntent
    sender: str
    submission_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    state: SubmissionState = SubmissionState.BUILDING
    attempts: int = 0
    signed: Optional[SignedTransaction] = None
    sequence_number: Optional[int] = None
    first_submitted_at: Optional[datetime] = None
    outcome: Optional[Outcome] = None
    history: List[SubmissionState] = field(default_factory=list)

    @property
    def is_terminal(self) -> bool:
        return self.state.is_terminal

    def advance(self, state: SubmissionState) -> bool:
        """Move to ``state``; returns False (and changes nothing) once terminal."""
        if self.is_terminal:
            return False
        self.history.append(self.state)
        self.state = state
        if state == SubmissionState.SUBMITTED and self.first_submitted_at is None:
            self.first_submitted_at = datetime.now(timezone.utc)
        return True

    def resolve(self, outcome: Outcome) -> bool:
        """Record the terminal outcome. The first terminal outcome wins."""
        target = {
            OutcomeStatus.CONFIRMED: SubmissionState.CONFIRMED,
            OutcomeStatus.FAILED: SubmissionState.FAILED,
            OutcomeStatus.EXPIRED: SubmissionState.EXPIRED,
        }[outcome.status]
        if not self.advance(target):
            return False
        outcome.submission_id = self.submission_id
        outcome.attempts = self.attempts
        self.outcome = outcome
        return True
