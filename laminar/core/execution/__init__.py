"""
Transaction Execution Layer

Provides the infrastructure for submitting Laminar transactions:
- SubmissionOrchestrator: Drives an intent to a Confirmed/Failed/Expired outcome
- Sequencer: Hands out per-account sequence numbers to concurrent callers
- TransactionBuilder: Builds unsigned transactions from intents
- ConfirmationPoller: Waits for a transaction to commit or expire

Usage:
    from laminar.core.execution import (
        PlaceLimitOrder,
        Sequencer,
        SubmissionOrchestrator,
        TransactionBuilder,
    )

    sequencer = Sequencer(gateway.get_sequence_number)
    builder = TransactionBuilder(dex_address, markets)
    orchestrator = SubmissionOrchestrator(gateway, sequencer, builder, signer)

    outcome = await orchestrator.execute(
        PlaceLimitOrder(market=1, side=Side.BID, price=100, size=10),
        sender=account_address,
    )
"""

from .models import (
    Side,
    TimeInForce,
    OrderId,
    TransactionIntent,
    PlaceLimitOrder,
    PlaceMarketOrder,
    AmendOrder,
    CancelOrder,
    Deposit,
    Withdraw,
    RegisterUser,
    RegisterForCoin,
    CreateOrderBook,
    ChainMetadata,
    EntryFunction,
    UnsignedTransaction,
    SignedTransaction,
    SubmissionState,
    SubmissionRecord,
    ReleaseOutcome,
    OutcomeStatus,
    ChainEvent,
    Outcome,
)

from .tx_builder import (
    Market,
    TransactionBuilder,
)

from .sequencer import (
    Sequencer,
    SequenceState,
)

from .poller import (
    Clock,
    SystemClock,
    PollSchedule,
    PollStatus,
    PollResult,
    ConfirmationPoller,
)

from .orchestrator import (
    AttemptResult,
    SubmissionOrchestrator,
    sign_transaction,
)

__all__ = [
    # Models
    "Side",
    "TimeInForce",
    "OrderId",
    "TransactionIntent",
    "PlaceLimitOrder",
    "PlaceMarketOrder",
    "AmendOrder",
    "CancelOrder",
    "Deposit",
    "Withdraw",
    "RegisterUser",
    "RegisterForCoin",
    "CreateOrderBook",
    "ChainMetadata",
    "EntryFunction",
    "UnsignedTransaction",
    "SignedTransaction",
    "SubmissionState",
    "SubmissionRecord",
    "ReleaseOutcome",
    "OutcomeStatus",
    "ChainEvent",
    "Outcome",
    # Transaction Builder
    "Market",
    "TransactionBuilder",
    # Sequencer
    "Sequencer",
    "SequenceState",
    # Poller
    "Clock",
    "SystemClock",
    "PollSchedule",
    "PollStatus",
    "PollResult",
    "ConfirmationPoller",
    # Orchestrator
    "AttemptResult",
    "SubmissionOrchestrator",
    "sign_transaction",
]
