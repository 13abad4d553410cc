"""
Tests for the Submission Orchestrator

Covers the full submission lifecycle against an in-memory node: confirmation,
validation, concurrency, sequence mismatch recovery, network failures,
expiry, cancellation and gas estimation.
"""

import asyncio

import pytest

from conftest import DEX
from laminar.core.execution import (
    CancelOrder,
    OrderId,
    OutcomeStatus,
    PlaceLimitOrder,
    ReleaseOutcome,
    Side,
    SubmissionRecord,
    SubmissionState,
    Outcome,
)
from laminar.core.recovery.errors import (
    ErrorCategory,
    NetworkError,
    NodeRejectedError,
    SequenceMismatchError,
)
from laminar.providers.node_models import SimulationResult


def limit_order(price: int = 100, size: int = 10, market: int = 1) -> PlaceLimitOrder:
    return PlaceLimitOrder(market=market, side=Side.BID, price=price, size=size)


def spy_releases(sequencer):
    """Record every (sequence, outcome) the orchestrator releases."""
    calls = []
    original = sequencer.release

    async def release(account, seq, outcome):
        calls.append((seq, outcome))
        await original(account, seq, outcome)

    sequencer.release = release
    return calls


# =============================================================================
# Happy Path
# =============================================================================

class TestConfirmation:
    """Tests for transactions that commit successfully."""

    @pytest.mark.asyncio
    async def test_place_order_confirmed(self, node, sequencer, sender, make_orchestrator):
        orchestrator = make_orchestrator()

        outcome = await orchestrator.execute(limit_order(), sender)

        assert outcome.status == OutcomeStatus.CONFIRMED
        assert outcome.is_success
        assert outcome.sequence_number == 0
        assert outcome.tx_hash == node.submitted[0].hash
        assert outcome.version is not None
        assert outcome.attempts == 1
        assert outcome.submission_id

        state = sequencer.get_state(sender)
        assert state.in_flight == set()
        assert state.confirmed_sequence == 1

    @pytest.mark.asyncio
    async def test_effects_only_include_dex_events(self, sender, make_orchestrator):
        outcome = await make_orchestrator().execute(limit_order(), sender)

        assert [e.type for e in outcome.effects] == [f"{DEX}::book::PlaceOrderEvent"]
        assert outcome.effects[0].data == {"price": "100"}
        assert outcome.effects[0].creation_number == 5

    @pytest.mark.asyncio
    async def test_chain_id_resolved_once(self, node, sender, make_orchestrator):
        orchestrator = make_orchestrator()

        await orchestrator.execute(limit_order(), sender)
        await orchestrator.execute(limit_order(), sender)

        assert node.index_calls == 1
        assert orchestrator.chain_id == 4
        assert all(s.raw.chain_id == 4 for s in node.submitted)

    @pytest.mark.asyncio
    async def test_configured_chain_id_skips_index(self, node, sender, make_orchestrator):
        await make_orchestrator(chain_id=2).execute(limit_order(), sender)

        assert node.index_calls == 0
        assert node.submitted[0].raw.chain_id == 2

    @pytest.mark.asyncio
    async def test_expiration_set_from_clock(self, node, sender, make_orchestrator):
        await make_orchestrator(expiration_window_seconds=45).execute(limit_order(), sender)

        assert node.submitted[0].expiration_timestamp_secs == 1_700_000_045


# =============================================================================
# Validation
# =============================================================================

class TestValidation:
    """Tests for intents rejected before any sequence number is reserved."""

    @pytest.mark.asyncio
    async def test_unknown_market_fails_without_reservation(self, node, sequencer, sender, make_orchestrator):
        outcome = await make_orchestrator().execute(limit_order(market=99), sender)

        assert outcome.status == OutcomeStatus.FAILED
        assert outcome.category == ErrorCategory.VALIDATION
        assert "market" in outcome.reason
        assert outcome.sequence_number is None
        assert node.submitted == []
        assert node.sequence_calls == 0
        assert sequencer.get_state(sender) is None

    @pytest.mark.asyncio
    async def test_zero_size_fails(self, node, sender, make_orchestrator):
        outcome = await make_orchestrator().execute(limit_order(size=0), sender)

        assert outcome.category == ErrorCategory.VALIDATION
        assert node.submitted == []

    @pytest.mark.asyncio
    async def test_cancel_requires_order_id(self, node, sender, make_orchestrator):
        intent = CancelOrder(market=1, order_id="not-an-id", side=Side.ASK)

        outcome = await make_orchestrator().execute(intent, sender)

        assert outcome.category == ErrorCategory.VALIDATION
        assert node.submitted == []


# =============================================================================
# Concurrency
# =============================================================================

class TestConcurrency:
    """Tests for concurrent submissions from one account."""

    @pytest.mark.asyncio
    async def test_concurrent_submissions_get_contiguous_numbers(self, node, sequencer, sender, make_orchestrator):
        node.set_sequence(sender, 10)
        orchestrator = make_orchestrator()

        outcomes = await asyncio.gather(
            *[orchestrator.execute(limit_order(price=100 + i), sender) for i in range(8)]
        )

        assert all(o.is_success for o in outcomes)
        assert sorted(o.sequence_number for o in outcomes) == list(range(10, 18))
        assert len({o.tx_hash for o in outcomes}) == 8
        assert node.sequence_calls == 1

        state = sequencer.get_state(sender)
        assert state.in_flight == set()
        assert state.next_sequence == 18
        assert state.confirmed_sequence == 18

    @pytest.mark.asyncio
    async def test_each_reserved_number_released_once(self, sequencer, sender, make_orchestrator):
        releases = spy_releases(sequencer)
        orchestrator = make_orchestrator()

        await asyncio.gather(*[orchestrator.execute(limit_order(), sender) for _ in range(5)])

        seqs = [seq for seq, _ in releases]
        assert sorted(seqs) == [0, 1, 2, 3, 4]
        assert all(outcome == ReleaseOutcome.CONFIRMED for _, outcome in releases)


# =============================================================================
# Sequence Mismatch
# =============================================================================

class TestSequenceMismatch:
    """Tests for resync-and-resubmit after a stale sequence number."""

    @pytest.mark.asyncio
    async def test_mismatch_then_success(self, node, sequencer, sender, make_orchestrator):
        node.set_sequence(sender, 3)
        releases = spy_releases(sequencer)

        def another_client_used_numbers(signed):
            node.set_sequence(sender, 5)
            raise SequenceMismatchError(
                "Transaction sequence number is too old",
                error_code="sequence_number_too_old",
                http_status=400,
            )

        node.submit_script = [another_client_used_numbers]

        outcome = await make_orchestrator().execute(limit_order(), sender)

        assert outcome.status == OutcomeStatus.CONFIRMED
        assert outcome.sequence_number == 5
        assert outcome.attempts == 2
        assert [s.sequence_number for s in node.submitted] == [3, 5]
        assert releases == [(3, ReleaseOutcome.FAILED), (5, ReleaseOutcome.CONFIRMED)]
        assert sequencer.get_state(sender).in_flight == set()

    @pytest.mark.asyncio
    async def test_mismatch_after_own_commit_is_not_resubmitted(self, node, sequencer, sender, make_orchestrator):
        releases = spy_releases(sequencer)

        def landed_before_gateway_retry(signed):
            node.commit(signed)
            raise SequenceMismatchError("SEQUENCE_NUMBER_TOO_OLD", error_code="sequence_number_too_old")

        node.submit_script = [landed_before_gateway_retry]

        outcome = await make_orchestrator().execute(limit_order(), sender)

        assert outcome.status == OutcomeStatus.CONFIRMED
        assert outcome.sequence_number == 0
        assert len(node.submitted) == 1
        assert len(node.transactions) == 1
        assert releases == [(0, ReleaseOutcome.CONFIRMED)]

    @pytest.mark.asyncio
    async def test_mismatch_with_unreachable_lookup_is_not_resubmitted(self, node, sequencer, sender, make_orchestrator):
        releases = spy_releases(sequencer)
        node.submit_script = [SequenceMismatchError("too old", error_code="sequence_number_too_old")]
        node.lookup_failures = 100

        outcome = await make_orchestrator().execute(limit_order(), sender)

        assert outcome.status == OutcomeStatus.FAILED
        assert outcome.category == ErrorCategory.SEQUENCE_MISMATCH
        assert len(node.submitted) == 1
        assert releases == [(0, ReleaseOutcome.FAILED)]

    @pytest.mark.asyncio
    async def test_persistent_mismatch_fails_after_resubmit_cap(self, node, sequencer, sender, make_orchestrator):
        node.submit_script = [
            SequenceMismatchError("too old", error_code="sequence_number_too_old"),
            SequenceMismatchError("too old", error_code="sequence_number_too_old"),
        ]

        outcome = await make_orchestrator(max_resubmits=1).execute(limit_order(), sender)

        assert outcome.status == OutcomeStatus.FAILED
        assert outcome.category == ErrorCategory.SEQUENCE_MISMATCH
        assert len(node.submitted) == 2
        assert sequencer.get_state(sender).in_flight == set()

    @pytest.mark.asyncio
    async def test_no_resubmit_when_disabled(self, node, sender, make_orchestrator):
        node.submit_script = [SequenceMismatchError("too new", error_code="sequence_number_too_new")]

        outcome = await make_orchestrator(max_resubmits=0).execute(limit_order(), sender)

        assert outcome.category == ErrorCategory.SEQUENCE_MISMATCH
        assert len(node.submitted) == 1


# =============================================================================
# Node Rejection and Chain Failure
# =============================================================================

class TestFailures:
    """Tests for rejected and aborted transactions."""

    @pytest.mark.asyncio
    async def test_rejection_is_terminal(self, node, sequencer, sender, make_orchestrator):
        releases = spy_releases(sequencer)
        node.submit_script = [
            NodeRejectedError(
                "INSUFFICIENT_BALANCE_FOR_TRANSACTION_FEE",
                http_status=400,
                error_code="vm_error",
                vm_error_code=5,
            )
        ]

        outcome = await make_orchestrator().execute(limit_order(), sender)

        assert outcome.status == OutcomeStatus.FAILED
        assert outcome.category == ErrorCategory.REJECTED
        assert "INSUFFICIENT_BALANCE" in outcome.reason
        assert len(node.submitted) == 1
        assert releases == [(0, ReleaseOutcome.FAILED)]

    @pytest.mark.asyncio
    async def test_failed_resync_still_returns_outcome(self, node, sequencer, sender, make_orchestrator):
        def rejected_and_accounts_endpoint_refuses(signed):
            node.sequence_failure = NodeRejectedError("account lookup refused", http_status=403)
            raise NodeRejectedError("INVALID_AUTH_KEY", http_status=400, error_code="vm_error")

        node.submit_script = [rejected_and_accounts_endpoint_refuses]

        outcome = await make_orchestrator().execute(limit_order(), sender)

        assert outcome.status == OutcomeStatus.FAILED
        assert outcome.category == ErrorCategory.REJECTED
        assert sequencer.get_state(sender).in_flight == set()

    @pytest.mark.asyncio
    async def test_chain_execution_failure(self, node, sequencer, sender, make_orchestrator):
        node.commit_success = False
        releases = spy_releases(sequencer)

        outcome = await make_orchestrator().execute(limit_order(), sender)

        assert outcome.status == OutcomeStatus.FAILED
        assert outcome.category == ErrorCategory.CHAIN_EXECUTION
        assert "EINSUFFICIENT_BALANCE" in outcome.vm_status
        assert outcome.tx_hash == node.submitted[0].hash
        assert outcome.effects == []
        assert releases == [(0, ReleaseOutcome.FAILED)]


# =============================================================================
# Network Failures
# =============================================================================

class TestNetworkFailures:
    """Tests for transport failures during and after submission."""

    @pytest.mark.asyncio
    async def test_unreachable_node_fails_with_number_released(self, node, sequencer, sender, make_orchestrator):
        releases = spy_releases(sequencer)
        node.submit_script = [NetworkError("POST /transactions timed out", attempts=5)]
        node.lookup_failures = 100

        outcome = await make_orchestrator().execute(limit_order(), sender)

        assert outcome.status == OutcomeStatus.FAILED
        assert outcome.category == ErrorCategory.NETWORK
        assert len(node.submitted) == 1
        assert releases == [(0, ReleaseOutcome.FAILED)]
        assert sequencer.get_state(sender).in_flight == set()

    @pytest.mark.asyncio
    async def test_lost_submission_is_resubmitted(self, node, sender, make_orchestrator):
        node.submit_script = [NetworkError("connection reset")]

        outcome = await make_orchestrator().execute(limit_order(), sender)

        assert outcome.status == OutcomeStatus.CONFIRMED
        assert len(node.submitted) == 2

    @pytest.mark.asyncio
    async def test_submission_that_landed_is_not_resubmitted(self, node, sender, make_orchestrator):
        def accepted_then_dropped_connection(signed):
            node.commit(signed)
            raise NetworkError("read timed out")

        node.submit_script = [accepted_then_dropped_connection]

        outcome = await make_orchestrator().execute(limit_order(), sender)

        assert outcome.status == OutcomeStatus.CONFIRMED
        assert len(node.submitted) == 1

    @pytest.mark.asyncio
    async def test_poll_errors_are_treated_as_pending(self, node, sender, make_orchestrator):
        node.lookup_failures = 3

        outcome = await make_orchestrator().execute(limit_order(), sender)

        assert outcome.status == OutcomeStatus.CONFIRMED


# =============================================================================
# Expiry
# =============================================================================

class TestExpiry:
    """Tests for transactions that never commit."""

    @pytest.mark.asyncio
    async def test_expired_burns_number_and_resyncs(self, node, sequencer, clock, sender, make_orchestrator):
        releases = spy_releases(sequencer)
        node.submit_script = ["drop"]

        outcome = await make_orchestrator().execute(limit_order(), sender)

        assert outcome.status == OutcomeStatus.EXPIRED
        assert outcome.is_expired
        assert outcome.category == ErrorCategory.EXPIRATION
        assert outcome.tx_hash == node.submitted[0].hash
        assert releases == [(0, ReleaseOutcome.EXPIRED)]

        state = sequencer.get_state(sender)
        assert state.burned == 1
        assert state.resyncs == 2
        assert clock.now >= outcome.expiration_timestamp_secs


# =============================================================================
# Cancellation
# =============================================================================

class TestCancellation:
    """Tests for callers cancelled mid-submission."""

    @pytest.mark.asyncio
    async def test_cancel_before_submit_releases_unsubmitted(self, node, sequencer, sender, make_orchestrator):
        releases = spy_releases(sequencer)
        simulating = asyncio.Event()

        async def stuck_simulation(signed):
            simulating.set()
            await asyncio.Event().wait()

        node.simulate = stuck_simulation
        task = asyncio.create_task(make_orchestrator(estimate_gas=True).execute(limit_order(), sender))
        await simulating.wait()

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert node.submitted == []
        assert releases == [(0, ReleaseOutcome.UNSUBMITTED)]
        assert sequencer.get_state(sender).in_flight == set()

    @pytest.mark.asyncio
    async def test_cancel_after_submit_keeps_polling(self, node, sequencer, sender, make_orchestrator):
        releases = spy_releases(sequencer)
        node.submit_script = ["drop"]
        orchestrator = make_orchestrator()

        task = asyncio.create_task(orchestrator.execute(limit_order(), sender))
        while not node.submitted:
            await asyncio.sleep(0)

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        await orchestrator.aclose()

        assert orchestrator.pending_background == 0
        assert releases == [(0, ReleaseOutcome.EXPIRED)]
        assert sequencer.get_state(sender).in_flight == set()


# =============================================================================
# Gas Estimation
# =============================================================================

class TestGasEstimation:
    """Tests for simulate-then-submit."""

    @pytest.mark.asyncio
    async def test_estimate_sizes_max_gas(self, node, sender, make_orchestrator):
        outcome = await make_orchestrator(estimate_gas=True, gas_estimate_multiplier=1.5).execute(
            limit_order(), sender
        )

        assert outcome.is_success
        assert len(node.simulations) == 1
        assert node.submitted[0].raw.max_gas_amount == 1800

    @pytest.mark.asyncio
    async def test_estimate_capped_at_max_gas(self, node, sender, make_orchestrator):
        node.simulation_result = SimulationResult(success=True, gas_used=900_000)

        await make_orchestrator(estimate_gas=True, max_gas_amount=1_000_000).execute(limit_order(), sender)

        assert node.submitted[0].raw.max_gas_amount == 1_000_000

    @pytest.mark.asyncio
    async def test_failed_simulation_never_submits(self, node, sequencer, sender, make_orchestrator):
        releases = spy_releases(sequencer)
        node.simulation_result = SimulationResult(success=False, vm_status="Move abort: EORDER_TOO_SMALL")

        outcome = await make_orchestrator(estimate_gas=True).execute(limit_order(), sender)

        assert outcome.status == OutcomeStatus.FAILED
        assert outcome.category == ErrorCategory.CHAIN_EXECUTION
        assert outcome.vm_status == "Move abort: EORDER_TOO_SMALL"
        assert node.submitted == []
        assert releases == [(0, ReleaseOutcome.UNSUBMITTED)]


# =============================================================================
# Submission Record
# =============================================================================

class TestSubmissionRecord:
    """Tests for the per-submission state machine."""

    def test_first_terminal_outcome_wins(self):
        record = SubmissionRecord(intent=limit_order(), sender="0x1")
        record.advance(SubmissionState.SUBMITTED)

        assert record.resolve(Outcome(status=OutcomeStatus.CONFIRMED, tx_hash="0xabc")) is True
        assert record.resolve(Outcome(status=OutcomeStatus.EXPIRED, tx_hash="0xabc")) is False

        assert record.state == SubmissionState.CONFIRMED
        assert record.outcome.status == OutcomeStatus.CONFIRMED
        assert record.first_submitted_at is not None

    def test_no_transitions_after_terminal(self):
        record = SubmissionRecord(intent=limit_order(), sender="0x1")
        record.resolve(Outcome(status=OutcomeStatus.FAILED))

        assert record.advance(SubmissionState.POLLING) is False
        assert record.state == SubmissionState.FAILED

    def test_order_id_round_trips_display_form(self):
        order_id = OrderId(creation_num=7, addr="0xabc")
        assert OrderId.parse(str(order_id)) == order_id
