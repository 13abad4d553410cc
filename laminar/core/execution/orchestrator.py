"""
Submission orchestrator.

Drives one logical submission through its lifecycle:
- Validation (before any sequence number is reserved)
- Sequence reservation, build and sign
- Optional gas estimation by simulation
- Submission, with resync-and-resubmit on sequence mismatch
- Confirmation polling until committed or expired
- Exactly one sequencer release per reserved number
"""

import asyncio
import logging
from dataclasses import dataclass, replace
from typing import Any, List, Optional, Set, Tuple

import structlog

from ..recovery.errors import (
    ChainExecutionError,
    ErrorCategory,
    LaminarError,
    NetworkError,
    NodeRejectedError,
    SequenceMismatchError,
    SigningError,
    ValidationError,
    classify_error,
)
from .encoding import same_address
from .models import (
    ChainEvent,
    ChainMetadata,
    Outcome,
    OutcomeStatus,
    ReleaseOutcome,
    SignedTransaction,
    SubmissionRecord,
    SubmissionState,
    TransactionIntent,
    UnsignedTransaction,
)
from .poller import Clock, ConfirmationPoller, PollResult, SystemClock
from .sequencer import Sequencer
from .tx_builder import TransactionBuilder

logger = logging.getLogger(__name__)
log = structlog.stdlib.get_logger(__name__)


def sign_transaction(signer: Any, raw: UnsignedTransaction) -> SignedTransaction:
    """Sign the canonical signing message of ``raw`` with an injected signer."""
    try:
        signature = signer.sign(raw.signing_message())
    except SigningError:
        raise
    except Exception as e:
        raise SigningError(f"signer failed: {e}") from e
    return SignedTransaction(raw=raw, public_key=bytes(signer.public_key), signature=bytes(signature))


@dataclass
class AttemptResult:
    """What one signed transaction came to: a terminal outcome or a request to resubmit."""
    outcome: Optional[Outcome] = None
    retry: bool = False
    category: Optional[ErrorCategory] = None
    reason: Optional[str] = None


class SubmissionOrchestrator:
    """
    Executes transaction intents for one signing account.

    Outcomes are returned, never raised: validation, rejection, execution
    failure and expiry all come back as an ``Outcome``. Only cancellation
    and programming errors propagate.

    Cancellation before submission releases the reserved number. Once a
    transaction has been handed to the node, the attempt runs in a shielded
    background task that keeps polling until it can release its number;
    ``aclose()`` waits for those tasks.
    """

    def __init__(
        self,
        gateway: Any,
        sequencer: Sequencer,
        builder: TransactionBuilder,
        signer: Any,
        chain_id: Optional[int] = None,
        max_gas_amount: int = 1_000_000,
        gas_unit_price: int = 100,
        expiration_window_seconds: int = 30,
        max_resubmits: int = 1,
        estimate_gas: bool = False,
        gas_estimate_multiplier: float = 1.5,
        clock: Optional[Clock] = None,
        poller: Optional[ConfirmationPoller] = None,
    ):
        self.gateway = gateway
        self.sequencer = sequencer
        self.builder = builder
        self.signer = signer
        self.chain_id = chain_id
        self.max_gas_amount = max_gas_amount
        self.gas_unit_price = gas_unit_price
        self.expiration_window_seconds = expiration_window_seconds
        self.max_resubmits = max_resubmits
        self.estimate_gas = estimate_gas
        self.gas_estimate_multiplier = gas_estimate_multiplier
        self.clock = clock or SystemClock()
        self.poller = poller or ConfirmationPoller(gateway, clock=self.clock)
        self._tasks: Set["asyncio.Task[AttemptResult]"] = set()

    # =========================================================================
    # Public
    # =========================================================================

    async def execute(self, intent: TransactionIntent, sender: str) -> Outcome:
        """
        Drive ``intent`` to a terminal outcome.

        Args:
            intent: The logical action
            sender: Address of the signing account

        Returns:
            Confirmed, Failed or Expired outcome
        """
        record = SubmissionRecord(intent=intent, sender=sender)
        structlog.contextvars.bind_contextvars(submission_id=record.submission_id)
        try:
            return await self._drive(record)
        finally:
            structlog.contextvars.unbind_contextvars("submission_id")

    async def aclose(self) -> None:
        """Wait for detached attempts to release their sequence numbers."""
        if self._tasks:
            logger.info(f"Waiting for {len(self._tasks)} detached submission(s)")
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    @property
    def pending_background(self) -> int:
        return len(self._tasks)

    # =========================================================================
    # State machine
    # =========================================================================

    async def _drive(self, record: SubmissionRecord) -> Outcome:
        try:
            self.builder.validate(record.intent)
        except ValidationError as e:
            return self._resolve(record, self._failed(ErrorCategory.VALIDATION, e.message))

        resubmits = 0
        while True:
            record.attempts += 1

            try:
                chain_id = await self._get_chain_id()
                seq = await self.sequencer.reserve(record.sender)
            except LaminarError as e:
                # Nothing reserved yet
                return self._resolve(record, self._failed(classify_error(e).category, e.message))

            record.sequence_number = seq
            log.debug("sequence_reserved", sequence_number=seq, attempt=record.attempts)

            try:
                signed = await self._prepare(record, seq, chain_id)
            except asyncio.CancelledError:
                await self._release(record.sender, seq, ReleaseOutcome.UNSUBMITTED)
                raise
            except ChainExecutionError as e:
                await self._release(record.sender, seq, ReleaseOutcome.UNSUBMITTED)
                return self._resolve(
                    record,
                    self._failed(ErrorCategory.CHAIN_EXECUTION, e.message, vm_status=e.vm_status, seq=seq),
                )
            except LaminarError as e:
                await self._release(record.sender, seq, ReleaseOutcome.FAILED)
                return self._resolve(record, self._failed(classify_error(e).category, e.message, seq=seq))

            record.signed = signed
            record.advance(SubmissionState.SIGNED)

            task = self._spawn(self._attempt(record, signed))
            try:
                result = await asyncio.shield(task)
            except asyncio.CancelledError:
                log.warning(
                    "submission_detached",
                    tx_hash=signed.hash,
                    sequence_number=seq,
                )
                task.add_done_callback(lambda t: self._report_detached(record, t))
                raise

            if result.outcome is not None:
                return self._resolve(record, result.outcome)

            if resubmits >= self.max_resubmits:
                return self._resolve(
                    record,
                    self._failed(result.category or ErrorCategory.UNKNOWN, result.reason, signed=signed),
                )

            resubmits += 1
            record.advance(SubmissionState.BUILDING)
            log.info(
                "submission_resubmitting",
                reason=result.reason,
                category=result.category.value if result.category else None,
                resubmit=resubmits,
            )

    async def _prepare(self, record: SubmissionRecord, seq: int, chain_id: int) -> SignedTransaction:
        """Build and sign; with gas estimation, simulate then rebuild with the estimate."""
        metadata = ChainMetadata(
            chain_id=chain_id,
            max_gas_amount=self.max_gas_amount,
            gas_unit_price=self.gas_unit_price,
            expiration_timestamp_secs=int(self.clock.time()) + self.expiration_window_seconds,
        )
        raw = self.builder.build(record.intent, record.sender, seq, metadata)
        signed = sign_transaction(self.signer, raw)

        if not self.estimate_gas:
            return signed

        try:
            simulation = await self.gateway.simulate(signed)
        except (NetworkError, NodeRejectedError, SequenceMismatchError) as e:
            logger.warning(f"Gas estimation unavailable, using max_gas_amount={self.max_gas_amount}: {e}")
            return signed

        if not simulation.success:
            if "SEQUENCE_NUMBER" in simulation.vm_status.upper():
                # Let submission surface the mismatch and resync
                return signed
            raise ChainExecutionError(
                f"simulation failed: {simulation.vm_status}",
                vm_status=simulation.vm_status,
            )

        estimated = min(
            max(int(simulation.gas_used * self.gas_estimate_multiplier), 1),
            self.max_gas_amount,
        )
        log.debug("gas_estimated", gas_used=simulation.gas_used, max_gas_amount=estimated)
        raw = self.builder.build(record.intent, record.sender, seq, replace(metadata, max_gas_amount=estimated))
        return sign_transaction(self.signer, raw)

    async def _attempt(self, record: SubmissionRecord, signed: SignedTransaction) -> AttemptResult:
        """Submit and poll one signed transaction; releases its number exactly once."""
        sender = record.sender
        seq = signed.sequence_number
        released = False

        async def release(outcome: ReleaseOutcome) -> None:
            nonlocal released
            released = True
            await self.sequencer.release(sender, seq, outcome)

        try:
            record.advance(SubmissionState.SUBMITTED)
            try:
                tx_hash = await self.gateway.submit(signed)
                log.info("transaction_submitted", tx_hash=tx_hash, sequence_number=seq)
            except SequenceMismatchError as e:
                log.warning("sequence_mismatch", sequence_number=seq, error_code=e.error_code, message=e.message)
                # An earlier try inside the gateway may have landed before the retry saw a stale number
                known = await self._probe(signed.hash)
                if known is None:
                    await release(ReleaseOutcome.FAILED)
                    return AttemptResult(
                        outcome=self._failed(ErrorCategory.SEQUENCE_MISMATCH, e.message, signed=signed)
                    )
                if not known:
                    await release(ReleaseOutcome.FAILED)
                    await self._resync(sender)
                    return AttemptResult(retry=True, category=ErrorCategory.SEQUENCE_MISMATCH, reason=e.message)
                log.info("transaction_found_after_sequence_mismatch", tx_hash=signed.hash)
                tx_hash = signed.hash
            except NodeRejectedError as e:
                log.warning("transaction_rejected", sequence_number=seq, error_code=e.error_code, message=e.message)
                await release(ReleaseOutcome.FAILED)
                await self._resync(sender)
                return AttemptResult(outcome=self._failed(ErrorCategory.REJECTED, e.message, signed=signed))
            except NetworkError as e:
                known = await self._probe(signed.hash)
                if known is None:
                    # Probe failed too: the outcome is unknown, so no resubmit
                    await release(ReleaseOutcome.FAILED)
                    return AttemptResult(outcome=self._failed(ErrorCategory.NETWORK, e.message, signed=signed))
                if not known:
                    await release(ReleaseOutcome.FAILED)
                    await self._resync(sender)
                    return AttemptResult(retry=True, category=ErrorCategory.NETWORK, reason=e.message)
                log.info("transaction_found_after_network_error", tx_hash=signed.hash)
                tx_hash = signed.hash

            record.advance(SubmissionState.POLLING)
            result = await self.poller.wait(signed, tx_hash)
            outcome, release_as = self._interpret(result, signed, tx_hash)
            await release(release_as)
            if release_as == ReleaseOutcome.EXPIRED:
                await self._resync(sender)
            return AttemptResult(outcome=outcome)
        except BaseException:
            if not released:
                await asyncio.shield(self.sequencer.release(sender, seq, ReleaseOutcome.FAILED))
            raise

    def _interpret(
        self,
        result: PollResult,
        signed: SignedTransaction,
        tx_hash: str,
    ) -> Tuple[Outcome, ReleaseOutcome]:
        base = dict(
            tx_hash=tx_hash,
            sequence_number=signed.sequence_number,
            expiration_timestamp_secs=signed.expiration_timestamp_secs,
        )
        if not result.committed:
            log.warning("transaction_expired", tx_hash=tx_hash, polls=result.polls)
            outcome = Outcome(
                status=OutcomeStatus.EXPIRED,
                category=ErrorCategory.EXPIRATION,
                reason="no confirmation before expiration; the transaction may or may not have executed",
                **base,
            )
            return outcome, ReleaseOutcome.EXPIRED

        tx = result.transaction
        if tx.success:
            log.info("transaction_confirmed", tx_hash=tx_hash, version=tx.version, gas_used=tx.gas_used)
            outcome = Outcome(
                status=OutcomeStatus.CONFIRMED,
                version=tx.version,
                gas_used=tx.gas_used,
                vm_status=tx.vm_status,
                effects=self._dex_events(tx.events),
                **base,
            )
            return outcome, ReleaseOutcome.CONFIRMED

        log.warning("transaction_failed_on_chain", tx_hash=tx_hash, vm_status=tx.vm_status)
        outcome = Outcome(
            status=OutcomeStatus.FAILED,
            category=ErrorCategory.CHAIN_EXECUTION,
            reason=tx.vm_status,
            vm_status=tx.vm_status,
            version=tx.version,
            gas_used=tx.gas_used,
            **base,
        )
        return outcome, ReleaseOutcome.FAILED

    # =========================================================================
    # Helpers
    # =========================================================================

    def _dex_events(self, events: List[Any]) -> List[ChainEvent]:
        dex = self.builder.dex_address
        return [
            ChainEvent(
                type=e.type,
                data=e.data,
                sequence_number=e.sequence_number,
                account_address=e.guid.account_address,
                creation_number=e.guid.creation_number,
            )
            for e in events
            if same_address(e.type.split("::", 1)[0], dex)
        ]

    async def _get_chain_id(self) -> int:
        if self.chain_id is None:
            info = await self.gateway.get_index()
            self.chain_id = info.chain_id
            logger.info(f"Resolved chain id {self.chain_id} from node")
        return self.chain_id

    async def _probe(self, tx_hash: str) -> Optional[bool]:
        """Whether the node knows ``tx_hash``; None when it cannot be asked."""
        try:
            return await self.gateway.get_transaction_by_hash(tx_hash) is not None
        except NetworkError as e:
            logger.warning(f"Could not probe {tx_hash} after submit failure: {e}")
            return None

    async def _resync(self, sender: str) -> None:
        try:
            await self.sequencer.resync(sender)
        except LaminarError as e:
            logger.warning(f"Sequence resync for {sender} failed, keeping local state: {e}")

    async def _release(self, sender: str, seq: int, outcome: ReleaseOutcome) -> None:
        await asyncio.shield(self.sequencer.release(sender, seq, outcome))

    def _spawn(self, coro: Any) -> "asyncio.Task[AttemptResult]":
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def _report_detached(self, record: SubmissionRecord, task: "asyncio.Task[AttemptResult]") -> None:
        if task.cancelled():
            logger.warning(f"Detached submission {record.submission_id} was cancelled")
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"Detached submission {record.submission_id} failed: {exc!r}")
            return
        result = task.result()
        if result.outcome is not None:
            record.resolve(result.outcome)
            logger.info(f"Detached submission {record.submission_id} finished: {result.outcome}")
        else:
            logger.info(
                f"Detached submission {record.submission_id} needs resubmission ({result.reason}); "
                f"caller is gone, not resubmitting"
            )

    def _resolve(self, record: SubmissionRecord, outcome: Outcome) -> Outcome:
        if not record.resolve(outcome):
            log.warning(
                "late_terminal_ignored",
                state=record.state.value,
                ignored=outcome.status.value,
            )
            return record.outcome
        return outcome

    @staticmethod
    def _failed(
        category: ErrorCategory,
        reason: Optional[str],
        vm_status: Optional[str] = None,
        signed: Optional[SignedTransaction] = None,
        seq: Optional[int] = None,
    ) -> Outcome:
        return Outcome(
            status=OutcomeStatus.FAILED,
            category=category,
            reason=reason,
            vm_status=vm_status,
            tx_hash=signed.hash if signed else None,
            sequence_number=signed.sequence_number if signed else seq,
            expiration_timestamp_secs=signed.expiration_timestamp_secs if signed else None,
        )
