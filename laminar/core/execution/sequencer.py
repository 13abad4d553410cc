"""
Sequence number management for concurrent submissions.

Hands out one sequence number per submission attempt for each signing
account, with no duplicates, and reconciles with the chain on startup and
after sequence-mismatch rejections.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Awaitable, Callable, Dict, Optional, Set

from ..recovery.errors import SequencerError
from .encoding import normalize_address
from .models import ReleaseOutcome

logger = logging.getLogger(__name__)


@dataclass
class SequenceState:
    """Tracks sequence numbers for one account."""
    account: str
    next_sequence: int                          # High-water mark: next number to hand out
    chain_sequence: int                         # Last authoritative on-chain value
    confirmed_sequence: int                     # One past the highest confirmed number
    in_flight: Set[int] = field(default_factory=set)
    discarded: Set[int] = field(default_factory=set)   # Dropped by resync, release still owed
    burned: int = 0
    resyncs: int = 0
    last_updated: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class Sequencer:
    """
    Per-account sequence number arena.

    Features:
    - One asyncio.Lock per account; cross-account reservations never contend
    - Reservation is a single increment-and-record under the account lock,
      and asyncio.Lock wakes waiters in FIFO order
    - The lock is never held while talking to the node
    - Lazy resync the first time an account is seen
    """

    def __init__(
        self,
        fetch_sequence_number: Callable[[str], Awaitable[int]],
        rollback_unsubmitted: bool = False,
    ):
        self._fetch_sequence_number = fetch_sequence_number
        self.rollback_unsubmitted = rollback_unsubmitted
        self._states: Dict[str, SequenceState] = {}
        self._locks: Dict[str, asyncio.Lock] = {}
        self._initializing: Dict[str, "asyncio.Future[int]"] = {}

    def _get_key(self, account: str) -> str:
        return normalize_address(account)

    def _get_lock(self, key: str) -> asyncio.Lock:
        if key not in self._locks:
            self._locks[key] = asyncio.Lock()
        return self._locks[key]

    async def _ensure_state(self, key: str) -> None:
        """Resync once for an unseen account; concurrent first callers share the fetch."""
        if key in self._states:
            return
        pending = self._initializing.get(key)
        if pending is None:
            pending = asyncio.ensure_future(self.resync(key))
            self._initializing[key] = pending
            pending.add_done_callback(lambda _: self._initializing.pop(key, None))
        await asyncio.shield(pending)

    async def reserve(self, account: str) -> int:
        """
        Reserve the next sequence number for an account.

        Returns a number strictly greater than every number currently in
        flight or confirmed. Must be paired with exactly one ``release``.
        """
        key = self._get_key(account)
        await self._ensure_state(key)

        async with self._get_lock(key):
            state = self._states[key]
            seq = state.next_sequence
            state.in_flight.add(seq)
            state.next_sequence = seq + 1
            state.last_updated = datetime.now(timezone.utc)

        logger.debug(f"Reserved sequence {seq} for {key}")
        return seq

    async def release(self, account: str, seq: int, outcome: ReleaseOutcome) -> None:
        """
        Resolve a reserved number.

        CONFIRMED advances the confirmed mark. FAILED and EXPIRED burn the
        number. UNSUBMITTED burns it too unless rollback is enabled and it is
        the highest number handed out, in which case it is handed out again.

        Raises:
            SequencerError: The number was never reserved or was already released
        """
        key = self._get_key(account)

        async with self._get_lock(key):
            state = self._states.get(key)
            if state is None:
                raise SequencerError(f"release of {seq} for unknown account {key}")

            if seq not in state.in_flight:
                if seq in state.discarded:
                    state.discarded.discard(seq)
                    logger.debug(f"Ignoring release of {seq} for {key}: discarded by resync")
                    return
                raise SequencerError(f"sequence {seq} for {key} is not in flight (double release?)")

            state.in_flight.discard(seq)
            state.last_updated = datetime.now(timezone.utc)

            if outcome == ReleaseOutcome.CONFIRMED:
                state.confirmed_sequence = max(state.confirmed_sequence, seq + 1)
                state.chain_sequence = max(state.chain_sequence, seq + 1)
            elif (
                outcome == ReleaseOutcome.UNSUBMITTED
                and self.rollback_unsubmitted
                and seq == state.next_sequence - 1
            ):
                state.next_sequence = seq
                logger.debug(f"Rolled back unsubmitted sequence {seq} for {key}")
                return
            else:
                state.burned += 1

        logger.debug(f"Released sequence {seq} for {key} as {outcome.value}")

    async def resync(self, account: str) -> int:
        """
        Reconcile with the on-chain sequence number.

        In-flight numbers below the chain value are discarded (the chain has
        consumed them); numbers above it are kept. Returns the new high-water mark.
        """
        key = self._get_key(account)
        chain = await self._fetch_sequence_number(key)

        async with self._get_lock(key):
            state = self._states.get(key)
            if state is None:
                state = SequenceState(
                    account=key,
                    next_sequence=chain,
                    chain_sequence=chain,
                    confirmed_sequence=chain,
                )
                self._states[key] = state
            else:
                state.chain_sequence = max(state.chain_sequence, chain)
                stale = {n for n in state.in_flight if n < state.chain_sequence}
                if stale:
                    logger.info(f"Resync for {key} discarded in-flight sequences {sorted(stale)}")
                state.in_flight -= stale
                state.discarded |= stale
                highest = max(state.in_flight) + 1 if state.in_flight else 0
                previous = state.next_sequence
                state.next_sequence = max(state.chain_sequence, state.confirmed_sequence, highest)
                if previous != state.next_sequence:
                    logger.info(
                        f"Resync for {key}: high-water mark {previous} -> {state.next_sequence} "
                        f"(chain={chain})"
                    )
            state.resyncs += 1
            state.last_updated = datetime.now(timezone.utc)
            return state.next_sequence

    def get_state(self, account: str) -> Optional[SequenceState]:
        """Get the current state for an account."""
        return self._states.get(self._get_key(account))

    def clear_state(self, account: str) -> None:
        """Forget an account; the next reservation resyncs."""
        self._states.pop(self._get_key(account), None)
