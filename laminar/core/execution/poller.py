"""
Confirmation polling.

Polls the node for a transaction by hash on a backoff schedule until it is
committed or its expiration (plus a grace period) has passed. Time and
sleeping go through a ``Clock`` so tests can drive the schedule without
real waits.
"""

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

from ..recovery.errors import NetworkError
from .models import SignedTransaction

logger = logging.getLogger(__name__)


class Clock(ABC):
    """Wall clock plus a wake timer."""

    @abstractmethod
    def time(self) -> float:
        """Seconds since the Unix epoch."""

    @abstractmethod
    async def sleep(self, seconds: float) -> None:
        """Suspend until ``seconds`` have elapsed."""


class SystemClock(Clock):
    def time(self) -> float:
        return time.time()

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(seconds)


@dataclass
class PollSchedule:
    """Successive wake delays: initial interval, multiplied each poll, capped."""

    initial_interval: float = 0.5
    backoff_factor: float = 1.5
    max_interval: float = 5.0

    def __post_init__(self) -> None:
        self._next = self.initial_interval

    def next_delay(self) -> float:
        delay = min(self._next, self.max_interval)
        self._next = min(self._next * self.backoff_factor, self.max_interval)
        return delay

    def reset(self) -> None:
        self._next = self.initial_interval


class PollStatus(str, Enum):
    COMMITTED = "committed"
    EXPIRED = "expired"


@dataclass
class PollResult:
    status: PollStatus
    transaction: Optional[Any] = None       # ChainTransaction when committed
    polls: int = 0

    @property
    def committed(self) -> bool:
        return self.status == PollStatus.COMMITTED


class ConfirmationPoller:
    """
    Waits for one signed transaction to reach a terminal chain state.

    The hard upper bound is the transaction's expiration timestamp plus
    ``expiration_grace``, regardless of individual request timeouts.
    NetworkErrors while polling count as "still pending".
    """

    def __init__(
        self,
        gateway: Any,
        clock: Optional[Clock] = None,
        initial_interval: float = 0.5,
        backoff_factor: float = 1.5,
        max_interval: float = 5.0,
        expiration_grace: float = 5.0,
    ):
        self.gateway = gateway
        self.clock = clock or SystemClock()
        self.initial_interval = initial_interval
        self.backoff_factor = backoff_factor
        self.max_interval = max_interval
        self.expiration_grace = expiration_grace

    def deadline(self, signed: SignedTransaction) -> float:
        return signed.expiration_timestamp_secs + self.expiration_grace

    def schedule(self) -> PollSchedule:
        return PollSchedule(self.initial_interval, self.backoff_factor, self.max_interval)

    async def wait(self, signed: SignedTransaction, tx_hash: Optional[str] = None) -> PollResult:
        tx_hash = tx_hash or signed.hash
        deadline = self.deadline(signed)
        schedule = self.schedule()
        polls = 0

        while True:
            polls += 1
            try:
                tx = await self.gateway.get_transaction_by_hash(tx_hash)
            except NetworkError as e:
                logger.debug(f"Poll {polls} for {tx_hash} failed, treating as pending: {e}")
                tx = None

            if tx is not None and tx.is_committed:
                return PollResult(PollStatus.COMMITTED, transaction=tx, polls=polls)

            now = self.clock.time()
            if now >= deadline:
                logger.info(f"Transaction {tx_hash} not committed by {deadline:.0f} (now {now:.0f})")
                return PollResult(PollStatus.EXPIRED, polls=polls)

            await self.clock.sleep(min(schedule.next_delay(), deadline - now))
