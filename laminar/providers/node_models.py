"""
Aptos Node Data Models

Response models for the node REST API (ledger info, transactions, events,
resources and error bodies).
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


PENDING_TRANSACTION = "pending_transaction"
USER_TRANSACTION = "user_transaction"


class LedgerInfo(BaseModel):
    """Node index (``GET /v1``)."""

    chain_id: int = Field(..., description="Chain id of the network")
    epoch: Optional[int] = Field(None, description="Current epoch")
    ledger_version: int = Field(0, description="Latest ledger version")
    ledger_timestamp: int = Field(0, description="Ledger timestamp in microseconds")
    block_height: Optional[int] = Field(None, description="Latest block height")
    node_role: Optional[str] = Field(None, description="validator or full_node")

    @property
    def ledger_timestamp_secs(self) -> int:
        return self.ledger_timestamp // 1_000_000


class EventGuid(BaseModel):
    creation_number: int = 0
    account_address: str = ""


class NodeEvent(BaseModel):
    """An event as returned inside a transaction or by the events endpoint."""

    type: str = Field(..., description="Fully qualified Move type of the event")
    data: Dict[str, Any] = Field(default_factory=dict)
    sequence_number: int = 0
    version: Optional[int] = None
    guid: EventGuid = Field(default_factory=EventGuid)

    class Config:
        populate_by_name = True


class ChainTransaction(BaseModel):
    """A transaction looked up by hash: pending or committed."""

    type: str = Field(..., description="pending_transaction, user_transaction, ...")
    hash: str
    sender: Optional[str] = None
    sequence_number: Optional[int] = None
    expiration_timestamp_secs: Optional[int] = None

    # Present once committed
    version: Optional[int] = None
    success: Optional[bool] = None
    vm_status: Optional[str] = None
    gas_used: Optional[int] = None
    timestamp: Optional[int] = Field(None, description="Commit time in microseconds")
    events: List[NodeEvent] = Field(default_factory=list)

    @property
    def is_pending(self) -> bool:
        return self.type == PENDING_TRANSACTION

    @property
    def is_committed(self) -> bool:
        return not self.is_pending and self.success is not None


class SimulationResult(BaseModel):
    """Outcome of ``POST /v1/transactions/simulate``."""

    success: bool
    vm_status: str = ""
    gas_used: int = 0
    max_gas_amount: Optional[int] = None
    gas_unit_price: Optional[int] = None
    events: List[NodeEvent] = Field(default_factory=list)


class AccountResource(BaseModel):
    """A Move resource stored under an account."""

    type: str
    data: Dict[str, Any] = Field(default_factory=dict)


class NodeErrorBody(BaseModel):
    """Error body the node returns with 4xx/5xx responses."""

    message: str = ""
    error_code: Optional[str] = None
    vm_error_code: Optional[int] = None
