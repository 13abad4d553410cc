"""
Aptos Node Gateway

Typed wrapper around the node REST API:
- Ledger info, account sequence numbers and resources
- Transaction submission (BCS), lookup by hash and simulation
- Account event streams

Transport failures are normalized into the client error taxonomy. Timeouts,
connection errors, 5xx and 429 are retried here with exponential backoff and
jitter; sequence-number rejections and other 4xx surface immediately.
"""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional

import httpx
from pydantic import ValidationError as PydanticValidationError

from ..core.execution import encoding
from ..core.execution.models import SignedTransaction
from ..core.recovery.errors import (
    NetworkError,
    NodeRejectedError,
    RateLimitError,
    SequenceMismatchError,
)
from ..core.recovery.strategies import RetryConfig, RetryStrategy
from .base import NodeProvider
from .node_models import (
    AccountResource,
    ChainTransaction,
    LedgerInfo,
    NodeErrorBody,
    NodeEvent,
    SimulationResult,
)

logger = logging.getLogger(__name__)

BCS_SIGNED_TRANSACTION = "application/x.aptos.signed_transaction+bcs"

SEQUENCE_ERROR_CODES = {
    "sequence_number_too_old",
    "sequence_number_too_new",
    "invalid_transaction_update",
}
# Move VM StatusCode values for SEQUENCE_NUMBER_TOO_OLD / SEQUENCE_NUMBER_TOO_NEW
SEQUENCE_VM_ERROR_CODES = {3, 4}


def is_sequence_mismatch(body: NodeErrorBody) -> bool:
    """Whether a node error body names a stale or reused sequence number."""
    code = (body.error_code or "").lower()
    if code in SEQUENCE_ERROR_CODES:
        return True
    if code == "vm_error":
        return body.vm_error_code in SEQUENCE_VM_ERROR_CODES or "SEQUENCE_NUMBER" in body.message.upper()
    return False


def _parse_error_body(response: httpx.Response) -> NodeErrorBody:
    try:
        return NodeErrorBody.model_validate(response.json())
    except (ValueError, PydanticValidationError):
        return NodeErrorBody(message=response.text[:500])


def _retry_after(response: httpx.Response) -> Optional[float]:
    value = response.headers.get("retry-after")
    if value is None:
        return None
    try:
        return float(value)
    except ValueError:
        return None


class NodeGateway(NodeProvider):
    """
    Client for an Aptos fullnode REST API.

    One shared httpx.AsyncClient (connection pool) serves every concurrent
    caller; the gateway itself holds no per-call state.
    """

    name = "aptos-node"

    def __init__(
        self,
        base_url: str,
        timeout: float = 10.0,
        retry_config: Optional[RetryConfig] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Optional[Callable[[float], Awaitable[Any]]] = None,
    ):
        """
        Initialize the gateway.

        Args:
            base_url: Node URL, with or without the ``/v1`` suffix
            timeout: Per-request timeout in seconds
            retry_config: Backoff policy for transient failures
            transport: Custom httpx transport (tests use httpx.MockTransport)
            sleep: Awaitable used between retries (defaults to asyncio.sleep)
        """
        base = base_url.rstrip("/")
        if not base.endswith("/v1"):
            base = f"{base}/v1"
        self.base_url = base
        self.timeout_s = timeout
        self.retry_config = retry_config or RetryConfig()
        self._transport = transport
        self._retry = RetryStrategy(self.retry_config, retry_on=(NetworkError,), sleep=sleep, logger=logger)
        self._http_client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None or self._http_client.is_closed:
            self._http_client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout_s,
                transport=self._transport,
                headers={"Accept": "application/json"},
            )
        return self._http_client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._http_client and not self._http_client.is_closed:
            await self._http_client.aclose()
            self._http_client = None

    # =========================================================================
    # Transport
    # =========================================================================

    async def _send_once(
        self,
        method: str,
        path: str,
        allow_not_found: bool,
        **kwargs: Any,
    ) -> Optional[httpx.Response]:
        client = await self._get_client()
        try:
            response = await client.request(method, path, **kwargs)
        except httpx.TimeoutException as e:
            raise NetworkError(f"{method} {path} timed out: {e}") from e
        except httpx.TransportError as e:
            raise NetworkError(f"{method} {path} transport error: {e}") from e

        status = response.status_code
        if status < 400:
            return response

        if status == 429:
            raise RateLimitError(
                f"{method} {path} rate limited",
                retry_after=_retry_after(response),
            )
        if status >= 500:
            raise NetworkError(f"{method} {path} returned HTTP {status}", http_status=status)
        if status == 404 and allow_not_found:
            return None

        body = _parse_error_body(response)
        if is_sequence_mismatch(body):
            raise SequenceMismatchError(
                body.message or "sequence number mismatch",
                error_code=body.error_code,
                http_status=status,
            )
        raise NodeRejectedError(
            body.message or f"{method} {path} returned HTTP {status}",
            http_status=status,
            error_code=body.error_code,
            vm_error_code=body.vm_error_code,
        )

    async def _request(
        self,
        method: str,
        path: str,
        allow_not_found: bool = False,
        **kwargs: Any,
    ) -> Optional[httpx.Response]:
        return await self._retry.execute(
            lambda: self._send_once(method, path, allow_not_found, **kwargs),
            description=f"{method} {path}",
        )

    async def _get_json(self, path: str, allow_not_found: bool = False, **kwargs: Any) -> Any:
        response = await self._request("GET", path, allow_not_found=allow_not_found, **kwargs)
        if response is None:
            return None
        return response.json()

    # =========================================================================
    # Provider
    # =========================================================================

    async def ready(self) -> bool:
        try:
            await self.get_index()
            return True
        except (NetworkError, NodeRejectedError) as e:
            logger.warning(f"Node not ready: {e}")
            return False

    async def health_check(self) -> Dict[str, Any]:
        try:
            info = await self.get_index()
        except (NetworkError, NodeRejectedError) as e:
            return {"status": "unhealthy", "url": self.base_url, "error": str(e)}
        return {
            "status": "healthy",
            "url": self.base_url,
            "chain_id": info.chain_id,
            "ledger_version": info.ledger_version,
        }

    # =========================================================================
    # Reads
    # =========================================================================

    async def get_index(self) -> LedgerInfo:
        """Ledger info, including the chain id."""
        # Absolute URL: a relative "" would resolve to "/v1/"
        return LedgerInfo.model_validate(await self._get_json(self.base_url))

    async def get_sequence_number(self, account: str) -> int:
        """
        Current on-chain sequence number of an account.

        An account the node has never seen has sequence number 0.
        """
        data = await self._get_json(f"/accounts/{encoding.normalize_address(account)}", allow_not_found=True)
        if data is None:
            logger.info(f"Account {account} not found on chain, assuming sequence 0")
            return 0
        return int(data["sequence_number"])

    async def get_transaction_by_hash(self, tx_hash: str) -> Optional[ChainTransaction]:
        """Look up a transaction; None when the node does not know the hash."""
        data = await self._get_json(f"/transactions/by_hash/{tx_hash}", allow_not_found=True)
        if data is None:
            return None
        return ChainTransaction.model_validate(data)

    async def get_account_resource(self, account: str, resource_type: str) -> Optional[AccountResource]:
        """A Move resource under an account, or None if absent."""
        data = await self._get_json(
            f"/accounts/{encoding.normalize_address(account)}/resource/{resource_type}",
            allow_not_found=True,
        )
        if data is None:
            return None
        return AccountResource.model_validate(data)

    async def get_account_events(
        self,
        account: str,
        event_handle: str,
        field_name: str,
        start: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> List[NodeEvent]:
        """Events from an event handle stored in one of the account's resources."""
        params: Dict[str, Any] = {}
        if start is not None:
            params["start"] = start
        if limit is not None:
            params["limit"] = limit
        data = await self._get_json(
            f"/accounts/{encoding.normalize_address(account)}/events/{event_handle}/{field_name}",
            allow_not_found=True,
            params=params,
        )
        if data is None:
            return []
        return [NodeEvent.model_validate(item) for item in data]

    # =========================================================================
    # Writes
    # =========================================================================

    async def submit(self, signed: SignedTransaction) -> str:
        """
        Submit a signed transaction.

        Returns:
            The transaction hash accepted by the node

        Raises:
            SequenceMismatchError: Stale or reused sequence number
            NodeRejectedError: Any other validation failure
            NetworkError: Transient failures persisted past the retry cap
        """
        response = await self._request(
            "POST",
            "/transactions",
            content=signed.to_bcs(),
            headers={"Content-Type": BCS_SIGNED_TRANSACTION},
        )
        accepted = response.json().get("hash") or signed.hash
        if accepted != signed.hash:
            logger.warning(f"Node reported hash {accepted}, computed {signed.hash}")
        return accepted

    async def simulate(self, signed: SignedTransaction) -> SimulationResult:
        """
        Dry-run a transaction.

        The node refuses simulations carrying a valid signature, so the
        signature is zeroed before sending.
        """
        body = encoding.signed_transaction_bytes(
            signed.raw.to_bcs(),
            signed.public_key,
            bytes(len(signed.signature)),
        )
        response = await self._request(
            "POST",
            "/transactions/simulate",
            content=body,
            headers={"Content-Type": BCS_SIGNED_TRANSACTION},
        )
        results = response.json()
        if not results:
            raise NodeRejectedError("simulation returned no result", http_status=response.status_code)
        return SimulationResult.model_validate(results[0])
