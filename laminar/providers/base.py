from abc import ABC, abstractmethod
from typing import Any, Dict, Optional


class Provider(ABC):
    """Base provider interface"""

    name: str
    timeout_s: float = 10

    @abstractmethod
    async def ready(self) -> bool:
        """Check if provider is ready to serve requests"""
        pass

    @abstractmethod
    async def health_check(self) -> Dict[str, Any]:
        """Return provider health status"""
        pass


class NodeProvider(Provider):
    """Provider for the chain node: sequence numbers, submission and status"""

    @abstractmethod
    async def get_index(self) -> Any:
        """Ledger info, including the chain id"""
        pass

    @abstractmethod
    async def get_sequence_number(self, account: str) -> int:
        """Current on-chain sequence number of an account"""
        pass

    @abstractmethod
    async def submit(self, signed: Any) -> str:
        """Submit a signed transaction, returning the accepted hash"""
        pass

    @abstractmethod
    async def get_transaction_by_hash(self, tx_hash: str) -> Optional[Any]:
        """Transaction by hash, or None when the node does not know it"""
        pass

    @abstractmethod
    async def simulate(self, signed: Any) -> Any:
        """Dry-run a transaction for gas estimation"""
        pass
