"""
Laminar: async Python client for the Laminar order book DEX on Aptos.
"""

from .client import LaminarClient
from .config import MarketConfig, Settings, get_settings
from .core.execution.models import (
    OrderId,
    Outcome,
    OutcomeStatus,
    Side,
    TimeInForce,
)
from .core.orderbook.models import Id, Order, OrderBook, OrderState
from .core.recovery.errors import ErrorCategory, LaminarError

__version__ = "0.1.0"

__all__ = [
    "LaminarClient",
    "MarketConfig",
    "Settings",
    "get_settings",
    "OrderId",
    "Outcome",
    "OutcomeStatus",
    "Side",
    "TimeInForce",
    "Id",
    "Order",
    "OrderBook",
    "OrderState",
    "ErrorCategory",
    "LaminarError",
]
