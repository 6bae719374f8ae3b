"""Solana swap execution pipeline."""

from solswap.config import Settings, get_settings
from solswap.context import ServiceContext
from solswap.models import TradeRecord, TradeRequest, TradeStatus
from solswap.swap import TradeOrchestrator

__version__ = "0.1.0"

__all__ = [
    "ServiceContext",
    "Settings",
    "TradeOrchestrator",
    "TradeRecord",
    "TradeRequest",
    "TradeStatus",
    "get_settings",
]
