"""Trade orchestration."""

from solswap.swap.orchestrator import TradeOrchestrator

__all__ = ["TradeOrchestrator"]
