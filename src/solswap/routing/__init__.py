"""Quote, priority fee and transaction-building providers."""

from solswap.routing.assembler import TransactionAssembler
from solswap.routing.base import ProviderClient
from solswap.routing.fees import FeeEstimator
from solswap.routing.quote import QuoteClient

__all__ = [
    "FeeEstimator",
    "ProviderClient",
    "QuoteClient",
    "TransactionAssembler",
]
