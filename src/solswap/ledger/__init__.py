"""Ledger access: RPC client, dry-run ledger, broadcast and confirmation."""

from solswap.ledger.base import (
    LedgerClient,
    LedgerError,
    LedgerTransportError,
    RpcRejected,
    SignatureStatus,
)
from solswap.ledger.broadcaster import Broadcaster
from solswap.ledger.dry_run import DryRunRpcClient
from solswap.ledger.poller import ConfirmationPoller
from solswap.ledger.rpc import SolanaRpcClient

__all__ = [
    "Broadcaster",
    "ConfirmationPoller",
    "DryRunRpcClient",
    "LedgerClient",
    "LedgerError",
    "LedgerTransportError",
    "RpcRejected",
    "SignatureStatus",
    "SolanaRpcClient",
]
