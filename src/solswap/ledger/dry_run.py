"""Simulated ledger for dry runs.

Accepts any well-formed signed transaction and reports it landing over
successive status checks: not yet seen, processed, confirmed, finalized.
Nothing leaves the process.
"""

import base64
import logging
from dataclasses import dataclass
from typing import Optional

from solders.transaction import VersionedTransaction

from solswap.ledger.base import LedgerClient, RpcRejected, SignatureStatus
from solswap.models import Commitment
from solswap.units import LAMPORTS_PER_SIGNATURE

logger = logging.getLogger(__name__)

# Status reported on the n-th check (1-based); later checks stay finalized.
STATUS_PROGRESSION = [None, Commitment.PROCESSED, Commitment.CONFIRMED, Commitment.FINALIZED]

SIMULATED_START_SLOT = 250_000_000


@dataclass
class _SimulatedTx:
    signatures: int
    slot: int
    checks: int = 0


class DryRunRpcClient(LedgerClient):
    """In-process ledger stand-in used when ``dry_run`` is enabled."""

    def __init__(self):
        self._txs: dict[str, _SimulatedTx] = {}
        self._slot = SIMULATED_START_SLOT

    @property
    def name(self) -> str:
        return "dry-run"

    async def send_transaction(
        self, blob_base64: str, preflight_commitment: Commitment = Commitment.CONFIRMED
    ) -> str:
        try:
            tx = VersionedTransaction.from_bytes(base64.b64decode(blob_base64))
        except Exception as e:
            raise RpcRejected(f"failed to deserialize transaction: {e}", code=-32602)

        signature = str(tx.signatures[0])
        if signature not in self._txs:
            self._slot += 1
            self._txs[signature] = _SimulatedTx(signatures=len(tx.signatures), slot=self._slot)
        logger.info(f"[DRY RUN] Accepted transaction {signature}")
        return signature

    async def get_signature_status(self, signature: str) -> Optional[SignatureStatus]:
        tx = self._txs.get(signature)
        if tx is None:
            return None
        tx.checks += 1
        level = STATUS_PROGRESSION[min(tx.checks, len(STATUS_PROGRESSION)) - 1]
        if level is None:
            return None
        return SignatureStatus(
            slot=tx.slot,
            confirmations=None if level is Commitment.FINALIZED else tx.checks,
            err=None,
            confirmation_status=level,
        )

    async def get_transaction_fee(
        self, signature: str, commitment: Commitment = Commitment.CONFIRMED
    ) -> Optional[int]:
        tx = self._txs.get(signature)
        if tx is None:
            return None
        return tx.signatures * LAMPORTS_PER_SIGNATURE
