"""Ledger node interface used by the broadcaster and the poller."""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Optional

from solswap.models import Commitment

logger = logging.getLogger(__name__)


class LedgerError(Exception):
    """Base class for ledger client failures."""


class RpcRejected(LedgerError):
    """The node answered with a JSON-RPC error object. Definitive."""

    def __init__(self, message: str, code: Optional[int] = None, data: Any = None):
        super().__init__(message)
        self.code = code
        self.data = data


class LedgerTransportError(LedgerError):
    """No usable answer (timeout, connection failure, 429 or 5xx).

    The request may or may not have reached the node.
    """

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


@dataclass(frozen=True)
class SignatureStatus:
    """Ledger view of one signature."""

    slot: Optional[int]
    confirmations: Optional[int]
    err: Any
    confirmation_status: Optional[Commitment]

    @classmethod
    def from_rpc(cls, value: dict) -> "SignatureStatus":
        status = value.get("confirmationStatus")
        return cls(
            slot=value.get("slot"),
            confirmations=value.get("confirmations"),
            err=value.get("err"),
            confirmation_status=Commitment(status) if status else None,
        )


class LedgerClient(ABC):
    """Minimal ledger node API the pipeline depends on."""

    @property
    @abstractmethod
    def name(self) -> str:
        pass

    @abstractmethod
    async def send_transaction(
        self, blob_base64: str, preflight_commitment: Commitment
    ) -> str:
        """Submit a signed transaction and return its signature.

        Raises:
            RpcRejected: the node refused the transaction
            LedgerTransportError: outcome unknown
        """
        pass

    @abstractmethod
    async def get_signature_status(self, signature: str) -> Optional[SignatureStatus]:
        """Status of ``signature``, or None when the ledger has not seen it.

        Raises:
            LedgerTransportError: outcome unknown
        """
        pass

    async def get_transaction_fee(
        self, signature: str, commitment: Commitment
    ) -> Optional[int]:
        """Fee in lamports charged for a landed transaction, if known."""
        return None
