"""Solana JSON-RPC client."""

import itertools
import logging
from typing import Any, Optional

import httpx

from solswap.context import ServiceContext
from solswap.ledger.base import (
    LedgerClient,
    LedgerTransportError,
    RpcRejected,
    SignatureStatus,
)
from solswap.models import Commitment

logger = logging.getLogger(__name__)


class SolanaRpcClient(LedgerClient):
    """JSON-RPC over the shared HTTP client.

    Rate limiting and server errors (429/5xx) surface as
    LedgerTransportError; an ``error`` object in the reply as RpcRejected.
    """

    service = "solana"

    def __init__(self, ctx: ServiceContext, rpc_url: Optional[str] = None):
        self.ctx = ctx
        self.rpc_url = rpc_url or ctx.settings.solana_rpc_url
        self._ids = itertools.count(1)

    @property
    def name(self) -> str:
        return "solana-rpc"

    async def _call(self, method: str, params: list) -> Any:
        await self.ctx.meter.acquire(self.service, method)
        payload = {
            "jsonrpc": "2.0",
            "id": next(self._ids),
            "method": method,
            "params": params,
        }
        try:
            response = await self.ctx.http.post(self.rpc_url, json=payload)
        except httpx.HTTPError as e:
            raise LedgerTransportError(f"{method}: {type(e).__name__}: {e}")

        if response.status_code == 429 or response.status_code >= 500:
            raise LedgerTransportError(
                f"{method}: HTTP {response.status_code}", status_code=response.status_code
            )

        try:
            body = response.json()
        except ValueError:
            raise LedgerTransportError(f"{method}: HTTP {response.status_code}, body is not JSON")

        if isinstance(body, dict) and body.get("error"):
            error = body["error"]
            if isinstance(error, dict):
                raise RpcRejected(
                    error.get("message", str(error)),
                    code=error.get("code"),
                    data=error.get("data"),
                )
            raise RpcRejected(str(error))

        if not response.is_success or not isinstance(body, dict) or "result" not in body:
            raise LedgerTransportError(
                f"{method}: unexpected reply (HTTP {response.status_code})",
                status_code=response.status_code,
            )
        return body["result"]

    async def send_transaction(
        self, blob_base64: str, preflight_commitment: Commitment = Commitment.CONFIRMED
    ) -> str:
        signature = await self._call(
            "sendTransaction",
            [
                blob_base64,
                {
                    "encoding": "base64",
                    "skipPreflight": False,
                    "preflightCommitment": Commitment(preflight_commitment).value,
                    # Resubmission is ours to control
                    "maxRetries": 0,
                },
            ],
        )
        logger.info(f"Solana tx broadcast via {self.rpc_url}: {signature}")
        return signature

    async def get_signature_status(self, signature: str) -> Optional[SignatureStatus]:
        result = await self._call(
            "getSignatureStatuses",
            [[signature], {"searchTransactionHistory": True}],
        )
        values = (result or {}).get("value") or [None]
        if values[0] is None:
            return None
        return SignatureStatus.from_rpc(values[0])

    async def get_transaction_fee(
        self, signature: str, commitment: Commitment = Commitment.CONFIRMED
    ) -> Optional[int]:
        # getTransaction does not accept processed
        if not Commitment(commitment).reaches(Commitment.CONFIRMED):
            commitment = Commitment.CONFIRMED
        result = await self._call(
            "getTransaction",
            [
                signature,
                {
                    "encoding": "json",
                    "commitment": Commitment(commitment).value,
                    "maxSupportedTransactionVersion": 0,
                },
            ],
        )
        if not result:
            return None
        fee = (result.get("meta") or {}).get("fee")
        return int(fee) if fee is not None else None
