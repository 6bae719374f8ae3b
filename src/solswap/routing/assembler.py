"""Swap transaction construction via the Raydium trade API."""

import base64
import binascii
import logging
from typing import Optional

from solders.transaction import VersionedTransaction

from solswap.context import ServiceContext
from solswap.errors import BuildFailed, ProviderError
from solswap.models import AssembledTransaction, SwapQuote
from solswap.routing.base import ProviderClient
from solswap.routing.quote import TX_VERSION
from solswap.utils.deadline import Budget

logger = logging.getLogger(__name__)


class TransactionAssembler(ProviderClient):
    """Turn a quote into unsigned transactions for a wallet."""

    def __init__(self, ctx: ServiceContext, base_url: Optional[str] = None):
        super().__init__(ctx, base_url or ctx.settings.raydium_trade_api_url)

    async def assemble(
        self,
        quote: SwapQuote,
        fee_micro_lamports: int,
        wallet_address: str,
        wrap_sol: bool = False,
        unwrap_sol: bool = False,
        budget: Optional[Budget] = None,
    ) -> AssembledTransaction:
        """Request the unsigned transaction(s) executing ``quote``.

        Args:
            quote: A fresh quote from QuoteClient
            fee_micro_lamports: Priority fee per compute unit
            wallet_address: Fee payer and owner of the swapped tokens
            wrap_sol: Input is native SOL and must be wrapped
            unwrap_sol: Output is native SOL and must be unwrapped

        Returns:
            The ordered blobs; later blobs depend on earlier ones landing

        Raises:
            BuildFailed: expired or malformed quote, builder error, bad blob
        """
        if quote.is_expired:
            raise BuildFailed(
                f"Quote expired {-quote.seconds_until_expiry:.1f}s ago; fetch a new one"
            )
        if not quote.raw:
            raise BuildFailed("Quote has no provider payload to build from")

        payload = {
            "computeUnitPriceMicroLamports": str(fee_micro_lamports),
            "swapResponse": quote.raw,
            "txVersion": TX_VERSION,
            "wallet": wallet_address,
            "wrapSol": wrap_sol,
            "unwrapSol": unwrap_sol,
            "slippageBps": quote.slippage_bps,
        }

        try:
            body = await self._post("transaction/swap-base-in", payload, budget)
        except ProviderError as e:
            logger.warning(f"Transaction build failed: {e}")
            raise BuildFailed(str(e))

        entries = body.get("data")
        if not isinstance(entries, list) or not entries:
            raise BuildFailed("Builder returned no transactions")

        blobs = []
        for index, entry in enumerate(entries, start=1):
            encoded = entry.get("transaction") if isinstance(entry, dict) else None
            if not encoded:
                raise BuildFailed(f"Transaction {index} missing from builder response")
            blobs.append(self._decode(encoded, index))

        logger.info(f"Built {len(blobs)} transaction(s) for wallet {wallet_address}")
        return AssembledTransaction(blobs=tuple(blobs))

    @staticmethod
    def _decode(encoded: str, index: int) -> bytes:
        try:
            raw = base64.b64decode(encoded, validate=True)
        except (binascii.Error, ValueError):
            raise BuildFailed(f"Transaction {index} is not valid base64")
        try:
            VersionedTransaction.from_bytes(raw)
        except Exception as e:
            raise BuildFailed(f"Transaction {index} could not be decoded: {e}")
        return raw
