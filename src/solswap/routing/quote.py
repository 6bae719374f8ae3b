"""Raydium swap quotes.

API docs: https://docs.raydium.io/raydium/traders/trade-api
"""

import logging
from decimal import Decimal, InvalidOperation
from typing import Optional

from solswap.context import ServiceContext
from solswap.errors import ProviderError, QuoteUnavailable
from solswap.models import SwapQuote
from solswap.routing.base import ProviderClient, require
from solswap.utils.deadline import Budget

logger = logging.getLogger(__name__)

TX_VERSION = "V0"


class QuoteClient(ProviderClient):
    """Fetch route/price quotes for an exact input amount."""

    def __init__(self, ctx: ServiceContext, base_url: Optional[str] = None):
        super().__init__(ctx, base_url or ctx.settings.raydium_trade_api_url)

    async def get_quote(
        self,
        input_mint: str,
        output_mint: str,
        amount: int,
        slippage_bps: int,
        budget: Optional[Budget] = None,
    ) -> SwapQuote:
        """Get a quote for selling ``amount`` base units of ``input_mint``.

        Args:
            input_mint: Mint being sold
            output_mint: Mint being bought
            amount: Input amount in base units
            slippage_bps: Slippage tolerance in basis points, passed through as is

        Raises:
            QuoteUnavailable: provider unreachable, unsuccessful or without a route
        """
        if amount <= 0:
            raise QuoteUnavailable(f"Amount must be positive, got {amount} base units")

        params = {
            "inputMint": input_mint,
            "outputMint": output_mint,
            "amount": str(amount),
            "slippageBps": str(slippage_bps),
            "txVersion": TX_VERSION,
        }
        try:
            body = await self._get("compute/swap-base-in", params, budget)
            quote = self._parse(body, slippage_bps)
        except ProviderError as e:
            logger.warning(f"Quote {input_mint} -> {output_mint} unavailable: {e}")
            raise QuoteUnavailable(str(e))

        logger.info(
            f"Quote {amount} {input_mint} -> {quote.expected_output} {output_mint} "
            f"(min {quote.min_output}, impact {quote.price_impact_pct}%)"
        )
        return quote

    def _parse(self, body: dict, slippage_bps: int) -> SwapQuote:
        data = require(body, "data", "quote")
        route_plan = data.get("routePlan") or []
        if not route_plan:
            raise ProviderError("quote: no route available")

        try:
            return SwapQuote(
                input_mint=require(data, "inputMint", "quote"),
                output_mint=require(data, "outputMint", "quote"),
                input_amount=int(require(data, "inputAmount", "quote")),
                expected_output=int(require(data, "outputAmount", "quote")),
                min_output=int(data.get("otherAmountThreshold") or 0),
                slippage_bps=slippage_bps,
                price_impact_pct=Decimal(str(data.get("priceImpactPct", "0"))),
                route=[step.get("poolId", "unknown") for step in route_plan],
                raw=body,
                ttl_seconds=self.ctx.settings.quote_ttl_seconds,
            )
        except (TypeError, ValueError, InvalidOperation) as e:
            raise ProviderError(f"quote: malformed payload ({e})")
