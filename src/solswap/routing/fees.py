"""Priority fee tiers from the Raydium API."""

import logging
from typing import Optional

from solswap.context import ServiceContext
from solswap.errors import FeeUnavailable, ProviderError
from solswap.models import PriorityFeeTiers
from solswap.routing.base import ProviderClient, require
from solswap.utils.deadline import Budget

logger = logging.getLogger(__name__)

# Response keys for each tier
TIER_KEYS = {"medium": "m", "high": "h", "very_high": "vh"}


class FeeEstimator(ProviderClient):
    """Fetch current priority fee levels. No fallback value on failure."""

    def __init__(self, ctx: ServiceContext, base_url: Optional[str] = None):
        super().__init__(ctx, base_url or ctx.settings.raydium_api_url)

    async def get_fee_tiers(self, budget: Optional[Budget] = None) -> PriorityFeeTiers:
        """Get priority fee tiers in micro-lamports per compute unit.

        Raises:
            FeeUnavailable: provider unreachable or response unusable
        """
        try:
            body = await self._get("main/auto-fee", {}, budget)
            data = require(body, "data", "fee")
            levels = require(data, "default", "fee")
            values = {}
            for tier, key in TIER_KEYS.items():
                value = int(require(levels, key, "fee"))
                if value < 0:
                    raise ProviderError(f"fee: negative {tier} tier")
                values[tier] = value
        except (TypeError, ValueError) as e:
            logger.warning(f"Priority fee response malformed: {e}")
            raise FeeUnavailable(f"fee: malformed payload ({e})")
        except ProviderError as e:
            logger.warning(f"Priority fee unavailable: {e}")
            raise FeeUnavailable(str(e))

        tiers = PriorityFeeTiers(**values)
        logger.debug(f"Priority fee tiers: {tiers}")
        return tiers
