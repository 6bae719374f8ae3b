"""Shared service state for the swap pipeline.

Built once by the caller and passed to every component. Holds the only state
shared between concurrent trades: the HTTP connection pool and the call meter.
"""

import logging
from typing import Optional

import httpx

from solswap.assets import AssetRegistry
from solswap.config import Settings
from solswap.utils.metering import ApiCallMeter

logger = logging.getLogger(__name__)


class ServiceContext:
    """Settings plus shared clients.

    Example:
        async with ServiceContext(get_settings()) as ctx:
            orchestrator = TradeOrchestrator(ctx, key_provider=EnvKeyProvider())
            record = await orchestrator.execute(request)
    """

    def __init__(
        self,
        settings: Settings,
        http: Optional[httpx.AsyncClient] = None,
        meter: Optional[ApiCallMeter] = None,
        assets: Optional[AssetRegistry] = None,
    ):
        self.settings = settings
        self._owns_http = http is None
        self.http = http or httpx.AsyncClient(
            timeout=settings.http_timeout_seconds,
            headers={"Accept": "application/json"},
        )
        self.meter = meter or ApiCallMeter(calls_per_minute=settings.api_calls_per_minute)
        self.assets = assets or AssetRegistry()

    async def aclose(self) -> None:
        if self._owns_http:
            await self.http.aclose()
            logger.debug("Closed shared HTTP client")

    async def __aenter__(self) -> "ServiceContext":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.aclose()
        return False
