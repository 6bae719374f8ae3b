"""Shared HTTP plumbing for the trade API providers.

The providers answer with an envelope ``{"success": bool, "data": ...}``.
A non-2xx status, an undecodable body or ``success: false`` are all hard
failures surfaced as ProviderError; callers turn them into their stage error.
"""

import asyncio
import logging
from typing import Any, Optional

import httpx

from solswap.context import ServiceContext
from solswap.errors import ProviderError
from solswap.utils.deadline import Budget

logger = logging.getLogger(__name__)


class ProviderClient:
    """Base class for components talking to a JSON-over-HTTP provider."""

    service = "raydium"

    def __init__(self, ctx: ServiceContext, base_url: str):
        self.ctx = ctx
        self.base_url = base_url.rstrip("/")

    def _get_headers(self) -> dict:
        """Get API headers."""
        headers = {"Accept": "application/json"}
        if self.ctx.settings.api_key:
            headers["x-api-key"] = self.ctx.settings.api_key
        return headers

    async def _request(
        self,
        method: str,
        path: str,
        budget: Optional[Budget] = None,
        **kwargs,
    ) -> dict:
        """Send one request and return the decoded envelope.

        Raises:
            ProviderError: on transport failure, timeout, non-2xx status,
                malformed body or an unsuccessful envelope
        """
        budget = budget or Budget.unbounded()
        endpoint = path.lstrip("/")
        url = f"{self.base_url}/{endpoint}"

        try:
            await budget.run(self.ctx.meter.acquire(self.service, endpoint))
            response = await budget.run(
                self.ctx.http.request(method, url, headers=self._get_headers(), **kwargs)
            )
        except asyncio.TimeoutError:
            raise ProviderError(f"{endpoint}: timed out")
        except httpx.HTTPError as e:
            raise ProviderError(f"{endpoint}: {type(e).__name__}: {e}")

        if not response.is_success:
            logger.warning(f"{self.service} API error: {response.status_code} - {response.text[:200]}")
            raise ProviderError(
                f"{endpoint}: HTTP {response.status_code}", status_code=response.status_code
            )

        try:
            body = response.json()
        except ValueError:
            raise ProviderError(f"{endpoint}: response is not JSON")

        if not isinstance(body, dict):
            raise ProviderError(f"{endpoint}: unexpected response shape")
        if not body.get("success"):
            reason = body.get("msg") or body.get("message") or "success=false"
            raise ProviderError(f"{endpoint}: {reason}")
        return body

    async def _get(self, path: str, params: dict, budget: Optional[Budget] = None) -> dict:
        return await self._request("GET", path, budget, params=params)

    async def _post(self, path: str, payload: dict, budget: Optional[Budget] = None) -> dict:
        return await self._request("POST", path, budget, json=payload)


def require(data: Any, key: str, what: str) -> Any:
    """Fetch a mandatory field from a provider payload."""
    if not isinstance(data, dict) or data.get(key) is None:
        raise ProviderError(f"{what}: missing '{key}'")
    return data[key]
