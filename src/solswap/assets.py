"""Asset registry: symbols and mint addresses to mint + decimals."""

import logging
from dataclasses import dataclass
from typing import Optional

logger = logging.getLogger(__name__)

# Wrapped SOL; the trade API uses this mint for native SOL.
SOL_MINT = "So11111111111111111111111111111111111111112"

# Token mint addresses on Solana mainnet
SOLANA_TOKENS = {
    "SOL": SOL_MINT,
    "USDT": "Es9vMFrzaCERmJfrF4H2FYD4KCoNkY11McCe8BenwNYB",
    "USDC": "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v",
    "RAY": "4k3Dyjzvzp8eMZWUXbBCjEvwSkkk59S5iCNLY3QrkX6R",
    "ORCA": "orcaEKTdK7LKz57vaAYr9QeNsVEPfiu6QeMU1kektZE",
    "JUP": "JUPyiwrYJFskUPiHa7hkeR8VUtAeFoSYbKedZNsDvCN",
    "BONK": "DezXAZ8z7PnrnRJjz3wXBoRgixCa6xjnB7YaB1pPB263",
    "WIF": "EKpQGSJtjMFqKZ9KQanSqYXRcF8fBopzLHYxdM65zcjm",
    "PYTH": "HZ1JovNiVvGrGNiiYvEozEVgZ58xaU3RKwX8eACQBCt3",
}

# Token decimals
TOKEN_DECIMALS = {
    "SOL": 9,
    "USDT": 6,
    "USDC": 6,
    "RAY": 6,
    "ORCA": 6,
    "JUP": 6,
    "BONK": 5,
    "WIF": 6,
    "PYTH": 6,
}


class UnknownAssetError(KeyError):
    """Asset identifier is neither a registered symbol nor a registered mint."""


@dataclass(frozen=True)
class Asset:
    symbol: str
    mint: str
    decimals: int

    @property
    def is_native(self) -> bool:
        return self.mint == SOL_MINT


class AssetRegistry:
    """Resolve asset identifiers (symbol or mint address) to assets."""

    def __init__(self, assets: Optional[list[Asset]] = None):
        self._by_symbol: dict[str, Asset] = {}
        self._by_mint: dict[str, Asset] = {}
        if assets is None:
            assets = [
                Asset(symbol=symbol, mint=mint, decimals=TOKEN_DECIMALS[symbol])
                for symbol, mint in SOLANA_TOKENS.items()
            ]
        for asset in assets:
            self.register(asset)

    def register(self, asset: Asset) -> None:
        existing = self._by_mint.get(asset.mint)
        if existing and existing.decimals != asset.decimals:
            raise ValueError(
                f"Mint {asset.mint} already registered with {existing.decimals} decimals"
            )
        self._by_symbol[asset.symbol.upper()] = asset
        self._by_mint[asset.mint] = asset
        logger.debug(f"Registered asset {asset.symbol} ({asset.mint}, {asset.decimals} decimals)")

    def resolve(self, identifier: str) -> Asset:
        """Look up an asset by symbol (case-insensitive) or exact mint address."""
        asset = self._by_symbol.get(identifier.upper()) or self._by_mint.get(identifier)
        if asset is None:
            raise UnknownAssetError(identifier)
        return asset

    def __contains__(self, identifier: str) -> bool:
        try:
            self.resolve(identifier)
        except UnknownAssetError:
            return False
        return True

    @property
    def symbols(self) -> list[str]:
        return sorted(self._by_symbol)
