"""Local key providers.

Keys come from environment variables (or a process-local map in tests):
- SOLSWAP_KEY_{REF}: secret for key reference REF

Accepted formats:
- JSON byte array, as written by ``solana-keygen``
- base58 encoded 64-byte secret, as exported by wallets
- BIP-39 seed phrase, derived at m/44'/501'/0'/0'

WARNING: keys are read from process memory. Use an external signer for
significant funds.
"""

import json
import logging
import os
import re
from typing import Optional

from bip_utils import Bip39SeedGenerator, Bip44, Bip44Changes, Bip44Coins
from solders.keypair import Keypair

from solswap.errors import KeyNotFound
from solswap.signing.base import KeyProvider

logger = logging.getLogger(__name__)

ENV_PREFIX = "SOLSWAP_KEY_"


def keypair_from_seed_phrase(seed_phrase: str, index: int = 0) -> Keypair:
    """Derive a Solana keypair from a seed phrase.

    Uses standard BIP44 path: m/44'/501'/index'/0'
    """
    seed = Bip39SeedGenerator(seed_phrase).Generate()
    bip44 = Bip44.FromSeed(seed, Bip44Coins.SOLANA)
    account = bip44.Purpose().Coin().Account(index).Change(Bip44Changes.CHAIN_EXT)
    private_key = account.PrivateKey().Raw().ToBytes()

    # Solana keypair from 32-byte seed
    return Keypair.from_seed(private_key[:32])


def decode_secret(value: str) -> bytearray:
    """Decode key material in any accepted format into a 64-byte secret.

    Raises:
        ValueError: value is not a usable key
    """
    value = value.strip()
    if value.startswith("["):
        raw = bytearray(json.loads(value))
        if len(raw) != 64:
            raise ValueError(f"byte array has {len(raw)} entries, expected 64")
        # Rejects a secret whose public half does not match
        Keypair.from_bytes(bytes(raw))
        return raw
    if len(value.split()) >= 12:
        return bytearray(bytes(keypair_from_seed_phrase(value)))
    return bytearray(bytes(Keypair.from_base58_string(value)))


class EnvKeyProvider(KeyProvider):
    """Reads keys from SOLSWAP_KEY_{REF} at every acquisition."""

    def __init__(self, prefix: str = ENV_PREFIX, environ: Optional[dict] = None):
        self.prefix = prefix
        self._environ = environ if environ is not None else os.environ

    def env_name(self, key_ref: str) -> str:
        return self.prefix + re.sub(r"[^A-Z0-9]", "_", key_ref.upper())

    def _load(self, key_ref: str) -> bytearray:
        name = self.env_name(key_ref)
        value = self._environ.get(name)
        if not value:
            raise KeyNotFound(f"No signing key configured for reference '{key_ref}'")
        try:
            return decode_secret(value)
        except Exception as e:
            logger.error(f"Signing key for reference '{key_ref}' is unusable: {type(e).__name__}")
            raise KeyNotFound(f"Signing key for reference '{key_ref}' could not be decoded")


class InMemoryKeyProvider(KeyProvider):
    """Keys held by the process. For tests and local tooling."""

    def __init__(self, keys: Optional[dict[str, Keypair]] = None):
        self._keys: dict[str, bytes] = {}
        for key_ref, keypair in (keys or {}).items():
            self.add(key_ref, keypair)

    def add(self, key_ref: str, keypair: Keypair) -> None:
        self._keys[key_ref] = bytes(keypair)

    def _load(self, key_ref: str) -> bytearray:
        if key_ref not in self._keys:
            raise KeyNotFound(f"No signing key configured for reference '{key_ref}'")
        return bytearray(self._keys[key_ref])
