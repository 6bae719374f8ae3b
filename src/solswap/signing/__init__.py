"""Key providers and the transaction signer."""

from solswap.signing.base import KeyProvider, KeyReleasedError, SecretKey
from solswap.signing.local import EnvKeyProvider, InMemoryKeyProvider, keypair_from_seed_phrase
from solswap.signing.signer import Signer

__all__ = [
    "EnvKeyProvider",
    "InMemoryKeyProvider",
    "KeyProvider",
    "KeyReleasedError",
    "SecretKey",
    "Signer",
    "keypair_from_seed_phrase",
]
