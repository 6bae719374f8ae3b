"""Key material handling for transaction signing.

Signing flow:
1. Resolve the caller's opaque key reference through a KeyProvider
2. Hold the secret in a scoped handle for the duration of one trade's signing
3. Sign every assembled transaction
4. Zero the secret when the scope exits, including on errors
"""

import logging
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Iterator

from solders.keypair import Keypair
from solders.pubkey import Pubkey

logger = logging.getLogger(__name__)


class KeyReleasedError(RuntimeError):
    """The secret handle was used after its scope ended."""


class SecretKey:
    """A 64-byte ed25519 secret held in a mutable buffer.

    The buffer is overwritten with zeros by ``release()``. Never printed.
    """

    __slots__ = ("_buffer", "_released")

    def __init__(self, secret: bytearray):
        if len(secret) != 64:
            raise ValueError(f"Expected a 64-byte secret key, got {len(secret)} bytes")
        self._buffer = secret
        self._released = False

    def keypair(self) -> Keypair:
        if self._released:
            raise KeyReleasedError("Signing key already released")
        return Keypair.from_bytes(bytes(self._buffer))

    def pubkey(self) -> Pubkey:
        return self.keypair().pubkey()

    def release(self) -> None:
        for i in range(len(self._buffer)):
            self._buffer[i] = 0
        self._released = True

    @property
    def released(self) -> bool:
        return self._released

    def __repr__(self) -> str:
        return f"SecretKey(released={self._released})"


class KeyProvider(ABC):
    """Resolves opaque key references to scoped secrets.

    Implementations must not cache secrets between acquisitions.
    """

    @abstractmethod
    def _load(self, key_ref: str) -> bytearray:
        """Return a fresh 64-byte secret for ``key_ref``.

        Raises:
            KeyNotFound: unknown reference or undecodable key material
        """
        pass

    @contextmanager
    def acquire(self, key_ref: str) -> Iterator[SecretKey]:
        """Scope a secret to a ``with`` block.

        Example:
            with provider.acquire("treasury") as secret:
                keypair = secret.keypair()
        """
        secret = SecretKey(self._load(key_ref))
        logger.debug(f"Acquired signing key for reference '{key_ref}'")
        try:
            yield secret
        finally:
            secret.release()
            logger.debug(f"Released signing key for reference '{key_ref}'")
