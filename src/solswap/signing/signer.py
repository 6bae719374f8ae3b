"""Sign assembled swap transactions with the caller's key."""

import logging

from solders.message import to_bytes_versioned
from solders.transaction import VersionedTransaction

from solswap.errors import BuildFailed, SigningKeyMismatch
from solswap.models import AssembledTransaction, SignedTransaction
from solswap.signing.base import KeyProvider

logger = logging.getLogger(__name__)


class Signer:
    """Ed25519 signer for assembled transactions.

    The key is acquired per call and released before returning, so the
    secret never outlives one signing pass.
    """

    def __init__(self, key_provider: KeyProvider):
        self.key_provider = key_provider

    def public_key(self, key_ref: str) -> str:
        """Wallet address of ``key_ref``."""
        with self.key_provider.acquire(key_ref) as secret:
            return str(secret.pubkey())

    def sign(self, assembled: AssembledTransaction, key_ref: str) -> list[SignedTransaction]:
        """Sign every blob in order.

        All blobs are checked before any is signed: if the held key is not
        the sole required signer of each one, nothing is signed.

        Raises:
            SigningKeyMismatch: a required signer slot belongs to another key
            BuildFailed: a blob cannot be decoded
            KeyNotFound: ``key_ref`` does not resolve
        """
        with self.key_provider.acquire(key_ref) as secret:
            keypair = secret.keypair()
            pubkey = keypair.pubkey()

            transactions = []
            for leg, blob in enumerate(assembled.blobs, start=1):
                stage = assembled.stage_for(leg, "sign")
                try:
                    tx = VersionedTransaction.from_bytes(blob)
                except Exception as e:
                    raise BuildFailed(f"Transaction {leg} could not be decoded: {e}", stage=stage)

                header = tx.message.header
                required = list(tx.message.account_keys[: header.num_required_signatures])
                if not required:
                    raise SigningKeyMismatch(f"Transaction {leg} declares no signers", stage=stage)
                foreign = [str(key) for key in required if key != pubkey]
                if foreign:
                    logger.error(
                        f"Transaction {leg} requires signers {foreign} not held by '{key_ref}'"
                    )
                    raise SigningKeyMismatch(
                        f"Transaction {leg} requires {len(foreign)} signer(s) other than {pubkey}",
                        stage=stage,
                    )
                transactions.append(tx)

            signed = []
            for leg, tx in enumerate(transactions, start=1):
                message = tx.message
                signature = keypair.sign_message(to_bytes_versioned(message))
                signatures = [signature] * message.header.num_required_signatures
                signed_tx = VersionedTransaction.populate(message, signatures)
                signed.append(
                    SignedTransaction(
                        blob=bytes(signed_tx),
                        signatures=tuple(str(s) for s in signed_tx.signatures),
                        leg=leg,
                        stage=assembled.stage_for(leg, "broadcast"),
                    )
                )

        logger.info(f"Signed {len(signed)} transaction(s) with key '{key_ref}' ({pubkey})")
        return signed
