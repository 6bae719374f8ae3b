"""Submit signed transactions to a ledger node."""

import asyncio
import logging
from typing import Optional

from solswap.errors import BroadcastAmbiguous, BroadcastRejected, BroadcastTimedOut
from solswap.ledger.base import LedgerClient, LedgerTransportError, RpcRejected
from solswap.models import BroadcastReceipt, Commitment, SignedTransaction
from solswap.utils.deadline import Budget

logger = logging.getLogger(__name__)

MAX_BACKOFF_SECONDS = 10.0


class Broadcaster:
    """Broadcast with bounded resubmission of the same signed blob.

    A node rejection is final. A timeout or transport failure leaves the
    outcome unknown; resubmitting identical bytes cannot double-spend, so the
    blob is sent again up to ``max_retries`` times before giving up with
    BroadcastAmbiguous.
    """

    def __init__(
        self,
        ledger: LedgerClient,
        max_retries: int = 2,
        preflight_commitment: Commitment = Commitment.CONFIRMED,
        backoff_seconds: float = 0.5,
    ):
        self.ledger = ledger
        self.max_retries = max_retries
        self.preflight_commitment = preflight_commitment
        self.backoff_seconds = backoff_seconds

    async def broadcast(
        self, signed: SignedTransaction, budget: Optional[Budget] = None
    ) -> BroadcastReceipt:
        """Submit ``signed``.

        Raises:
            BroadcastRejected: the node refused the transaction
            BroadcastAmbiguous: no definitive answer after all attempts
            BroadcastTimedOut: the budget ran out before the first attempt
        """
        budget = budget or Budget.unbounded()
        blob = signed.to_base64()
        attempts = 0
        last_error = None

        while attempts <= self.max_retries:
            if budget.expired:
                break
            attempts += 1
            try:
                signature = await budget.run(
                    self.ledger.send_transaction(blob, self.preflight_commitment)
                )
            except RpcRejected as e:
                logger.warning(f"Broadcast of {signed.signature} rejected: {e}")
                raise BroadcastRejected(str(e), stage=signed.stage, attempts=attempts)
            except asyncio.TimeoutError:
                last_error = "timed out"
            except LedgerTransportError as e:
                last_error = str(e)
            else:
                if signature != signed.signature:
                    logger.warning(
                        f"Node reported signature {signature}, expected {signed.signature}"
                    )
                logger.info(f"Broadcast {signed.signature} accepted after {attempts} attempt(s)")
                return BroadcastReceipt(signature=signed.signature, attempts=attempts)

            logger.warning(
                f"Broadcast attempt {attempts}/{self.max_retries + 1} for "
                f"{signed.signature} ambiguous: {last_error}"
            )
            if attempts <= self.max_retries:
                delay = budget.cap(min(self.backoff_seconds * 2 ** (attempts - 1), MAX_BACKOFF_SECONDS))
                if delay:
                    await asyncio.sleep(delay)

        if attempts == 0:
            raise BroadcastTimedOut(
                "Budget exhausted before submission; transaction was not sent",
                stage=signed.stage,
            )
        raise BroadcastAmbiguous(
            f"No definitive answer after {attempts} attempt(s): {last_error or 'budget exhausted'}",
            signature=signed.signature,
            stage=signed.stage,
            attempts=attempts,
        )
