"""Confirmation polling for broadcast transactions."""

import asyncio
import logging
from typing import Optional

from solswap.ledger.base import LedgerClient, LedgerTransportError
from solswap.models import Commitment, ConfirmationResult, ConfirmationStatus
from solswap.utils.deadline import Budget

logger = logging.getLogger(__name__)


class ConfirmationPoller:
    """Poll a signature until it lands, fails, or the poll count runs out.

    Each status request is bounded by ``interval``, so a full wait never
    exceeds ``max_polls * interval``. The poller only observes; it never
    resubmits or cancels anything.
    """

    def __init__(self, ledger: LedgerClient, interval: float = 1.0, max_polls: int = 60):
        if interval <= 0 or max_polls <= 0:
            raise ValueError("interval and max_polls must be positive")
        self.ledger = ledger
        self.interval = interval
        self.max_polls = max_polls

    async def wait(
        self,
        signature: str,
        commitment: Commitment = Commitment.CONFIRMED,
        budget: Optional[Budget] = None,
    ) -> ConfirmationResult:
        """Wait until ``signature`` reaches ``commitment``.

        Returns:
            CONFIRMED, FAILED (on-chain error) or TIMED_OUT
        """
        budget = budget or Budget.unbounded()
        commitment = Commitment(commitment)
        loop = asyncio.get_running_loop()
        polls = 0
        last_seen: Optional[Commitment] = None

        while polls < self.max_polls and not budget.expired:
            started = loop.time()
            polls += 1
            try:
                status = await budget.run(self.ledger.get_signature_status(signature), self.interval)
            except asyncio.TimeoutError:
                logger.debug(f"Status poll {polls} for {signature} timed out")
                status = None
            except LedgerTransportError as e:
                logger.debug(f"Status poll {polls} for {signature} failed: {e}")
                status = None

            if status is not None:
                if status.err is not None:
                    logger.warning(f"Transaction {signature} failed on-chain: {status.err}")
                    return ConfirmationResult(
                        status=ConfirmationStatus.FAILED,
                        signature=signature,
                        error=status.err,
                        slot=status.slot,
                        polls=polls,
                        commitment=status.confirmation_status,
                    )
                last_seen = status.confirmation_status
                if last_seen is not None and last_seen.reaches(commitment):
                    logger.info(f"Transaction {signature} {last_seen.value} at slot {status.slot}")
                    return ConfirmationResult(
                        status=ConfirmationStatus.CONFIRMED,
                        signature=signature,
                        slot=status.slot,
                        polls=polls,
                        commitment=last_seen,
                    )

            if polls < self.max_polls:
                delay = budget.cap(self.interval - (loop.time() - started))
                if delay and delay > 0:
                    await asyncio.sleep(delay)

        logger.warning(
            f"Transaction {signature} not {commitment.value} after {polls} poll(s)"
            f" (last seen: {last_seen.value if last_seen else 'never'})"
        )
        return ConfirmationResult(
            status=ConfirmationStatus.TIMED_OUT,
            signature=signature,
            polls=polls,
            commitment=last_seen,
        )
