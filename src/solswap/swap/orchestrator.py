"""Trade orchestration.

Runs one trade through quote -> fee -> build -> sign -> broadcast -> confirm
and records the outcome. Stages run strictly in order and never go back: a
failure ends the trade at the stage that produced it.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Optional

from solswap.assets import Asset, UnknownAssetError
from solswap.context import ServiceContext
from solswap.errors import (
    BroadcastAmbiguous,
    BroadcastRejected,
    BuildFailed,
    ConfirmationTimedOut,
    FeeUnavailable,
    OnChainExecutionFailed,
    QuoteUnavailable,
    TradeCancelled,
    TradeError,
)
from solswap.ledger import (
    Broadcaster,
    ConfirmationPoller,
    DryRunRpcClient,
    LedgerClient,
    LedgerError,
    SolanaRpcClient,
)
from solswap.models import (
    Commitment,
    ConfirmationStatus,
    FeeBreakdown,
    FeeTier,
    SignedTransaction,
    SwapPreview,
    SwapQuote,
    TradeRecord,
    TradeRequest,
    TradeStatus,
)
from solswap.routing import FeeEstimator, QuoteClient, TransactionAssembler
from solswap.signing import EnvKeyProvider, KeyProvider, Signer
from solswap.units import (
    LAMPORTS_PER_SIGNATURE,
    TOKEN_ACCOUNT_RENT_LAMPORTS,
    estimate_fee_lamports,
    from_base_units,
    to_base_units,
)
from solswap.utils.deadline import Budget

logger = logging.getLogger(__name__)

# Stage that runs next from each non-terminal status
NEXT_STAGE = {
    TradeStatus.CREATED: "quote",
    TradeStatus.QUOTE_FETCHED: "fee",
    TradeStatus.FEE_FETCHED: "build",
    TradeStatus.BUILT: "sign",
    TradeStatus.SIGNED: "broadcast",
    TradeStatus.SUBMITTED: "confirm",
}

STAGE_ERRORS = {
    "quote": QuoteUnavailable,
    "fee": FeeUnavailable,
    "build": BuildFailed,
}


@dataclass
class _PendingTrade:
    """Signed legs of a trade that has not reached a terminal status."""

    legs: list[SignedTransaction]
    next_leg: int = 0
    awaiting: Optional[str] = None
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)

    def stage(self, leg: SignedTransaction, stage: str) -> str:
        return stage if len(self.legs) == 1 else f"leg-{leg.leg}"


class TradeOrchestrator:
    """Entry point for executing trades.

    Example:
        orchestrator = TradeOrchestrator(ctx, key_provider=EnvKeyProvider())
        record = await orchestrator.execute(request, budget_seconds=60)
        if record.status == TradeStatus.CONFIRMED:
            ...
    """

    def __init__(
        self,
        ctx: ServiceContext,
        key_provider: Optional[KeyProvider] = None,
        ledger: Optional[LedgerClient] = None,
        quote_client: Optional[QuoteClient] = None,
        fee_estimator: Optional[FeeEstimator] = None,
        assembler: Optional[TransactionAssembler] = None,
        signer: Optional[Signer] = None,
        broadcaster: Optional[Broadcaster] = None,
        poller: Optional[ConfirmationPoller] = None,
    ):
        settings = ctx.settings
        self.ctx = ctx
        self.commitment = Commitment(settings.commitment)
        self.fee_tier = FeeTier(settings.priority_fee_tier)

        if ledger is None:
            ledger = DryRunRpcClient() if settings.dry_run else SolanaRpcClient(ctx)
        self.ledger = ledger

        self.quote_client = quote_client or QuoteClient(ctx)
        self.fee_estimator = fee_estimator or FeeEstimator(ctx)
        self.assembler = assembler or TransactionAssembler(ctx)
        self.signer = signer or Signer(key_provider or EnvKeyProvider())
        self.broadcaster = broadcaster or Broadcaster(
            ledger,
            max_retries=settings.broadcast_max_retries,
            preflight_commitment=self.commitment,
            backoff_seconds=settings.broadcast_retry_backoff_seconds,
        )
        self.poller = poller or ConfirmationPoller(
            ledger,
            interval=settings.poll_interval_seconds,
            max_polls=settings.poll_max_attempts,
        )

        self._trades: dict[str, TradeRecord] = {}
        self._pending: dict[str, _PendingTrade] = {}

        if settings.dry_run:
            logger.warning(f"Dry-run mode: transactions go to the {self.ledger.name} ledger")

    def get_trade(self, trade_id: str) -> Optional[TradeRecord]:
        return self._trades.get(trade_id)

    def list_trades(self) -> list[TradeRecord]:
        """Trades started by this orchestrator, oldest first."""
        return list(self._trades.values())

    async def execute(
        self,
        request: TradeRequest,
        budget_seconds: Optional[float] = None,
        wait_for_confirmation: bool = True,
    ) -> TradeRecord:
        """Execute a trade.

        Stage failures are recorded on the returned record, never raised.

        Args:
            request: The validated trade request
            budget_seconds: Total time allowed (default from settings)
            wait_for_confirmation: When False, return once the first
                transaction is submitted; finish later with await_confirmation()

        Returns:
            The trade record, terminal unless left submitted
        """
        record = TradeRecord(request=request)
        self._trades[record.id] = record
        budget = self._budget(budget_seconds)
        logger.info(
            f"Trade {record.id}: {request.amount} {request.input_asset} -> "
            f"{request.output_asset}, slippage {request.slippage_bps} bps, key '{request.key_ref}'"
        )

        try:
            pending = await self._prepare(record, budget)
        except asyncio.CancelledError:
            self._abandon(record)
            raise
        except Exception as e:
            self._record_failure(record, e)
            return record

        self._pending[record.id] = pending
        await self._drive_exclusive(record, pending, budget, wait_for_confirmation)
        return record

    async def await_confirmation(
        self, trade_id: str, budget_seconds: Optional[float] = None
    ) -> TradeRecord:
        """Resume a submitted trade until it reaches a terminal status.

        Terminal trades are returned unchanged.

        Raises:
            KeyError: unknown trade id
        """
        record = self._trades.get(trade_id)
        if record is None:
            raise KeyError(f"Unknown trade {trade_id}")

        pending = self._pending.get(trade_id)
        if record.is_terminal or pending is None:
            return record

        await self._drive_exclusive(record, pending, self._budget(budget_seconds), True)
        return record

    async def preview(
        self, request: TradeRequest, budget_seconds: Optional[float] = None
    ) -> SwapPreview:
        """Quote a trade and estimate its fees without building or signing anything.

        Raises:
            QuoteUnavailable: unknown asset or no route
            FeeUnavailable: fee tiers could not be fetched
        """
        budget = self._budget(budget_seconds)
        source, target, quote = await self._quote(request, budget)
        tiers = await self.fee_estimator.get_fee_tiers(budget=budget)
        priority = tiers.select(self.fee_tier)

        expected = from_base_units(quote.expected_output, target.decimals)
        new_accounts = sum(1 for asset in (source, target) if not asset.is_native)
        fees = FeeBreakdown(
            transactions=1,
            base_fee_lamports=LAMPORTS_PER_SIGNATURE,
            priority_fee_lamports=estimate_fee_lamports(
                0, priority, self.ctx.settings.compute_unit_limit
            ),
            account_rent_lamports=new_accounts * TOKEN_ACCOUNT_RENT_LAMPORTS,
        )
        logger.info(
            f"Preview {request.amount} {source.symbol} -> {expected} {target.symbol}, "
            f"est. fee {fees.total_lamports} lamports"
        )
        return SwapPreview(
            input_asset=source.symbol,
            output_asset=target.symbol,
            amount=request.amount,
            expected_output=expected,
            min_output=from_base_units(quote.min_output, target.decimals),
            price=expected / request.amount,
            price_impact_pct=quote.price_impact_pct,
            route=tuple(quote.route),
            fee_tier=self.fee_tier,
            priority_fee_micro_lamports=priority,
            fees=fees,
            expires_in_seconds=max(quote.seconds_until_expiry, 0.0),
        )

    def _budget(self, budget_seconds: Optional[float]) -> Budget:
        if budget_seconds is None:
            budget_seconds = self.ctx.settings.default_budget_seconds
        return Budget(budget_seconds)

    async def _quote(
        self, request: TradeRequest, budget: Budget
    ) -> tuple[Asset, Asset, SwapQuote]:
        try:
            source = self.ctx.assets.resolve(request.input_asset)
            target = self.ctx.assets.resolve(request.output_asset)
        except UnknownAssetError as e:
            raise QuoteUnavailable(f"Unknown asset: {e.args[0]}")

        amount = to_base_units(request.amount, source.decimals)
        quote = await self.quote_client.get_quote(
            source.mint, target.mint, amount, request.slippage_bps, budget=budget
        )
        return source, target, quote

    async def _prepare(self, record: TradeRecord, budget: Budget) -> _PendingTrade:
        """Run the stages up to and including signing."""
        request = record.request
        source, target, quote = await self._quote(request, budget)
        record.expected_output = from_base_units(quote.expected_output, target.decimals)
        record.min_output = from_base_units(quote.min_output, target.decimals)
        record.advance(TradeStatus.QUOTE_FETCHED)

        tiers = await self.fee_estimator.get_fee_tiers(budget=budget)
        record.priority_fee_micro_lamports = tiers.select(self.fee_tier)
        record.advance(TradeStatus.FEE_FETCHED)

        wallet = self.signer.public_key(request.key_ref)
        assembled = await self.assembler.assemble(
            quote,
            record.priority_fee_micro_lamports,
            wallet,
            wrap_sol=source.is_native,
            unwrap_sol=target.is_native,
            budget=budget,
        )
        record.advance(TradeStatus.BUILT)

        legs = self.signer.sign(assembled, request.key_ref)
        record.advance(TradeStatus.SIGNED)
        return _PendingTrade(legs=legs)

    async def _drive_exclusive(
        self,
        record: TradeRecord,
        pending: _PendingTrade,
        budget: Budget,
        wait_for_confirmation: bool,
    ) -> None:
        """Drive the trade while holding its lock.

        A task cancelled while still waiting for the lock does not own the
        trade and leaves the record alone.
        """
        await pending.lock.acquire()
        try:
            if record.is_terminal:
                return
            await self._drive(record, pending, budget, wait_for_confirmation)
        except asyncio.CancelledError:
            self._abandon(record)
            raise
        except Exception as e:
            self._record_failure(record, e)
        finally:
            pending.lock.release()

    async def _drive(
        self,
        record: TradeRecord,
        pending: _PendingTrade,
        budget: Budget,
        wait_for_confirmation: bool,
    ) -> None:
        """Broadcast and confirm the remaining legs in order."""
        while pending.next_leg < len(pending.legs):
            leg = pending.legs[pending.next_leg]

            if pending.awaiting is None:
                pending.awaiting = await self._broadcast(record, leg, budget)
                if not wait_for_confirmation:
                    logger.info(f"Trade {record.id} submitted as {pending.awaiting}")
                    return

            result = await self.poller.wait(pending.awaiting, self.commitment, budget)
            stage = pending.stage(leg, "confirm")
            if result.status is ConfirmationStatus.FAILED:
                raise OnChainExecutionFailed(
                    f"Transaction {pending.awaiting} failed on-chain: {result.error}", stage=stage
                )
            if result.status is ConfirmationStatus.TIMED_OUT:
                raise ConfirmationTimedOut(
                    f"Transaction {pending.awaiting} not {self.commitment.value} "
                    f"after {result.polls} poll(s)",
                    stage=stage,
                )

            record.legs_confirmed += 1
            pending.next_leg += 1
            pending.awaiting = None

        await self._settle(record, pending, budget)

    async def _broadcast(
        self, record: TradeRecord, leg: SignedTransaction, budget: Budget
    ) -> str:
        try:
            receipt = await self.broadcaster.broadcast(leg, budget)
        except BroadcastAmbiguous as e:
            # Outcome unknown: let the poller find out whether it landed
            record.broadcast_attempts += e.attempts
            record.mark_submitted(e.signature)
            logger.warning(f"Trade {record.id}: {e}; checking the ledger for {e.signature}")
            return e.signature
        except BroadcastRejected as e:
            record.broadcast_attempts += e.attempts
            raise

        record.broadcast_attempts += receipt.attempts
        record.mark_submitted(receipt.signature)
        return receipt.signature

    async def _settle(self, record: TradeRecord, pending: _PendingTrade, budget: Budget) -> None:
        """Record fees and price, then confirm."""
        total_fee = 0
        for leg in pending.legs:
            try:
                fee = await budget.run(
                    self.ledger.get_transaction_fee(leg.signature, self.commitment),
                    self.poller.interval,
                )
            except (asyncio.TimeoutError, LedgerError) as e:
                logger.debug(f"Fee lookup for {leg.signature} failed: {e}")
                fee = None
            if fee is None:
                fee = estimate_fee_lamports(
                    len(leg.signatures),
                    record.priority_fee_micro_lamports or 0,
                    self.ctx.settings.compute_unit_limit,
                )
            total_fee += fee

        record.fee_lamports = total_fee
        if record.expected_output is not None:
            record.price = record.expected_output / Decimal(record.request.amount)
        record.confirm(realized_output=record.expected_output)
        self._pending.pop(record.id, None)
        logger.info(
            f"Trade {record.id} confirmed: {record.realized_output} {record.request.output_asset}, "
            f"fee {total_fee} lamports, {record.broadcast_attempts} broadcast attempt(s)"
        )

    def _record_failure(self, record: TradeRecord, error: Exception) -> None:
        if isinstance(error, TradeError):
            self._terminate(record, error)
        else:
            self._terminate_unexpected(record, error)

    def _terminate(self, record: TradeRecord, error: TradeError) -> None:
        self._pending.pop(record.id, None)
        if record.is_terminal:
            return
        record.fail(error)
        logger.warning(f"Trade {record.id} {record.status.value}: {error}")

    def _terminate_unexpected(self, record: TradeRecord, error: Exception) -> None:
        logger.exception(f"Trade {record.id}: unexpected failure")
        if record.is_terminal:
            self._pending.pop(record.id, None)
            return
        stage = NEXT_STAGE[record.status]
        message = f"Unexpected error: {type(error).__name__}: {error}"
        if record.status is TradeStatus.SUBMITTED:
            # Already on the wire; the outcome is unknown
            self._terminate(record, ConfirmationTimedOut(message, stage=stage))
        else:
            self._terminate(record, STAGE_ERRORS.get(stage, TradeError)(message, stage=stage))

    def _abandon(self, record: TradeRecord) -> None:
        """Record a cancelled trade."""
        self._pending.pop(record.id, None)
        if record.is_terminal:
            return
        stage = NEXT_STAGE[record.status]
        if record.status is TradeStatus.SUBMITTED:
            record.fail(ConfirmationTimedOut("Cancelled before confirmation; outcome unknown", stage=stage))
        else:
            record.fail(TradeCancelled("Cancelled before submission", stage=stage))
        logger.warning(f"Trade {record.id} cancelled while at {stage}: {record.status.value}")
