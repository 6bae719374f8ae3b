"""Data model for the swap pipeline."""

import base64
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from solswap.errors import ConfirmationTimedOut, TradeError
from solswap.units import MAX_SLIPPAGE_BPS, Number, percent_to_bps


class TradeRequest(BaseModel):
    """Inbound swap request. Immutable once accepted."""

    model_config = ConfigDict(frozen=True)

    input_asset: str = Field(..., min_length=1, description="Symbol or mint being sold")
    output_asset: str = Field(..., min_length=1, description="Symbol or mint being bought")
    amount: Decimal = Field(..., gt=0, description="Input amount in user units")
    slippage_bps: int = Field(
        ..., ge=0, le=MAX_SLIPPAGE_BPS, description="Slippage tolerance in basis points"
    )
    key_ref: str = Field(..., min_length=1, description="Opaque reference to signing key")

    @model_validator(mode="after")
    def _distinct_assets(self) -> "TradeRequest":
        if self.input_asset == self.output_asset:
            raise ValueError("input_asset and output_asset must differ")
        return self

    @classmethod
    def from_percent(
        cls,
        input_asset: str,
        output_asset: str,
        amount: Number,
        slippage_percent: Number,
        key_ref: str,
    ) -> "TradeRequest":
        """Build a request from a percentage slippage (0.5 means 0.5%)."""
        return cls(
            input_asset=input_asset,
            output_asset=output_asset,
            amount=Decimal(str(amount)),
            slippage_bps=percent_to_bps(slippage_percent),
            key_ref=key_ref,
        )


class Commitment(str, Enum):
    """Ledger commitment levels, weakest first."""

    PROCESSED = "processed"
    CONFIRMED = "confirmed"
    FINALIZED = "finalized"

    @property
    def rank(self) -> int:
        return list(Commitment).index(self)

    def reaches(self, target: "Commitment") -> bool:
        return self.rank >= target.rank


class FeeTier(str, Enum):
    MEDIUM = "medium"
    HIGH = "high"
    VERY_HIGH = "very_high"


@dataclass
class SwapQuote:
    """A route/price quote. Stale after ``ttl_seconds``."""

    input_mint: str
    output_mint: str
    input_amount: int
    expected_output: int
    min_output: int
    slippage_bps: int
    price_impact_pct: Decimal
    route: list[str] = field(default_factory=list)
    raw: dict = field(default_factory=dict)
    fetched_at: float = field(default_factory=time.time)
    ttl_seconds: int = 30

    @property
    def is_expired(self) -> bool:
        return time.time() > (self.fetched_at + self.ttl_seconds)

    @property
    def seconds_until_expiry(self) -> float:
        return (self.fetched_at + self.ttl_seconds) - time.time()


@dataclass(frozen=True)
class PriorityFeeTiers:
    """Priority fee levels in micro-lamports per compute unit."""

    medium: int
    high: int
    very_high: int

    def select(self, tier: FeeTier = FeeTier.HIGH) -> int:
        return getattr(self, FeeTier(tier).value)


@dataclass(frozen=True)
class FeeBreakdown:
    """Estimated SOL cost of a swap, in lamports."""

    transactions: int
    base_fee_lamports: int
    priority_fee_lamports: int
    # Upper bound: assumes every non-native token account has to be created
    account_rent_lamports: int

    @property
    def total_lamports(self) -> int:
        return self.base_fee_lamports + self.priority_fee_lamports + self.account_rent_lamports


@dataclass(frozen=True)
class SwapPreview:
    """Read-only look at what a trade would do right now."""

    input_asset: str
    output_asset: str
    amount: Decimal
    expected_output: Decimal
    min_output: Decimal
    price: Decimal
    price_impact_pct: Decimal
    route: tuple[str, ...]
    fee_tier: FeeTier
    priority_fee_micro_lamports: int
    fees: FeeBreakdown
    expires_in_seconds: float

    def to_dict(self) -> dict:
        return {
            "input_asset": self.input_asset,
            "output_asset": self.output_asset,
            "amount": str(self.amount),
            "expected_output": str(self.expected_output),
            "min_output": str(self.min_output),
            "price": str(self.price),
            "price_impact_pct": str(self.price_impact_pct),
            "route": list(self.route),
            "fee_tier": self.fee_tier.value,
            "priority_fee_micro_lamports": self.priority_fee_micro_lamports,
            "fees": {
                "transactions": self.fees.transactions,
                "base_fee_lamports": self.fees.base_fee_lamports,
                "priority_fee_lamports": self.fees.priority_fee_lamports,
                "account_rent_lamports": self.fees.account_rent_lamports,
                "total_lamports": self.fees.total_lamports,
            },
            "expires_in_seconds": round(self.expires_in_seconds, 1),
        }


@dataclass(frozen=True)
class AssembledTransaction:
    """Unsigned transaction blobs in execution order."""

    blobs: tuple[bytes, ...]

    def __post_init__(self):
        if not self.blobs:
            raise ValueError("AssembledTransaction needs at least one blob")

    @property
    def leg_count(self) -> int:
        return len(self.blobs)

    def stage_for(self, leg: int, stage: str) -> str:
        """Stage name for a failure in leg ``leg`` (1-based)."""
        return stage if self.leg_count == 1 else f"leg-{leg}"


@dataclass(frozen=True)
class SignedTransaction:
    """One signed blob. Carries exactly one signature per required signer."""

    blob: bytes
    signatures: tuple[str, ...]
    leg: int = 1
    stage: str = "broadcast"

    @property
    def signature(self) -> str:
        """Transaction id: the first (fee payer) signature."""
        return self.signatures[0]

    def to_base64(self) -> str:
        return base64.b64encode(self.blob).decode("ascii")


@dataclass(frozen=True)
class BroadcastReceipt:
    signature: str
    attempts: int


class ConfirmationStatus(str, Enum):
    CONFIRMED = "confirmed"
    FAILED = "failed"
    TIMED_OUT = "timed_out"


@dataclass(frozen=True)
class ConfirmationResult:
    status: ConfirmationStatus
    signature: str
    error: Optional[Any] = None
    slot: Optional[int] = None
    polls: int = 0
    commitment: Optional[Commitment] = None


class TradeStatus(str, Enum):
    CREATED = "created"
    QUOTE_FETCHED = "quote_fetched"
    FEE_FETCHED = "fee_fetched"
    BUILT = "built"
    SIGNED = "signed"
    SUBMITTED = "submitted"
    CONFIRMED = "confirmed"
    FAILED = "failed"
    TIMED_OUT = "timed_out"

    @property
    def is_terminal(self) -> bool:
        return self in (TradeStatus.CONFIRMED, TradeStatus.FAILED, TradeStatus.TIMED_OUT)


_PROGRESS = [
    TradeStatus.CREATED,
    TradeStatus.QUOTE_FETCHED,
    TradeStatus.FEE_FETCHED,
    TradeStatus.BUILT,
    TradeStatus.SIGNED,
    TradeStatus.SUBMITTED,
]


class InvalidTransitionError(RuntimeError):
    """Attempted a backward or skipped state transition."""


class TerminalStateError(InvalidTransitionError):
    """Attempted to modify a trade that already reached a terminal status."""


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class TradeRecord:
    """Lifecycle and outcome of one trade.

    Changed only by the orchestrator; frozen once a terminal status is set.
    """

    request: TradeRequest
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    status: TradeStatus = TradeStatus.CREATED
    error_stage: Optional[str] = None
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    signature: Optional[str] = None
    leg_signatures: tuple[str, ...] = ()
    legs_confirmed: int = 0
    broadcast_attempts: int = 0
    expected_output: Optional[Decimal] = None
    min_output: Optional[Decimal] = None
    realized_output: Optional[Decimal] = None
    price: Optional[Decimal] = None
    priority_fee_micro_lamports: Optional[int] = None
    fee_lamports: Optional[int] = None
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)
    completed_at: Optional[datetime] = None
    _sealed: bool = field(default=False, init=False, repr=False, compare=False)

    def __setattr__(self, name: str, value: Any) -> None:
        if getattr(self, "_sealed", False):
            raise TerminalStateError(
                f"Trade {self.id} is {self.status.value}; cannot set {name}"
            )
        super().__setattr__(name, value)
        if name != "updated_at" and "updated_at" in self.__dict__:
            super().__setattr__("updated_at", _utcnow())

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def advance(self, status: TradeStatus) -> None:
        """Move forward to a non-terminal status."""
        if status.is_terminal:
            raise InvalidTransitionError(f"Use confirm/fail/time_out to reach {status.value}")
        current = _PROGRESS.index(self.status)
        target = _PROGRESS.index(status)
        if target <= current:
            raise InvalidTransitionError(
                f"Trade {self.id}: cannot move from {self.status.value} to {status.value}"
            )
        self.status = status

    def mark_submitted(self, signature: str) -> None:
        """Record a broadcast leg. The first leg moves the trade to submitted."""
        if self.status != TradeStatus.SUBMITTED:
            self.advance(TradeStatus.SUBMITTED)
        self.signature = signature
        self.leg_signatures = (*self.leg_signatures, signature)

    def confirm(self, realized_output: Optional[Decimal] = None) -> None:
        if self.status != TradeStatus.SUBMITTED:
            raise InvalidTransitionError(
                f"Trade {self.id}: cannot confirm from {self.status.value}"
            )
        self.realized_output = realized_output
        self._finish(TradeStatus.CONFIRMED)

    def fail(self, error: TradeError) -> None:
        """Terminate with a stage-qualified error.

        ConfirmationTimedOut ends in timed_out, everything else in failed.
        """
        self.error_stage = error.stage
        self.error_code = error.code
        self.error_message = error.message
        if isinstance(error, ConfirmationTimedOut):
            self._finish(TradeStatus.TIMED_OUT)
        else:
            self._finish(TradeStatus.FAILED)

    def _finish(self, status: TradeStatus) -> None:
        if self.is_terminal:
            raise TerminalStateError(f"Trade {self.id} is already {self.status.value}")
        self.status = status
        self.completed_at = _utcnow()
        self._sealed = True

    def to_dict(self) -> dict:
        """Outbound representation."""

        def _str(value: Optional[Decimal]) -> Optional[str]:
            return None if value is None else str(value)

        return {
            "id": self.id,
            "status": self.status.value,
            "input_asset": self.request.input_asset,
            "output_asset": self.request.output_asset,
            "amount": str(self.request.amount),
            "slippage_bps": self.request.slippage_bps,
            "error": (
                {
                    "stage": self.error_stage,
                    "code": self.error_code,
                    "message": self.error_message,
                }
                if self.error_code
                else None
            ),
            "signature": self.signature,
            "leg_signatures": list(self.leg_signatures),
            "legs_confirmed": self.legs_confirmed,
            "broadcast_attempts": self.broadcast_attempts,
            "expected_output": _str(self.expected_output),
            "min_output": _str(self.min_output),
            "realized_output": _str(self.realized_output),
            "price": _str(self.price),
            "priority_fee_micro_lamports": self.priority_fee_micro_lamports,
            "fee_lamports": self.fee_lamports,
            "created_at": self.created_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }
