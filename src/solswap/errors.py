"""Trade error taxonomy.

Every failure surfaced on a TradeRecord is one of these. Each class carries a
stable ``code`` and the stage it originates from by default; the stage can be
overridden (multi-leg trades qualify it as ``leg-n``).
"""

from typing import Optional


class TradeError(Exception):
    """Base class for stage-qualified trade failures."""

    code = "TradeError"
    default_stage = "trade"

    def __init__(self, message: str, stage: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.stage = stage or self.default_stage

    def __str__(self) -> str:
        return f"[{self.stage}] {self.code}: {self.message}"


class QuoteUnavailable(TradeError):
    code = "QuoteUnavailable"
    default_stage = "quote"


class FeeUnavailable(TradeError):
    code = "FeeUnavailable"
    default_stage = "fee"


class BuildFailed(TradeError):
    code = "BuildFailed"
    default_stage = "build"


class SigningKeyMismatch(TradeError):
    """The held key is not a required signer of an assembled transaction."""

    code = "SigningKeyMismatch"
    default_stage = "sign"


class KeyNotFound(TradeError):
    """The key reference does not resolve to usable key material."""

    code = "KeyNotFound"
    default_stage = "sign"


class BroadcastRejected(TradeError):
    """The ledger node definitively refused the transaction."""

    code = "BroadcastRejected"
    default_stage = "broadcast"

    def __init__(self, message: str, stage: Optional[str] = None, attempts: int = 0):
        super().__init__(message, stage)
        self.attempts = attempts


class BroadcastTimedOut(TradeError):
    """The time budget ran out before the transaction was sent."""

    code = "BroadcastTimedOut"
    default_stage = "broadcast"


class BroadcastAmbiguous(TradeError):
    """Retries exhausted without knowing whether the ledger accepted the blob."""

    code = "BroadcastAmbiguous"
    default_stage = "broadcast"

    def __init__(
        self,
        message: str,
        signature: str,
        stage: Optional[str] = None,
        attempts: int = 0,
    ):
        super().__init__(message, stage)
        self.signature = signature
        self.attempts = attempts


class OnChainExecutionFailed(TradeError):
    code = "OnChainExecutionFailed"
    default_stage = "confirm"


class ConfirmationTimedOut(TradeError):
    code = "ConfirmationTimedOut"
    default_stage = "confirm"


class TradeCancelled(TradeError):
    code = "TradeCancelled"


class ProviderError(Exception):
    """Transport or envelope failure talking to an HTTP provider."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code
