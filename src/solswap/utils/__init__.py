"""Utility modules for solswap."""

from solswap.utils.deadline import Budget
from solswap.utils.metering import ApiCallMeter

__all__ = ["ApiCallMeter", "Budget"]
