"""
CryptoSage Error Taxonomy

Every failure the engine can surface has a name and carries its context.
Gating outcomes (kill-switch, cooldown, EV) are NOT errors - they are
RiskCheckResults that turn a decision into HOLD.

Propagation rules:
- InsufficientData: isolated per pair, never aborts a scan
- AdvisoryUnavailable: aborts the cycle (ERROR), no trade attempted
- OrderTooSmall / OrderRejected: recorded as Failed, never retried
- MultiplePositionsDetected: halts new entries until operator reset
"""

from decimal import Decimal
from typing import Any, Dict, Optional


class CryptoSageError(Exception):
    """Base class for all engine errors."""
    pass


class ConfigError(CryptoSageError):
    """Raised when configuration is invalid or missing."""
    pass


class InsufficientData(CryptoSageError):
    """Raised when a pair has no usable candle history."""

    def __init__(self, pair: str, reason: str):
        self.pair = pair
        self.reason = reason
        super().__init__(f"Insufficient market data for {pair}: {reason}")


class AdvisoryUnavailable(CryptoSageError):
    """Raised when an advisory call exhausted its retries."""

    def __init__(self, operation: str, last_error: BaseException, attempts: int):
        self.operation = operation
        self.last_error = last_error
        self.attempts = attempts
        super().__init__(
            f"Advisory {operation} failed after {attempts} attempt(s): {last_error}"
        )


class ExchangeError(CryptoSageError):
    """Exchange returned an error payload or an unexpected response."""

    def __init__(self, message: str, status: Optional[int] = None, payload: Any = None):
        self.status = status
        self.payload = payload
        super().__init__(message)


class ExchangeConnectionError(ExchangeError):
    """Exchange could not be reached (network failure, timeout)."""
    pass


class OrderRejected(ExchangeError):
    """Order creation was refused or not acknowledged with an order id."""
    pass


class OrderTooSmall(CryptoSageError):
    """Order notional is below the exchange minimum."""

    def __init__(self, notional: Decimal, minimum: Decimal):
        self.notional = notional
        self.minimum = minimum
        super().__init__(
            f"Order size (${notional}) is below the exchange minimum (${minimum})"
        )


class MultiplePositionsDetected(CryptoSageError):
    """More than one asset above the dust threshold - the single-position invariant is broken."""

    def __init__(self, values: Dict[str, Decimal]):
        self.values = dict(values)
        listing = ", ".join(f"{pair}=${value:.2f}" for pair, value in sorted(self.values.items()))
        super().__init__(f"Multiple open positions detected: {listing}")


class CycleInProgress(CryptoSageError):
    """A cycle for the same trigger source is already executing."""
    pass
