"""Typed trade errors — every failure a trade can surface to a caller.

Each error carries a stable ``code`` (shown to users and logged) and a
``retryable`` flag.  ``outcome_unknown`` marks the errors where the action
may still have happened (relay timeout, venue transport failure) so the
caller re-checks state instead of assuming nothing occurred.
"""

from __future__ import annotations

from typing import Any


class TradeError(Exception):
    """Base class for every error returned inside a ``TradeResult``."""

    code: str = "TRADE_ERROR"
    retryable: bool = False
    outcome_unknown: bool = False

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message)
        self.message = message
        self.context = context

    def to_dict(self) -> dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "retryable": self.retryable,
            "outcome_unknown": self.outcome_unknown,
            **{k: str(v) for k, v in self.context.items()},
        }


# ── Configuration / signing ─────────────────────────────────────────


class ConfigurationError(TradeError):
    """A venue or signer is missing credentials or has malformed ones."""

    code = "NOT_CONFIGURED"


class SignatureError(TradeError):
    """Signing was refused or produced an unusable signature."""

    code = "INVALID_SIGNATURE"


class SigningServiceUnavailableError(TradeError):
    """Remote builder-signing service could not be reached."""

    code = "SIGNING_SERVICE_UNAVAILABLE"
    retryable = True


# ── Proxy wallet ────────────────────────────────────────────────────


class ProxyNotDeployedError(TradeError):
    """Trading requires a deployed proxy wallet."""

    code = "PROXY_NOT_DEPLOYED"


class ProxyWalletBusyError(TradeError):
    """Another lifecycle operation is in flight for the same owner."""

    code = "PROXY_WALLET_BUSY"
    retryable = True


class InvalidWalletStateError(TradeError):
    """Requested transition is not allowed from the wallet's current state."""

    code = "INVALID_WALLET_STATE"


# ── Preconditions ───────────────────────────────────────────────────


class InsufficientBalanceError(TradeError):
    code = "INSUFFICIENT_BALANCE"


class InsufficientAllowanceError(TradeError):
    code = "INSUFFICIENT_ALLOWANCE"


class OrderBelowMinimumError(TradeError):
    code = "ORDER_BELOW_MINIMUM"


class InvalidOrderError(TradeError):
    code = "INVALID_ORDER"


# ── Relay ───────────────────────────────────────────────────────────


class RelayUnavailableError(TradeError):
    """Relay unreachable, or answered with a non-JSON (edge proxy) page."""

    code = "RELAYER_BLOCKED"
    retryable = True


class RelayerRejectedError(TradeError):
    """Relay answered with a non-success status for a submission."""

    code = "RELAYER_REJECTED"

    def __init__(self, message: str, status_code: int | None = None, **context: Any) -> None:
        super().__init__(message, status_code=status_code, **context)
        self.status_code = status_code


class RelayTimeoutError(TradeError):
    """Polling budget exhausted before the transaction reached a terminal state."""

    code = "RELAYER_TIMEOUT"
    retryable = True
    outcome_unknown = True

    def __init__(self, message: str, transaction_id: str = "", attempts: int = 0) -> None:
        super().__init__(message, transaction_id=transaction_id, attempts=attempts)
        self.transaction_id = transaction_id
        self.attempts = attempts


class RelayTransactionFailedError(TradeError):
    """Relay reported the transaction as failed on-chain."""

    code = "RELAYER_TX_FAILED"

    def __init__(self, message: str, transaction_id: str = "", tx_hash: str | None = None) -> None:
        super().__init__(message, transaction_id=transaction_id, tx_hash=tx_hash)
        self.transaction_id = transaction_id
        self.tx_hash = tx_hash


# ── Venue ───────────────────────────────────────────────────────────


class VenueRejectedOrderError(TradeError):
    """Venue refused the order; message is the venue's, verbatim."""

    code = "ORDER_REJECTED"

    def __init__(self, message: str, venue: str = "", status_code: int | None = None) -> None:
        super().__init__(message, venue=venue, status_code=status_code)
        self.venue = venue
        self.status_code = status_code


class VenueUnavailableError(TradeError):
    """Venue transport failed after submission started; order may exist."""

    code = "VENUE_UNAVAILABLE"
    outcome_unknown = True

    def __init__(self, message: str, venue: str = "") -> None:
        super().__init__(message, venue=venue)
        self.venue = venue


# ── Chain ───────────────────────────────────────────────────────────


class ChainUnavailableError(TradeError):
    """Polygon RPC read failed; balance or allowance is unknown."""

    code = "RPC_UNAVAILABLE"
    retryable = True
