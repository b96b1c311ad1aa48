"""predmkt-core — models package."""

from .market import Market, Outcome
from .order import (
    KalshiOrderType,
    Leg,
    Order,
    OrderLifetime,
    RiskCategory,
    Side,
    SignatureType,
    TradeResult,
    Venue,
)
from .proxy_wallet import ApprovalState, ProxyWalletRecord, WalletScheme, WalletState
from .relayer import (
    Pending,
    PollOutcome,
    RelayAction,
    RelayerState,
    RelayerTransaction,
    Terminal,
    TimedOut,
)

__all__ = [
    "ApprovalState",
    "KalshiOrderType",
    "Leg",
    "Market",
    "Order",
    "OrderLifetime",
    "Outcome",
    "Pending",
    "PollOutcome",
    "ProxyWalletRecord",
    "RelayAction",
    "RelayerState",
    "RelayerTransaction",
    "RiskCategory",
    "Side",
    "SignatureType",
    "Terminal",
    "TimedOut",
    "TradeResult",
    "Venue",
    "WalletScheme",
    "WalletState",
]
