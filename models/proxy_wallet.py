"""ProxyWalletRecord — per-owner lifecycle state of the Safe proxy wallet."""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from core.errors import TradeError
from models.order import SignatureType

MAX_UINT256 = 2**256 - 1
# max-uint approval expressed in USDC (6 decimals)
UNLIMITED_ALLOWANCE = Decimal(MAX_UINT256).scaleb(-6)


class WalletState(str, Enum):
    UNKNOWN = "unknown"
    CHECKING = "checking"
    NOT_DEPLOYED = "not_deployed"
    DEPLOYING = "deploying"
    DEPLOYED = "deployed"
    FAILED = "failed"


class ApprovalState(str, Enum):
    UNAPPROVED = "unapproved"
    APPROVING = "approving"
    APPROVED = "approved"


class WalletScheme(str, Enum):
    """Contract scheme of the proxy; decides the order signature type."""

    SAFE = "safe"
    POLY_PROXY = "poly_proxy"

    @property
    def signature_type(self) -> SignatureType:
        if self is WalletScheme.SAFE:
            return SignatureType.POLY_GNOSIS_SAFE
        return SignatureType.POLY_PROXY


class ProxyWalletRecord(BaseModel):
    """Lifecycle record for one owner EOA.

    Created lazily on first status check and mutated only by the
    ``ProxyWalletManager``.  ``last_error`` keeps the typed cause of the most
    recent failure so the UI can display it after the state moved on.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True, validate_assignment=True)

    owner: str
    proxy_address: Optional[str] = None
    state: WalletState = WalletState.UNKNOWN
    scheme: WalletScheme = WalletScheme.SAFE
    allowances: dict[str, Decimal] = Field(default_factory=dict)
    approvals: dict[str, ApprovalState] = Field(default_factory=dict)
    last_error: Optional[TradeError] = None
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def is_deployed(self) -> bool:
        return self.state is WalletState.DEPLOYED

    @property
    def signature_type(self) -> SignatureType:
        return self.scheme.signature_type

    def approval_state(self, target: str) -> ApprovalState:
        return self.approvals.get(target.lower(), ApprovalState.UNAPPROVED)

    def allowance(self, target: str) -> Decimal:
        return self.allowances.get(target.lower(), Decimal("0"))

    def set_allowance(self, target: str, allowance: Decimal, required: Decimal | None = None) -> None:
        key = target.lower()
        self.allowances[key] = allowance
        threshold = required if required is not None else Decimal("0")
        approved = allowance > 0 and allowance >= threshold
        self.approvals[key] = ApprovalState.APPROVED if approved else ApprovalState.UNAPPROVED
        self.touch()

    def touch(self) -> None:
        self.updated_at = datetime.now(timezone.utc)
