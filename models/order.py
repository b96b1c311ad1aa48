"""Order — signed/unsigned venue order and the result of submitting it."""

from __future__ import annotations

import secrets
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum, IntEnum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from core.errors import TradeError

# Salts are uint256 in the signed record; 64 random bits are enough to
# never repeat across a user's orders and stay JSON-number safe upstream.
_SALT_BITS = 64


def new_salt() -> int:
    """Cryptographically random, non-zero order salt."""
    salt = 0
    while salt == 0:
        salt = secrets.randbits(_SALT_BITS)
    return salt


class Venue(str, Enum):
    KALSHI = "kalshi"
    POLYMARKET = "polymarket"


class Side(str, Enum):
    """Order side."""

    BUY = "buy"
    SELL = "sell"

    @property
    def wire_value(self) -> int:
        """``uint8`` value in the signed Polymarket order (BUY=0, SELL=1)."""
        return 0 if self is Side.BUY else 1


class Leg(str, Enum):
    """Kalshi contract leg."""

    YES = "yes"
    NO = "no"


class KalshiOrderType(str, Enum):
    MARKET = "market"
    LIMIT = "limit"


class OrderLifetime(str, Enum):
    """Order type by lifetime."""

    GTC = "GTC"  # Good-Til-Cancelled
    GTD = "GTD"  # Good-Til-Date
    FOK = "FOK"  # Fill-Or-Kill


class SignatureType(IntEnum):
    """Polymarket signature scheme; must match the maker wallet's scheme."""

    EOA = 0
    POLY_PROXY = 1
    POLY_GNOSIS_SAFE = 2


class RiskCategory(str, Enum):
    STANDARD = "standard"
    NEG_RISK = "neg_risk"


class Order(BaseModel):
    """A venue order.  Immutable; ``amend`` yields a new, unsigned order.

    Polymarket orders carry the fields of the signed typed record
    (``salt``, ``maker``, ``signer``, raw ``maker_amount``/``taker_amount``
    in 6-decimal base units, ``expiration``).  Kalshi orders carry the
    ticker, ``leg`` and contract ``size``.
    """

    model_config = ConfigDict(frozen=True)

    venue: Venue
    instrument_id: str = Field(..., min_length=1, description="Kalshi ticker or Polymarket token id")
    side: Side
    size: Decimal = Field(..., gt=0, description="Contracts (Kalshi) or shares (Polymarket)")
    amount: Decimal = Field(..., gt=0, description="Notional in USD")
    price: Decimal = Field(..., gt=0, description="Unit price as a probability in (0, 1)")

    # ── Kalshi ───────────────────────────────────────────────────
    leg: Optional[Leg] = None
    kalshi_order_type: KalshiOrderType = KalshiOrderType.MARKET
    limit_price_cents: Optional[int] = None

    # ── Polymarket signed record ─────────────────────────────────
    lifetime: OrderLifetime = OrderLifetime.GTC
    salt: int = Field(default_factory=new_salt)
    expiration: int = 0
    maker_amount: int = Field(default=0, ge=0)
    taker_amount: int = Field(default=0, ge=0)
    maker: str = ""
    signer: str = ""
    nonce: int = 0
    fee_rate_bps: int = 0
    signature_type: SignatureType = SignatureType.POLY_GNOSIS_SAFE
    risk_category: RiskCategory = RiskCategory.STANDARD
    signature: Optional[str] = None

    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @model_validator(mode="after")
    def _check_venue_fields(self) -> Order:
        if self.venue is Venue.POLYMARKET:
            if self.price >= 1:
                raise ValueError("polymarket price must be strictly between 0 and 1")
        else:
            if self.leg is None:
                raise ValueError("kalshi orders need a leg")
            if self.kalshi_order_type is KalshiOrderType.LIMIT:
                if self.limit_price_cents is None:
                    raise ValueError("kalshi limit orders need limit_price_cents")
            if self.limit_price_cents is not None and not 1 <= self.limit_price_cents <= 99:
                raise ValueError("kalshi limit price must be between 1 and 99 cents")
        return self

    @property
    def is_signed(self) -> bool:
        return self.signature is not None

    @property
    def neg_risk(self) -> bool:
        return self.risk_category is RiskCategory.NEG_RISK

    def amend(self, **changes: Any) -> Order:
        """Return a new unsigned order with *changes* and a fresh salt."""
        data = self.model_dump()
        data.update(changes)
        data["salt"] = new_salt()
        data["signature"] = None
        data.pop("created_at", None)
        return Order.model_validate(data)

    def with_signature(self, signature: str) -> Order:
        return self.model_copy(update={"signature": signature})

    def typed_message(self) -> dict[str, Any]:
        """Message half of the EIP-712 payload (``Order`` struct)."""
        return {
            "salt": self.salt,
            "maker": self.maker,
            "signer": self.signer,
            "taker": "0x0000000000000000000000000000000000000000",
            "tokenId": int(self.instrument_id),
            "makerAmount": self.maker_amount,
            "takerAmount": self.taker_amount,
            "expiration": self.expiration,
            "nonce": self.nonce,
            "feeRateBps": self.fee_rate_bps,
            "side": self.side.wire_value,
            "signatureType": int(self.signature_type),
        }


class TradeResult(BaseModel):
    """Outcome of ``execute_trade``: success, or one typed error."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    success: bool
    venue: Venue
    order_id: Optional[str] = None
    tx_hash: Optional[str] = None
    status: Optional[str] = None
    error: Optional[TradeError] = None

    @classmethod
    def failed(cls, venue: Venue, error: TradeError) -> TradeResult:
        return cls(success=False, venue=venue, error=error)

    @property
    def error_code(self) -> str | None:
        return self.error.code if self.error else None

    def raise_for_error(self) -> None:
        if self.error is not None:
            raise self.error

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "venue": self.venue.value,
            "order_id": self.order_id,
            "tx_hash": self.tx_hash,
            "status": self.status,
            "error": self.error.to_dict() if self.error else None,
        }
