"""Market / Outcome — the trade-relevant view of a listed market."""

from __future__ import annotations

from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from models.order import Leg, RiskCategory, Venue


class Outcome(BaseModel):
    """One tradable outcome of a market."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., min_length=1)
    price: Decimal = Field(..., gt=0, lt=1, description="Probability price")
    token_id: Optional[str] = Field(default=None, description="Polymarket ERC-1155 token id")

    @property
    def kalshi_leg(self) -> Leg:
        return Leg.YES if self.name.strip().lower() == "yes" else Leg.NO


class Market(BaseModel):
    """Listed market on one venue."""

    model_config = ConfigDict(frozen=True)

    venue: Venue
    platform_id: str = Field(..., min_length=1, description="Kalshi ticker or Polymarket condition id")
    title: str = ""
    risk_category: RiskCategory = RiskCategory.STANDARD
    min_order_size: Optional[Decimal] = Field(default=None, gt=0)
    outcomes: tuple[Outcome, ...] = ()

    @property
    def neg_risk(self) -> bool:
        return self.risk_category is RiskCategory.NEG_RISK

    def outcome(self, name: str) -> Outcome:
        for o in self.outcomes:
            if o.name.lower() == name.lower():
                return o
        raise KeyError(name)
