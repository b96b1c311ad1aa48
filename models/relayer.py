"""Relay transaction models and the single-step poll outcome."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional, Union

from pydantic import BaseModel, Field


class RelayerState(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    MINED = "mined"
    FAILED = "failed"

    @classmethod
    def from_wire(cls, raw: str | None) -> RelayerState:
        """Map a relay ``STATE_*`` string; unrecognised states are pending."""
        value = (raw or "").upper()
        if value == "STATE_CONFIRMED":
            return cls.CONFIRMED
        if value == "STATE_MINED":
            return cls.MINED
        if value in ("STATE_FAILED", "STATE_INVALID"):
            return cls.FAILED
        return cls.PENDING

    @property
    def is_terminal(self) -> bool:
        return self is not RelayerState.PENDING


class RelayAction(str, Enum):
    """Relay submission type."""

    DEPLOY = "SAFE-CREATE"
    EXECUTE = "SAFE"


class RelayerTransaction(BaseModel):
    """Relay-side view of one submitted transaction."""

    transaction_id: str
    state: RelayerState = RelayerState.PENDING
    raw_state: str = ""
    proxy_address: Optional[str] = None
    tx_hash: Optional[str] = None
    error_message: Optional[str] = None
    payload: dict[str, Any] = Field(default_factory=dict)


# ── Poll outcome sum type ───────────────────────────────────────────


@dataclass(frozen=True)
class Pending:
    transaction: RelayerTransaction


@dataclass(frozen=True)
class Terminal:
    transaction: RelayerTransaction


@dataclass(frozen=True)
class TimedOut:
    transaction_id: str
    attempts: int
    last_state: RelayerState = RelayerState.PENDING


PollOutcome = Union[Pending, Terminal, TimedOut]
