"""predmkt-core — execution package."""

from .order_builder import OrderBuilder
from .orchestrator import TradeOrchestrator
from .quantizer import kalshi_contract_count, polymarket_amounts, to_base_units

__all__ = [
    "OrderBuilder",
    "TradeOrchestrator",
    "kalshi_contract_count",
    "polymarket_amounts",
    "to_base_units",
]
