from __future__ import annotations
from dataclasses import dataclass
from decimal import Decimal

@dataclass(frozen=True)
class Holding:
    ticker: str
    shares: Decimal
    avg_cost: Decimal  # unrounded weighted average, changed only by buys
