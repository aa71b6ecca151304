"""The compound change produced by one engine operation."""
from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, Optional

from ledger.transaction import Transaction
from orders.order import Order
from portfolio.holding import Holding


@dataclass(frozen=True)
class Mutation:
    cash_delta: Decimal = Decimal("0")
    # ticker -> new holding, or None to remove the entry
    holding_changes: Dict[str, Optional[Holding]] = field(default_factory=dict)
    transaction: Optional[Transaction] = None
    order: Optional[Order] = None
