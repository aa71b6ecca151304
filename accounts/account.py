from __future__ import annotations
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, Optional

from common.exceptions import InvalidStateError
from ledger.mutation import Mutation
from portfolio.holding import Holding

@dataclass(frozen=True)
class Account:
    """Immutable snapshot of one account's cash and holdings."""

    id: str
    cash: Decimal = Decimal("0")
    holdings: Dict[str, Holding] = field(default_factory=dict)
    # store revision the snapshot was read at; bumped by every commit
    version: int = field(default=0, compare=False)

    def holding(self, ticker: str) -> Optional[Holding]:
        return self.holdings.get(ticker)

    def shares_of(self, ticker: str) -> Decimal:
        h = self.holdings.get(ticker)
        return h.shares if h else Decimal("0")

    def check_invariants(self) -> None:
        if self.cash < 0:
            raise InvalidStateError(f"Account {self.id}: cash would be negative ({self.cash})")
        for t, h in self.holdings.items():
            if h.ticker != t:
                raise InvalidStateError(f"Account {self.id}: holding key {t} does not match {h.ticker}")
            if h.shares <= 0:
                raise InvalidStateError(f"Account {self.id}: holding {t} has non-positive shares ({h.shares})")

    def apply(self, mutation: Mutation) -> "Account":
        """Return the account after ``mutation``; raises if an invariant would break."""
        holdings = dict(self.holdings)
        for t, h in mutation.holding_changes.items():
            if h is None:
                holdings.pop(t, None)
            else:
                holdings[t] = h
        result = Account(
            id=self.id,
            cash=self.cash + mutation.cash_delta,
            holdings=holdings,
            version=self.version + 1,
        )
        result.check_invariants()
        return result
