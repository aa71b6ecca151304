from __future__ import annotations
from dataclasses import dataclass
from decimal import Decimal
from typing import List

from loguru import logger

from accounts.account import Account
from common.exceptions import NotFoundError
from market.price_source import PriceSource

@dataclass(frozen=True)
class HoldingView:
    ticker: str
    shares: Decimal
    avg_cost: Decimal
    current_price: Decimal
    market_value: Decimal

    @property
    def unrealized_pnl(self) -> Decimal:
        return self.market_value - self.shares * self.avg_cost

@dataclass(frozen=True)
class PortfolioView:
    account_id: str
    cash: Decimal
    holdings: List[HoldingView]

    @property
    def total_stock_value(self) -> Decimal:
        return sum((h.market_value for h in self.holdings), Decimal("0"))

    @property
    def total_account_value(self) -> Decimal:
        return self.cash + self.total_stock_value


def build_portfolio(account: Account, prices: PriceSource) -> PortfolioView:
    """Value every holding at the current quote; an unquoted ticker is valued at 0."""
    views: List[HoldingView] = []
    for t in sorted(account.holdings):
        h = account.holdings[t]
        try:
            price = prices.get_price(t)
        except NotFoundError:
            logger.warning(f"No quote for {t}; valuing holding in {account.id} at 0")
            price = Decimal("0")
        views.append(HoldingView(t, h.shares, h.avg_cost, price, h.shares * price))
    return PortfolioView(account_id=account.id, cash=account.cash, holdings=views)
