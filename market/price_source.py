"""Quote catalog access.

The catalog is maintained outside the engine; the engine only reads a single
price per settlement through the ``PriceSource`` protocol.
"""
from __future__ import annotations

import threading
from dataclasses import dataclass, replace
from decimal import Decimal
from pathlib import Path
from typing import Dict, Iterable, Optional, Protocol

import pandas as pd

from common.exceptions import NotFoundError
from common.money import to_decimal


def normalize_ticker(ticker: str) -> str:
    return str(ticker or "").strip().upper()


@dataclass(frozen=True)
class Quote:
    ticker: str
    price: Decimal
    open: Decimal
    high: Decimal
    low: Decimal
    volume: int = 0
    company_name: str = ""

    @property
    def market_cap(self) -> Decimal:
        return self.price * self.volume


class PriceSource(Protocol):
    def has_ticker(self, ticker: str) -> bool:
        ...

    def get_price(self, ticker: str) -> Decimal:
        ...


class StaticPriceSource:
    """In-memory catalog of quotes keyed by upper-case ticker."""

    def __init__(self, quotes: Iterable[Quote] = ()):
        self._lock = threading.Lock()
        self._quotes: Dict[str, Quote] = {normalize_ticker(q.ticker): q for q in quotes}

    @classmethod
    def from_prices(cls, prices: Dict[str, object]) -> "StaticPriceSource":
        quotes = []
        for ticker, price in prices.items():
            p = to_decimal(price, f"price of {ticker}")
            quotes.append(Quote(normalize_ticker(ticker), p, p, p, p))
        return cls(quotes)

    def has_ticker(self, ticker: str) -> bool:
        with self._lock:
            return normalize_ticker(ticker) in self._quotes

    def get_quote(self, ticker: str) -> Quote:
        with self._lock:
            quote = self._quotes.get(normalize_ticker(ticker))
        if quote is None:
            raise NotFoundError(f"Stock not found: {ticker}")
        return quote

    def get_price(self, ticker: str) -> Decimal:
        return self.get_quote(ticker).price

    def set_price(self, ticker: str, price: object) -> None:
        """Move the quote, tracking the session high/low like a live feed."""
        p = to_decimal(price, "price")
        key = normalize_ticker(ticker)
        with self._lock:
            quote = self._quotes.get(key)
            if quote is None:
                self._quotes[key] = Quote(key, p, p, p, p)
            else:
                self._quotes[key] = replace(quote, price=p, high=max(quote.high, p), low=min(quote.low, p))


def load_quotes_csv(path: str | Path) -> StaticPriceSource:
    """Load a catalog CSV with at least ``ticker`` and ``price`` columns."""
    df = pd.read_csv(path, dtype={"ticker": str}, keep_default_na=False)
    missing = {"ticker", "price"} - set(df.columns)
    if missing:
        raise ValueError(f"Quotes CSV missing columns: {sorted(missing)}")

    quotes = []
    for row in df.to_dict(orient="records"):
        price = to_decimal(row["price"], "price")
        quotes.append(
            Quote(
                ticker=normalize_ticker(row["ticker"]),
                price=price,
                open=_optional_decimal(row.get("open"), price),
                high=_optional_decimal(row.get("high"), price),
                low=_optional_decimal(row.get("low"), price),
                volume=int(row.get("volume") or 0),
                company_name=str(row.get("company_name") or ""),
            )
        )
    return StaticPriceSource(quotes)


def _optional_decimal(value: Optional[object], default: Decimal) -> Decimal:
    if value is None or value == "":
        return default
    return to_decimal(value)
