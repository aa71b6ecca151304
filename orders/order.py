"""Order records.

An order is created once per buy/sell request. Its status moves from
PENDING to exactly one terminal state and never changes again.
"""
from __future__ import annotations

import uuid
from dataclasses import dataclass, replace
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING, Optional

from common.exceptions import InvalidArgumentError, InvalidStateError

if TYPE_CHECKING:
    from ledger.transaction import Transaction


class Side(str, Enum):
    BUY = "BUY"
    SELL = "SELL"

    @classmethod
    def parse(cls, value: object) -> "Side":
        if isinstance(value, Side):
            return value
        try:
            return cls(str(value or "").strip().upper())
        except ValueError:
            raise InvalidArgumentError(f"side must be BUY or SELL, got {value!r}") from None


class OrderStatus(str, Enum):
    PENDING = "PENDING"
    EXECUTED = "EXECUTED"
    REJECTED = "REJECTED"
    CANCELED = "CANCELED"

    @property
    def is_terminal(self) -> bool:
        return self is not OrderStatus.PENDING


def new_order_id() -> str:
    return f"o-{uuid.uuid4().hex}"


@dataclass(frozen=True)
class Order:
    order_id: str
    account_id: str
    side: Side
    ticker: str
    quantity: Decimal
    status: OrderStatus
    price: Decimal  # captured at request time
    requested_at: datetime

    def transition(self, status: OrderStatus) -> "Order":
        """Return the order moved from PENDING to ``status``."""
        if self.status.is_terminal:
            raise InvalidStateError(f"Order {self.order_id} already {self.status.value}")
        if not status.is_terminal:
            raise InvalidStateError(f"Cannot move order {self.order_id} to {status.value}")
        return replace(self, status=status)


@dataclass(frozen=True)
class OrderReceipt:
    """Outcome of an order operation: a message plus the order as it now stands."""

    message: str
    order: Order
    transaction: Optional["Transaction"] = None
