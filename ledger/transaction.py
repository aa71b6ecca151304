from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from orders.order import OrderStatus

CASH_TICKER = "CASH"


class TransactionType(str, Enum):
    BUY = "BUY"
    SELL = "SELL"
    DEPOSIT = "DEPOSIT"
    WITHDRAW = "WITHDRAW"
    CANCEL = "CANCEL"


def new_tx_id() -> str:
    return f"t-{uuid.uuid4().hex}"


@dataclass(frozen=True)
class Transaction:
    """One append-only line of an account's history."""

    tx_id: str
    account_id: str
    type: TransactionType
    ticker: str
    quantity: Decimal
    price: Decimal
    total: Decimal
    status: OrderStatus
    timestamp: datetime
    order_id: Optional[str] = None
