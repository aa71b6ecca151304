"""Transaction history as a table and as readable lines."""
from __future__ import annotations

from typing import List

import pandas as pd

from ledger.transaction import Transaction
from reporting.summary import transaction_dict

HISTORY_COLUMNS = ["timestamp", "type", "ticker", "shares", "price", "total", "status", "txId"]


def transactions_frame(transactions: List[Transaction]) -> pd.DataFrame:
    """Tabular view of a history, in the order given."""
    rows = [transaction_dict(t) for t in transactions]
    return pd.DataFrame(rows, columns=HISTORY_COLUMNS)


def explain_transactions(transactions: List[Transaction]) -> List[str]:
    return [
        f"{t.timestamp:%Y-%m-%d %H:%M:%S} {t.type.value:8} {t.ticker:6} x{t.quantity.normalize()} @ {t.price:.2f} = {t.total:.2f} [{t.status.value}]"
        for t in transactions
    ]
