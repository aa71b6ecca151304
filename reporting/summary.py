from __future__ import annotations
from decimal import Decimal
from typing import Dict, Any, List
from common.money import format_money
from ledger.transaction import Transaction
from orders.order import Order, OrderReceipt
from portfolio.portfolio import PortfolioView

def _qty(value: Decimal) -> str:
    # 10.000 -> "10", 2.50 -> "2.5"
    return format(value.normalize(), "f")

def order_dict(order: Order) -> Dict[str, Any]:
    return {
        "orderId": order.order_id,
        "userId": order.account_id,
        "type": order.side.value,
        "ticker": order.ticker,
        "shares": _qty(order.quantity),
        "requestedAt": order.requested_at.isoformat(),
        "status": order.status.value,
        "priceAtRequest": format_money(order.price),
    }

def transaction_dict(tx: Transaction) -> Dict[str, Any]:
    return {
        "txId": tx.tx_id,
        "userId": tx.account_id,
        "type": tx.type.value,
        "ticker": tx.ticker,
        "shares": _qty(tx.quantity),
        "price": format_money(tx.price),
        "total": format_money(tx.total),
        "status": tx.status.value,
        "timestamp": tx.timestamp.isoformat(),
    }

def order_response(receipt: OrderReceipt) -> Dict[str, Any]:
    return {"message": receipt.message, "order": order_dict(receipt.order)}

def cash_response(message: str, cash: Decimal) -> Dict[str, Any]:
    return {"message": message, "cash": format_money(cash)}

def portfolio_summary(portfolio: PortfolioView) -> Dict[str, Any]:
    return {
        "message": "Portfolio loaded",
        "userId": portfolio.account_id,
        "cash": format_money(portfolio.cash),
        "holdings": [
            {
                "ticker": h.ticker,
                "shares": _qty(h.shares),
                "avgCost": format_money(h.avg_cost),
                "currentPrice": format_money(h.current_price),
                "marketValue": format_money(h.market_value),
                "unrealizedPnl": format_money(h.unrealized_pnl),
            }
            for h in portfolio.holdings
        ],
        "totalStockValue": format_money(portfolio.total_stock_value),
        "totalAccountValue": format_money(portfolio.total_account_value),
    }

def transactions_response(transactions: List[Transaction]) -> Dict[str, Any]:
    return {
        "message": f"{len(transactions)} transactions",
        "transactions": [transaction_dict(t) for t in transactions],
    }
