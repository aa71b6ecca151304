"""Exceptions raised by the execution engine.

Business-rule failures derive from ``BusinessRuleError`` and are always
raised before any ledger mutation. ``InfrastructureError`` is kept outside
that branch so callers can tell a rejected request from a failed system.
"""
from __future__ import annotations


class LedgerError(Exception):
    """Base exception for the execution engine"""

    pass


class BusinessRuleError(LedgerError):
    """Base for request rejections; state is left untouched"""

    pass


class NotFoundError(BusinessRuleError):
    """Raised when an account, stock or order does not exist"""

    pass


class InvalidArgumentError(BusinessRuleError):
    """Raised for non-positive, non-finite or missing request values"""

    pass


class InsufficientFundsError(BusinessRuleError):
    """Raised when cash does not cover a buy or withdrawal"""

    pass


class InsufficientSharesError(BusinessRuleError):
    """Raised when a sell exceeds the shares held"""

    pass


class MarketClosedError(BusinessRuleError):
    """Raised when an order arrives outside the market session"""

    def __init__(self, reason: str):
        super().__init__(f"Market closed: {reason}")
        self.reason = reason


class InvalidStateError(BusinessRuleError):
    """Raised when a mutation is attempted on an order or ledger in the wrong state"""

    pass


class InfrastructureError(LedgerError):
    """Raised when storage or the price feed fails; the operation is rolled back"""

    pass


class ConcurrentUpdateError(InfrastructureError):
    """Raised when an account changed in the store after its snapshot was read"""

    pass
