# Overview: Error kinds raised by the settlement engine; callers decide user-facing messaging.

from __future__ import annotations


class EngineError(Exception):
    """Base class for recoverable engine errors."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


class MoneyError(ValueError):
    """Raised for unparseable amounts and arithmetic that would go negative."""


class InvalidDiscount(EngineError):
    """Discount value negative or percent outside [0, 100]."""


class InvalidPayment(EngineError):
    """Non-positive tender, non-cash tender above remaining due, or nothing left to pay."""


class IncompleteSettlement(EngineError):
    """finalize() called before the session is settled."""


class EmptyCart(IncompleteSettlement):
    """hold() or finalize() called with zero line items."""


class InvalidTransition(EngineError):
    """Status change not allowed from the transaction's current status."""


class NoShift(EngineError):
    """Shift report requested without a shift."""


class ValidationError(ValueError):
    """Malformed input at the engine boundary (line items, payments, shift data)."""
