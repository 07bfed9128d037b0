# Overview: Settlement Ledger; tenders against a grand total and the transaction lifecycle.

"""
Settlement Ledger

Accumulates tendered payments against a cart's grand total, computes change,
and produces immutable Transactions.

DESIGN PRINCIPLES:
- Split tenders: one settlement may take several payments and methods
- Only cash can over-tender; change is computed from cash alone
- A rejected tender leaves the session untouched
- Transactions are frozen; status changes return a new Transaction

LIFECYCLE:
    DRAFT -> COMPLETED    (finalize a settled session, or a resumed draft)
    DRAFT -> VOIDED       (void)
    COMPLETED -> REFUNDED (refund)
VOIDED and REFUNDED are terminal.
"""

from __future__ import annotations

import enum
import logging
import random
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone

from flask import current_app, has_app_context

from ..errors import (
    EmptyCart,
    IncompleteSettlement,
    InvalidPayment,
    InvalidTransition,
)
from ..money import Money
from ..time_utils import utcnow
from .totals_service import CartTotals, LineTotals

logger = logging.getLogger(__name__)


DEFAULT_TOLERANCE_CENTS = 1
DEFAULT_RECEIPT_PREFIX = "REC"


def _setting(key: str, default):
    """App config value when running inside the app, else the engine default."""
    if has_app_context():
        return current_app.config.get(key, default)
    return default


# =============================================================================
# TENDER TYPES AND STATUS (CONSTANTS)
# =============================================================================

class PaymentMethod(str, enum.Enum):
    CASH = "cash"
    CARD = "card"
    BANK_TRANSFER = "bank_transfer"
    STORE_CREDIT = "store_credit"
    OTHER = "other"


class PrimaryMethod(str, enum.Enum):
    """Payment method summary stored on a Transaction; adds SPLIT for mixed tenders."""
    CASH = "cash"
    CARD = "card"
    BANK_TRANSFER = "bank_transfer"
    STORE_CREDIT = "store_credit"
    OTHER = "other"
    SPLIT = "split"


class TransactionStatus(str, enum.Enum):
    DRAFT = "draft"
    COMPLETED = "completed"
    VOIDED = "voided"
    REFUNDED = "refunded"


ALLOWED_TRANSITIONS = {
    TransactionStatus.DRAFT: {TransactionStatus.COMPLETED, TransactionStatus.VOIDED},
    TransactionStatus.COMPLETED: {TransactionStatus.REFUNDED},
    TransactionStatus.VOIDED: set(),
    TransactionStatus.REFUNDED: set(),
}


def can_transition(current: TransactionStatus, target: TransactionStatus) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, set())


def parse_payment_method(value) -> PaymentMethod:
    if isinstance(value, PaymentMethod):
        return value
    try:
        return PaymentMethod(str(value).strip().lower())
    except ValueError:
        raise InvalidPayment(
            f"Invalid payment method: {value}. Must be one of {[m.value for m in PaymentMethod]}"
        )


# =============================================================================
# RECORDS
# =============================================================================

@dataclass(frozen=True)
class PaymentRecord:
    method: PaymentMethod
    amount: Money

    def to_dict(self) -> dict:
        return {"method": self.method.value, "amount_cents": self.amount.cents}


@dataclass(frozen=True)
class Transaction:
    """
    A settled (or held) sale.

    Once COMPLETED, lines, totals and payments never change; only status may
    move on to REFUNDED.
    """
    id: str
    receipt_number: str
    created_at: datetime
    totals: CartTotals
    status: TransactionStatus
    customer_id: str | None = None
    payments: tuple[PaymentRecord, ...] = ()
    amount_paid: Money = Money(0)
    change_given: Money = Money(0)
    primary_method: str | None = None
    notes: str | None = None
    settlement_id: str | None = None

    @property
    def lines(self) -> tuple[LineTotals, ...]:
        return self.totals.lines

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "receipt_number": self.receipt_number,
            "created_at": self.created_at.isoformat(),
            "customer_id": self.customer_id,
            "status": self.status.value,
            "primary_method": self.primary_method,
            **self.totals.to_dict(),
            "amount_paid_cents": self.amount_paid.cents,
            "change_given_cents": self.change_given.cents,
            "payments": [p.to_dict() for p in self.payments],
            "lines": [
                {
                    "product_id": line.item.product_id,
                    "name": line.item.name,
                    "quantity": str(line.item.quantity),
                    "unit_price_cents": line.item.unit_price.cents,
                    "gross_cents": line.gross.cents,
                    "discount_cents": line.discount.cents,
                    "tax_cents": line.tax.cents,
                }
                for line in self.lines
            ],
            "notes": self.notes,
            "settlement_id": self.settlement_id,
        }


@dataclass
class SettlementSession:
    """In-progress settlement. Caller-owned; calls on one session must be serialized."""
    id: str
    totals: CartTotals
    customer_id: str | None = None
    notes: str | None = None
    payments: list[PaymentRecord] = field(default_factory=list)
    tolerance: Money = Money(DEFAULT_TOLERANCE_CENTS)
    draft: Transaction | None = None
    finalized: bool = False

    @property
    def grand_total(self) -> Money:
        return self.totals.grand_total

    @property
    def total_paid(self) -> Money:
        return Money.sum(p.amount for p in self.payments)

    @property
    def remaining_due(self) -> Money:
        return self.grand_total.subtract_floor(self.total_paid)

    @property
    def change_due(self) -> Money:
        return self.total_paid.subtract_floor(self.grand_total)

    def summary(self) -> dict:
        return {
            "settlement_id": self.id,
            "grand_total_cents": self.grand_total.cents,
            "total_paid_cents": self.total_paid.cents,
            "remaining_due_cents": self.remaining_due.cents,
            "change_due_cents": self.change_due.cents,
            "is_settled": is_settled(self),
            "payments": [p.to_dict() for p in self.payments],
        }


# =============================================================================
# SETTLEMENT
# =============================================================================

def start_settlement(
    totals: CartTotals,
    customer_id: str | None = None,
    *,
    notes: str | None = None,
    tolerance_cents: int | None = None,
) -> SettlementSession:
    """Open a settlement for the given cart totals with nothing paid."""
    if tolerance_cents is None:
        tolerance_cents = _setting("SETTLEMENT_TOLERANCE_CENTS", DEFAULT_TOLERANCE_CENTS)
    return SettlementSession(
        id=uuid.uuid4().hex,
        totals=totals,
        customer_id=customer_id,
        notes=notes,
        tolerance=Money(tolerance_cents),
    )


def resume_draft(transaction: Transaction, *, tolerance_cents: int | None = None) -> SettlementSession:
    """Reopen a held DRAFT for payment."""
    if transaction.status != TransactionStatus.DRAFT:
        raise InvalidTransition(
            f"Only DRAFT transactions can be resumed (status {transaction.status.value})",
            details={"transaction_id": transaction.id},
        )
    session = start_settlement(
        transaction.totals,
        transaction.customer_id,
        notes=transaction.notes,
        tolerance_cents=tolerance_cents,
    )
    session.draft = transaction
    return session


def add_payment(session: SettlementSession, method, amount: Money) -> SettlementSession:
    """
    Tender a payment.

    Raises:
        InvalidPayment: amount <= 0, non-cash tender above the remaining due
            (so any non-cash tender once nothing is due), or the session is
            already finalized. Cash is always accepted; the excess is change.
    """
    method = parse_payment_method(method)

    if session.finalized:
        raise InvalidPayment("Settlement already finalized", details={"settlement_id": session.id})

    if not isinstance(amount, Money):
        raise InvalidPayment("Payment amount must be a Money value")

    if amount.cents <= 0:
        raise InvalidPayment("Payment amount must be positive", details={"amount_cents": amount.cents})

    remaining_due = session.remaining_due
    if method != PaymentMethod.CASH and amount > remaining_due:
        logger.debug(
            "Rejected %s tender of %s above remaining %s", method.value, amount, remaining_due
        )
        raise InvalidPayment(
            "Non-cash tender cannot exceed remaining balance",
            details={"amount_cents": amount.cents, "remaining_due_cents": remaining_due.cents},
        )

    session.payments.append(PaymentRecord(method=method, amount=amount))
    return session


def remove_payment(session: SettlementSession, index: int) -> SettlementSession:
    """Drop a tender before finalize (cashier correction)."""
    if session.finalized:
        raise InvalidPayment("Settlement already finalized", details={"settlement_id": session.id})
    if index < 0 or index >= len(session.payments):
        raise InvalidPayment(f"No payment at position {index}")
    del session.payments[index]
    return session


def is_settled(session: SettlementSession) -> bool:
    """At least one payment and total paid (within tolerance) covers the grand total."""
    if not session.payments:
        return False
    return session.total_paid.cents + session.tolerance.cents >= session.grand_total.cents


def resolve_primary_method(payments) -> str | None:
    """
    Method recorded on the transaction: the single method used, or "split".

    Repeated tenders of one method (two cash payments) stay that method;
    "split" needs at least two distinct methods, not merely two payments.
    """
    methods = []
    for payment in payments:
        if payment.method not in methods:
            methods.append(payment.method)
    if not methods:
        return None
    if len(methods) > 1:
        return PrimaryMethod.SPLIT.value
    return methods[0].value


def finalize(
    session: SettlementSession,
    *,
    now: datetime | None = None,
    receipt_prefix: str | None = None,
) -> Transaction:
    """
    Freeze a settled session into a COMPLETED Transaction.

    Raises:
        EmptyCart: the cart has no lines
        IncompleteSettlement: not settled, or already finalized
    """
    if not session.totals.lines:
        raise EmptyCart("Cannot finalize a sale with no lines", details={"settlement_id": session.id})

    if session.finalized:
        raise IncompleteSettlement("Settlement already finalized", details={"settlement_id": session.id})

    if not is_settled(session):
        raise IncompleteSettlement(
            "Payments do not cover the grand total",
            details={
                "grand_total_cents": session.grand_total.cents,
                "total_paid_cents": session.total_paid.cents,
                "remaining_due_cents": session.remaining_due.cents,
            },
        )

    created_at = now or utcnow()
    if session.draft is not None:
        transaction_id = session.draft.id
        receipt_number = session.draft.receipt_number
    else:
        transaction_id = uuid.uuid4().hex
        receipt_number = next_receipt_number(created_at, prefix=receipt_prefix)

    transaction = Transaction(
        id=transaction_id,
        receipt_number=receipt_number,
        created_at=created_at,
        totals=session.totals,
        status=TransactionStatus.COMPLETED,
        customer_id=session.customer_id,
        payments=tuple(session.payments),
        amount_paid=session.total_paid,
        change_given=session.change_due,
        primary_method=resolve_primary_method(session.payments),
        notes=session.notes,
        settlement_id=session.id,
    )
    session.finalized = True

    logger.info(
        "Transaction %s completed: total=%s paid=%s change=%s method=%s",
        transaction.receipt_number,
        transaction.totals.grand_total,
        transaction.amount_paid,
        transaction.change_given,
        transaction.primary_method,
    )
    return transaction


# =============================================================================
# DRAFTS, VOIDS, REFUNDS
# =============================================================================

def hold(
    totals: CartTotals,
    customer_id: str | None = None,
    *,
    notes: str | None = None,
    now: datetime | None = None,
    receipt_prefix: str | None = None,
) -> Transaction:
    """Save the cart for later as a DRAFT with no payments."""
    if not totals.lines:
        raise EmptyCart("Cannot hold a cart with no lines")

    created_at = now or utcnow()
    transaction = Transaction(
        id=uuid.uuid4().hex,
        receipt_number=next_receipt_number(created_at, prefix=receipt_prefix),
        created_at=created_at,
        totals=totals,
        status=TransactionStatus.DRAFT,
        customer_id=customer_id,
        notes=notes,
    )
    logger.info("Transaction %s held as draft", transaction.receipt_number)
    return transaction


def _transition(transaction: Transaction, target: TransactionStatus) -> Transaction:
    if not can_transition(transaction.status, target):
        raise InvalidTransition(
            f"Cannot move transaction from {transaction.status.value} to {target.value}",
            details={"transaction_id": transaction.id, "status": transaction.status.value},
        )
    updated = replace(transaction, status=target)
    logger.info("Transaction %s %s", transaction.receipt_number, target.value)
    return updated


def void(transaction: Transaction) -> Transaction:
    """DRAFT -> VOIDED."""
    return _transition(transaction, TransactionStatus.VOIDED)


def refund(transaction: Transaction) -> Transaction:
    """COMPLETED -> REFUNDED. Only the status changes; reports treat it as negative gross."""
    return _transition(transaction, TransactionStatus.REFUNDED)


# =============================================================================
# CATALOG SIDE EFFECTS
# =============================================================================

@dataclass(frozen=True)
class StockMovement:
    product_id: str
    type: str
    quantity_change: object
    reference_id: str


def stock_movements(transaction: Transaction) -> list[StockMovement]:
    """
    Stock deltas the Catalog Service should apply for a transaction.

    COMPLETED -> one "sale" movement per line (negative quantity);
    REFUNDED -> one "return" movement per line (positive quantity);
    DRAFT and VOIDED never touched stock.
    """
    if transaction.status == TransactionStatus.COMPLETED:
        movement_type, sign = "sale", -1
    elif transaction.status == TransactionStatus.REFUNDED:
        movement_type, sign = "return", 1
    else:
        return []

    return [
        StockMovement(
            product_id=line.item.product_id,
            type=movement_type,
            quantity_change=sign * abs(line.item.quantity),
            reference_id=transaction.id,
        )
        for line in transaction.lines
        if line.item.quantity != 0
    ]


def next_receipt_number(now: datetime | None = None, *, prefix: str | None = None) -> str:
    """REC-<epoch millis>-<3 digits>."""
    if prefix is None:
        prefix = _setting("RECEIPT_PREFIX", DEFAULT_RECEIPT_PREFIX)
    moment = now or utcnow()
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    epoch_ms = (moment - datetime(1970, 1, 1, tzinfo=timezone.utc)) // timedelta(milliseconds=1)
    suffix = f"{random.randint(0, 999):03d}"
    return f"{prefix}-{epoch_ms}-{suffix}"
