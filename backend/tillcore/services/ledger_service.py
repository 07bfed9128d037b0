# Overview: Reference Sales Ledger; persists Transactions, shifts and cash movements.

"""
Sales Ledger (reference adapter)

The engine never does I/O. This service is the ledger contract backed by
Flask-SQLAlchemy: save / get / list_by_window for transactions, plus the
shift and drawer bookkeeping the Shift Aggregator reads.

Ledger Invariants:
- A COMPLETED sale's lines, totals and payments are written once and never
  overwritten; later saves may only move its status forward.
- A DRAFT row is fully rewritten when it is resumed and completed.
- At most one persisted sale per settlement_id; replays return the stored id.
- One open shift per user.
"""

from __future__ import annotations

from datetime import datetime
from fractions import Fraction

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..errors import EngineError, InvalidTransition, ValidationError
from ..extensions import db
from ..models import CashMovementEntry, Sale, SaleLine, SalePayment, Shift
from ..money import Money
from ..time_utils import to_utc_naive, utcnow
from .concurrency import lock_for_update, run_with_retry
from .settlement_service import (
    PaymentMethod,
    PaymentRecord,
    Transaction,
    TransactionStatus,
    can_transition,
)
from .shift_report_service import (
    CashMovement,
    CashMovementKind,
    DrawerReconciliation,
    ShiftReport,
    ShiftSession,
    ShiftStatus,
    build_shift_report,
    reconcile_drawer,
)
from .totals_service import CartTotals, LineItem, LineTotals


class LedgerError(EngineError):
    """Raised for Sales Ledger errors."""


class TransactionNotFound(LedgerError):
    pass


class ShiftNotFound(LedgerError):
    pass


class ShiftStateError(LedgerError):
    """Shift is in the wrong state for the operation (already open/closed)."""


# =============================================================================
# TRANSACTIONS
# =============================================================================

def _write_contents(row: Sale, transaction: Transaction) -> None:
    totals = transaction.totals
    row.receipt_number = transaction.receipt_number
    row.settlement_id = transaction.settlement_id
    row.status = transaction.status.value
    row.created_at = to_utc_naive(transaction.created_at)
    row.customer_id = transaction.customer_id
    row.primary_method = transaction.primary_method
    row.notes = transaction.notes
    row.subtotal_cents = totals.subtotal.cents
    row.discount_total_cents = totals.discount_total.cents
    row.tax_total_cents = totals.tax_total.cents
    row.grand_total_cents = totals.grand_total.cents
    row.amount_paid_cents = transaction.amount_paid.cents
    row.change_given_cents = transaction.change_given.cents
    row.lines = [
        SaleLine(
            position=position,
            product_id=line.item.product_id,
            name=line.item.name,
            quantity=str(line.item.quantity),
            unit_price_cents=line.item.unit_price.cents,
            original_tax_cents=line.item.original_tax.cents,
            gross_cents=line.gross.cents,
            discount_cents=line.discount.cents,
            tax_cents=line.tax.cents,
        )
        for position, line in enumerate(transaction.lines)
    ]
    row.payments = [
        SalePayment(position=position, method=payment.method.value, amount_cents=payment.amount.cents)
        for position, payment in enumerate(transaction.payments)
    ]


def _to_transaction(row: Sale) -> Transaction:
    lines = tuple(
        LineTotals(
            item=LineItem(
                product_id=line.product_id,
                quantity=Fraction(line.quantity),
                unit_price=Money(line.unit_price_cents),
                original_tax=Money(line.original_tax_cents),
                name=line.name,
            ),
            gross=Money(line.gross_cents),
            discount=Money(line.discount_cents),
            tax=Money(line.tax_cents),
        )
        for line in row.lines
    )
    totals = CartTotals(
        subtotal=Money(row.subtotal_cents),
        discount_total=Money(row.discount_total_cents),
        tax_total=Money(row.tax_total_cents),
        grand_total=Money(row.grand_total_cents),
        lines=lines,
    )
    return Transaction(
        id=row.id,
        receipt_number=row.receipt_number,
        created_at=row.created_at,
        totals=totals,
        status=TransactionStatus(row.status),
        customer_id=row.customer_id,
        payments=tuple(
            PaymentRecord(method=PaymentMethod(p.method), amount=Money(p.amount_cents))
            for p in row.payments
        ),
        amount_paid=Money(row.amount_paid_cents),
        change_given=Money(row.change_given_cents),
        primary_method=row.primary_method,
        notes=row.notes,
        settlement_id=row.settlement_id,
    )


def _find_by_settlement(settlement_id: str | None) -> Sale | None:
    if not settlement_id:
        return None
    return db.session.query(Sale).filter_by(settlement_id=settlement_id).first()


def save_transaction(transaction: Transaction) -> str:
    """
    Persist a Transaction and return its id.

    Raises:
        InvalidTransition: the stored status cannot move to the new one
    """
    def _op():
        replay = _find_by_settlement(transaction.settlement_id)
        if replay is not None and replay.id != transaction.id:
            current_app.logger.info(
                "Settlement %s already saved as %s", transaction.settlement_id, replay.receipt_number
            )
            return replay.id

        row = lock_for_update(db.session.query(Sale).filter_by(id=transaction.id)).first()
        if row is None:
            row = Sale(id=transaction.id)
            _write_contents(row, transaction)
            db.session.add(row)
        else:
            current = TransactionStatus(row.status)
            target = transaction.status
            if current == target:
                return row.id
            if not can_transition(current, target):
                raise InvalidTransition(
                    f"Cannot move sale {row.receipt_number} from {current.value} to {target.value}",
                    details={"transaction_id": row.id},
                )
            if current == TransactionStatus.DRAFT and target == TransactionStatus.COMPLETED:
                _write_contents(row, transaction)
            else:
                row.status = target.value
            row.updated_at = utcnow()

        try:
            db.session.commit()
        except IntegrityError:
            db.session.rollback()
            # Concurrent save of the same settlement won the race
            replay = _find_by_settlement(transaction.settlement_id)
            if replay is None:
                raise
            return replay.id
        return row.id

    return run_with_retry(_op)


def get_transaction(transaction_id: str) -> Transaction:
    row = db.session.get(Sale, transaction_id)
    if row is None:
        raise TransactionNotFound(f"Transaction {transaction_id} not found")
    return _to_transaction(row)


def list_by_window(start: datetime, end: datetime) -> list[Transaction]:
    """Transactions with start <= created_at <= end, oldest first."""
    rows = (
        db.session.query(Sale)
        .filter(Sale.created_at >= to_utc_naive(start), Sale.created_at <= to_utc_naive(end))
        .order_by(Sale.created_at.asc(), Sale.receipt_number.asc())
        .all()
    )
    return [_to_transaction(row) for row in rows]


def list_drafts() -> list[Transaction]:
    """Held carts available for recall."""
    rows = (
        db.session.query(Sale)
        .filter_by(status=TransactionStatus.DRAFT.value)
        .order_by(Sale.created_at.asc())
        .all()
    )
    return [_to_transaction(row) for row in rows]


# =============================================================================
# SHIFTS
# =============================================================================

def _require_amount(amount: Money, label: str) -> Money:
    if not isinstance(amount, Money):
        raise ValidationError(f"{label} must be a Money amount")
    if amount.cents < 0:
        raise ValidationError(f"{label} cannot be negative")
    return amount


def open_shift(starting_cash: Money, user_id: str | None = None, *, now: datetime | None = None) -> Shift:
    """
    Open a shift for a user.

    Raises:
        ShiftStateError: the user already has an open shift
    """
    _require_amount(starting_cash, "starting_cash")

    def _op():
        existing = lock_for_update(
            db.session.query(Shift).filter_by(user_id=user_id, status=ShiftStatus.OPEN.value)
        ).first()
        if existing is not None:
            raise ShiftStateError(
                f"User already has an open shift (shift {existing.id})",
                details={"shift_id": existing.id},
            )

        shift = Shift(
            user_id=user_id,
            status=ShiftStatus.OPEN.value,
            starting_cash_cents=starting_cash.cents,
            opened_at=to_utc_naive(now) if now else utcnow(),
        )
        db.session.add(shift)
        db.session.commit()
        current_app.logger.info("Shift %s opened with %s", shift.id, starting_cash)
        return shift

    return run_with_retry(_op)


def close_shift(
    shift_id: int,
    ending_cash: Money,
    notes: str | None = None,
    *,
    now: datetime | None = None,
) -> Shift:
    """
    Close a shift with the counted drawer amount.

    IMMUTABLE: once closed, a shift cannot be reopened.
    """
    _require_amount(ending_cash, "ending_cash")

    def _op():
        shift = lock_for_update(db.session.query(Shift).filter_by(id=shift_id)).first()
        if shift is None:
            raise ShiftNotFound(f"Shift {shift_id} not found")
        if shift.status != ShiftStatus.OPEN.value:
            raise ShiftStateError(f"Shift {shift_id} is already closed")

        shift.status = ShiftStatus.CLOSED.value
        shift.ending_cash_cents = ending_cash.cents
        shift.closed_at = to_utc_naive(now) if now else utcnow()
        shift.notes = notes
        db.session.commit()
        current_app.logger.info("Shift %s closed with %s counted", shift.id, ending_cash)
        return shift

    return run_with_retry(_op)


def get_shift(shift_id: int) -> Shift:
    shift = db.session.get(Shift, shift_id)
    if shift is None:
        raise ShiftNotFound(f"Shift {shift_id} not found")
    return shift


def list_shifts(status: str | None = None) -> list[Shift]:
    query = db.session.query(Shift)
    if status is not None:
        try:
            query = query.filter_by(status=ShiftStatus(status).value)
        except ValueError:
            raise ValidationError(f"Invalid shift status: {status}")
    return query.order_by(Shift.opened_at.asc(), Shift.id.asc()).all()


def to_shift_session(shift: Shift) -> ShiftSession:
    return ShiftSession(
        id=shift.id,
        start_time=shift.opened_at,
        starting_cash=Money(shift.starting_cash_cents),
        end_time=shift.closed_at,
        ending_cash=Money(shift.ending_cash_cents) if shift.ending_cash_cents is not None else None,
        status=ShiftStatus(shift.status),
        user_id=shift.user_id,
    )


# =============================================================================
# CASH MOVEMENTS
# =============================================================================

def record_cash_movement(
    shift_id: int,
    kind: str,
    amount: Money,
    reason: str,
    *,
    now: datetime | None = None,
) -> CashMovementEntry:
    """Record a pay-in, pay-out or drop on an open shift. A reason is required."""
    try:
        kind = CashMovementKind(kind)
    except ValueError:
        raise ValidationError(
            f"Invalid cash movement type: {kind}. Must be one of {[k.value for k in CashMovementKind]}"
        )
    if not isinstance(amount, Money) or amount.cents <= 0:
        raise ValidationError("Cash movement amount must be positive")
    if not reason or not reason.strip():
        raise ValidationError("A reason is required for cash movements")

    def _op():
        shift = lock_for_update(db.session.query(Shift).filter_by(id=shift_id)).first()
        if shift is None:
            raise ShiftNotFound(f"Shift {shift_id} not found")
        if shift.status != ShiftStatus.OPEN.value:
            raise ShiftStateError(f"Shift {shift_id} is not open")

        entry = CashMovementEntry(
            shift_id=shift.id,
            movement_type=kind.value,
            amount_cents=amount.cents,
            reason=reason.strip(),
            occurred_at=to_utc_naive(now) if now else utcnow(),
        )
        db.session.add(entry)
        db.session.commit()
        return entry

    return run_with_retry(_op)


def list_cash_movements(shift_id: int) -> list[CashMovementEntry]:
    get_shift(shift_id)
    return (
        db.session.query(CashMovementEntry)
        .filter_by(shift_id=shift_id)
        .order_by(CashMovementEntry.occurred_at.asc(), CashMovementEntry.id.asc())
        .all()
    )


# =============================================================================
# REPORTING
# =============================================================================

def shift_report(
    shift_id: int,
    now: datetime | None = None,
) -> tuple[ShiftReport, DrawerReconciliation]:
    """Load a shift, its window and its movements; return the X/Z report and drawer reconciliation."""
    shift = to_shift_session(get_shift(shift_id))
    now = to_utc_naive(now) if now else utcnow()
    window_end = shift.end_time or now

    transactions = list_by_window(shift.start_time, window_end)
    movements = [
        CashMovement(
            kind=CashMovementKind(entry.movement_type),
            amount=Money(entry.amount_cents),
            reason=entry.reason,
        )
        for entry in list_cash_movements(shift_id)
    ]

    report = build_shift_report(
        shift,
        transactions,
        now=now,
        top_n=current_app.config.get("REPORT_TOP_ITEMS", 5),
    )
    return report, reconcile_drawer(shift, report, movements)
