# Overview: Shift Aggregator; X/Z reports and drawer reconciliation over a shift window.

"""
Shift Aggregator

Builds the X (open shift) or Z (closed shift) report from a shift's
transactions: gross sales, returns, net sales, tax collected, payment method
buckets and top items. Also reconciles the cash drawer at close.

WHY BEST EFFORT: a shift report must always render for close-out, even over
partially inconsistent history. Per-transaction defects (missing or
non-numeric fields) are logged and counted as zero; nothing here raises for
bad rows. Only a missing shift is an error.

PAYMENT BUCKETS:
    cash          <- cash (net of change given)
    card          <- card, bank_transfer, other
    store_credit  <- store_credit
Transactions without payment detail fall back on primary_method; "split"
becomes half cash (rounded half-up) and the remainder card. That fallback is
an approximation.
"""

from __future__ import annotations

import enum
import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from fractions import Fraction
from typing import Iterable

from ..errors import NoShift
from ..money import Money, round_half_up, to_fraction
from ..time_utils import parse_iso_datetime, to_utc_naive, utcnow
from .settlement_service import PaymentMethod, PrimaryMethod, Transaction, TransactionStatus

logger = logging.getLogger(__name__)


DEFAULT_TOP_ITEMS = 5

BUCKET_CASH = "cash"
BUCKET_CARD = "card"
BUCKET_STORE_CREDIT = "store_credit"

METHOD_BUCKETS = {
    PaymentMethod.CASH.value: BUCKET_CASH,
    PaymentMethod.CARD.value: BUCKET_CARD,
    PaymentMethod.BANK_TRANSFER.value: BUCKET_CARD,
    PaymentMethod.OTHER.value: BUCKET_CARD,
    PaymentMethod.STORE_CREDIT.value: BUCKET_STORE_CREDIT,
}


class ReportType(str, enum.Enum):
    X = "X"
    Z = "Z"


class ShiftStatus(str, enum.Enum):
    OPEN = "open"
    CLOSED = "closed"


# =============================================================================
# TYPES
# =============================================================================

@dataclass(frozen=True)
class ShiftSession:
    id: int | str
    start_time: datetime
    starting_cash: Money = Money(0)
    end_time: datetime | None = None
    ending_cash: Money | None = None
    status: ShiftStatus = ShiftStatus.OPEN
    user_id: str | None = None

    @property
    def is_closed(self) -> bool:
        return self.status == ShiftStatus.CLOSED


@dataclass(frozen=True)
class TopItem:
    name: str
    quantity: Fraction


@dataclass(frozen=True)
class ShiftReport:
    report_type: ReportType
    shift_id: int | str
    window_start: datetime
    window_end: datetime
    generated_at: datetime
    transaction_count: int
    gross_sales: Money
    returns_total: Money
    net_sales: Money
    tax_collected: Money
    payment_totals: dict[str, Money] = field(default_factory=dict)
    top_items: tuple[TopItem, ...] = ()

    def to_dict(self) -> dict:
        return {
            "report_type": self.report_type.value,
            "shift_id": self.shift_id,
            "window_start": self.window_start.isoformat(),
            "window_end": self.window_end.isoformat(),
            "generated_at": self.generated_at.isoformat(),
            "transaction_count": self.transaction_count,
            "gross_sales_cents": self.gross_sales.cents,
            "returns_total_cents": self.returns_total.cents,
            "net_sales_cents": self.net_sales.cents,
            "tax_collected_cents": self.tax_collected.cents,
            "payment_totals_cents": {k: v.cents for k, v in self.payment_totals.items()},
            "top_items": [{"name": i.name, "quantity": str(i.quantity)} for i in self.top_items],
        }


class CashMovementKind(str, enum.Enum):
    PAY_IN = "pay_in"
    PAY_OUT = "pay_out"
    DROP = "drop"


@dataclass(frozen=True)
class CashMovement:
    kind: CashMovementKind
    amount: Money
    reason: str = ""


@dataclass(frozen=True)
class DrawerReconciliation:
    starting_cash: Money
    cash_sales: Money
    pay_ins: Money
    pay_outs: Money
    drops: Money
    expected_cash: Money
    counted_cash: Money | None
    difference: Money | None

    def to_dict(self) -> dict:
        return {
            "starting_cash_cents": self.starting_cash.cents,
            "cash_sales_cents": self.cash_sales.cents,
            "pay_ins_cents": self.pay_ins.cents,
            "pay_outs_cents": self.pay_outs.cents,
            "drops_cents": self.drops.cents,
            "expected_cash_cents": self.expected_cash.cents,
            "counted_cash_cents": self.counted_cash.cents if self.counted_cash is not None else None,
            "difference_cents": self.difference.cents if self.difference is not None else None,
        }


# =============================================================================
# ROW NORMALIZATION
# =============================================================================

@dataclass
class _Row:
    """One transaction reduced to what the report needs."""
    ref: str
    status: str | None
    created_at: datetime | None
    grand_total: int
    tax_total: int
    primary_method: str | None
    payments: list[tuple[str, int]]
    lines: list[tuple[str, Fraction]]


def _cents(value, ref: str, label: str) -> int:
    if value is None:
        logger.warning("Transaction %s: missing %s, counted as 0", ref, label)
        return 0
    if isinstance(value, Money):
        return value.cents
    if isinstance(value, bool):
        logger.warning("Transaction %s: non-numeric %s %r, counted as 0", ref, label, value)
        return 0
    if isinstance(value, int):
        return value
    try:
        return round_half_up(to_fraction(str(value).strip(), label))
    except ValueError:
        logger.warning("Transaction %s: non-numeric %s %r, counted as 0", ref, label, value)
        return 0


def _quantity(value, ref: str) -> Fraction:
    try:
        return Fraction(str(value).strip())
    except (TypeError, ValueError, ZeroDivisionError):
        logger.warning("Transaction %s: non-numeric quantity %r, counted as 0", ref, value)
        return Fraction(0)


def _timestamp(value) -> datetime | None:
    if isinstance(value, datetime):
        return to_utc_naive(value)
    if isinstance(value, str):
        try:
            return parse_iso_datetime(value)
        except ValueError:
            return None
    return None


def _from_transaction(txn: Transaction) -> _Row:
    return _Row(
        ref=txn.receipt_number or txn.id,
        status=txn.status.value,
        created_at=to_utc_naive(txn.created_at),
        grand_total=txn.totals.grand_total.cents,
        tax_total=txn.totals.tax_total.cents,
        primary_method=txn.primary_method,
        payments=[(p.method.value, p.amount.cents) for p in txn.payments],
        lines=[(line.item.display_name, line.item.quantity) for line in txn.lines],
    )


def _text(value) -> str:
    if isinstance(value, enum.Enum):
        value = value.value
    return str(value or "").strip().lower()


def _entries(raw: Mapping, key: str, ref: str) -> list | tuple:
    value = raw.get(key)
    if value is None:
        return []
    if not isinstance(value, (list, tuple)):
        logger.warning("Transaction %s: unreadable %s ignored (%r)", ref, key, value)
        return []
    return value


def _from_mapping(raw: Mapping) -> _Row:
    ref = str(raw.get("receipt_number") or raw.get("id") or "?")

    payments = []
    for payment in _entries(raw, "payments", ref):
        if not isinstance(payment, Mapping):
            logger.warning("Transaction %s: unreadable payment entry skipped", ref)
            continue
        method = _text(payment.get("method"))
        payments.append((method, _cents(payment.get("amount_cents"), ref, "payment amount")))

    lines = []
    for line in _entries(raw, "lines", ref):
        if not isinstance(line, Mapping):
            logger.warning("Transaction %s: unreadable line entry skipped", ref)
            continue
        name = line.get("name")
        name = name.strip() if isinstance(name, str) and name.strip() else "Item"
        lines.append((name, _quantity(line.get("quantity"), ref)))

    return _Row(
        ref=ref,
        status=_text(raw.get("status")) or None,
        created_at=_timestamp(raw.get("created_at")),
        grand_total=_cents(raw.get("grand_total_cents"), ref, "grand_total_cents"),
        tax_total=_cents(raw.get("tax_total_cents"), ref, "tax_total_cents"),
        primary_method=_text(raw.get("primary_method")) or None,
        payments=payments,
        lines=lines,
    )


def _normalize(txn) -> _Row | None:
    if isinstance(txn, Transaction):
        return _from_transaction(txn)
    if isinstance(txn, Mapping):
        return _from_mapping(txn)
    logger.warning("Skipping unreadable transaction record of type %s", type(txn).__name__)
    return None


# =============================================================================
# PAYMENT DISTRIBUTION
# =============================================================================

def _distribute(row: _Row) -> dict[str, int]:
    """Split one transaction's grand total into report buckets."""
    buckets = {BUCKET_CASH: 0, BUCKET_CARD: 0, BUCKET_STORE_CREDIT: 0}

    if row.payments:
        cash_tendered = 0
        non_cash = 0
        for method, amount in row.payments:
            bucket = METHOD_BUCKETS.get(method)
            if bucket is None:
                logger.warning("Transaction %s: unknown payment method %r ignored", row.ref, method)
                continue
            if bucket == BUCKET_CASH:
                cash_tendered += amount
            else:
                buckets[bucket] += amount
                non_cash += amount
        # Change comes out of the drawer
        buckets[BUCKET_CASH] = max(0, min(cash_tendered, row.grand_total - non_cash))
        return buckets

    method = row.primary_method or ""
    if method == PrimaryMethod.SPLIT.value:
        half = round_half_up(Fraction(row.grand_total, 2))
        buckets[BUCKET_CASH] = half
        buckets[BUCKET_CARD] = row.grand_total - half
    elif method in METHOD_BUCKETS:
        buckets[METHOD_BUCKETS[method]] = row.grand_total
    else:
        logger.warning("Transaction %s: no payment detail and unknown method %r", row.ref, method)
    return buckets


# =============================================================================
# REPORT
# =============================================================================

def build_shift_report(
    shift: ShiftSession | None,
    transactions: Iterable,
    *,
    now: datetime | None = None,
    top_n: int = DEFAULT_TOP_ITEMS,
) -> ShiftReport:
    """
    Aggregate a shift's transactions into an X or Z report.

    transactions may be Transaction objects or ledger mappings (the shape of
    Transaction.to_dict()). Rows outside [start_time, end_time or now] are
    ignored; rows with no usable timestamp are kept.

    Raises:
        NoShift: shift is None
    """
    if shift is None:
        raise NoShift("A shift is required to build a report")

    generated_at = to_utc_naive(now) if now is not None else utcnow()
    window_start = to_utc_naive(shift.start_time)
    window_end = to_utc_naive(shift.end_time) if shift.end_time is not None else generated_at

    gross = 0
    returns = 0
    tax = 0
    count = 0
    payment_totals = {BUCKET_CASH: 0, BUCKET_CARD: 0, BUCKET_STORE_CREDIT: 0}
    item_quantities: dict[str, Fraction] = {}

    for txn in transactions:
        row = _normalize(txn)
        if row is None:
            continue
        if row.created_at is not None and not (window_start <= row.created_at <= window_end):
            continue

        if row.status == TransactionStatus.COMPLETED.value:
            direction = 1
            gross += row.grand_total
            tax += row.tax_total
            count += 1
            for name, quantity in row.lines:
                if quantity <= 0:
                    continue
                # dict keeps first-seen order for tie breaks
                item_quantities[name] = item_quantities.get(name, Fraction(0)) + quantity
        elif row.status == TransactionStatus.REFUNDED.value:
            direction = -1
            returns += row.grand_total
            tax -= row.tax_total
        else:
            continue

        for bucket, amount in _distribute(row).items():
            payment_totals[bucket] += direction * amount

    ranked = sorted(item_quantities.items(), key=lambda kv: kv[1], reverse=True)
    top_items = tuple(TopItem(name, qty) for name, qty in ranked[:top_n])

    report = ShiftReport(
        report_type=ReportType.Z if shift.is_closed else ReportType.X,
        shift_id=shift.id,
        window_start=window_start,
        window_end=window_end,
        generated_at=generated_at,
        transaction_count=count,
        gross_sales=Money(gross),
        returns_total=Money(returns),
        net_sales=Money(gross - returns),
        tax_collected=Money(tax),
        payment_totals={k: Money(v) for k, v in payment_totals.items()},
        top_items=top_items,
    )
    logger.info(
        "%s report for shift %s: %d transactions, net %s",
        report.report_type.value, shift.id, count, report.net_sales,
    )
    return report


def reconcile_drawer(
    shift: ShiftSession | None,
    report: ShiftReport,
    movements: Iterable[CashMovement] = (),
    counted_cash: Money | None = None,
) -> DrawerReconciliation:
    """
    expected = starting + cash sales + pay ins - pay outs - drops
    difference = counted - expected (counted defaults to the shift's ending cash)
    """
    if shift is None:
        raise NoShift("A shift is required to reconcile the drawer")

    totals = {kind: 0 for kind in CashMovementKind}
    for movement in movements:
        totals[CashMovementKind(movement.kind)] += movement.amount.cents

    cash_sales = report.payment_totals.get(BUCKET_CASH, Money(0))
    expected = (
        shift.starting_cash.cents
        + cash_sales.cents
        + totals[CashMovementKind.PAY_IN]
        - totals[CashMovementKind.PAY_OUT]
        - totals[CashMovementKind.DROP]
    )

    counted = counted_cash if counted_cash is not None else shift.ending_cash
    difference = Money(counted.cents - expected) if counted is not None else None

    return DrawerReconciliation(
        starting_cash=shift.starting_cash,
        cash_sales=cash_sales,
        pay_ins=Money(totals[CashMovementKind.PAY_IN]),
        pay_outs=Money(totals[CashMovementKind.PAY_OUT]),
        drops=Money(totals[CashMovementKind.DROP]),
        expected_cash=Money(expected),
        counted_cash=counted,
        difference=difference,
    )
