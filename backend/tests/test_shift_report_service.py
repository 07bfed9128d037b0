# Overview: Pytest coverage for X/Z shift reports and drawer reconciliation.

"""
Shift Aggregator Tests

Test Coverage:
- Worked example (one sale, one refund) and report conservation
- Payment buckets: cash net of change, card family, store credit
- Legacy rows without payment detail (primary_method fallback)
- Malformed rows count as zero and are logged
- Top items ordering, limit and tie breaks
- Window filtering and X/Z report type
- Drawer reconciliation
"""

import logging
from datetime import timedelta
from fractions import Fraction

import pytest

from tillcore.errors import NoShift
from tillcore.money import Money
from tillcore.services.settlement_service import (
    PaymentMethod,
    add_payment,
    finalize,
    refund,
    start_settlement,
)
from tillcore.services.shift_report_service import (
    CashMovement,
    CashMovementKind,
    ReportType,
    ShiftSession,
    ShiftStatus,
    build_shift_report,
    reconcile_drawer,
)
from tillcore.services.totals_service import LineItem, calculate_totals


def _sale(lines, payments, at):
    session = start_settlement(calculate_totals(lines))
    for method, cents in payments:
        add_payment(session, method, Money(cents))
    return finalize(session, now=at)


@pytest.fixture
def open_shift(shift_start):
    return ShiftSession(id=1, start_time=shift_start, starting_cash=Money(10000))


@pytest.fixture
def later(shift_start):
    return shift_start + timedelta(hours=8)


class TestWorkedExample:
    def test_sale_and_refund(self, open_shift, shift_start, later, totals_763):
        """
        SCENARIO: completed $7.63 paid in cash, refunded $2.00 card sale
        EXPECTED: gross $7.63, returns $2.00, net $5.63
        """
        session = start_settlement(totals_763)
        add_payment(session, PaymentMethod.CASH, Money(763))
        sale = finalize(session, now=shift_start + timedelta(hours=1))
        returned = refund(_sale([LineItem("mug", 1, Money(200), name="Mug")], [("card", 200)],
                                shift_start + timedelta(hours=2)))

        report = build_shift_report(open_shift, [sale, returned], now=later)

        assert report.report_type == ReportType.X
        assert report.gross_sales == Money(763)
        assert report.returns_total == Money(200)
        assert report.net_sales == Money(563)
        assert report.tax_collected == Money(63)
        assert report.transaction_count == 1
        assert report.payment_totals["cash"] == Money(763)
        assert report.payment_totals["card"] == Money(-200)
        assert report.payment_totals["store_credit"] == Money(0)

    def test_conservation(self, open_shift, shift_start, later):
        at = shift_start + timedelta(minutes=5)
        txns = [
            _sale([LineItem(f"p{i}", i, Money(125 * i), Money(10 * i))], [("cash", 5000)], at)
            for i in range(1, 5)
        ]
        txns[1] = refund(txns[1])
        txns[3] = refund(txns[3])

        report = build_shift_report(open_shift, txns, now=later)
        assert report.net_sales.cents == report.gross_sales.cents - report.returns_total.cents

    def test_no_shift(self):
        with pytest.raises(NoShift):
            build_shift_report(None, [])


class TestPaymentBuckets:
    def test_cash_counts_net_of_change(self, open_shift, shift_start, later):
        sale = _sale([LineItem("p", 1, Money(763))], [("cash", 1000)], shift_start)
        report = build_shift_report(open_shift, [sale], now=later)
        assert report.payment_totals["cash"] == Money(763)

    def test_split_detail(self, open_shift, shift_start, later):
        sale = _sale([LineItem("p", 1, Money(763))], [("card", 263), ("cash", 600)], shift_start)
        report = build_shift_report(open_shift, [sale], now=later)
        assert report.payment_totals["cash"] == Money(500)
        assert report.payment_totals["card"] == Money(263)

    def test_method_taxonomy(self, open_shift, shift_start, later):
        sale = _sale(
            [LineItem("p", 1, Money(1000))],
            [("bank_transfer", 100), ("other", 200), ("store_credit", 300), ("card", 400)],
            shift_start,
        )
        report = build_shift_report(open_shift, [sale], now=later)
        assert report.payment_totals["card"] == Money(700)
        assert report.payment_totals["store_credit"] == Money(300)
        assert report.payment_totals["cash"] == Money(0)

    def test_split_fallback_without_detail(self, open_shift, later):
        rows = [{"status": "completed", "grand_total_cents": 1001, "primary_method": "split"}]
        report = build_shift_report(open_shift, rows, now=later)
        assert report.payment_totals["cash"] == Money(501)
        assert report.payment_totals["card"] == Money(500)

    @pytest.mark.parametrize("method,bucket", [
        ("cash", "cash"), ("card", "card"), ("bank_transfer", "card"), ("store_credit", "store_credit"),
    ])
    def test_primary_method_fallback(self, open_shift, later, method, bucket):
        rows = [{"status": "completed", "grand_total_cents": 450, "primary_method": method}]
        report = build_shift_report(open_shift, rows, now=later)
        assert report.payment_totals[bucket] == Money(450)

    def test_refund_fallback_subtracts(self, open_shift, later):
        rows = [{"status": "refunded", "grand_total_cents": 300, "primary_method": "cash"}]
        report = build_shift_report(open_shift, rows, now=later)
        assert report.payment_totals["cash"] == Money(-300)


class TestMalformedRows:
    def test_bad_numbers_count_as_zero(self, open_shift, later, caplog):
        rows = [
            {"id": "bad", "status": "completed", "grand_total_cents": "abc", "primary_method": "cash"},
            {"id": "good", "status": "completed", "grand_total_cents": "250", "tax_total_cents": 25,
             "primary_method": "cash"},
            42,
        ]
        with caplog.at_level(logging.WARNING, logger="tillcore.services.shift_report_service"):
            report = build_shift_report(open_shift, rows, now=later)

        assert report.gross_sales == Money(250)
        assert report.tax_collected == Money(25)
        assert report.transaction_count == 2
        assert any("bad" in record.getMessage() for record in caplog.records)

    def test_non_list_payments_and_lines_ignored(self, open_shift, later, caplog):
        """
        SCENARIO: one row carries payments=5 and lines=3, the next is a valid cash sale
        EXPECTED: both rows counted, the bad detail logged and treated as empty
        """
        rows = [
            {"id": "odd", "status": "completed", "grand_total_cents": 763, "payments": 5, "lines": 3},
            {"id": "ok", "status": "completed", "grand_total_cents": 100, "primary_method": "cash",
             "payments": [{"method": "cash", "amount_cents": 100}],
             "lines": [{"name": "Tea", "quantity": "1"}]},
        ]
        with caplog.at_level(logging.WARNING, logger="tillcore.services.shift_report_service"):
            report = build_shift_report(open_shift, rows, now=later)

        assert report.gross_sales == Money(863)
        assert report.transaction_count == 2
        assert report.payment_totals["cash"] == Money(100)
        assert [item.name for item in report.top_items] == ["Tea"]
        messages = [record.getMessage() for record in caplog.records]
        assert any("odd" in m and "payments" in m for m in messages)
        assert any("odd" in m and "lines" in m for m in messages)

    def test_drafts_and_voids_ignored(self, open_shift, later):
        rows = [
            {"status": "draft", "grand_total_cents": 100},
            {"status": "voided", "grand_total_cents": 100},
            {"status": None, "grand_total_cents": 100},
        ]
        report = build_shift_report(open_shift, rows, now=later)
        assert report.gross_sales == Money(0)
        assert report.transaction_count == 0


class TestTopItems:
    def test_ranking_limit_and_ties(self, open_shift, shift_start, later):
        lines = [
            LineItem("a", 1, Money(100), name="Apple"),
            LineItem("b", 3, Money(100), name="Bagel"),
            LineItem("c", 1, Money(100), name="Cake"),
            LineItem("d", 2, Money(100), name="Donut"),
            LineItem("e", 1, Money(100), name="Eclair"),
            LineItem("f", 1, Money(100), name="Fudge"),
        ]
        sale = _sale(lines, [("cash", 900)], shift_start)
        report = build_shift_report(open_shift, [sale], now=later)

        names = [item.name for item in report.top_items]
        assert names == ["Bagel", "Donut", "Apple", "Cake", "Eclair"]
        assert report.top_items[0].quantity == 3

    def test_quantities_accumulate_by_name(self, open_shift, later):
        rows = [
            {"status": "completed", "grand_total_cents": 100, "primary_method": "cash",
             "lines": [{"name": "Tea", "quantity": "1.5"}, {"name": "", "quantity": 2}]},
            {"status": "completed", "grand_total_cents": 100, "primary_method": "cash",
             "lines": [{"name": "Tea", "quantity": "3/2"}, {"name": "Zero", "quantity": 0}]},
            {"status": "refunded", "grand_total_cents": 100, "primary_method": "cash",
             "lines": [{"name": "Refunded", "quantity": 9}]},
        ]
        report = build_shift_report(open_shift, rows, now=later, top_n=5)

        assert [(i.name, i.quantity) for i in report.top_items] == [("Tea", Fraction(3)), ("Item", Fraction(2))]


class TestWindow:
    def test_rows_outside_window_ignored(self, shift_start, later):
        closed = ShiftSession(
            id=2, start_time=shift_start, end_time=later, status=ShiftStatus.CLOSED,
            ending_cash=Money(0),
        )
        before = _sale([LineItem("p", 1, Money(100))], [("cash", 100)], shift_start - timedelta(minutes=1))
        inside = _sale([LineItem("p", 1, Money(200))], [("cash", 200)], shift_start + timedelta(hours=1))
        after = _sale([LineItem("p", 1, Money(400))], [("cash", 400)], later + timedelta(minutes=1))
        undated = {"status": "completed", "grand_total_cents": 800, "primary_method": "card"}

        report = build_shift_report(closed, [before, inside, after, undated], now=later + timedelta(days=1))

        assert report.report_type == ReportType.Z
        assert report.gross_sales == Money(1000)
        assert report.window_end == later

    def test_open_shift_window_ends_now(self, open_shift, shift_start):
        now = shift_start + timedelta(hours=1)
        future = {"status": "completed", "grand_total_cents": 100,
                  "created_at": (now + timedelta(minutes=1)).isoformat() + "Z"}
        report = build_shift_report(open_shift, [future], now=now)
        assert report.window_end == now
        assert report.gross_sales == Money(0)

    def test_to_dict_in_cents(self, open_shift, later):
        rows = [{"status": "completed", "grand_total_cents": 700, "primary_method": "cash",
                 "lines": [{"name": "Tea", "quantity": 1}]}]
        data = build_shift_report(open_shift, rows, now=later).to_dict()
        assert data["report_type"] == "X"
        assert data["net_sales_cents"] == 700
        assert data["payment_totals_cents"] == {"cash": 700, "card": 0, "store_credit": 0}
        assert data["top_items"] == [{"name": "Tea", "quantity": "1"}]


class TestDrawerReconciliation:
    def test_expected_and_difference(self, open_shift, later):
        rows = [{"status": "completed", "grand_total_cents": 763, "primary_method": "cash"}]
        report = build_shift_report(open_shift, rows, now=later)
        movements = [
            CashMovement(CashMovementKind.PAY_IN, Money(500), "float"),
            CashMovement(CashMovementKind.PAY_OUT, Money(200), "milk"),
            CashMovement(CashMovementKind.DROP, Money(3000), "safe"),
        ]

        drawer = reconcile_drawer(open_shift, report, movements, counted_cash=Money(8000))

        assert drawer.cash_sales == Money(763)
        assert drawer.expected_cash == Money(10000 + 763 + 500 - 200 - 3000)
        assert drawer.difference == Money(-63)

    def test_counted_defaults_to_ending_cash(self, shift_start, later):
        closed = ShiftSession(id=3, start_time=shift_start, end_time=later, starting_cash=Money(1000),
                              ending_cash=Money(1100), status=ShiftStatus.CLOSED)
        report = build_shift_report(closed, [], now=later)
        drawer = reconcile_drawer(closed, report)
        assert drawer.counted_cash == Money(1100)
        assert drawer.difference == Money(100)

    def test_open_shift_without_count(self, open_shift, later):
        report = build_shift_report(open_shift, [], now=later)
        drawer = reconcile_drawer(open_shift, report)
        assert drawer.counted_cash is None
        assert drawer.difference is None
        assert drawer.to_dict()["difference_cents"] is None
