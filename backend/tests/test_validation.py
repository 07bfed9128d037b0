# Overview: Pytest coverage for boundary coercion of line item, payment and discount input.

import pytest

from tillcore.errors import InvalidDiscount, InvalidPayment, ValidationError
from tillcore.money import Money
from tillcore.services.settlement_service import PaymentMethod
from tillcore.services.totals_service import FixedDiscount, PercentDiscount
from tillcore.validation import coerce_money, parse_discount, parse_line_item, parse_payment


class TestCoerceMoney:
    def test_int_is_cents_and_string_is_decimal(self):
        assert coerce_money(350, "unit_price") == Money(350)
        assert coerce_money("3.50", "unit_price") == Money(350)
        assert coerce_money(" 7.625 ", "unit_price") == Money(763)

    @pytest.mark.parametrize("value", [3.5, True, "1e3", "abc", None, [1]])
    def test_rejects(self, value):
        with pytest.raises(ValidationError):
            coerce_money(value, "unit_price")


class TestLineItemInput:
    def test_original_tax_amount(self):
        item = parse_line_item({"product_id": 7, "quantity": 2, "unit_price": "3.50",
                                "original_tax_amount": 70, "name": " Coffee "})
        assert item.product_id == "7"
        assert item.unit_price == Money(350)
        assert item.original_tax == Money(70)
        assert item.name == "Coffee"

    def test_tax_rate(self):
        item = parse_line_item({"product_id": "p", "quantity": "2", "unit_price": 350, "tax_rate": "0.10"})
        assert item.original_tax == Money(70)

    def test_untaxed_by_default(self):
        item = parse_line_item({"product_id": "p", "quantity": 1, "unit_price": 100})
        assert item.original_tax == Money(0)

    @pytest.mark.parametrize("payload", [
        {"product_id": "p", "quantity": 1},
        {"product_id": "p", "quantity": 0, "unit_price": 100},
        {"product_id": "p", "quantity": 1.5, "unit_price": 100},
        {"product_id": " ", "quantity": 1, "unit_price": 100},
        {"product_id": "p", "quantity": 1, "unit_price": -100},
        {"product_id": "p", "quantity": 1, "unit_price": 100, "color": "red"},
        {"product_id": "p", "quantity": 1, "unit_price": 100, "tax_rate": "0.1", "original_tax_amount": 10},
        {"product_id": "p", "quantity": 1, "unit_price": 1_000_000_000},
        "not a dict",
    ])
    def test_rejects(self, payload):
        with pytest.raises(ValidationError):
            parse_line_item(payload)


class TestPaymentInput:
    def test_parses(self):
        assert parse_payment({"method": "Card", "amount": "2.63"}) == (PaymentMethod.CARD, Money(263))

    def test_bad_method(self):
        with pytest.raises(InvalidPayment):
            parse_payment({"method": "cheque", "amount": 100})

    def test_float_amount(self):
        with pytest.raises(InvalidPayment):
            parse_payment({"method": "cash", "amount": 2.63})

    def test_missing_field(self):
        with pytest.raises(ValidationError):
            parse_payment({"method": "cash"})


class TestDiscountInput:
    def test_percent_and_fixed(self):
        assert parse_discount({"type": "percent", "value": "10"}) == PercentDiscount(10)
        assert parse_discount({"type": "fixed", "value": "1.50"}) == FixedDiscount(Money(150))
        assert parse_discount(None) is None

    @pytest.mark.parametrize("payload", [
        {"type": "percent", "value": 120},
        {"type": "percent", "value": 10.0},
        {"type": "fixed", "value": -5},
        {"type": "fixed", "value": 1.5},
        {"type": "bogo", "value": 1},
    ])
    def test_rejects(self, payload):
        with pytest.raises(InvalidDiscount):
            parse_discount(payload)
