# Overview: Line Total Calculator; cart subtotal, discounts and proportional tax in Money.

"""
Line Total Calculator

Turns a cart of line items into CartTotals (subtotal, discount, tax, grand
total) plus the per-line breakdown that the Sales Ledger stores.

RULES:
- A cart carries exactly one DiscountMode: none, per-line, or bill.
  Per-line and bill discounts therefore cannot coexist.
- Tax rate policy belongs to the caller. Each line brings the tax amount
  for its undiscounted gross; the calculator infers the rate from it and
  applies that rate to whatever remains after discounting.
- Discounts larger than their base are clamped, never rejected.
- Bill discounts (and the reduced tax) are spread across lines by
  largest-remainder allocation, so line sums equal the cart totals exactly.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field, replace
from fractions import Fraction
from typing import Iterable, Mapping, Union

from ..errors import InvalidDiscount, MoneyError, ValidationError
from ..money import Money, Rational, to_fraction


# =============================================================================
# DISCOUNTS
# =============================================================================

@dataclass(frozen=True)
class PercentDiscount:
    value: Fraction

    def __post_init__(self):
        try:
            pct = to_fraction(self.value, "discount percent")
        except MoneyError as exc:
            raise InvalidDiscount(str(exc))
        if pct < 0 or pct > 100:
            raise InvalidDiscount("Discount percent must be between 0 and 100", details={"value": str(pct)})
        object.__setattr__(self, "value", pct)

    def amount_for(self, base: Money) -> Money:
        return base.percent_of(self.value)


@dataclass(frozen=True)
class FixedDiscount:
    amount: Money

    def __post_init__(self):
        if not isinstance(self.amount, Money):
            raise InvalidDiscount("Fixed discount must be a Money amount")
        if self.amount.cents < 0:
            raise InvalidDiscount("Discount amount cannot be negative", details={"amount_cents": self.amount.cents})

    def amount_for(self, base: Money) -> Money:
        return self.amount.min(base)


DiscountSpec = Union[PercentDiscount, FixedDiscount]


@dataclass(frozen=True)
class NoDiscount:
    pass


@dataclass(frozen=True)
class PerLineDiscount:
    discounts: Mapping[str, DiscountSpec] = field(default_factory=dict)


@dataclass(frozen=True)
class BillDiscount:
    spec: DiscountSpec


DiscountMode = Union[NoDiscount, PerLineDiscount, BillDiscount]


# =============================================================================
# LINES AND TOTALS
# =============================================================================

@dataclass(frozen=True)
class LineItem:
    """
    One cart line.

    original_tax is the tax on the undiscounted line (unit_price x quantity)
    as quoted by the Catalog Service.
    """
    product_id: str
    quantity: Fraction
    unit_price: Money
    original_tax: Money = Money(0)
    name: str | None = None

    def __post_init__(self):
        object.__setattr__(self, "product_id", str(self.product_id))
        try:
            quantity = to_fraction(self.quantity, "quantity")
        except MoneyError as exc:
            raise ValidationError(str(exc))
        if quantity < 0:
            raise ValidationError("quantity cannot be negative")
        object.__setattr__(self, "quantity", quantity)
        if not isinstance(self.unit_price, Money) or self.unit_price.cents < 0:
            raise ValidationError("unit_price must be a non-negative Money amount")
        if not isinstance(self.original_tax, Money) or self.original_tax.cents < 0:
            raise ValidationError("original_tax must be a non-negative Money amount")

    @classmethod
    def from_tax_rate(
        cls,
        product_id: str,
        quantity: Rational,
        unit_price: Money,
        tax_rate: Rational,
        name: str | None = None,
    ) -> LineItem:
        """Build a line from a catalog tax rate (e.g. "0.10" for 10%)."""
        rate = to_fraction(tax_rate, "tax_rate")
        if rate < 0:
            raise ValidationError("tax_rate cannot be negative")
        gross = unit_price.multiply(quantity)
        return cls(product_id, quantity, unit_price, gross.scale(rate), name)

    @property
    def gross(self) -> Money:
        return self.unit_price.multiply(self.quantity)

    @property
    def display_name(self) -> str:
        return self.name.strip() if self.name and self.name.strip() else "Item"


@dataclass(frozen=True)
class LineTotals:
    item: LineItem
    gross: Money
    discount: Money
    tax: Money

    @property
    def total(self) -> Money:
        return self.gross.subtract(self.discount).add(self.tax)


@dataclass(frozen=True)
class CartTotals:
    subtotal: Money
    discount_total: Money
    tax_total: Money
    grand_total: Money
    lines: tuple[LineTotals, ...] = ()

    @property
    def line_items(self) -> list[LineItem]:
        return [line.item for line in self.lines]

    def to_dict(self) -> dict:
        return {
            "subtotal_cents": self.subtotal.cents,
            "discount_total_cents": self.discount_total.cents,
            "tax_total_cents": self.tax_total.cents,
            "grand_total_cents": self.grand_total.cents,
        }


def implied_tax_rate(original_tax: Money, gross: Money) -> Fraction:
    """Tax rate implied by a quoted tax amount; 0 when gross is 0."""
    if gross.cents == 0:
        return Fraction(0)
    return Fraction(original_tax.cents, gross.cents)


def allocate(total: Money, weights: list[Money]) -> list[Money]:
    """
    Split total across weights proportionally (largest remainder).

    The shares always sum to total exactly; with all-zero weights every share is 0.
    """
    weight_sum = sum(w.cents for w in weights)
    if weight_sum <= 0 or total.cents == 0:
        return [Money(0) for _ in weights]

    exact = [Fraction(total.cents * w.cents, weight_sum) for w in weights]
    floors = [math.floor(share) for share in exact]
    leftover = total.cents - sum(floors)

    # Ties go to the earlier line
    order = sorted(range(len(weights)), key=lambda i: (-(exact[i] - floors[i]), i))
    for i in order[:leftover]:
        floors[i] += 1

    return [Money(cents) for cents in floors]


# =============================================================================
# CALCULATOR
# =============================================================================

def calculate_totals(lines: Iterable[LineItem], mode: DiscountMode | None = None) -> CartTotals:
    """Compute CartTotals for the given lines and discount mode. Pure function."""
    mode = mode if mode is not None else NoDiscount()
    items = list(lines)

    grosses = [item.gross for item in items]
    rates = [implied_tax_rate(item.original_tax, gross) for item, gross in zip(items, grosses)]
    raw_taxes = [gross.scale(rate) for gross, rate in zip(grosses, rates)]

    subtotal = Money.sum(grosses)
    raw_tax_sum = Money.sum(raw_taxes)

    if isinstance(mode, PerLineDiscount):
        line_totals = []
        for item, gross, rate in zip(items, grosses, rates):
            spec = mode.discounts.get(item.product_id)
            discount = spec.amount_for(gross) if spec is not None else Money(0)
            taxable = gross.subtract_floor(discount)
            line_totals.append(LineTotals(item, gross, discount, taxable.scale(rate)))
        discount_total = Money.sum(line.discount for line in line_totals)
        tax_total = Money.sum(line.tax for line in line_totals)

    elif isinstance(mode, BillDiscount):
        discount_total = mode.spec.amount_for(subtotal)
        if subtotal.cents == 0:
            tax_total = Money(0)
        else:
            ratio = max(Fraction(0), 1 - Fraction(discount_total.cents, subtotal.cents))
            tax_total = raw_tax_sum.scale(ratio)

        line_discounts = allocate(discount_total, grosses)
        line_taxes = allocate(tax_total, raw_taxes)
        line_totals = [
            LineTotals(item, gross, discount, tax)
            for item, gross, discount, tax in zip(items, grosses, line_discounts, line_taxes)
        ]

    elif isinstance(mode, NoDiscount):
        discount_total = Money(0)
        tax_total = raw_tax_sum
        line_totals = [
            LineTotals(item, gross, Money(0), tax)
            for item, gross, tax in zip(items, grosses, raw_taxes)
        ]

    else:
        raise InvalidDiscount(f"Unknown discount mode: {type(mode).__name__}")

    grand_total = Money(max(0, subtotal.cents - discount_total.cents + tax_total.cents))

    return CartTotals(
        subtotal=subtotal,
        discount_total=discount_total,
        tax_total=tax_total,
        grand_total=grand_total,
        lines=tuple(line_totals),
    )


# =============================================================================
# CART
# =============================================================================

class Cart:
    """
    Caller-owned cart being built for one transaction.

    Lines are keyed by product; adding the same product again merges quantity.
    """

    def __init__(self, lines: Iterable[LineItem] = ()):
        self._lines: dict[str, LineItem] = {}
        self.discount_mode: DiscountMode = NoDiscount()
        for line in lines:
            self.add_line(line)

    @property
    def lines(self) -> list[LineItem]:
        return list(self._lines.values())

    def __len__(self) -> int:
        return len(self._lines)

    def add_line(self, item: LineItem) -> LineItem:
        existing = self._lines.get(item.product_id)
        if existing is None:
            self._lines[item.product_id] = item
            return item

        if existing.unit_price != item.unit_price:
            raise ValidationError(
                f"Product {item.product_id} is already in the cart at a different price"
            )
        merged = replace(
            existing,
            quantity=existing.quantity + item.quantity,
            original_tax=existing.original_tax.add(item.original_tax),
        )
        self._lines[item.product_id] = merged
        return merged

    def update_quantity(self, product_id: str, quantity: Rational) -> LineItem | None:
        """Change a line's quantity; zero removes the line. Tax follows the line's rate."""
        existing = self._require_line(product_id)
        new_quantity = to_fraction(quantity, "quantity")
        if new_quantity <= 0:
            self.remove_line(product_id)
            return None

        rate = implied_tax_rate(existing.original_tax, existing.gross)
        new_gross = existing.unit_price.multiply(new_quantity)
        updated = replace(existing, quantity=new_quantity, original_tax=new_gross.scale(rate))
        self._lines[existing.product_id] = updated
        return updated

    def remove_line(self, product_id: str) -> None:
        self._require_line(product_id)
        del self._lines[str(product_id)]
        if isinstance(self.discount_mode, PerLineDiscount):
            remaining = {
                key: spec for key, spec in self.discount_mode.discounts.items()
                if key != str(product_id)
            }
            self.discount_mode = PerLineDiscount(remaining) if remaining else NoDiscount()

    def clear(self) -> None:
        self._lines.clear()
        self.discount_mode = NoDiscount()

    def set_line_discount(self, product_id: str, spec: DiscountSpec | None) -> None:
        """Set (or remove, with None) one line's discount. Clears any bill discount."""
        self._require_line(product_id)
        key = str(product_id)
        per_line = isinstance(self.discount_mode, PerLineDiscount)
        current = dict(self.discount_mode.discounts) if per_line else {}

        if spec is None:
            if per_line:
                current.pop(key, None)
                self.discount_mode = PerLineDiscount(current) if current else NoDiscount()
            return

        current[key] = spec
        self.discount_mode = PerLineDiscount(current)

    def set_bill_discount(self, spec: DiscountSpec | None) -> None:
        """Set (or remove, with None) the bill discount. Clears all line discounts."""
        if spec is None:
            if isinstance(self.discount_mode, BillDiscount):
                self.discount_mode = NoDiscount()
            return
        self.discount_mode = BillDiscount(spec)

    def clear_discounts(self) -> None:
        self.discount_mode = NoDiscount()

    def totals(self) -> CartTotals:
        return calculate_totals(self.lines, self.discount_mode)

    def _require_line(self, product_id: str) -> LineItem:
        line = self._lines.get(str(product_id))
        if line is None:
            raise ValidationError(f"Product {product_id} is not in the cart")
        return line
