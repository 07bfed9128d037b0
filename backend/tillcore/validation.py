from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from .errors import InvalidDiscount, InvalidPayment, MoneyError, ValidationError
from .money import Money, to_fraction
from .services.settlement_service import PaymentMethod, parse_payment_method
from .services.totals_service import DiscountSpec, FixedDiscount, LineItem, PercentDiscount


# Maximum price: $9,999,999.99 (999,999,999 cents)
# This prevents database overflow issues and nonsensical prices
MAX_PRICE_CENTS = 999_999_999


@dataclass(frozen=True)
class InputPolicy:
    """
    Boundary policy for one input record shape:
    - allowed_fields: keys a caller may send
    - required: keys that must be present and non-null
    """
    allowed_fields: frozenset[str]
    required: frozenset[str] = frozenset()


LINE_ITEM_POLICY = InputPolicy(
    allowed_fields=frozenset({"product_id", "quantity", "unit_price", "original_tax_amount", "tax_rate", "name"}),
    required=frozenset({"product_id", "quantity", "unit_price"}),
)

PAYMENT_POLICY = InputPolicy(
    allowed_fields=frozenset({"method", "amount"}),
    required=frozenset({"method", "amount"}),
)

DISCOUNT_POLICY = InputPolicy(
    allowed_fields=frozenset({"type", "value"}),
    required=frozenset({"type", "value"}),
)


def _check_fields(payload: Any, policy: InputPolicy, label: str) -> dict:
    if not isinstance(payload, dict):
        raise ValidationError(f"{label} must be an object")

    for k in payload.keys():
        if k not in policy.allowed_fields:
            raise ValidationError(f"Field not allowed: {k}")

    missing = sorted(f for f in policy.required if payload.get(f) is None)
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}")
    return payload


def coerce_money(value: Any, key: str) -> Money:
    """
    Money crossing the boundary: int -> cents, str -> decimal major units.

    Floats are rejected; binary floating point never becomes Money.
    """
    # Already Money
    if isinstance(value, Money):
        return value
    # Integer cents (but not bool which is a subclass of int)
    if isinstance(value, int) and not isinstance(value, bool):
        return Money(value)
    if isinstance(value, str):
        stripped = value.strip()
        # Reject scientific notation (e.g., "1e15", "1E10")
        if "e" in stripped.lower():
            raise ValidationError(f"{key} must be a plain decimal (scientific notation not allowed)")
        try:
            return Money.from_decimal_string(stripped)
        except MoneyError:
            raise ValidationError(f"{key} must be a decimal amount")
    if isinstance(value, float):
        raise ValidationError(f"{key} must be integer cents or a decimal string, not a float")
    raise ValidationError(f"{key} must be integer cents or a decimal string")


def _coerce_non_negative(value: Any, key: str) -> Money:
    amount = coerce_money(value, key)
    if amount.cents < 0:
        raise ValidationError(f"{key} must be >= 0")
    if amount.cents > MAX_PRICE_CENTS:
        raise ValidationError(f"{key} cannot exceed {MAX_PRICE_CENTS} cents")
    return amount


def parse_line_item(payload: dict) -> LineItem:
    """
    LineItemInput {product_id, quantity, unit_price, original_tax_amount | tax_rate, name}.

    Exactly one of original_tax_amount / tax_rate may be given; neither means untaxed.
    """
    data = _check_fields(payload, LINE_ITEM_POLICY, "line item")

    product_id = str(data["product_id"]).strip()
    if not product_id:
        raise ValidationError("product_id cannot be blank")

    try:
        quantity = to_fraction(data["quantity"], "quantity")
    except MoneyError as exc:
        raise ValidationError(str(exc))
    if quantity <= 0:
        raise ValidationError("quantity must be > 0")

    unit_price = _coerce_non_negative(data["unit_price"], "unit_price")
    name = data.get("name")
    name = str(name).strip() if name is not None else None

    has_tax = data.get("original_tax_amount") is not None
    has_rate = data.get("tax_rate") is not None
    if has_tax and has_rate:
        raise ValidationError("Give original_tax_amount or tax_rate, not both")

    if has_rate:
        try:
            return LineItem.from_tax_rate(product_id, quantity, unit_price, data["tax_rate"], name)
        except MoneyError as exc:
            raise ValidationError(str(exc))

    original_tax = _coerce_non_negative(data["original_tax_amount"], "original_tax_amount") if has_tax else Money(0)
    return LineItem(product_id, quantity, unit_price, original_tax, name)


def parse_payment(payload: dict) -> tuple[PaymentMethod, Money]:
    """PaymentInput {method, amount}. Sign and remaining-due checks belong to add_payment."""
    data = _check_fields(payload, PAYMENT_POLICY, "payment")
    method = parse_payment_method(data["method"])
    try:
        amount = coerce_money(data["amount"], "amount")
    except ValidationError as exc:
        raise InvalidPayment(str(exc))
    return method, amount


def parse_discount(payload: dict | None) -> DiscountSpec | None:
    """{"type": "percent", "value": "10"} or {"type": "fixed", "value": 150}; None clears."""
    if payload is None:
        return None
    data = _check_fields(payload, DISCOUNT_POLICY, "discount")
    kind = str(data["type"]).strip().lower()

    if kind == "percent":
        return PercentDiscount(data["value"])
    if kind == "fixed":
        try:
            amount = coerce_money(data["value"], "value")
        except ValidationError as exc:
            raise InvalidDiscount(str(exc))
        return FixedDiscount(amount)
    raise InvalidDiscount(f"Invalid discount type: {kind}. Must be 'percent' or 'fixed'")
