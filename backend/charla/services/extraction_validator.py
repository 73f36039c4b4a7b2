# Overview: Validates oracle extraction replies and normalizes them into fixed-point sale data.

"""
Extraction Validator

WHY: The oracle is non-deterministic. Nothing it returns is written
until it passes these rules, evaluated in order (first failure wins):

1. reply declares sale data (hasSaleData + sale object)
2. at least one line item
3. every item: quantity > 0, unit_price > 0, non-empty product name
4. total > 0 and total == sum(round_half_up(unit_price * quantity))
5. declared payments: each amount > 0 with a method name, and
   sum(amounts) == total

Money is normalized to integer cents (two fractional digits) before
comparing, so equality is exact. Mismatches are rejected, never
re-summed or otherwise coerced.
Amounts above MAX_AMOUNT_CENTS and quantities above MAX_QUANTITY are
rejected like any other bad value; they do not fit the sale columns.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Union

NO_SALE_DATA = "No sale data"
NO_ITEMS = "No items in sale"
INVALID_ITEM = "Invalid item data"
INVALID_TOTAL = "Invalid total amount"
INVALID_PAYMENT = "Invalid payment data"
PAYMENT_MISMATCH = "Payment amounts do not match total"

_PLAIN_DECIMAL = re.compile(r"^[+-]?(\d+(\.\d*)?|\.\d+)$")
_CENT = Decimal("1")
_QUANTITY_STEP = Decimal("0.001")

# *_cents columns are BIGINT; sale_lines.quantity is NUMERIC(12, 3)
MAX_AMOUNT_CENTS = 10 ** 12
MAX_QUANTITY = Decimal("999999999.999")


@dataclass(frozen=True)
class NormalizedItem:
    product_name: str
    quantity: Decimal
    unit_price_cents: int
    line_total_cents: int
    presentation: str | None = None


@dataclass(frozen=True)
class NormalizedPayment:
    method_name: str
    amount_cents: int


@dataclass(frozen=True)
class NormalizedSale:
    items: tuple[NormalizedItem, ...]
    total_cents: int
    customer_name: str | None = None
    payments: tuple[NormalizedPayment, ...] = ()
    note: str | None = None


@dataclass(frozen=True)
class Accepted:
    sale: NormalizedSale
    accepted = True


@dataclass(frozen=True)
class Rejected:
    reason: str
    details: dict = field(default_factory=dict)
    accepted = False


ValidationResult = Union[Accepted, Rejected]


def to_decimal(value: Any) -> Decimal | None:
    """
    JSON number or plain decimal string -> Decimal.

    Booleans, locale-formatted strings ("1.500,50"), NaN and infinities
    are not numbers here and yield None.
    """
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, int):
        return Decimal(value)
    if isinstance(value, float):
        result = Decimal(repr(value))
    elif isinstance(value, str):
        text = value.strip()
        if not _PLAIN_DECIMAL.match(text):
            return None
        try:
            result = Decimal(text)
        except InvalidOperation:
            return None
    elif isinstance(value, Decimal):
        result = value
    else:
        return None
    if not result.is_finite():
        return None
    return result


def to_cents(amount: Decimal) -> int | None:
    """
    Round half-up to two fractional digits and return integer cents.

    Returns None when the amount is not finite or exceeds MAX_AMOUNT_CENTS.
    """
    try:
        cents = int((amount * 100).quantize(_CENT, rounding=ROUND_HALF_UP))
    except (InvalidOperation, ValueError, OverflowError):
        return None
    if abs(cents) > MAX_AMOUNT_CENTS:
        return None
    return cents


def line_total_cents(unit_price_cents: int, quantity: Decimal) -> int:
    return int((Decimal(unit_price_cents) * quantity).quantize(_CENT, rounding=ROUND_HALF_UP))


def _clean_text(value: Any) -> str | None:
    if not isinstance(value, str):
        return None
    text = " ".join(value.split())
    return text or None


def _normalize_item(raw: Any) -> NormalizedItem | None:
    if not isinstance(raw, dict):
        return None

    name = _clean_text(raw.get("product_name"))
    quantity = to_decimal(raw.get("quantity"))
    unit_price = to_decimal(raw.get("unit_price"))

    if not name or quantity is None or unit_price is None:
        return None
    if quantity <= 0 or unit_price <= 0 or quantity > MAX_QUANTITY:
        return None
    # sale_lines.quantity holds three fractional digits
    if quantity != quantity.quantize(_QUANTITY_STEP):
        return None

    unit_price_cents = to_cents(unit_price)
    if unit_price_cents is None or unit_price_cents <= 0:
        return None
    line_cents = line_total_cents(unit_price_cents, quantity)
    if line_cents > MAX_AMOUNT_CENTS:
        return None

    return NormalizedItem(
        product_name=name,
        quantity=quantity.quantize(_QUANTITY_STEP),
        unit_price_cents=unit_price_cents,
        line_total_cents=line_cents,
        presentation=_clean_text(raw.get("presentation")),
    )


def validate_extraction(raw: Any) -> ValidationResult:
    """Apply the extraction rules to a raw oracle reply."""
    if not isinstance(raw, dict) or raw.get("hasSaleData") is not True:
        return Rejected(NO_SALE_DATA)

    sale = raw.get("sale")
    if not isinstance(sale, dict):
        return Rejected(NO_SALE_DATA)

    raw_items = sale.get("items")
    if not isinstance(raw_items, list) or not raw_items:
        return Rejected(NO_ITEMS)

    items = []
    invalid_indexes = []
    for index, raw_item in enumerate(raw_items):
        item = _normalize_item(raw_item)
        if item is None:
            invalid_indexes.append(index)
        else:
            items.append(item)
    if invalid_indexes:
        return Rejected(INVALID_ITEM, {"invalid_items": invalid_indexes})

    total = to_decimal(sale.get("total"))
    if total is None or total <= 0:
        return Rejected(INVALID_TOTAL, {"declared_total": sale.get("total")})

    total_cents = to_cents(total)
    if total_cents is None:
        return Rejected(INVALID_TOTAL, {"declared_total": sale.get("total")})
    computed_cents = sum(item.line_total_cents for item in items)
    if total_cents != computed_cents:
        return Rejected(
            INVALID_TOTAL,
            {"declared_total_cents": total_cents, "computed_total_cents": computed_cents},
        )

    payments = []
    raw_payments = sale.get("payment_methods") or []
    if not isinstance(raw_payments, list):
        return Rejected(INVALID_PAYMENT, {"payment_methods": raw_payments})

    invalid_payments = []
    for index, raw_payment in enumerate(raw_payments):
        if not isinstance(raw_payment, dict):
            invalid_payments.append(index)
            continue
        method_name = _clean_text(raw_payment.get("method_name"))
        amount = to_decimal(raw_payment.get("amount"))
        amount_cents = to_cents(amount) if amount is not None else None
        if not method_name or amount_cents is None or amount_cents <= 0:
            invalid_payments.append(index)
            continue
        payments.append(NormalizedPayment(method_name=method_name, amount_cents=amount_cents))
    if invalid_payments:
        return Rejected(INVALID_PAYMENT, {"invalid_payments": invalid_payments})

    if payments:
        paid_cents = sum(p.amount_cents for p in payments)
        if paid_cents != total_cents:
            return Rejected(
                PAYMENT_MISMATCH,
                {"total_cents": total_cents, "payments_cents": paid_cents},
            )

    return Accepted(
        NormalizedSale(
            items=tuple(items),
            total_cents=total_cents,
            customer_name=_clean_text(sale.get("customer")),
            payments=tuple(payments),
            note=_clean_text(sale.get("note")),
        )
    )
