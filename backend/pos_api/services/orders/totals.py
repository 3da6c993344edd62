"""
Money arithmetic for orders and purchases.

Amounts are computed with Decimal and rounded half-up to cents; they are
stored as floats rounded to two decimals.
"""

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable

CENT = Decimal("0.01")
HUNDRED = Decimal("100")


def to_decimal(value) -> Decimal:
    if isinstance(value, Decimal):
        return value
    # str() avoids binary float artifacts (0.1 -> 0.1000000000000000055...)
    return Decimal(str(value or 0))


def money(value) -> Decimal:
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def line_total(price, quantity: int) -> Decimal:
    return money(to_decimal(price) * quantity)


def percent_of(amount, rate) -> Decimal:
    return money(to_decimal(amount) * to_decimal(rate) / HUNDRED)


@dataclass(frozen=True)
class OrderTotals:
    subtotal: Decimal
    tax: Decimal
    service_charge: Decimal
    discount: Decimal
    tip: Decimal
    final_total: Decimal


def compute_totals(
    line_totals: Iterable,
    tax_rate,
    service_charge_rate,
    discount=0,
    tip=0,
) -> OrderTotals:
    """
    subtotal = sum of line totals
    tax = subtotal * taxRate%, serviceCharge = subtotal * serviceCharge%
    finalTotal = subtotal + tax + serviceCharge - discount + tip
    """
    subtotal = money(sum((to_decimal(total) for total in line_totals), Decimal("0")))
    tax = percent_of(subtotal, tax_rate)
    service_charge = percent_of(subtotal, service_charge_rate)
    discount = money(discount)
    tip = money(tip)
    return OrderTotals(
        subtotal=subtotal,
        tax=tax,
        service_charge=service_charge,
        discount=discount,
        tip=tip,
        final_total=money(subtotal + tax + service_charge - discount + tip),
    )


@dataclass(frozen=True)
class PurchaseLineTotals:
    gross: Decimal
    discount: Decimal
    tax: Decimal
    total: Decimal


def purchase_line_totals(quantity, unit_cost, discount_percent=0, tax_percent=0) -> PurchaseLineTotals:
    """total = qty * unitCost * (1 - discount%) * (1 + tax%)"""
    gross = money(to_decimal(quantity) * to_decimal(unit_cost))
    discount = percent_of(gross, discount_percent)
    tax = percent_of(gross - discount, tax_percent)
    return PurchaseLineTotals(gross=gross, discount=discount, tax=tax, total=money(gross - discount + tax))
