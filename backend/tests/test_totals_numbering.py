"""
Tests for money arithmetic and document numbering.
"""

from datetime import datetime, timezone
from decimal import Decimal

import pytest

from pos_api.services.orders.numbering import (
    branch_day,
    next_number,
    order_number_prefix,
    parse_sequence,
    purchase_number_prefix,
)
from pos_api.services.orders.totals import compute_totals, line_total, money, purchase_line_totals


class TestMoney:
    def test_rounds_half_up(self):
        assert money(0.125) == Decimal("0.13")
        assert money("2.675") == Decimal("2.68")
        assert money(None) == Decimal("0.00")

    def test_float_artifacts_avoided(self):
        assert line_total(0.1, 3) == Decimal("0.30")


class TestComputeTotals:
    def test_order_totals(self):
        totals = compute_totals([Decimal("10.00"), Decimal("8.00")], tax_rate=10, service_charge_rate=5)

        assert totals.subtotal == Decimal("18.00")
        assert totals.tax == Decimal("1.80")
        assert totals.service_charge == Decimal("0.90")
        assert totals.final_total == Decimal("20.70")

    def test_discount_and_tip(self):
        totals = compute_totals([18], tax_rate=10, service_charge_rate=5, discount=2.7, tip=1)
        assert totals.final_total == Decimal("19.00")

    def test_empty_order(self):
        totals = compute_totals([], tax_rate=10, service_charge_rate=5)
        assert totals.final_total == Decimal("0.00")


class TestPurchaseLineTotals:
    def test_discount_before_tax(self):
        line = purchase_line_totals(4, 2.5, discount_percent=10, tax_percent=19)

        assert line.gross == Decimal("10.00")
        assert line.discount == Decimal("1.00")
        assert line.tax == Decimal("1.71")
        assert line.total == Decimal("10.71")

    def test_plain_line(self):
        assert purchase_line_totals(3, 1.99).total == Decimal("5.97")


class TestNumbering:
    def test_branch_day_uses_timezone(self):
        late = datetime(2024, 1, 5, 2, 30, tzinfo=timezone.utc)

        assert branch_day("UTC", late) == "20240105"
        assert branch_day("America/Santiago", late) == "20240104"

    def test_unknown_timezone_falls_back_to_utc(self):
        assert branch_day("Mars/Olympus", datetime(2024, 1, 5, 2, 30, tzinfo=timezone.utc)) == "20240105"

    def test_prefixes(self):
        now = datetime(2024, 1, 5, 12, 0, tzinfo=timezone.utc)

        assert order_number_prefix("MAIN", now, None) == "MAIN-20240105-"
        assert purchase_number_prefix("MAIN", "PO", now, "UTC") == "MAIN-PO-20240105-"

    def test_next_number_starts_at_one(self):
        assert next_number("MAIN-20240105-", []) == "MAIN-20240105-0001"

    def test_next_number_continues_from_highest(self):
        existing = ["MAIN-20240105-0002", "MAIN-20240105-0009", "MAIN-20240104-0042", "MAIN-20240105-X"]
        assert next_number("MAIN-20240105-", existing) == "MAIN-20240105-0010"

    @pytest.mark.parametrize(
        "number, expected",
        [("MAIN-20240105-0007", 7), ("MAIN-20240105-", None), ("OTHER-20240105-0001", None), ("", None)],
    )
    def test_parse_sequence(self, number, expected):
        assert parse_sequence(number, "MAIN-20240105-") == expected
