# PATH: tests/unit/test_format_money.py
"""
Unit tests for format_money module.
"""

import unittest
from decimal import Decimal

from core.format_money import format_bps, format_money, format_pct, format_token_amount, format_usd


class TestFormatMoney(unittest.TestCase):
    """Tests for format_money function."""

    def test_string_input(self):
        self.assertEqual(format_money("123.456789"), "123.456789")
        self.assertEqual(format_money("1000"), "1000.000000")

    def test_decimal_and_int(self):
        self.assertEqual(format_money(Decimal("0")), "0.000000")
        self.assertEqual(format_money(100, 2), "100.00")

    def test_none_is_zero(self):
        self.assertEqual(format_money(None), "0.000000")

    def test_round_half_up(self):
        self.assertEqual(format_money("0.125", 2), "0.13")
        self.assertEqual(format_money("-0.125", 2), "-0.13")


class TestFormatters(unittest.TestCase):

    def test_usd(self):
        self.assertEqual(format_usd("57.456"), "$57.46")
        self.assertEqual(format_usd(Decimal("-1.5")), "-$1.50")

    def test_token_amount(self):
        self.assertEqual(format_token_amount(1_020_000_000_000_000_000, 18, "WETH"), "1.020000 WETH")
        self.assertEqual(format_token_amount(2_500_000, 6, places=2), "2.50")

    def test_pct_and_bps(self):
        self.assertEqual(format_pct("0.5"), "0.50%")
        self.assertEqual(format_bps(50), "0.50%")
        self.assertEqual(format_bps(20), "0.20%")


if __name__ == "__main__":
    unittest.main()
