# PATH: tests/unit/test_validators.py
"""
Tests for validation utilities.
"""

import unittest

from core.validators import (
    MAX_NAME_LENGTH,
    MAX_SYMBOL_LENGTH,
    check_token_metadata,
    is_address,
    is_zero_address,
    normalize_address,
)


class TestAddresses(unittest.TestCase):

    def test_valid_address(self):
        self.assertTrue(is_address("0x1234567890abcdef1234567890abcdef12345678"))
        self.assertTrue(is_address("0xABCDEF1234567890ABCDEF1234567890ABCDEF12"))

    def test_invalid_address(self):
        self.assertFalse(is_address("1234567890abcdef1234567890abcdef12345678"))
        self.assertFalse(is_address("0x1234"))
        self.assertFalse(is_address("0x" + "g" * 40))
        self.assertFalse(is_address(None))
        self.assertFalse(is_address(123))

    def test_normalize(self):
        self.assertEqual(normalize_address(" 0xABCDEF1234567890ABCDEF1234567890ABCDEF12 "),
                         "0xabcdef1234567890abcdef1234567890abcdef12")
        self.assertEqual(normalize_address("ab" * 20), "0x" + "ab" * 20)

    def test_zero_address(self):
        self.assertTrue(is_zero_address(None))
        self.assertTrue(is_zero_address("0x" + "0" * 40))
        self.assertFalse(is_zero_address("0x" + "0" * 39 + "1"))


class TestTokenMetadata(unittest.TestCase):
    """Sanity checks applied to discovered tokens."""

    def test_valid(self):
        self.assertEqual(check_token_metadata("LINK", "Chainlink", 18), (True, None))

    def test_rejections(self):
        cases = [
            (("", "Name", 18), "empty_symbol"),
            (("   ", "Name", 18), "empty_symbol"),
            (("X" * (MAX_SYMBOL_LENGTH + 1), "Name", 18), "symbol_too_long"),
            (("SYM", "", 18), "empty_name"),
            (("SYM", "N" * (MAX_NAME_LENGTH + 1), 18), "name_too_long"),
            (("SYM", "Name", None), "bad_decimals"),
            (("SYM", "Name", 77), "bad_decimals"),
        ]
        for args, reason in cases:
            with self.subTest(args=args):
                self.assertEqual(check_token_metadata(*args), (False, reason))


if __name__ == "__main__":
    unittest.main()
