"""
Tests for local precondition checks.
"""

from decimal import Decimal

import pytest
from solders.pubkey import Pubkey

from smartpay.core.execution.validation import (
    format_raw_amount,
    parse_amount,
    to_raw_amount,
    validate_amount,
    validate_recipient,
)
from smartpay.core.recovery.errors import InsufficientBalance, InvalidAddress, InvalidAmount


class TestValidateRecipient:
    def test_accepts_base58_address(self):
        key = Pubkey.new_unique()

        assert validate_recipient(f"  {key}  ") == key

    @pytest.mark.parametrize("text", ["", "   ", None])
    def test_empty_is_required_error(self, text):
        with pytest.raises(InvalidAddress, match="required"):
            validate_recipient(text)

    @pytest.mark.parametrize("text", ["not-an-address", "0OIl", "abc"])
    def test_rejects_invalid(self, text):
        with pytest.raises(InvalidAddress):
            validate_recipient(text)


class TestValidateAmount:
    @pytest.mark.parametrize("text", ["0", "-5", "abc", "", "NaN", "Infinity", None])
    def test_non_positive_or_garbage_is_invalid(self, text):
        with pytest.raises(InvalidAmount):
            validate_amount(text, Decimal("100"))

    @pytest.mark.parametrize("balance", [Decimal("100"), None])
    def test_zero_and_negative_fail_for_any_balance(self, balance):
        for text in ("0", "-5"):
            with pytest.raises(InvalidAmount):
                validate_amount(text, balance)

    def test_more_than_cached_balance(self):
        with pytest.raises(InsufficientBalance):
            validate_amount("10", Decimal("5"))

    def test_unknown_balance_is_not_rejected_locally(self):
        assert validate_amount("10", None) == Decimal("10")

    def test_equal_to_balance_is_allowed(self):
        assert validate_amount("5", Decimal("5")) == Decimal("5")

    def test_parse_accepts_numbers(self):
        assert parse_amount(2.5) == Decimal("2.5")
        assert parse_amount(Decimal("0.000001")) == Decimal("0.000001")


class TestRawAmounts:
    def test_floors_to_base_units(self):
        assert to_raw_amount(Decimal("2.5"), 6) == 2_500_000
        assert to_raw_amount(Decimal("1.0000019"), 6) == 1_000_001

    def test_below_smallest_unit_is_invalid(self):
        with pytest.raises(InvalidAmount, match="too small"):
            to_raw_amount(Decimal("0.0000001"), 6)

    def test_format(self):
        assert format_raw_amount(2_000_000, 6) == "2.000000"
