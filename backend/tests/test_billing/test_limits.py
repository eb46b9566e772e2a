"""Tests for limit value parsing and the containment rule."""

import pytest

from entitlements.billing.limits import (
    CUSTOM,
    UNLIMITED,
    LimitKind,
    LimitValue,
    contains,
    parse_limit,
)
from entitlements.exceptions import InvalidLimitValue, ValidationError


class TestParseLimit:
    """parse_limit: raw plan values to LimitValue."""

    def test_minus_one_and_unlimited_string_are_the_same(self):
        assert UNLIMITED.is_unlimited
        assert not UNLIMITED.is_fixed
        assert parse_limit(-1) == parse_limit("unlimited") == UNLIMITED

    def test_custom_string(self):
        assert parse_limit("custom") == CUSTOM
        assert parse_limit("custom").is_custom

    @pytest.mark.parametrize("raw", [0, 1, 5, 10_000])
    def test_non_negative_int_is_fixed(self, raw):
        limit = parse_limit(raw)
        assert limit.is_fixed
        assert not limit.is_unlimited
        assert limit.amount == raw

    def test_integral_float_counts_as_int(self):
        assert parse_limit(5.0) == LimitValue.fixed(5)

    @pytest.mark.parametrize("raw", [-2, -100, 2.5, True, False, None, "", "5", "Unlimited", [], {}])
    def test_rejects_everything_else(self, raw):
        with pytest.raises(InvalidLimitValue):
            parse_limit(raw)

    def test_invalid_limit_is_a_validation_error(self):
        with pytest.raises(ValidationError) as exc_info:
            parse_limit("lots")
        assert exc_info.value.kind == "validation_error"
        assert exc_info.value.details == {"value": "'lots'"}

    def test_limit_value_passes_through(self):
        limit = LimitValue.fixed(3)
        assert parse_limit(limit) is limit


class TestLimitValue:
    """LimitValue construction and serialisation."""

    def test_fixed_requires_non_negative_int(self):
        with pytest.raises(InvalidLimitValue):
            LimitValue.fixed(-1)
        with pytest.raises(InvalidLimitValue):
            LimitValue(LimitKind.FIXED, None)

    def test_sentinels_carry_no_amount(self):
        with pytest.raises(InvalidLimitValue):
            LimitValue(LimitKind.UNLIMITED, 3)

    def test_raw_form(self):
        assert LimitValue.fixed(12).to_raw() == 12
        assert UNLIMITED.to_raw() == "unlimited"
        assert CUSTOM.to_raw() == "custom"

    @pytest.mark.parametrize("stored", ["0", "12", "unlimited", "custom"])
    def test_storage_form_is_reversible(self, stored):
        assert LimitValue.from_storage(stored).to_storage() == stored


class TestContains:
    """contains: may one more unit be consumed?"""

    def test_fixed_is_strict(self):
        five = parse_limit(5)
        assert contains(five, 4)
        assert not contains(five, 5)
        assert not contains(five, 6)

    def test_zero_allows_nothing(self):
        assert not contains(LimitValue.fixed(0), 0)

    @pytest.mark.parametrize("used", [0, 1, 10**9])
    def test_unlimited_and_custom_always_allow(self, used):
        assert contains(UNLIMITED, used)
        assert contains(CUSTOM, used)
