"""
Tests for core/odds_math.py

Run with: pytest tests/test_odds_math.py -v
"""

import math
from decimal import Decimal

import pytest

from paperbet.core.errors import InvalidOdds, InvalidParlay
from paperbet.core.odds_math import (
    american_to_decimal,
    combine_parlay_odds,
    decimal_to_american,
    expected_value,
    format_odds,
    implied_probability,
    potential_payout,
    round_half_up,
    to_money,
)


class TestAmericanToDecimal:
    """Test odds conversion."""

    def test_positive_odds(self):
        assert american_to_decimal(100) == pytest.approx(2.0)
        assert american_to_decimal(150) == pytest.approx(2.5)
        assert american_to_decimal(200) == pytest.approx(3.0)

    def test_negative_odds(self):
        assert american_to_decimal(-110) == pytest.approx(1.909, abs=0.001)
        assert american_to_decimal(-150) == pytest.approx(1.667, abs=0.001)
        assert american_to_decimal(-200) == pytest.approx(1.5)

    def test_database_decimal_accepted(self):
        assert american_to_decimal(Decimal("-110.00")) == pytest.approx(american_to_decimal(-110))

    @pytest.mark.parametrize("odds", [0, 0.0, float("nan"), float("inf"), "abc", None, True])
    def test_invalid_odds_rejected(self, odds):
        with pytest.raises(InvalidOdds):
            american_to_decimal(odds)

    def test_invalid_odds_is_value_error(self):
        with pytest.raises(ValueError):
            american_to_decimal(0)

    @pytest.mark.parametrize("odds", [-10000, -500, -110, -101, 100, 101, 150, 2500])
    def test_decimal_always_above_one(self, odds):
        assert american_to_decimal(odds) > 1.0


class TestImpliedProbability:

    @pytest.mark.parametrize("odds, expected", [
        (-110, 0.5238),
        (150, 0.4000),
        (100, 0.5000),
        (-100, 0.5000),
        (-300, 0.7500),
    ])
    def test_known_values(self, odds, expected):
        assert implied_probability(odds) == pytest.approx(expected, abs=1e-4)

    @pytest.mark.parametrize("odds", [-100000, -110, 100, 99999])
    def test_strictly_between_zero_and_one(self, odds):
        p = implied_probability(odds)
        assert 0.0 < p < 1.0

    def test_zero_rejected(self):
        with pytest.raises(InvalidOdds):
            implied_probability(0)


class TestDecimalToAmerican:

    @pytest.mark.parametrize("decimal_odds, expected", [
        (2.5, 150),
        (2.0, 100),
        (3.0, 200),
        (1.5, -200),
        (1.25, -400),
    ])
    def test_known_values(self, decimal_odds, expected):
        assert decimal_to_american(decimal_odds) == expected

    @pytest.mark.parametrize("odds", [-500, -200, -110, 100, 150, 377, 1000])
    def test_round_trip(self, odds):
        assert decimal_to_american(american_to_decimal(odds)) == odds

    def test_minus_100_comes_back_as_even_money(self):
        assert decimal_to_american(american_to_decimal(-100)) == 100

    @pytest.mark.parametrize("decimal_odds", [1.0, 0.5, -2.0, float("nan")])
    def test_no_payout_rejected(self, decimal_odds):
        with pytest.raises(InvalidOdds):
            decimal_to_american(decimal_odds)

    def test_rounds_half_up(self):
        # 2.125 → +112.5 → +113 (banker's rounding would give +112)
        assert decimal_to_american(2.125) == 113


class TestRounding:

    @pytest.mark.parametrize("value, places, expected", [
        (2.5, 0, 3.0),
        (-2.5, 0, -2.0),
        (0.51719, 4, 0.5172),
        (117.6, 1, 117.6),
    ])
    def test_round_half_up(self, value, places, expected):
        assert round_half_up(value, places) == pytest.approx(expected)

    @pytest.mark.parametrize("value, expected", [
        (16.665, Decimal("16.67")),
        ("2.005", Decimal("2.01")),
        (10, Decimal("10.00")),
        (Decimal("0.125"), Decimal("0.13")),
    ])
    def test_to_money(self, value, expected):
        assert to_money(value) == expected


def test_expected_value():
    # p=0.5 at 2.5: 0.5 * 1.5 - 0.5
    assert expected_value(0.5, 2.5) == pytest.approx(0.25)
    # Fair price → zero EV
    assert expected_value(0.4, 2.5) == pytest.approx(0.0)
    assert expected_value(0.3, 2.5) < 0


@pytest.mark.parametrize("odds, expected", [
    (150, "+150"),
    (-110, "-110"),
    (Decimal("150.00"), "+150"),
    (Decimal("-200.00"), "-200"),
    (376.5, "+376.5"),
])
def test_format_odds(odds, expected):
    assert format_odds(odds) == expected


class TestCombineParlayOdds:

    def test_two_leg_example(self):
        combined = combine_parlay_odds([-110, 150])
        assert combined.decimal_odds == pytest.approx(4.7727, abs=1e-4)
        assert combined.american_odds == 377
        assert combined.implied_probability == pytest.approx(20.95)

    def test_single_leg_reproduces_price(self):
        assert combine_parlay_odds([150]).american_odds == 150
        assert combine_parlay_odds([-110]).american_odds == -110

    def test_order_independent(self):
        legs = [150, -110, -200, 300]
        forward = combine_parlay_odds(legs)
        backward = combine_parlay_odds(list(reversed(legs)))
        assert forward.decimal_odds == pytest.approx(backward.decimal_odds)
        assert forward.american_odds == backward.american_odds

    def test_accepts_mappings_and_objects(self):
        class Leg:
            def __init__(self, odds):
                self.odds = odds

        combined = combine_parlay_odds([{"odds": -110}, Leg(150)])
        assert combined.american_odds == 377

    def test_to_dict_keys(self):
        data = combine_parlay_odds([-110, -110]).to_dict()
        assert set(data) == {"decimal_odds", "combined_odds", "implied_probability"}
        assert data["combined_odds"] == 264

    def test_empty_rejected(self):
        with pytest.raises(InvalidParlay):
            combine_parlay_odds([])

    def test_invalid_leg_rejected(self):
        with pytest.raises(InvalidOdds):
            combine_parlay_odds([-110, 0])


class TestPotentialPayout:

    @pytest.mark.parametrize("stake, odds, expected", [
        (10, 200, Decimal("30.00")),
        (10, -150, Decimal("16.67")),
        (100, -110, Decimal("190.91")),
        (10, 377, Decimal("47.70")),
        (25, 100, Decimal("50.00")),
        ("0.01", -10000, Decimal("0.01")),
    ])
    def test_known_values(self, stake, odds, expected):
        assert potential_payout(stake, odds) == expected

    @pytest.mark.parametrize("odds", [-100000, -110, 100, 5000])
    def test_never_below_stake(self, odds):
        assert potential_payout(Decimal("12.34"), odds) >= Decimal("12.34")

    def test_cent_precision(self):
        payout = potential_payout(Decimal("33.33"), -120)
        assert payout == payout.quantize(Decimal("0.01"))
        assert not math.isnan(float(payout))
