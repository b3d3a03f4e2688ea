"""Fundamental odds mathematics — the single source of truth.

Every function here is **pure**: no I/O, no logging, no side effects.
Import from this module; never reimplement locally in services or models.

The three pillars exposed are:

1. **Odds conversion** — American ↔ decimal ↔ implied probability.
2. **Value** — expected value of a stake given a model probability.
3. **Parlays and payouts** — multi-leg composition and cent-exact payouts.

Design decisions
----------------
* Odds and probabilities are ``float`` and keep full precision.  Money is
  ``Decimal`` and is rounded half-up to cents only by :func:`to_money`,
  which every persisted amount passes through.
* Odds arriving from the database are ``Decimal`` (``Numeric`` columns);
  :func:`_as_odds` normalises every accepted numeric type to ``float`` and
  rejects zero, ``NaN``, infinities, booleans and non-numeric input with
  :class:`~paperbet.core.errors.InvalidOdds`.
* Rounding of American odds uses ``floor(x + 0.5)`` (half-up) rather than
  Python's banker's rounding, so ``+376.5`` becomes ``+377`` as a bettor
  would expect.

Run tests with::

    pytest tests/test_odds_math.py -v
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Final, Iterable, Mapping

from paperbet.core.errors import InvalidOdds, InvalidParlay

# ---------------------------------------------------------------------------
# Module-level constants
# ---------------------------------------------------------------------------

#: Cent precision for every persisted currency amount.
CENTS: Final[Decimal] = Decimal("0.01")

#: Decimal odds at or above this value are quoted as positive American odds.
_EVEN_MONEY_DECIMAL: Final[float] = 2.0


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _as_odds(american: Any) -> float:
    """Validate and normalise American odds to ``float``."""
    if isinstance(american, bool):
        raise InvalidOdds(f"Invalid American odds {american!r}: not a number")
    try:
        value = float(american)
    except (TypeError, ValueError):
        raise InvalidOdds(f"Invalid American odds {american!r}: not a number") from None
    if not math.isfinite(value):
        raise InvalidOdds(f"Invalid American odds {american!r}: must be finite")
    if value == 0:
        raise InvalidOdds("Invalid American odds 0: odds must be nonzero")
    return value


def round_half_up(value: float, places: int = 0) -> float:
    """``floor(x + 0.5)`` at ``places`` decimals; ``2.5 → 3``, ``-2.5 → -2``."""
    factor = 10 ** places
    return math.floor(value * factor + 0.5) / factor


def to_money(value: Any) -> Decimal:
    """Quantise a number to a 2-dp ``Decimal`` using round-half-up.

    Floats are converted through ``str`` so ``16.665`` stays ``16.665``
    rather than its binary approximation before rounding.
    """
    if isinstance(value, Decimal):
        amount = value
    elif isinstance(value, float):
        amount = Decimal(repr(value))
    else:
        amount = Decimal(value)
    return amount.quantize(CENTS, rounding=ROUND_HALF_UP)


# ---------------------------------------------------------------------------
# Odds conversion
# ---------------------------------------------------------------------------


def american_to_decimal(american: Any) -> float:
    """Convert American odds to decimal (European) format.

    Decimal odds represent the total payout per unit staked, **including**
    the return of the stake itself.  Examples::

        american_to_decimal(-110) → 1.9091   (risk 110 to win 100)
        american_to_decimal(+150) → 2.5000   (risk 100 to win 150)

    Args:
        american: American odds.  Sign convention: negative = favourite
            (risk more than you win), positive = underdog (win more than
            you risk).

    Returns:
        Decimal odds > 1.0.

    Raises:
        InvalidOdds: If ``american`` is zero, non-numeric or not finite.
    """
    odds = _as_odds(american)
    if odds > 0:
        return odds / 100.0 + 1.0
    # Negative: risk |american| to win 100
    return 100.0 / abs(odds) + 1.0


def implied_probability(american: Any) -> float:
    """Raw implied probability from American odds (vig-inclusive).

    Examples::

        implied_probability(-110) → 0.5238
        implied_probability(+150) → 0.4000

    Returns:
        Probability in ``(0, 1)``.
    """
    odds = _as_odds(american)
    if odds > 0:
        return 100.0 / (odds + 100.0)
    return abs(odds) / (abs(odds) + 100.0)


def decimal_to_american(decimal_odds: float) -> int:
    """Convert decimal odds to the nearest American integer.

    Inverse of :func:`american_to_decimal`.  Values ≥ 2.0 are returned as
    positive (underdog); values < 2.0 as negative (favourite).

    Raises:
        InvalidOdds: If ``decimal_odds <= 1.0`` (no payout above the stake).
    """
    if not math.isfinite(decimal_odds) or decimal_odds <= 1.0:
        raise InvalidOdds(f"Decimal odds {decimal_odds!r} must be greater than 1.0")
    if decimal_odds >= _EVEN_MONEY_DECIMAL:
        return int(round_half_up((decimal_odds - 1.0) * 100))
    return int(round_half_up(-100.0 / (decimal_odds - 1.0)))


def format_odds(american: Any) -> str:
    """Display string for American odds: ``+150``, ``-110``, ``+376.5``."""
    odds = _as_odds(american)
    text = str(int(odds)) if odds == int(odds) else f"{odds:f}".rstrip("0")
    return f"+{text}" if odds > 0 else text


# ---------------------------------------------------------------------------
# Value
# ---------------------------------------------------------------------------


def expected_value(model_probability: float, decimal_odds: float) -> float:
    """Expected return per unit staked.

    ``EV = p · (d − 1) − (1 − p)``.  An EV of 0.05 means a 5 % long-run
    return on every unit risked at these odds, *if* the model probability
    is correct.
    """
    return model_probability * (decimal_odds - 1.0) - (1.0 - model_probability)


# ---------------------------------------------------------------------------
# Parlays and payouts
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ParlayOdds:
    """Combined price of a multi-leg wager."""

    decimal_odds: float
    american_odds: int
    implied_probability: float  # percentage, 2 dp

    def to_dict(self) -> dict:
        return {
            "decimal_odds": self.decimal_odds,
            "combined_odds": self.american_odds,
            "implied_probability": self.implied_probability,
        }


def _leg_odds(leg: Any) -> Any:
    if isinstance(leg, Mapping):
        return leg.get("odds")
    return getattr(leg, "odds", leg)


def combine_parlay_odds(legs: Iterable[Any]) -> ParlayOdds:
    """Compose leg prices into a single parlay price.

    The combined decimal price is the product of each leg's decimal odds
    (legs are treated as independent).  Example::

        combine_parlay_odds([-110, +150])
          → decimal 4.7727, american +377, implied 20.95 %

    Args:
        legs: Bare American odds, or objects / mappings exposing ``odds``.

    Raises:
        InvalidParlay: If ``legs`` is empty.  The two-leg minimum for
            placement is enforced by the wager layer, not here.
        InvalidOdds: If any leg carries invalid odds.
    """
    combined = 1.0
    count = 0
    for leg in legs:
        combined *= american_to_decimal(_leg_odds(leg))
        count += 1
    if count == 0:
        raise InvalidParlay("At least one leg is required to price a parlay")

    return ParlayOdds(
        decimal_odds=combined,
        american_odds=decimal_to_american(combined),
        implied_probability=round_half_up(100.0 / combined, 2),
    )


def potential_payout(stake: Any, american: Any) -> Decimal:
    """Total return (stake + profit) of a winning wager, rounded to cents.

    Examples::

        potential_payout(10, +200) → Decimal('30.00')
        potential_payout(10, -150) → Decimal('16.67')
    """
    odds = Decimal(repr(_as_odds(american)))
    stake_amount = to_money(stake)
    if odds > 0:
        payout = stake_amount + stake_amount * odds / Decimal(100)
    else:
        payout = stake_amount + stake_amount * Decimal(100) / abs(odds)
    return to_money(payout)
