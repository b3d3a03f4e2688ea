"""
Prediction and value engine — deterministic Elo/Poisson-flavoured heuristic.

This is an illustrative model, not a trained one.  Team "strength" is a
stable hash of the team name, so the same fixture always produces the same
probabilities and the engine can be pinned in tests.

Pipeline
--------
1. ``team_hash`` → pseudo-rating in a ±200 band around 1500, home +65.
2. Elo logistic → expected home share.
3. A fixed draw reserve (0.25 × 0.5) is taken off both sides; the draw
   probability is the remainder, so the triple always sums to 1.
4. Score estimate: sport baseline × (1 + hash % 30 / 100), 1 dp.
5. Confidence: ``min(0.95, p_max + (p_max - 0.33) * 0.5)``.
6. Every bookmaker's ``h2h`` outcome is priced against the matching model
   probability; EV > 2 % is a value bet.
7. The event's value rating comes from the best EV found.

Design decisions
----------------
* The hash reproduces a 32-bit ``h * 31 + c`` rolling hash over UTF-16
  code units, so ratings are identical for any caller that hashes the same
  way.  Non-BMP characters contribute two units.
* Raw (unrounded) EV drives sorting and the event rating; percentages are
  rounded to 1 dp only for display.
* Outcome names are matched to teams exactly.  Any other outcome name is
  treated as the draw.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, Final, Iterable, List, Optional

from paperbet.core.errors import InvalidOdds
from paperbet.core.odds_math import (
    american_to_decimal,
    expected_value,
    format_odds,
    implied_probability,
    round_half_up,
)
from paperbet.core.sport_config import get_sport_config

logger = logging.getLogger(__name__)

MODEL_NAME: Final[str] = "elo_poisson_hybrid"

BASE_RATING: Final[int] = 1500
RATING_BAND: Final[int] = 400  # hash % 400 - 200 → ±200
HOME_ADVANTAGE: Final[int] = 65
DRAW_FACTOR: Final[float] = 0.25
SIDE_SHARE: Final[float] = 1.0 - DRAW_FACTOR * 0.5  # 0.875

MAX_CONFIDENCE: Final[float] = 0.95
CONFIDENCE_BASELINE: Final[float] = 0.33

# Value-bet thresholds on fractional EV
MIN_VALUE_EV: Final[float] = 0.02
STRONG_BET_EV: Final[float] = 0.15
MODERATE_BET_EV: Final[float] = 0.08

# Event-level thresholds on the best fractional EV
STRONG_EVENT_EV: Final[float] = 0.10
MODERATE_EVENT_EV: Final[float] = 0.05

RATIONALE_TOP_N: Final[int] = 3


# ---------------------------------------------------------------------------
# Ratings and probabilities
# ---------------------------------------------------------------------------

def team_hash(name: str) -> int:
    """Stable non-negative hash of a team name.

    ``team_hash("A") == 65``, ``team_hash("AB") == 2081``.
    """
    h = 0
    data = name.encode("utf-16-le")
    for i in range(0, len(data), 2):
        unit = data[i] | (data[i + 1] << 8)
        h = (h * 31 + unit) & 0xFFFFFFFF
    if h >= 0x80000000:
        h -= 0x100000000
    return abs(h)


def team_rating(name: str, home: bool = False) -> int:
    rating = BASE_RATING + team_hash(name) % RATING_BAND - RATING_BAND // 2
    return rating + HOME_ADVANTAGE if home else rating


def win_probabilities(home_team: str, away_team: str) -> Dict[str, float]:
    """Home / away / draw probabilities; the three always sum to 1."""
    diff = team_rating(home_team, home=True) - team_rating(away_team)
    expected_home = 1.0 / (1.0 + 10 ** (-diff / 400.0))
    home = expected_home * SIDE_SHARE
    away = (1.0 - expected_home) * SIDE_SHARE
    return {"home": home, "away": away, "draw": 1.0 - home - away}


def estimate_score(home_team: str, away_team: str, sport_key: Optional[str]) -> Dict[str, float]:
    cfg = get_sport_config(sport_key)
    home_strength = 1 + (team_hash(home_team) % 30) / 100
    away_strength = 1 + (team_hash(away_team) % 30) / 100
    return {
        "home": round_half_up(cfg.avg_home_score * home_strength, 1),
        "away": round_half_up(cfg.avg_away_score * away_strength, 1),
    }


def confidence_for(probs: Dict[str, float]) -> float:
    top = max(probs.values())
    return min(MAX_CONFIDENCE, top + (top - CONFIDENCE_BASELINE) * 0.5)


# ---------------------------------------------------------------------------
# Value bets
# ---------------------------------------------------------------------------

@dataclass
class ValueBet:
    selection: str
    bookmaker: str
    odds: float
    implied_probability: float  # percentage, 1 dp
    model_probability: float    # percentage, 1 dp
    expected_value: float       # percentage, 1 dp
    value_rating: str
    bet_type: str = "moneyline"
    ev: float = field(default=0.0, repr=False)  # raw fractional EV

    def to_dict(self) -> dict:
        return {
            "selection": self.selection,
            "bet_type": self.bet_type,
            "bookmaker": self.bookmaker,
            "odds": self.odds,
            "implied_probability": self.implied_probability,
            "model_probability": self.model_probability,
            "expected_value": self.expected_value,
            "value_rating": self.value_rating,
        }


def _bet_rating(ev: float) -> str:
    if ev > STRONG_BET_EV:
        return "Strong Value"
    if ev > MODERATE_BET_EV:
        return "Moderate Value"
    return "Slight Value"


def _pct(value: float) -> float:
    return round_half_up(value * 100, 1)


def find_value_bets(
    home_team: str,
    away_team: str,
    bookmakers: Optional[Iterable[Dict]],
    probs: Dict[str, float],
) -> List[ValueBet]:
    """Scan every bookmaker's h2h market for prices above the model's."""
    found: List[ValueBet] = []
    for book in bookmakers or []:
        h2h = next((m for m in book.get("markets", []) if m.get("key") == "h2h"), None)
        if h2h is None:
            continue
        title = book.get("title") or book.get("key", "")

        for outcome in h2h.get("outcomes", []):
            name = outcome.get("name")
            price = outcome.get("price")
            try:
                decimal_odds = american_to_decimal(price)
            except InvalidOdds:
                logger.warning("Skipping %s outcome %r with invalid price %r", title, name, price)
                continue

            if name == home_team:
                model_p = probs["home"]
            elif name == away_team:
                model_p = probs["away"]
            else:
                model_p = probs["draw"]

            ev = expected_value(model_p, decimal_odds)
            if ev <= MIN_VALUE_EV:
                continue
            found.append(ValueBet(
                selection=name,
                bookmaker=title,
                odds=price,
                implied_probability=_pct(implied_probability(price)),
                model_probability=_pct(model_p),
                expected_value=_pct(ev),
                value_rating=_bet_rating(ev),
                ev=ev,
            ))

    found.sort(key=lambda vb: vb.ev, reverse=True)
    return found


def event_value_rating(value_bets: List[ValueBet]) -> str:
    if not value_bets:
        return "poor_value"
    best = max(vb.ev for vb in value_bets)
    if best > STRONG_EVENT_EV:
        return "strong_value"
    if best > MODERATE_EVENT_EV:
        return "moderate_value"
    return "fair_value"


# ---------------------------------------------------------------------------
# Prediction
# ---------------------------------------------------------------------------

@dataclass
class Prediction:
    event_id: Optional[str]
    home_team: str
    away_team: str
    predicted_winner: Optional[str]
    home_win_probability: float
    away_win_probability: float
    draw_probability: float
    predicted_home_score: float
    predicted_away_score: float
    confidence: float
    value_rating: str
    rationale: str
    model_used: str = MODEL_NAME
    value_bets: List[ValueBet] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "event_id": self.event_id,
            "home_team": self.home_team,
            "away_team": self.away_team,
            "predicted_winner": self.predicted_winner,
            "home_win_probability": self.home_win_probability,
            "away_win_probability": self.away_win_probability,
            "draw_probability": self.draw_probability,
            "predicted_home_score": self.predicted_home_score,
            "predicted_away_score": self.predicted_away_score,
            "confidence": self.confidence,
            "value_rating": self.value_rating,
            "rationale": self.rationale,
            "model_used": self.model_used,
            "value_bets": [vb.to_dict() for vb in self.value_bets],
        }


def _predicted_winner(home_team: str, away_team: str, probs: Dict[str, float]) -> Optional[str]:
    home, away, draw = probs["home"], probs["away"], probs["draw"]
    if home > away and home > draw:
        return home_team
    if away > home and away > draw:
        return away_team
    return None


def build_rationale(
    home_team: str,
    away_team: str,
    probs: Dict[str, float],
    scores: Dict[str, float],
    value_bets: List[ValueBet],
) -> str:
    lines = [
        f"**Match Analysis: {home_team} vs {away_team}**",
        "",
        "Our hybrid Elo-Poisson model predicts:",
        f"- {home_team} win probability: {_pct(probs['home']):.1f}%",
        f"- {away_team} win probability: {_pct(probs['away']):.1f}%",
        f"- Draw probability: {_pct(probs['draw']):.1f}%",
        "",
        f"**Predicted Score:** {home_team} {scores['home']:.1f} - {scores['away']:.1f} {away_team}",
        "",
    ]
    if value_bets:
        lines.append("**Value Bets Identified:**")
        for vb in value_bets[:RATIONALE_TOP_N]:
            lines.append(
                f"- {vb.selection} ({vb.bookmaker}): {format_odds(vb.odds)} | "
                f"EV: +{vb.expected_value}% | {vb.value_rating}"
            )
    else:
        lines.append(
            "**No significant value bets identified.** The bookmaker odds appear "
            "to be fairly priced for this matchup."
        )
    return "\n".join(lines) + "\n"


def generate_prediction(event: Dict) -> Prediction:
    """
    Predict one event.

    ``event`` is a provider event dict: ``id``, ``sport_key``,
    ``home_team``, ``away_team`` and optionally ``bookmakers``.
    """
    home_team = event["home_team"]
    away_team = event["away_team"]
    sport_key = event.get("sport_key")

    probs = win_probabilities(home_team, away_team)
    scores = estimate_score(home_team, away_team, sport_key)
    value_bets = find_value_bets(home_team, away_team, event.get("bookmakers"), probs)

    return Prediction(
        event_id=event.get("id"),
        home_team=home_team,
        away_team=away_team,
        predicted_winner=_predicted_winner(home_team, away_team, probs),
        home_win_probability=round_half_up(probs["home"], 4),
        away_win_probability=round_half_up(probs["away"], 4),
        draw_probability=round_half_up(probs["draw"], 4),
        predicted_home_score=scores["home"],
        predicted_away_score=scores["away"],
        confidence=round_half_up(confidence_for(probs), 4),
        value_rating=event_value_rating(value_bets),
        rationale=build_rationale(home_team, away_team, probs, scores, value_bets),
        value_bets=value_bets,
    )


def generate_predictions(events: Iterable[Dict]) -> List[Prediction]:
    """Predict a slate; events missing team names are skipped."""
    predictions = []
    for event in events:
        if not event.get("home_team") or not event.get("away_team"):
            logger.warning("Skipping event %s without both team names", event.get("id"))
            continue
        predictions.append(generate_prediction(event))
    logger.info("Generated %d predictions", len(predictions))
    return predictions
