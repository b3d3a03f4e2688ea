"""Sport-level configuration — all sport-specific constants in one place.

This module is the **registry** for every constant that differs between
sports.  Nowhere else in the codebase should baseline scores or provider
sport keys be hard-coded.

Architecture
------------
:class:`SportConfig` is a frozen dataclass carrying the per-sport scoring
baselines used by the score estimate in
:mod:`paperbet.services.prediction`.  Sports are keyed by The Odds API
``sport_key`` because that is what every event carries.  Unknown sports
fall back to :data:`GENERIC_SPORT`, a low-scoring baseline.

Typical usage::

    from paperbet.core.sport_config import get_sport_config

    cfg = get_sport_config("basketball_nba")
    cfg.avg_home_score   # 112.0

    # Override a single constant for an experiment:
    from dataclasses import replace
    custom_cfg = replace(cfg, avg_home_score=115.0)
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Final, Optional


@dataclass(frozen=True)
class SportConfig:
    """Immutable scoring baseline for a single sport.

    Attributes:
        sport_key: The Odds API sport key (``"basketball_nba"``, ...).
        sport_name: Human-readable name for logging and display.
        avg_home_score: League-average points/goals scored by the home side.
        avg_away_score: League-average points/goals scored by the away side.
    """

    sport_key: str
    sport_name: str
    avg_home_score: float
    avg_away_score: float


#: Baseline used when a sport has no registered config.
GENERIC_SPORT: Final[SportConfig] = SportConfig(
    sport_key="generic",
    sport_name="Generic",
    avg_home_score=2.0,
    avg_away_score=1.8,
)

_REGISTRY: Final[Dict[str, SportConfig]] = {
    cfg.sport_key: cfg
    for cfg in (
        SportConfig("soccer_epl", "EPL", 1.5, 1.2),
        SportConfig("soccer_spain_la_liga", "La Liga", 1.4, 1.1),
        SportConfig("americanfootball_nfl", "NFL", 24.0, 21.0),
        SportConfig("basketball_nba", "NBA", 112.0, 109.0),
        SportConfig("baseball_mlb", "MLB", 4.5, 4.2),
        SportConfig("icehockey_nhl", "NHL", 3.1, 2.8),
    )
}

#: Internal sport keys → The Odds API sport keys.
ODDS_API_SPORT_KEYS: Final[Dict[str, str]] = {
    "basketball_nba": "basketball_nba",
    "basketball_wnba": "basketball_wnba",
    "basketball_ncaab": "basketball_ncaab",
    "football_nfl": "americanfootball_nfl",
    "football_ncaaf": "americanfootball_ncaaf",
    "baseball_mlb": "baseball_mlb",
    "hockey_nhl": "icehockey_nhl",
    "soccer_epl": "soccer_epl",
    "soccer_laliga": "soccer_spain_la_liga",
    "soccer_mls": "soccer_usa_mls",
    "mma_ufc": "mma_mixed_martial_arts",
}


def get_sport_config(sport_key: Optional[str]) -> SportConfig:
    """Return the registered config for ``sport_key`` or the generic one."""
    return _REGISTRY.get(sport_key or "", GENERIC_SPORT)


def to_odds_api_key(sport_key: str) -> Optional[str]:
    """Map an internal sport key to The Odds API key.

    Keys that are already provider keys pass through unchanged; anything
    else returns ``None``.
    """
    if sport_key in ODDS_API_SPORT_KEYS:
        return ODDS_API_SPORT_KEYS[sport_key]
    if sport_key in ODDS_API_SPORT_KEYS.values():
        return sport_key
    return None
