"""
The Odds API integration for live odds and final scores.
https://the-odds-api.com/

Two kinds of calls with two failure policies
--------------------------------------------
  get_sports / get_odds:
      Browsing data.  Any HTTP failure is logged and an empty list is
      returned so the events page degrades to "no games".

  get_scores / get_completed_games:
      Settlement data.  HTTP failures propagate as
      ``requests.RequestException`` so the settlement layer can leave the
      affected wagers pending and report the error instead of grading them
      against a missing result.

Quota
-----
Every response carries ``x-requests-remaining`` / ``x-requests-used``.  The
last seen values are kept in process-wide state and exposed through
``get_api_quota()``; nothing in the betting core reads them.
"""

import logging
import os
import threading
from dataclasses import dataclass
from typing import Dict, List, Optional

import requests

from paperbet.core.sport_config import to_odds_api_key

logger = logging.getLogger(__name__)

API_KEY = os.getenv("THE_ODDS_API_KEY")
BASE_URL = "https://api.the-odds-api.com/v4"
DEFAULT_REGIONS = os.getenv("ODDS_API_REGIONS", "us")
DEFAULT_MARKETS = "h2h,spreads,totals"

# The scores endpoint only serves up to three days of history.
MAX_DAYS_FROM = 3

_quota_lock = threading.Lock()
_quota: Dict[str, Optional[int]] = {"remaining": None, "used": None}


def _update_quota(headers) -> None:
    remaining = headers.get("x-requests-remaining")
    used = headers.get("x-requests-used")
    with _quota_lock:
        if remaining is not None:
            _quota["remaining"] = int(float(remaining))
        if used is not None:
            _quota["used"] = int(float(used))


def get_api_quota() -> Dict[str, Optional[int]]:
    """Last known request quota; ``None`` until the first response."""
    with _quota_lock:
        return dict(_quota)


@dataclass
class CompletedGame:
    id: str
    sport_key: str
    home_team: str
    away_team: str
    home_score: int
    away_score: int
    completed: bool
    commence_time: Optional[str] = None


def _score_for(scores: List[Dict], team: str) -> int:
    for entry in scores:
        if entry.get("name") == team:
            try:
                return int(float(entry.get("score")))
            except (TypeError, ValueError):
                return 0
    return 0


class OddsAPIClient:
    """Client for The Odds API"""

    def __init__(self, api_key: Optional[str] = None):
        self.api_key = api_key or API_KEY
        if not self.api_key:
            raise ValueError("THE_ODDS_API_KEY not set in environment")

    def _get(self, path: str, params: Dict, timeout: int = 15) -> requests.Response:
        response = requests.get(
            f"{BASE_URL}{path}",
            params={"apiKey": self.api_key, **params},
            timeout=timeout,
        )
        response.raise_for_status()
        _update_quota(response.headers)
        return response

    def get_sports(self) -> List[Dict]:
        """Active sports offered by the provider."""
        try:
            response = self._get("/sports", {}, timeout=10)
        except requests.exceptions.RequestException as e:
            logger.error("Odds API error fetching sports: %s", e)
            return []
        return [s for s in response.json() if s.get("active")]

    def get_odds(
        self,
        sport_key: str,
        regions: str = DEFAULT_REGIONS,
        markets: str = DEFAULT_MARKETS,
    ) -> List[Dict]:
        """
        Fetch upcoming events with bookmaker prices in American format.

        Each event dict carries id, sport_key, commence_time, home_team,
        away_team and bookmakers[].markets[].outcomes[] as the provider
        returns them.
        """
        api_key = to_odds_api_key(sport_key)
        if api_key is None:
            logger.warning("Odds API: unknown sport key %s", sport_key)
            return []

        try:
            response = self._get(
                f"/sports/{api_key}/odds",
                {"regions": regions, "markets": markets, "oddsFormat": "american"},
            )
        except requests.exceptions.HTTPError as e:
            status = e.response.status_code if e.response is not None else None
            if status == 401:
                logger.error("Odds API: invalid API key")
            elif status == 429:
                logger.error("Odds API: rate limit exceeded")
            elif status == 422:
                logger.warning("Odds API: %s not available or out of season", api_key)
            else:
                logger.error("Odds API error fetching odds for %s: %s", api_key, e)
            return []
        except requests.exceptions.RequestException as e:
            logger.error("Odds API error fetching odds for %s: %s", api_key, e)
            return []

        data = response.json()
        quota = get_api_quota()
        logger.info(
            "Odds API: %d %s events fetched. Quota: %s used, %s remaining",
            len(data), api_key, quota["used"], quota["remaining"],
        )
        return data

    def get_scores(self, sport_key: str, days_from: int = 1) -> List[Dict]:
        """Raw scores for live and recently finished events.  Raises on HTTP failure."""
        api_key = to_odds_api_key(sport_key)
        if api_key is None:
            logger.warning("Odds API: unknown sport key %s", sport_key)
            return []

        days = max(1, min(int(days_from), MAX_DAYS_FROM))
        response = self._get(f"/sports/{api_key}/scores", {"daysFrom": days})
        data = response.json()
        logger.info("Odds API: %d %s games with scores (daysFrom=%d)", len(data), api_key, days)
        return data

    def get_completed_games(self, sport_key: str, days_from: int = MAX_DAYS_FROM) -> List[CompletedGame]:
        """Finished games with final scores, for settlement."""
        games = []
        for game in self.get_scores(sport_key, days_from):
            scores = game.get("scores")
            if not game.get("completed") or not scores:
                continue
            home, away = game.get("home_team"), game.get("away_team")
            games.append(CompletedGame(
                id=game.get("id"),
                sport_key=sport_key,
                home_team=home,
                away_team=away,
                home_score=_score_for(scores, home),
                away_score=_score_for(scores, away),
                completed=True,
                commence_time=game.get("commence_time"),
            ))
        return games
