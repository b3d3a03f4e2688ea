"""
Tests for services/odds.py

requests.get is patched everywhere; nothing here talks to the network.
"""

from unittest.mock import MagicMock, patch

import pytest
import requests

from paperbet.services import odds
from paperbet.services.odds import OddsAPIClient, get_api_quota


def _response(payload, headers=None, status=200):
    resp = MagicMock()
    resp.json.return_value = payload
    resp.headers = headers or {}
    resp.status_code = status
    if status >= 400:
        resp.raise_for_status.side_effect = requests.exceptions.HTTPError(response=resp)
    return resp


def _score_event(event_id, completed=True, scores=(("Lakers", "110"), ("Celtics", "104"))):
    return {
        "id": event_id,
        "sport_key": "basketball_nba",
        "commence_time": "2026-01-15T03:00:00Z",
        "completed": completed,
        "home_team": "Lakers",
        "away_team": "Celtics",
        "scores": [{"name": n, "score": s} for n, s in scores] if scores else None,
    }


@pytest.fixture
def client():
    return OddsAPIClient(api_key="test-key")


def test_missing_key_rejected(monkeypatch):
    monkeypatch.setattr(odds, "API_KEY", None)
    with pytest.raises(ValueError):
        OddsAPIClient()


class TestGetOdds:

    @patch("paperbet.services.odds.requests.get")
    def test_fetches_american_odds_and_updates_quota(self, mock_get, client):
        events = [{"id": "evt-1", "home_team": "Lakers", "away_team": "Celtics", "bookmakers": []}]
        mock_get.return_value = _response(
            events, headers={"x-requests-remaining": "480", "x-requests-used": "20.0"},
        )

        assert client.get_odds("hockey_nhl") == events

        url = mock_get.call_args[0][0]
        params = mock_get.call_args[1]["params"]
        assert url.endswith("/sports/icehockey_nhl/odds")
        assert params["apiKey"] == "test-key"
        assert params["oddsFormat"] == "american"
        assert params["markets"] == "h2h,spreads,totals"
        assert get_api_quota() == {"remaining": 480, "used": 20}

    @patch("paperbet.services.odds.requests.get")
    def test_unknown_sport_makes_no_call(self, mock_get, client):
        assert client.get_odds("curling_world") == []
        mock_get.assert_not_called()

    @pytest.mark.parametrize("status", [401, 422, 429, 500])
    @patch("paperbet.services.odds.requests.get")
    def test_http_errors_degrade_to_empty(self, mock_get, client, status):
        mock_get.return_value = _response({"message": "nope"}, status=status)
        assert client.get_odds("basketball_nba") == []

    @patch("paperbet.services.odds.requests.get")
    def test_network_error_degrades_to_empty(self, mock_get, client):
        mock_get.side_effect = requests.exceptions.Timeout("slow")
        assert client.get_odds("basketball_nba") == []


class TestGetSports:

    @patch("paperbet.services.odds.requests.get")
    def test_only_active(self, mock_get, client):
        mock_get.return_value = _response([
            {"key": "basketball_nba", "active": True},
            {"key": "baseball_mlb", "active": False},
        ])
        assert [s["key"] for s in client.get_sports()] == ["basketball_nba"]

    @patch("paperbet.services.odds.requests.get")
    def test_error_returns_empty(self, mock_get, client):
        mock_get.side_effect = requests.exceptions.ConnectionError()
        assert client.get_sports() == []


class TestScores:

    @pytest.mark.parametrize("requested, sent", [(0, 1), (2, 2), (10, 3)])
    @patch("paperbet.services.odds.requests.get")
    def test_days_from_clamped(self, mock_get, client, requested, sent):
        mock_get.return_value = _response([])
        client.get_scores("basketball_nba", days_from=requested)
        assert mock_get.call_args[1]["params"]["daysFrom"] == sent

    @patch("paperbet.services.odds.requests.get")
    def test_http_error_propagates(self, mock_get, client):
        mock_get.return_value = _response({}, status=500)
        with pytest.raises(requests.exceptions.HTTPError):
            client.get_scores("basketball_nba")

    @patch("paperbet.services.odds.requests.get")
    def test_completed_games_only(self, mock_get, client):
        mock_get.return_value = _response([
            _score_event("evt-1"),
            _score_event("evt-2", completed=False),
            _score_event("evt-3", scores=None),
        ])

        games = client.get_completed_games("basketball_nba")

        assert len(games) == 1
        game = games[0]
        assert game.id == "evt-1"
        assert (game.home_score, game.away_score) == (110, 104)
        assert game.completed is True
        assert game.sport_key == "basketball_nba"
        assert game.commence_time == "2026-01-15T03:00:00Z"

    @patch("paperbet.services.odds.requests.get")
    def test_missing_team_score_reads_as_zero(self, mock_get, client):
        mock_get.return_value = _response([_score_event("evt-1", scores=(("Lakers", "3"),))])
        (game,) = client.get_completed_games("basketball_nba")
        assert (game.home_score, game.away_score) == (3, 0)
