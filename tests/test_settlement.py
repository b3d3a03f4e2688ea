"""
Tests for services/settlement.py

Graders are pure and tested directly.  auto_settle / auto_settle_all are
driven by a fake results fetcher so no network is involved.

Run with: pytest tests/test_settlement.py -v
"""

from datetime import datetime, timedelta
from decimal import Decimal

import pytest
import requests

from paperbet.core.errors import UnresolvedBet
from paperbet.models import Bet, Parlay, ParlayLeg
from paperbet.services import ledger, odds, wagers
from paperbet.services.odds import CompletedGame
from paperbet.services.settlement import (
    auto_settle,
    auto_settle_all,
    find_completed_game,
    grade_moneyline,
    grade_selection,
    grade_spread,
    grade_total,
    parse_line,
    users_with_pending_wagers,
)


def _game(home_score, away_score, home="Lakers", away="Celtics", game_id="evt-1",
          sport_key="basketball_nba", commence_time=None):
    return CompletedGame(
        id=game_id,
        sport_key=sport_key,
        home_team=home,
        away_team=away,
        home_score=home_score,
        away_score=away_score,
        completed=True,
        commence_time=commence_time,
    )


class FakeFetcher:
    """Stands in for OddsAPIClient.get_completed_games and counts calls."""

    def __init__(self, games=None, failing=()):
        self.games = games or {}
        self.failing = set(failing)
        self.calls = []

    def __call__(self, sport_key, days_from):
        self.calls.append((sport_key, days_from))
        if sport_key in self.failing:
            raise requests.exceptions.ConnectionError("provider unreachable")
        return self.games.get(sport_key, [])


# ---------------------------------------------------------------------------
# Line parsing
# ---------------------------------------------------------------------------

@pytest.mark.parametrize("selection, expected", [
    ("Lakers -3.5", -3.5),
    ("Celtics +4.5", 4.5),
    ("Over 220.5", 220.5),
    ("Under 45", 45.0),
    ("Philadelphia 76ers +4.5", 4.5),
    ("Philadelphia 76ers -2", -2.0),
])
def test_parse_line(selection, expected):
    assert parse_line(selection) == expected


@pytest.mark.parametrize("selection", ["Lakers", "Philadelphia 76ers", "Over", "", None])
def test_parse_line_unresolved(selection):
    with pytest.raises(UnresolvedBet) as excinfo:
        parse_line(selection)
    assert "No line found" in excinfo.value.reason


# ---------------------------------------------------------------------------
# Graders
# ---------------------------------------------------------------------------

class TestGradeMoneyline:

    def test_home_win(self):
        grade = grade_moneyline("Lakers", _game(110, 104))
        assert grade.status == "won"
        assert grade.result == "Lakers 110 - 104 Celtics"

    def test_away_win(self):
        assert grade_moneyline("Lakers", _game(99, 104)).status == "lost"
        assert grade_moneyline("Celtics", _game(99, 104)).status == "won"

    def test_draw_is_push(self):
        assert grade_moneyline("Lakers", _game(1, 1)).status == "push"


class TestGradeSpread:

    @pytest.mark.parametrize("selection, home_score, away_score, expected", [
        ("Lakers -3.5", 110, 104, "won"),    # 106.5 vs 104
        ("Lakers -3.5", 110, 107, "lost"),   # 106.5 vs 107
        ("Lakers -3", 110, 107, "push"),
        ("Celtics +4.5", 110, 104, "lost"),  # 108.5 vs 110
        ("Celtics +4.5", 108, 104, "won"),   # 108.5 vs 108
    ])
    def test_spread(self, selection, home_score, away_score, expected):
        grade = grade_spread(selection, "Lakers", _game(home_score, away_score))
        assert grade.status == expected

    def test_missing_line_unresolved(self):
        with pytest.raises(UnresolvedBet):
            grade_spread("Lakers", "Lakers", _game(110, 104))


class TestGradeTotal:

    @pytest.mark.parametrize("selection, expected", [
        ("Over 220.5", "lost"),
        ("Under 220.5", "won"),
        ("Over 214", "push"),
        ("Under 214", "push"),
        ("Over 200", "won"),
    ])
    def test_total(self, selection, expected):
        # 110 + 104 = 214
        assert grade_total(selection, _game(110, 104)).status == expected


def test_grade_selection_dispatch():
    game = _game(110, 104)
    assert grade_selection("moneyline", "Lakers", "Lakers", game).status == "won"
    assert grade_selection("spread", "Lakers -10", "Lakers", game).status == "lost"
    assert grade_selection("total", "Under 250", "Lakers", game).status == "won"
    with pytest.raises(UnresolvedBet):
        grade_selection("prop", "Lakers", "Lakers", game)


STARTS = datetime(2026, 1, 15, 3, 0)


def test_find_completed_game_by_id_first():
    same_pair_earlier = _game(5, 2, game_id="evt-0", commence_time="2026-01-15T03:00:00Z")
    exact = _game(1, 0, game_id="evt-7")
    games = [same_pair_earlier, exact]

    assert find_completed_game(games, "evt-7", "Lakers", "Celtics", STARTS) is exact
    assert find_completed_game([], "evt-7", "Lakers", "Celtics", STARTS) is None


def test_find_completed_game_pair_needs_matching_start():
    game = _game(1, 0, game_id="other", commence_time="2026-01-15T03:10:00Z")

    assert find_completed_game([game], "missing", "Lakers", "Celtics", STARTS) is game
    assert find_completed_game([game], "missing", "Lakers", "Celtics") is None
    assert find_completed_game([game], None, "Celtics", "Lakers", STARTS) is None
    # the next night's rematch is a different game
    assert find_completed_game([game], "missing", "Lakers", "Celtics",
                               STARTS + timedelta(days=1)) is None


def test_pair_without_start_time_never_matches():
    game = _game(1, 0, game_id="other")
    assert find_completed_game([game], "missing", "Lakers", "Celtics", STARTS) is None


# ---------------------------------------------------------------------------
# auto_settle
# ---------------------------------------------------------------------------

class TestAutoSettle:

    def test_settles_completed_bet(self, db, make_selection):
        bet_id = wagers.place_bet(db, "alice", make_selection(odds=150), 10).wager_id
        fetch = FakeFetcher({"basketball_nba": [_game(110, 104)]})

        outcome = auto_settle(db, "alice", fetch_completed=fetch)

        assert outcome["settled"] == 1
        assert outcome["results"] == [{
            "bet_id": bet_id,
            "selection": "Lakers",
            "status": "won",
            "result": "Lakers 110 - 104 Celtics",
        }]
        assert outcome["new_balance"] == Decimal("10015.00")
        assert outcome["errors"] == []
        assert fetch.calls == [("basketball_nba", 3)]

        bet = db.get(Bet, bet_id)
        assert bet.status == "won"
        assert bet.settled_at is not None

    def test_settles_exactly_once(self, db, make_selection):
        wagers.place_bet(db, "alice", make_selection(), 10)
        fetch = FakeFetcher({"basketball_nba": [_game(110, 104)]})

        auto_settle(db, "alice", fetch_completed=fetch)
        second = auto_settle(db, "alice", fetch_completed=fetch)

        assert second["settled"] == 0
        assert second["results"] == []
        assert ledger.get_wallet(db, "alice").balance == Decimal("10015.00")

    def test_loss_and_push(self, db, make_selection):
        lost = wagers.place_bet(db, "alice", make_selection(selection="Over 230.5", bet_type="total"), 10)
        push = wagers.place_bet(db, "alice", make_selection(selection="Lakers -6", bet_type="spread"), 10)
        fetch = FakeFetcher({"basketball_nba": [_game(110, 104)]})

        outcome = auto_settle(db, "alice", fetch_completed=fetch)

        statuses = {r["bet_id"]: r["status"] for r in outcome["results"]}
        assert statuses == {lost.wager_id: "lost", push.wager_id: "push"}
        # 20 staked, 10 refunded on the push
        assert outcome["new_balance"] == Decimal("9990.00")

    def test_unresolved_bets_stay_pending(self, db, make_selection):
        no_game = wagers.place_bet(
            db, "alice", make_selection(selection="Heat", home="Heat", away="Knicks", event_id="evt-9"), 10,
        ).wager_id
        no_line = wagers.place_bet(db, "alice", make_selection(bet_type="spread"), 10).wager_id
        fetch = FakeFetcher({"basketball_nba": [_game(110, 104)]})

        outcome = auto_settle(db, "alice", fetch_completed=fetch)

        assert outcome["settled"] == 0
        reasons = {r["bet_id"]: (r["status"], r["result"]) for r in outcome["results"]}
        assert reasons[no_game] == ("pending", "Game not completed yet")
        assert reasons[no_line][0] == "pending"
        assert "No line found" in reasons[no_line][1]
        assert db.get(Bet, no_game).status == "pending"
        assert db.get(Bet, no_line).status == "pending"
        assert outcome["new_balance"] == Decimal("9980.00")

    def test_provider_failure_leaves_sport_pending(self, db, make_selection):
        nba = wagers.place_bet(db, "alice", make_selection(), 10).wager_id
        epl = wagers.place_bet(
            db, "alice",
            make_selection(selection="Arsenal", home="Arsenal", away="Chelsea",
                           event_id="evt-2", sport_key="soccer_epl"),
            10,
        ).wager_id
        fetch = FakeFetcher({"basketball_nba": [_game(110, 104)]}, failing={"soccer_epl"})

        outcome = auto_settle(db, "alice", fetch_completed=fetch)

        assert outcome["settled"] == 1
        assert len(outcome["errors"]) == 1
        assert outcome["errors"][0].startswith("soccer_epl:")
        assert db.get(Bet, nba).status == "won"
        assert db.get(Bet, epl).status == "pending"
        results = {r["bet_id"]: r["result"] for r in outcome["results"]}
        assert results[epl] == "Results unavailable for this sport"

    def test_missing_api_key_reported(self, db, make_selection, monkeypatch):
        monkeypatch.setattr(odds, "API_KEY", None)
        bet_id = wagers.place_bet(db, "alice", make_selection(), 10).wager_id

        outcome = auto_settle(db, "alice")

        assert outcome["settled"] == 0
        assert outcome["errors"] == ["THE_ODDS_API_KEY not set in environment"]
        assert db.get(Bet, bet_id).status == "pending"

    def test_nothing_pending_makes_no_calls(self, db):
        fetch = FakeFetcher()
        outcome = auto_settle(db, "alice", fetch_completed=fetch)
        assert outcome["settled"] == 0
        assert outcome["new_balance"] == Decimal("10000.00")
        assert fetch.calls == []

    def test_parlay_legs_graded_but_parlay_untouched(self, db, make_selection):
        legs = [
            make_selection(),
            make_selection(selection="Heat", home="Heat", away="Knicks", event_id="evt-9"),
        ]
        parlay_id = wagers.place_parlay(db, "alice", legs, 10).wager_id
        fetch = FakeFetcher({"basketball_nba": [_game(110, 104)]})

        outcome = auto_settle(db, "alice", fetch_completed=fetch)

        assert outcome["settled"] == 0
        assert [(r["status"], r["selection"]) for r in outcome["legs"]] == [
            ("won", "Lakers"), ("pending", "Heat"),
        ]
        parlay = db.get(Parlay, parlay_id)
        assert parlay.status == "pending"
        assert [leg.status for leg in parlay.legs] == ["won", "pending"]
        assert outcome["new_balance"] == Decimal("9990.00")

    def test_earlier_game_of_series_does_not_settle_next_one(self, db, make_selection):
        series = dict(home="Yankees", away="Red Sox", sport_key="baseball_mlb")
        bet_id = wagers.place_bet(
            db, "alice", make_selection(selection="Yankees", event_id="evt-3", **series), 10,
        ).wager_id
        # only game one (the day before) has finished
        game_one = _game(5, 2, game_id="evt-1", commence_time="2026-01-14T03:00:00Z", **series)
        fetch = FakeFetcher({"baseball_mlb": [game_one]})

        outcome = auto_settle(db, "alice", fetch_completed=fetch)

        assert outcome["settled"] == 0
        assert outcome["results"][0]["status"] == "pending"
        assert outcome["results"][0]["result"] == "Game not completed yet"
        assert db.get(Bet, bet_id).status == "pending"
        assert outcome["new_balance"] == Decimal("9990.00")

    def test_same_game_under_another_id_settles_by_start_time(self, db, make_selection):
        bet_id = wagers.place_bet(db, "alice", make_selection(event_id="book-123"), 10).wager_id
        game = _game(110, 104, game_id="evt-1", commence_time="2026-01-15T03:00:00Z")

        outcome = auto_settle(db, "alice", fetch_completed=FakeFetcher({"basketball_nba": [game]}))

        assert outcome["settled"] == 1
        assert db.get(Bet, bet_id).status == "won"

    def test_explicit_days_from_is_passed_through(self, db, make_selection):
        wagers.place_bet(db, "alice", make_selection(), 10)
        fetch = FakeFetcher()

        auto_settle(db, "alice", fetch_completed=fetch, days_from=0)

        assert fetch.calls == [("basketball_nba", 0)]

    def test_legs_of_settled_parlays_ignored(self, db, make_selection):
        parlay_id = wagers.place_parlay(db, "alice", [make_selection(), make_selection()], 10).wager_id
        wagers.settle_parlay(db, "alice", parlay_id, "cancelled")

        outcome = auto_settle(db, "alice", fetch_completed=FakeFetcher())

        assert outcome["legs"] == []
        assert db.query(ParlayLeg).filter(ParlayLeg.status == "pending").count() == 2


# ---------------------------------------------------------------------------
# auto_settle_all
# ---------------------------------------------------------------------------

class TestAutoSettleAll:

    def _seed(self, session_factory, make_selection):
        session = session_factory()
        try:
            wagers.place_bet(session, "alice", make_selection(), 10)
            wagers.place_bet(session, "bob", make_selection(), 20)
            wagers.place_bet(
                session, "bob",
                make_selection(selection="Arsenal", home="Arsenal", away="Chelsea",
                               event_id="evt-2", sport_key="soccer_epl"),
                5,
            )
        finally:
            session.close()

    def test_every_user_settled_one_fetch_per_sport(self, session_factory, make_selection):
        self._seed(session_factory, make_selection)
        fetch = FakeFetcher({"basketball_nba": [_game(110, 104)]})

        summary = auto_settle_all(fetch_completed=fetch, session_factory=session_factory)

        assert summary["users_processed"] == 2
        assert summary["bets_settled"] == 2
        assert summary["legs_graded"] == 0
        assert summary["errors"] == []
        assert "timestamp" in summary
        assert sorted(sport for sport, _ in fetch.calls) == ["basketball_nba", "soccer_epl"]

        check = session_factory()
        assert ledger.get_wallet(check, "alice").balance == Decimal("10015.00")
        assert ledger.get_wallet(check, "bob").balance == Decimal("10025.00")
        assert users_with_pending_wagers(check) == ["bob"]
        check.close()

    def test_provider_failure_fetched_once_and_reported_per_user(self, session_factory, make_selection):
        self._seed(session_factory, make_selection)
        fetch = FakeFetcher(failing={"basketball_nba"})

        summary = auto_settle_all(fetch_completed=fetch, session_factory=session_factory)

        assert summary["bets_settled"] == 0
        assert [sport for sport, _ in fetch.calls].count("basketball_nba") == 1
        assert len(summary["errors"]) == 2
        assert summary["errors"][0].startswith("User alice: basketball_nba")

    def test_missing_api_key(self, session_factory, monkeypatch):
        monkeypatch.setattr(odds, "API_KEY", None)
        summary = auto_settle_all(session_factory=session_factory)
        assert summary["users_processed"] == 0
        assert summary["errors"] == ["THE_ODDS_API_KEY not set in environment"]
