"""
Automatic settlement of pending wagers against completed-game results.

Scheduled job:
  auto_settle_all()  - every AUTO_SETTLE_INTERVAL_HOURS: settle every user's
                       pending bets and grade pending parlay legs

Flow for one user (``auto_settle``):
  1. Read pending bets and pending legs of pending parlays.
  2. Fetch completed games once per sport, outside the wallet lock.  A
     provider failure for a sport leaves that sport's wagers pending and is
     reported in ``errors``.
  3. Lock the wallet, re-check every wager is still pending, grade it and
     apply the ledger effect exactly as manual settlement does.  One commit
     for the whole batch.

Wagers with no matching completed game, or whose line cannot be read from
the selection text, stay pending.  They are never graded as losses.
Parlay legs are bookkeeping only; the parlay itself is never settled here.
"""

import logging
import os
import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Iterable, List, Optional

import requests
from sqlalchemy.orm import Session

from paperbet.core.errors import UnresolvedBet
from paperbet.models import (
    LOST,
    PENDING,
    PUSH,
    WON,
    Bet,
    Parlay,
    ParlayLeg,
    SessionLocal,
    utcnow,
)
from paperbet.services.ledger import wallet_transaction
from paperbet.services.odds import CompletedGame, OddsAPIClient
from paperbet.services.wagers import apply_outcome

logger = logging.getLogger(__name__)

SETTLEMENT_DAYS_FROM = int(os.getenv("SETTLEMENT_DAYS_FROM", "3"))

# Max start-time gap for a home/away-pair match when event ids differ.
PAIR_MATCH_WINDOW = timedelta(hours=12)

GameFetcher = Callable[[str, int], List[CompletedGame]]

# A signed numeral standing on its own: "-3.5" in "Lakers -3.5" but not the
# "76" in "76ers".
_LINE_RE = re.compile(r"(?:^|\s)([+-]?\d+(?:\.\d+)?)(?=\s|$)")


# ---------------------------------------------------------------------------
# Grading (pure functions, no DB)
# ---------------------------------------------------------------------------

@dataclass
class GradeResult:
    status: str   # won | lost | push
    result: str   # "Home 110 - 104 Away"


def parse_line(selection: str) -> float:
    """
    Parse 'Lakers -3.5'  → -3.5.
    Parse 'Over 220.5'   → 220.5.
    Parse 'Lakers'       → UnresolvedBet.
    """
    match = _LINE_RE.search(selection or "")
    if match is None:
        raise UnresolvedBet(f"No line found in selection {selection!r}", selection)
    return float(match.group(1))


def _score_line(game: CompletedGame) -> str:
    return f"{game.home_team} {game.home_score} - {game.away_score} {game.away_team}"


def _compare(ours: float, theirs: float) -> str:
    if ours > theirs:
        return WON
    if ours == theirs:
        return PUSH
    return LOST


def grade_moneyline(selection: str, game: CompletedGame) -> GradeResult:
    if game.home_score == game.away_score:
        return GradeResult(PUSH, _score_line(game))
    winner = game.home_team if game.home_score > game.away_score else game.away_team
    status = WON if winner in selection else LOST
    return GradeResult(status, _score_line(game))


def grade_spread(selection: str, home_team: str, game: CompletedGame) -> GradeResult:
    """Spread applies to the side named in the selection; home when it names ``home_team``."""
    spread = parse_line(selection)
    if home_team and home_team in selection:
        ours, theirs = game.home_score + spread, game.away_score
    else:
        ours, theirs = game.away_score + spread, game.home_score
    return GradeResult(_compare(ours, theirs), _score_line(game))


def grade_total(selection: str, game: CompletedGame) -> GradeResult:
    line = parse_line(selection)
    total = game.home_score + game.away_score
    if total == line:
        return GradeResult(PUSH, _score_line(game))
    is_over = "over" in selection.lower()
    won = total > line if is_over else total < line
    return GradeResult(WON if won else LOST, _score_line(game))


def grade_selection(bet_type: str, selection: str, home_team: str,
                    game: CompletedGame) -> GradeResult:
    """Dispatch on bet type.  Raises UnresolvedBet when no outcome can be decided."""
    if bet_type == "moneyline":
        return grade_moneyline(selection, game)
    if bet_type == "spread":
        return grade_spread(selection, home_team, game)
    if bet_type == "total":
        return grade_total(selection, game)
    raise UnresolvedBet(f"Unknown bet type {bet_type!r}", selection)


def _parse_commence(value: Optional[str]) -> Optional[datetime]:
    """Provider ISO timestamp ('2026-01-15T03:00:00Z') → naive UTC."""
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def find_completed_game(games: Iterable[CompletedGame], event_id: Optional[str],
                        home_team: str, away_team: str,
                        commence_time: Optional[datetime] = None) -> Optional[CompletedGame]:
    """
    Match by provider event id across every game first.

    The home/away pair is only a fallback, and only for a game that started
    within PAIR_MATCH_WINDOW of ``commence_time``.  Teams in a series meet on
    consecutive days, so a pair alone never identifies the game.
    """
    games = list(games)
    if event_id:
        for game in games:
            if game.id == event_id:
                return game

    if commence_time is None:
        return None
    for game in games:
        if game.home_team != home_team or game.away_team != away_team:
            continue
        started = _parse_commence(game.commence_time)
        if started is not None and abs(started - commence_time) <= PAIR_MATCH_WINDOW:
            return game
    return None


# ---------------------------------------------------------------------------
# Settlement
# ---------------------------------------------------------------------------

def _default_fetcher() -> GameFetcher:
    return OddsAPIClient().get_completed_games


def _fetch_by_sport(sport_keys: Iterable[str], fetch: GameFetcher, days_from: int,
                    errors: List[str]) -> Dict[str, List[CompletedGame]]:
    games: Dict[str, List[CompletedGame]] = {}
    for sport_key in sorted(set(sport_keys)):
        try:
            games[sport_key] = fetch(sport_key, days_from)
        except requests.exceptions.RequestException as exc:
            errors.append(f"{sport_key}: {exc}")
            logger.error("Could not fetch results for %s: %s", sport_key, exc)
    return games


def _grade(wager, games: Dict[str, List[CompletedGame]]) -> GradeResult:
    if wager.sport_key not in games:
        raise UnresolvedBet("Results unavailable for this sport", wager.selection)
    game = find_completed_game(games[wager.sport_key], wager.event_id,
                               wager.home_team, wager.away_team, wager.commence_time)
    if game is None:
        raise UnresolvedBet("Game not completed yet", wager.selection)
    return grade_selection(wager.bet_type, wager.selection, wager.home_team, game)


def _pending_legs(db: Session, user_id: str) -> List[ParlayLeg]:
    return (
        db.query(ParlayLeg)
        .join(Parlay, ParlayLeg.parlay_id == Parlay.id)
        .filter(
            Parlay.user_id == user_id,
            Parlay.status == PENDING,
            ParlayLeg.status == PENDING,
        )
        .order_by(ParlayLeg.parlay_id, ParlayLeg.position)
        .all()
    )


def auto_settle(db: Session, user_id: str, fetch_completed: Optional[GameFetcher] = None,
                days_from: Optional[int] = None) -> Dict:
    """
    Settle every pending bet of ``user_id`` that has a completed result.

    Returns::

        {"settled": int,
         "results": [{"bet_id", "selection", "status", "result"}],
         "legs":    [{"parlay_id", "leg_id", "selection", "status", "result"}],
         "new_balance": Decimal,
         "errors": [str]}

    A wager reported with status ``pending`` was left untouched.
    """
    days = days_from if days_from is not None else SETTLEMENT_DAYS_FROM
    errors: List[str] = []

    pending = (
        db.query(Bet)
        .filter(Bet.user_id == user_id, Bet.status == PENDING)
        .order_by(Bet.id)
        .all()
    )
    legs = _pending_legs(db, user_id)
    bet_ids = [b.id for b in pending]
    leg_ids = [pl.id for pl in legs]
    sports = {b.sport_key for b in pending}
    sports |= {pl.sport_key for pl in legs}

    games: Dict[str, List[CompletedGame]] = {}
    if sports:
        if fetch_completed is None:
            try:
                fetch_completed = _default_fetcher()
            except ValueError as exc:
                errors.append(str(exc))
                logger.error("Auto-settle for %s skipped: %s", user_id, exc)
        if fetch_completed is not None:
            games = _fetch_by_sport(sports, fetch_completed, days, errors)

    results: List[Dict] = []
    leg_results: List[Dict] = []
    settled = 0

    with wallet_transaction(db, user_id) as wallet:
        for bet_id in bet_ids:
            bet = (
                db.query(Bet)
                .filter(Bet.id == bet_id)
                .with_for_update()
                .populate_existing()
                .one()
            )
            if bet.status != PENDING:
                continue
            try:
                grade = _grade(bet, games)
            except UnresolvedBet as exc:
                results.append({"bet_id": bet.id, "selection": bet.selection,
                                "status": PENDING, "result": exc.reason})
                continue

            apply_outcome(db, wallet, bet, grade.status, grade.result, reference_type="bet")
            settled += 1
            results.append({"bet_id": bet.id, "selection": bet.selection,
                            "status": grade.status, "result": grade.result})
            logger.info("%s: bet %d (%s) | %s", grade.status.upper(), bet.id,
                        bet.selection, grade.result)

        for leg_id in leg_ids:
            leg = db.query(ParlayLeg).filter(ParlayLeg.id == leg_id).populate_existing().one()
            if leg.status != PENDING:
                continue
            try:
                grade = _grade(leg, games)
            except UnresolvedBet as exc:
                leg_results.append({"parlay_id": leg.parlay_id, "leg_id": leg.id,
                                    "selection": leg.selection, "status": PENDING,
                                    "result": exc.reason})
                continue

            leg.status = grade.status
            leg.result = grade.result
            leg.settled_at = utcnow()
            leg_results.append({"parlay_id": leg.parlay_id, "leg_id": leg.id,
                                "selection": leg.selection, "status": grade.status,
                                "result": grade.result})

        new_balance = wallet.balance

    logger.info(
        "Auto-settle for %s: %d/%d bets settled, %d legs graded, %d errors",
        user_id, settled, len(bet_ids),
        sum(1 for r in leg_results if r["status"] != PENDING), len(errors),
    )
    return {
        "settled": settled,
        "results": results,
        "legs": leg_results,
        "new_balance": new_balance,
        "errors": errors,
    }


# ---------------------------------------------------------------------------
# Scheduled job
# ---------------------------------------------------------------------------

def _memoize_by_sport(fetch: GameFetcher) -> GameFetcher:
    """One provider call per sport for the whole run, failures included."""
    cache: Dict[str, object] = {}

    def cached(sport_key: str, days_from: int) -> List[CompletedGame]:
        if sport_key not in cache:
            try:
                cache[sport_key] = fetch(sport_key, days_from)
            except requests.exceptions.RequestException as exc:
                cache[sport_key] = exc
        hit = cache[sport_key]
        if isinstance(hit, Exception):
            raise hit
        return hit

    return cached


def users_with_pending_wagers(db: Session) -> List[str]:
    bet_users = {u for (u,) in db.query(Bet.user_id).filter(Bet.status == PENDING).distinct()}
    parlay_users = {u for (u,) in db.query(Parlay.user_id).filter(Parlay.status == PENDING).distinct()}
    return sorted(bet_users | parlay_users)


def auto_settle_all(fetch_completed: Optional[GameFetcher] = None,
                    session_factory=SessionLocal) -> Dict:
    """
    Settle pending wagers for every user.

    Called by the scheduler.  A failure for one user is logged and recorded
    in the summary; the remaining users are still processed.
    """
    logger.info("Starting auto_settle_all")
    db = session_factory()

    users_processed = 0
    bets_settled = 0
    legs_graded = 0
    errors: List[str] = []

    try:
        if fetch_completed is None:
            try:
                fetch_completed = _default_fetcher()
            except ValueError as exc:
                return _job_summary(0, 0, 0, [str(exc)])
        fetch = _memoize_by_sport(fetch_completed)

        for user_id in users_with_pending_wagers(db):
            try:
                outcome = auto_settle(db, user_id, fetch_completed=fetch)
            except Exception as exc:
                errors.append(f"User {user_id}: {exc}")
                logger.error("Error auto-settling for %s: %s", user_id, exc, exc_info=True)
                continue
            users_processed += 1
            bets_settled += outcome["settled"]
            legs_graded += sum(1 for r in outcome["legs"] if r["status"] != PENDING)
            errors.extend(f"User {user_id}: {e}" for e in outcome["errors"])
    finally:
        db.close()

    summary = _job_summary(users_processed, bets_settled, legs_graded, errors)
    logger.info("auto_settle_all done: %s", summary)
    return summary


def _job_summary(users: int, settled: int, legs: int, errors: List[str]) -> Dict:
    return {
        "users_processed": users,
        "bets_settled": settled,
        "legs_graded": legs,
        "errors": errors,
        "timestamp": utcnow().isoformat(),
    }
