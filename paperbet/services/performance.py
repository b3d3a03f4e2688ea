"""
Betting performance analytics.

All public functions receive a SQLAlchemy Session and return plain dicts
so they can be called from FastAPI endpoints without importing any
web-layer code.  Money is summed as ``Decimal`` and converted to ``float``
only in the returned dicts.

Only single bets are counted.  Cancelled bets are excluded from settled
totals; pushes count as settled but contribute neither profit nor loss.
"""

import logging
from collections import OrderedDict
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Dict, List, Optional

from sqlalchemy.orm import Session

from paperbet.core.odds_math import to_money
from paperbet.models import CANCELLED, LOST, PENDING, PUSH, WON, Bet, utcnow

logger = logging.getLogger(__name__)

ZERO = Decimal("0.00")


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

def _safe_roi(profit: Decimal, risked: Decimal) -> float:
    """ROI as a percentage, 2 dp."""
    return round(float(profit / risked * 100), 2) if risked > 0 else 0.0


def _win_rate(wins: int, total: int) -> float:
    """Win rate as a percentage, 2 dp."""
    return round(wins / total * 100, 2) if total > 0 else 0.0


def _bet_profit(bet: Bet) -> Decimal:
    if bet.status == WON:
        return to_money(bet.potential_payout - bet.stake)
    if bet.status == LOST:
        return -to_money(bet.stake)
    return ZERO


def _sport_label(sport_key: str) -> str:
    """'basketball_nba' → 'Basketball Nba'."""
    return sport_key.replace("_", " ", 1).title()


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def bet_stats(db: Session, user_id: str) -> Dict:
    bets = db.query(Bet).filter(Bet.user_id == user_id).all()
    settled = [b for b in bets if b.status not in (PENDING, CANCELLED)]
    won = [b for b in settled if b.status == WON]

    total_staked = sum((to_money(b.stake) for b in settled), ZERO)
    # a push returns the stake
    total_returns = sum((to_money(b.potential_payout) for b in won), ZERO)
    total_returns += sum((to_money(b.stake) for b in settled if b.status == PUSH), ZERO)
    profit_loss = total_returns - total_staked

    return {
        "total_bets": len(bets),
        "settled_bets": len(settled),
        "pending_bets": sum(1 for b in bets if b.status == PENDING),
        "won_bets": len(won),
        "lost_bets": sum(1 for b in settled if b.status == LOST),
        "total_staked": float(total_staked),
        "total_returns": float(total_returns),
        "profit_loss": float(profit_loss),
        "roi": _safe_roi(profit_loss, total_staked),
        "win_rate": _win_rate(len(won), len(settled)),
    }


def profit_history(db: Session, user_id: str, days: int = 30,
                   now: Optional[datetime] = None) -> List[Dict]:
    """
    Daily and cumulative P&L for the last ``days`` days, oldest first.

    Every calendar day (UTC) in the window appears, zero-filled, so the
    result always has ``days + 1`` rows ending today.
    """
    now = now or utcnow()
    start = now - timedelta(days=days)

    settled = (
        db.query(Bet)
        .filter(
            Bet.user_id == user_id,
            Bet.settled_at.isnot(None),
            Bet.settled_at >= start,
        )
        .order_by(Bet.settled_at)
        .all()
    )

    daily: Dict[str, Decimal] = {}
    for bet in settled:
        key = bet.settled_at.date().isoformat()
        daily[key] = daily.get(key, ZERO) + _bet_profit(bet)

    history = []
    cumulative = ZERO
    for offset in range(days, -1, -1):
        key = (now - timedelta(days=offset)).date().isoformat()
        profit = daily.get(key, ZERO)
        cumulative += profit
        history.append({
            "date": key,
            "profit": float(profit),
            "cumulative": float(cumulative),
        })
    return history


def stats_by_sport(db: Session, user_id: str) -> List[Dict]:
    """Bet count, wins, losses and profit per sport, in order of first bet."""
    bets = db.query(Bet).filter(Bet.user_id == user_id).order_by(Bet.id).all()

    by_sport: "OrderedDict[str, Dict]" = OrderedDict()
    for bet in bets:
        row = by_sport.setdefault(
            bet.sport_key, {"bets": 0, "wins": 0, "losses": 0, "profit": ZERO}
        )
        row["bets"] += 1
        if bet.status == WON:
            row["wins"] += 1
        elif bet.status == LOST:
            row["losses"] += 1
        row["profit"] += _bet_profit(bet)

    return [
        {
            "sport_key": sport_key,
            "sport": _sport_label(sport_key),
            "bets": row["bets"],
            "wins": row["wins"],
            "losses": row["losses"],
            "profit": float(row["profit"]),
            "win_rate": _win_rate(row["wins"], row["wins"] + row["losses"]),
        }
        for sport_key, row in by_sport.items()
    ]
