"""
User preferences and optional bet-limit checks.

Preferences are advisory context by default.  ``check_bet_limits`` is only
called by the wager layer when ENFORCE_BET_LIMITS=true.
"""

import logging
from datetime import datetime, time
from decimal import Decimal
from typing import Dict, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from paperbet.core.errors import BetLimitExceeded
from paperbet.core.odds_math import to_money
from paperbet.models import RISK_TOLERANCES, Bet, Parlay, UserPreference, utcnow

logger = logging.getLogger(__name__)

_UPDATABLE_FIELDS = (
    "risk_tolerance",
    "favorite_sports",
    "max_bet_amount",
    "daily_bet_limit",
    "notifications_enabled",
    "responsible_gambling_acknowledged",
)


def get_or_create_preferences(db: Session, user_id: str) -> UserPreference:
    prefs = db.query(UserPreference).filter(UserPreference.user_id == user_id).first()
    if prefs is None:
        prefs = UserPreference(
            user_id=user_id,
            risk_tolerance="moderate",
            favorite_sports=[],
            max_bet_amount=Decimal("100.00"),
            daily_bet_limit=Decimal("500.00"),
            notifications_enabled=True,
            responsible_gambling_acknowledged=False,
        )
        db.add(prefs)
        db.commit()
        db.refresh(prefs)
    return prefs


def update_preferences(db: Session, user_id: str, updates: Dict) -> UserPreference:
    """Apply the non-None fields of ``updates``; unknown keys are ignored."""
    prefs = get_or_create_preferences(db, user_id)

    for field in _UPDATABLE_FIELDS:
        value = updates.get(field)
        if value is None:
            continue
        if field == "risk_tolerance" and value not in RISK_TOLERANCES:
            raise ValueError(f"risk_tolerance must be one of {RISK_TOLERANCES}")
        if field in ("max_bet_amount", "daily_bet_limit"):
            value = to_money(value)
        setattr(prefs, field, value)

    db.commit()
    db.refresh(prefs)
    logger.info("Preferences updated for %s", user_id)
    return prefs


def staked_today(db: Session, user_id: str, now: Optional[datetime] = None) -> Decimal:
    """Total stake placed since UTC midnight, bets and parlays combined."""
    start = datetime.combine((now or utcnow()).date(), time.min)
    bets = (
        db.query(func.coalesce(func.sum(Bet.stake), 0))
        .filter(Bet.user_id == user_id, Bet.created_at >= start)
        .scalar()
    )
    parlays = (
        db.query(func.coalesce(func.sum(Parlay.stake), 0))
        .filter(Parlay.user_id == user_id, Parlay.created_at >= start)
        .scalar()
    )
    return to_money(Decimal(str(bets)) + Decimal(str(parlays)))


def check_bet_limits(db: Session, user_id: str, stake) -> None:
    """Raise BetLimitExceeded when ``stake`` breaks max-bet or the daily limit."""
    prefs = db.query(UserPreference).filter(UserPreference.user_id == user_id).first()
    if prefs is None:
        return

    amount = to_money(stake)
    if prefs.max_bet_amount is not None and amount > prefs.max_bet_amount:
        raise BetLimitExceeded(
            f"Stake {amount} exceeds max bet amount {to_money(prefs.max_bet_amount)}"
        )

    if prefs.daily_bet_limit is not None:
        total = staked_today(db, user_id) + amount
        if total > prefs.daily_bet_limit:
            raise BetLimitExceeded(
                f"Stake {amount} would bring today's total to {total}, "
                f"over the daily limit {to_money(prefs.daily_bet_limit)}"
            )
