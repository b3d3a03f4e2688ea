"""
Wager lifecycle: placement and manual settlement of bets and parlays.

Status machine (bets, parlays and parlay legs):

    pending ──► won | lost | push | cancelled      (terminal, exactly once)

Ledger effects:
    placement  → one debit of the stake            (bet_placed)
    won        → credit the fixed potential payout  (bet_won)
    push       → refund the stake                   (bet_refund)
    cancelled  → refund the stake                   (bet_refund)
    lost       → nothing; the stake left at placement

Parlay status is always the caller's decision; leg statuses are bookkeeping
and never roll up into the parlay automatically.
"""

import logging
import os
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import List, Optional, Sequence, Union

from sqlalchemy.orm import Session, selectinload

from paperbet.core.errors import (
    AlreadySettled,
    InvalidAmount,
    InvalidParlay,
    InvalidSelection,
    InvalidStatus,
    NotFound,
)
from paperbet.core.odds_math import (
    american_to_decimal,
    combine_parlay_odds,
    format_odds,
    potential_payout,
    to_money,
)
from paperbet.models import (
    BET_TYPES,
    CANCELLED,
    PENDING,
    PUSH,
    TERMINAL_STATUSES,
    TX_BET_PLACED,
    TX_BET_REFUND,
    TX_BET_WON,
    WON,
    Bet,
    Parlay,
    ParlayLeg,
    Wallet,
    utcnow,
)
from paperbet.services.ledger import apply_credit, apply_debit, wallet_transaction
from paperbet.services.preferences import check_bet_limits

logger = logging.getLogger(__name__)

MIN_PARLAY_LEGS = 2


def limits_enforced() -> bool:
    return os.getenv("ENFORCE_BET_LIMITS", "false").lower() == "true"


@dataclass
class Selection:
    """Event identity plus the side being backed — one bet or parlay leg."""

    event_id: str
    sport_key: str
    home_team: str
    away_team: str
    commence_time: datetime
    bet_type: str
    selection: str
    odds: Union[int, float, Decimal]

    def validate(self) -> None:
        if self.bet_type not in BET_TYPES:
            raise InvalidSelection(f"Unknown bet type {self.bet_type!r}")
        american_to_decimal(self.odds)


@dataclass
class Placement:
    wager_id: int
    potential_payout: Decimal
    new_balance: Decimal
    combined_odds: Optional[int] = None


@dataclass
class Settlement:
    wager_id: int
    status: str
    credited: Decimal
    new_balance: Decimal


def _validate_stake(stake) -> Decimal:
    value = to_money(stake)
    if value <= 0:
        raise InvalidAmount(f"Stake must be positive, got {stake}")
    return value


# ---------------------------------------------------------------------------
# Placement
# ---------------------------------------------------------------------------

def place_bet(db: Session, user_id: str, selection: Selection, stake,
              enforce_limits: Optional[bool] = None) -> Placement:
    """
    Place a single-selection bet.

    Payout is fixed here and never recomputed.  Raises InsufficientBalance
    (via the ledger) when the stake exceeds the wallet balance.
    """
    selection.validate()
    amount = _validate_stake(stake)
    payout = potential_payout(amount, selection.odds)
    if enforce_limits is None:
        enforce_limits = limits_enforced()

    with wallet_transaction(db, user_id) as wallet:
        if enforce_limits:
            check_bet_limits(db, user_id, amount)

        bet = Bet(
            user_id=user_id,
            event_id=selection.event_id,
            sport_key=selection.sport_key,
            home_team=selection.home_team,
            away_team=selection.away_team,
            commence_time=selection.commence_time,
            bet_type=selection.bet_type,
            selection=selection.selection,
            odds=to_money(selection.odds),
            stake=amount,
            potential_payout=payout,
            status=PENDING,
        )
        db.add(bet)
        db.flush()

        apply_debit(
            db, wallet, amount, TX_BET_PLACED,
            reference_id=bet.id, reference_type="bet",
            description=f"Bet placed: {selection.selection} @ {format_odds(selection.odds)}",
        )
        placement = Placement(wager_id=bet.id, potential_payout=payout, new_balance=wallet.balance)

    logger.info(
        "Bet %d placed by %s: %s @ %s stake %s → payout %s",
        placement.wager_id, user_id, selection.selection,
        format_odds(selection.odds), amount, payout,
    )
    return placement


def place_parlay(db: Session, user_id: str, legs: Sequence[Selection], stake,
                 enforce_limits: Optional[bool] = None) -> Placement:
    """
    Place a parlay of two or more legs with one stake.

    Combined odds come from the leg prices alone.  The payout is computed
    from the combined American odds, the price the bettor is shown.
    """
    if len(legs) < MIN_PARLAY_LEGS:
        raise InvalidParlay(f"Parlay must have at least {MIN_PARLAY_LEGS} legs, got {len(legs)}")
    for leg in legs:
        leg.validate()
    amount = _validate_stake(stake)
    combined = combine_parlay_odds(legs)
    payout = potential_payout(amount, combined.american_odds)
    if enforce_limits is None:
        enforce_limits = limits_enforced()

    with wallet_transaction(db, user_id) as wallet:
        if enforce_limits:
            check_bet_limits(db, user_id, amount)

        parlay = Parlay(
            user_id=user_id,
            stake=amount,
            combined_odds=to_money(combined.american_odds),
            potential_payout=payout,
            status=PENDING,
        )
        for position, leg in enumerate(legs):
            parlay.legs.append(ParlayLeg(
                position=position,
                event_id=leg.event_id,
                sport_key=leg.sport_key,
                home_team=leg.home_team,
                away_team=leg.away_team,
                commence_time=leg.commence_time,
                bet_type=leg.bet_type,
                selection=leg.selection,
                odds=to_money(leg.odds),
                status=PENDING,
            ))
        db.add(parlay)
        db.flush()

        apply_debit(
            db, wallet, amount, TX_BET_PLACED,
            reference_id=parlay.id, reference_type="parlay",
            description=f"{len(legs)}-leg parlay placed @ {format_odds(combined.american_odds)}",
        )
        placement = Placement(
            wager_id=parlay.id,
            potential_payout=payout,
            new_balance=wallet.balance,
            combined_odds=combined.american_odds,
        )

    logger.info(
        "Parlay %d placed by %s: %d legs @ %s stake %s → payout %s",
        placement.wager_id, user_id, len(legs),
        format_odds(combined.american_odds), amount, payout,
    )
    return placement


# ---------------------------------------------------------------------------
# Settlement
# ---------------------------------------------------------------------------

def _check_target(status: str) -> None:
    if status not in TERMINAL_STATUSES:
        raise InvalidStatus(
            f"Cannot settle to {status!r}; expected one of {sorted(TERMINAL_STATUSES)}"
        )


def apply_outcome(db: Session, wallet: Wallet, wager: Union[Bet, Parlay], status: str,
                  result: Optional[str] = None, reference_type: str = "bet") -> Decimal:
    """
    Move a pending wager to ``status`` and apply its ledger effect.

    The wallet must already be locked by the caller.  Returns the amount
    credited (zero for a loss).
    """
    if wager.status != PENDING:
        raise AlreadySettled(reference_type, wager.id, wager.status)
    _check_target(status)

    label = wager.selection if isinstance(wager, Bet) else f"{len(wager.legs)}-leg parlay"
    detail = f" | {result}" if result else ""
    credited = Decimal("0.00")

    if status == WON:
        credited = to_money(wager.potential_payout)
        apply_credit(
            db, wallet, credited, TX_BET_WON,
            reference_id=wager.id, reference_type=reference_type,
            description=f"Bet won: {label}{detail}",
        )
    elif status in (PUSH, CANCELLED):
        credited = to_money(wager.stake)
        verb = "pushed" if status == PUSH else "cancelled"
        apply_credit(
            db, wallet, credited, TX_BET_REFUND,
            reference_id=wager.id, reference_type=reference_type,
            description=f"Bet {verb} (refunded): {label}{detail}",
        )

    wager.status = status
    wager.result = result
    wager.settled_at = utcnow()
    return credited


def _owned_bet(db: Session, user_id: str, bet_id: int) -> Bet:
    bet = (
        db.query(Bet)
        .filter(Bet.id == bet_id, Bet.user_id == user_id)
        .with_for_update()
        .populate_existing()
        .first()
    )
    if bet is None:
        raise NotFound("bet", bet_id)
    return bet


def _owned_parlay(db: Session, user_id: str, parlay_id: int) -> Parlay:
    parlay = (
        db.query(Parlay)
        .filter(Parlay.id == parlay_id, Parlay.user_id == user_id)
        .with_for_update()
        .populate_existing()
        .first()
    )
    if parlay is None:
        raise NotFound("parlay", parlay_id)
    return parlay


def settle_bet(db: Session, user_id: str, bet_id: int, status: str,
               result: Optional[str] = None) -> Settlement:
    """
    Manually settle one of the caller's pending bets.

    Raises NotFound, AlreadySettled or InvalidStatus without touching the
    wallet.
    """
    _check_target(status)
    with wallet_transaction(db, user_id) as wallet:
        bet = _owned_bet(db, user_id, bet_id)
        credited = apply_outcome(db, wallet, bet, status, result, reference_type="bet")
        settlement = Settlement(bet_id, status, credited, wallet.balance)

    logger.info("Bet %d settled %s by %s (credited %s)", bet_id, status.upper(), user_id, credited)
    return settlement


def settle_parlay(db: Session, user_id: str, parlay_id: int, status: str,
                  result: Optional[str] = None) -> Settlement:
    """Manually settle a pending parlay; leg statuses are left as they are."""
    _check_target(status)
    with wallet_transaction(db, user_id) as wallet:
        parlay = _owned_parlay(db, user_id, parlay_id)
        credited = apply_outcome(db, wallet, parlay, status, result, reference_type="parlay")
        settlement = Settlement(parlay_id, status, credited, wallet.balance)

    logger.info("Parlay %d settled %s by %s (credited %s)", parlay_id, status.upper(), user_id, credited)
    return settlement


def update_parlay_leg(db: Session, user_id: str, parlay_id: int, leg_id: int, status: str,
                      result: Optional[str] = None) -> ParlayLeg:
    """Record a leg's outcome.  No ledger effect; the parlay stays as it is."""
    _check_target(status)
    with wallet_transaction(db, user_id):
        parlay = _owned_parlay(db, user_id, parlay_id)
        leg = next((pl for pl in parlay.legs if pl.id == leg_id), None)
        if leg is None:
            raise NotFound("parlay leg", leg_id)
        if leg.status != PENDING:
            raise AlreadySettled("parlay leg", leg_id, leg.status)
        leg.status = status
        leg.result = result
        leg.settled_at = utcnow()
    return leg


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------

def list_bets(db: Session, user_id: str, limit: int = 50) -> List[Bet]:
    return (
        db.query(Bet)
        .filter(Bet.user_id == user_id)
        .order_by(Bet.created_at.desc(), Bet.id.desc())
        .limit(limit)
        .all()
    )


def pending_bets(db: Session, user_id: str) -> List[Bet]:
    return (
        db.query(Bet)
        .filter(Bet.user_id == user_id, Bet.status == PENDING)
        .order_by(Bet.created_at.desc(), Bet.id.desc())
        .all()
    )


def list_parlays(db: Session, user_id: str, limit: int = 50) -> List[Parlay]:
    return (
        db.query(Parlay)
        .options(selectinload(Parlay.legs))
        .filter(Parlay.user_id == user_id)
        .order_by(Parlay.created_at.desc(), Parlay.id.desc())
        .limit(limit)
        .all()
    )
