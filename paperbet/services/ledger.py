"""
Wallet ledger: the single source of truth for paper-trading balances.

Every balance change is paired with an append-only WalletTransaction in the
same database transaction.  Public operations take the wallet through
``wallet_transaction()``, which serialises work on one wallet:

  1. a process-local lock per user (SQLite ignores row locks),
  2. ``SELECT ... FOR UPDATE`` on the wallet row (PostgreSQL, multi-process),
  3. one commit on success, a full rollback on any exception.

Operations on different wallets never share a lock.
"""

import logging
import os
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, Iterable, Iterator, List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from paperbet.core.errors import InsufficientBalance, InvalidAmount
from paperbet.core.odds_math import to_money
from paperbet.models import (
    TX_DEPOSIT,
    TX_WITHDRAWAL,
    Wallet,
    WalletTransaction,
)

logger = logging.getLogger(__name__)

STARTING_BALANCE = to_money(os.getenv("STARTING_BALANCE", "10000.00"))
MAX_DEPOSIT = to_money(os.getenv("MAX_DEPOSIT", "100000"))


# ---------------------------------------------------------------------------
# Per-wallet serialisation
# ---------------------------------------------------------------------------

_wallet_locks: Dict[str, threading.RLock] = {}
_registry_lock = threading.Lock()


def _lock_for(user_id: str) -> threading.RLock:
    with _registry_lock:
        lock = _wallet_locks.get(user_id)
        if lock is None:
            lock = _wallet_locks[user_id] = threading.RLock()
        return lock


def _select_wallet(db: Session, user_id: str) -> Optional[Wallet]:
    return (
        db.query(Wallet)
        .filter(Wallet.user_id == user_id)
        .with_for_update()
        .populate_existing()
        .first()
    )


def _load_wallet_for_update(db: Session, user_id: str) -> Wallet:
    wallet = _select_wallet(db, user_id)
    if wallet is not None:
        return wallet

    wallet = Wallet(
        user_id=user_id,
        balance=STARTING_BALANCE,
        starting_balance=STARTING_BALANCE,
        total_deposited=STARTING_BALANCE,
        total_withdrawn=Decimal("0.00"),
    )
    db.add(wallet)
    try:
        db.flush()
    except IntegrityError:
        # Another process created the row between our select and insert.
        db.rollback()
        logger.info("Wallet for user %s created concurrently, reloading", user_id)
        wallet = _select_wallet(db, user_id)
        if wallet is None:
            raise
        return wallet

    logger.info("Wallet created for user %s with %s", user_id, STARTING_BALANCE)
    return wallet


@contextmanager
def wallet_transaction(db: Session, user_id: str) -> Iterator[Wallet]:
    """
    Lock ``user_id``'s wallet for one indivisible read-modify-write.

    Yields the (lazily created) wallet.  Commits once when the block exits
    normally; rolls back every change made in the block otherwise.
    """
    with _lock_for(user_id):
        try:
            wallet = _load_wallet_for_update(db, user_id)
            yield wallet
            db.commit()
        except Exception:
            db.rollback()
            raise


# ---------------------------------------------------------------------------
# Balance mutations on an already-locked wallet
# ---------------------------------------------------------------------------

def _positive_amount(amount) -> Decimal:
    value = to_money(amount)
    if value <= 0:
        raise InvalidAmount(f"Amount must be positive, got {amount}")
    return value


def apply_credit(
    db: Session,
    wallet: Wallet,
    amount,
    tx_type: str,
    reference_id: Optional[int] = None,
    reference_type: Optional[str] = None,
    description: Optional[str] = None,
) -> WalletTransaction:
    """Increase the balance and append the matching transaction."""
    value = _positive_amount(amount)
    wallet.balance = to_money(wallet.balance + value)
    if tx_type == TX_DEPOSIT:
        wallet.total_deposited = to_money(wallet.total_deposited + value)

    tx = WalletTransaction(
        wallet_id=wallet.id,
        user_id=wallet.user_id,
        type=tx_type,
        amount=value,
        balance_after=wallet.balance,
        reference_id=reference_id,
        reference_type=reference_type,
        description=description,
    )
    db.add(tx)
    return tx


def apply_debit(
    db: Session,
    wallet: Wallet,
    amount,
    tx_type: str,
    reference_id: Optional[int] = None,
    reference_type: Optional[str] = None,
    description: Optional[str] = None,
) -> WalletTransaction:
    """Decrease the balance and append the matching (negative) transaction."""
    value = _positive_amount(amount)
    if value > wallet.balance:
        raise InsufficientBalance(value, to_money(wallet.balance))

    wallet.balance = to_money(wallet.balance - value)
    if tx_type == TX_WITHDRAWAL:
        wallet.total_withdrawn = to_money(wallet.total_withdrawn + value)

    tx = WalletTransaction(
        wallet_id=wallet.id,
        user_id=wallet.user_id,
        type=tx_type,
        amount=-value,
        balance_after=wallet.balance,
        reference_id=reference_id,
        reference_type=reference_type,
        description=description,
    )
    db.add(tx)
    return tx


# ---------------------------------------------------------------------------
# Public atomic operations
# ---------------------------------------------------------------------------

def get_wallet(db: Session, user_id: str) -> Wallet:
    """Return the user's wallet, creating it with the starting balance."""
    with wallet_transaction(db, user_id) as wallet:
        pass
    return wallet


def credit(db: Session, user_id: str, amount, tx_type: str,
           reference_id: Optional[int] = None, reference_type: Optional[str] = None,
           description: Optional[str] = None) -> WalletTransaction:
    with wallet_transaction(db, user_id) as wallet:
        tx = apply_credit(db, wallet, amount, tx_type, reference_id, reference_type, description)
    return tx


def debit(db: Session, user_id: str, amount, tx_type: str,
          reference_id: Optional[int] = None, reference_type: Optional[str] = None,
          description: Optional[str] = None) -> WalletTransaction:
    with wallet_transaction(db, user_id) as wallet:
        tx = apply_debit(db, wallet, amount, tx_type, reference_id, reference_type, description)
    return tx


def deposit(db: Session, user_id: str, amount) -> WalletTransaction:
    """Add virtual funds.  0 < amount <= MAX_DEPOSIT."""
    value = _positive_amount(amount)
    if value > MAX_DEPOSIT:
        raise InvalidAmount(f"Deposit {value} exceeds maximum of {MAX_DEPOSIT}")

    tx = credit(
        db, user_id, value, TX_DEPOSIT,
        description=f"Deposited ${value} virtual funds",
    )
    logger.info("Deposit: user %s +%s → balance %s", user_id, value, tx.balance_after)
    return tx


def withdraw(db: Session, user_id: str, amount) -> WalletTransaction:
    """Remove virtual funds; fails with InsufficientBalance past zero."""
    value = _positive_amount(amount)
    tx = debit(
        db, user_id, value, TX_WITHDRAWAL,
        description=f"Withdrew ${value} virtual funds",
    )
    logger.info("Withdrawal: user %s -%s → balance %s", user_id, value, tx.balance_after)
    return tx


def get_transactions(db: Session, user_id: str, limit: int = 50) -> List[WalletTransaction]:
    """Newest first."""
    return (
        db.query(WalletTransaction)
        .filter(WalletTransaction.user_id == user_id)
        .order_by(WalletTransaction.id.desc())
        .limit(limit)
        .all()
    )


# ---------------------------------------------------------------------------
# Audit
# ---------------------------------------------------------------------------

@dataclass
class LedgerMismatch:
    transaction_id: int
    expected_balance: Decimal
    recorded_balance: Decimal


def replay_ledger(wallet: Wallet, transactions: Iterable[WalletTransaction]) -> List[LedgerMismatch]:
    """
    Replay ``transactions`` (creation order) from the wallet's opening grant.

    Returns every snapshot that disagrees with the running sum, plus a final
    pseudo-entry (transaction_id=0) when the wallet balance itself drifts.
    An empty list means the ledger is consistent.
    """
    running = to_money(wallet.starting_balance)
    mismatches: List[LedgerMismatch] = []
    for tx in sorted(transactions, key=lambda t: t.id):
        running = to_money(running + tx.amount)
        if running != to_money(tx.balance_after):
            mismatches.append(LedgerMismatch(tx.id, running, to_money(tx.balance_after)))
    if running != to_money(wallet.balance):
        mismatches.append(LedgerMismatch(0, running, to_money(wallet.balance)))
    return mismatches
