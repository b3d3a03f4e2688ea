"""
Database models for PaperBet
SQLAlchemy ORM; SQLite for development, PostgreSQL in production
"""

from sqlalchemy import (
    create_engine,
    Column,
    Integer,
    String,
    Numeric,
    DateTime,
    Boolean,
    JSON,
    Text,
    ForeignKey,
)
from sqlalchemy.orm import declarative_base, sessionmaker, relationship
from datetime import datetime, timezone
import os
from dotenv import load_dotenv

load_dotenv()

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./paperbet.db")

_connect_args = {"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {}

engine = create_engine(DATABASE_URL, pool_pre_ping=True, echo=False, connect_args=_connect_args)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()


# Dependency for FastAPI
def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def utcnow() -> datetime:
    """Naive UTC timestamp, the convention for every DateTime column."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


# Wager status values. "pending" is the only non-terminal state.
PENDING = "pending"
WON = "won"
LOST = "lost"
PUSH = "push"
CANCELLED = "cancelled"
TERMINAL_STATUSES = frozenset({WON, LOST, PUSH, CANCELLED})

BET_TYPES = frozenset({"moneyline", "spread", "total"})

# Wallet transaction types
TX_DEPOSIT = "deposit"
TX_WITHDRAWAL = "withdrawal"
TX_BET_PLACED = "bet_placed"
TX_BET_WON = "bet_won"
TX_BET_LOST = "bet_lost"
TX_BET_REFUND = "bet_refund"

RISK_TOLERANCES = ("conservative", "moderate", "aggressive")


class Wallet(Base):
    """Virtual paper-trading wallet, one per user"""

    __tablename__ = "wallets"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(64), unique=True, nullable=False, index=True)

    # Mutated only through paperbet.services.ledger
    balance = Column(Numeric(12, 2), nullable=False)
    starting_balance = Column(Numeric(12, 2), nullable=False)  # Opening grant, not a transaction
    total_deposited = Column(Numeric(12, 2), nullable=False)
    total_withdrawn = Column(Numeric(12, 2), nullable=False, default=0)

    transactions = relationship(
        "WalletTransaction", back_populates="wallet", order_by="WalletTransaction.id"
    )

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)


class WalletTransaction(Base):
    """Append-only audit record of a single balance change"""

    __tablename__ = "wallet_transactions"

    id = Column(Integer, primary_key=True, index=True)
    wallet_id = Column(Integer, ForeignKey("wallets.id"), nullable=False, index=True)
    user_id = Column(String(64), nullable=False, index=True)

    type = Column(String(32), nullable=False)  # deposit | withdrawal | bet_placed | bet_won | bet_lost | bet_refund
    amount = Column(Numeric(12, 2), nullable=False)  # Signed: negative for debits
    balance_after = Column(Numeric(12, 2), nullable=False)

    reference_id = Column(Integer)
    reference_type = Column(String(32))  # "bet" | "parlay"
    description = Column(Text)

    created_at = Column(DateTime, default=utcnow, index=True)

    wallet = relationship("Wallet", back_populates="transactions")


class Bet(Base):
    """Single-selection wager"""

    __tablename__ = "bets"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(64), nullable=False, index=True)

    # Event identity (from the odds provider)
    event_id = Column(String(128), nullable=False, index=True)
    sport_key = Column(String(64), nullable=False, index=True)
    home_team = Column(String(128), nullable=False)
    away_team = Column(String(128), nullable=False)
    commence_time = Column(DateTime, nullable=False)

    # What we bet
    bet_type = Column(String(16), nullable=False)  # "moneyline", "spread", "total"
    selection = Column(String(256), nullable=False)  # "Lakers -3.5", "Over 220.5"
    odds = Column(Numeric(8, 2), nullable=False)  # American odds
    stake = Column(Numeric(10, 2), nullable=False)
    potential_payout = Column(Numeric(12, 2), nullable=False)  # Fixed at placement

    # Outcome
    status = Column(String(16), nullable=False, default=PENDING, index=True)
    result = Column(Text)
    settled_at = Column(DateTime)

    created_at = Column(DateTime, default=utcnow, index=True)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)


class Parlay(Base):
    """Multi-leg wager; the parlay carries the stake and payout"""

    __tablename__ = "parlays"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(64), nullable=False, index=True)

    stake = Column(Numeric(10, 2), nullable=False)
    combined_odds = Column(Numeric(10, 2), nullable=False)  # American odds
    potential_payout = Column(Numeric(12, 2), nullable=False)

    # Set explicitly by the settling caller, never derived from legs
    status = Column(String(16), nullable=False, default=PENDING, index=True)
    result = Column(Text)
    settled_at = Column(DateTime)

    legs = relationship(
        "ParlayLeg", back_populates="parlay", order_by="ParlayLeg.position",
        cascade="all, delete-orphan",
    )

    created_at = Column(DateTime, default=utcnow, index=True)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)


class ParlayLeg(Base):
    """One selection of a parlay, with its own bookkeeping status"""

    __tablename__ = "parlay_legs"

    id = Column(Integer, primary_key=True, index=True)
    parlay_id = Column(Integer, ForeignKey("parlays.id"), nullable=False, index=True)
    position = Column(Integer, nullable=False)

    event_id = Column(String(128), nullable=False)
    sport_key = Column(String(64), nullable=False)
    home_team = Column(String(128), nullable=False)
    away_team = Column(String(128), nullable=False)
    commence_time = Column(DateTime, nullable=False)

    bet_type = Column(String(16), nullable=False)
    selection = Column(String(256), nullable=False)
    odds = Column(Numeric(8, 2), nullable=False)

    status = Column(String(16), nullable=False, default=PENDING)
    result = Column(Text)
    settled_at = Column(DateTime)

    created_at = Column(DateTime, default=utcnow)

    parlay = relationship("Parlay", back_populates="legs")


class UserPreference(Base):
    """Risk settings; context for advice, limits enforced only when enabled"""

    __tablename__ = "user_preferences"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(64), unique=True, nullable=False, index=True)

    risk_tolerance = Column(String(16), nullable=False, default="moderate")
    favorite_sports = Column(JSON)
    max_bet_amount = Column(Numeric(10, 2), default=100)
    daily_bet_limit = Column(Numeric(10, 2), default=500)
    notifications_enabled = Column(Boolean, default=True)
    responsible_gambling_acknowledged = Column(Boolean, default=False)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)


# Create all tables
def init_db(bind=None):
    """Initialize database tables"""
    Base.metadata.create_all(bind=bind or engine)
