#!/usr/bin/env python3
"""
Database initialization script
Creates all tables and optionally audits every wallet's ledger
"""

import sys
import os

# Add parent directory to path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

# Load .env file
from dotenv import load_dotenv
load_dotenv()

from paperbet.models import Base, engine, SessionLocal, Wallet
from paperbet.services.ledger import replay_ledger
import logging
from sqlalchemy import text, inspect

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def init_database(drop_existing: bool = False):
    """
    Initialize database tables

    Args:
        drop_existing: If True, drops all tables first (DANGER: data loss!)
    """
    logger.info("Initializing PaperBet database...")

    if drop_existing:
        logger.warning("Dropping all existing tables!")
        response = input("Are you sure? This will delete all wallets and bets. Type 'yes' to confirm: ")
        if response.lower() != 'yes':
            logger.info("Aborted.")
            return False

        Base.metadata.drop_all(bind=engine)
        logger.info("Existing tables dropped")

    Base.metadata.create_all(bind=engine)
    logger.info("Database tables created successfully")

    inspector = inspect(engine)
    logger.info("Tables: %s", ", ".join(inspector.get_table_names()))
    return True


def audit_ledgers() -> int:
    """Replay every wallet's transactions; returns the number of inconsistent wallets."""
    db = SessionLocal()
    bad = 0
    try:
        for wallet in db.query(Wallet).order_by(Wallet.id).all():
            mismatches = replay_ledger(wallet, wallet.transactions)
            if mismatches:
                bad += 1
                for m in mismatches:
                    logger.error(
                        "Wallet %s tx %d: expected %s, recorded %s",
                        wallet.user_id, m.transaction_id, m.expected_balance, m.recorded_balance,
                    )
            else:
                logger.info("Wallet %s consistent (balance %s)", wallet.user_id, wallet.balance)
    finally:
        db.close()
    return bad


def check_connection():
    """Test database connection"""
    try:
        db = SessionLocal()
        db.execute(text("SELECT 1"))
        db.close()
        logger.info("Database connection successful")
        return True
    except Exception as e:
        logger.error("Database connection failed: %s", e)
        return False


if __name__ == "__main__":
    import argparse

    parser = argparse.ArgumentParser(description="Initialize PaperBet database")
    parser.add_argument("--drop", action="store_true", help="Drop existing tables (DANGER!)")
    parser.add_argument("--audit", action="store_true", help="Replay every wallet ledger")
    parser.add_argument("--check", action="store_true", help="Only check connection")

    args = parser.parse_args()

    if args.check:
        check_connection()
    elif not check_connection():
        logger.error("Cannot initialize database - connection failed")
        sys.exit(1)
    else:
        init_database(drop_existing=args.drop)
        if args.audit and audit_ledgers():
            sys.exit(2)
        logger.info("Database initialization complete!")
