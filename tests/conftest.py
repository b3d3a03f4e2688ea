"""Shared fixtures: throwaway SQLite databases and a wager helper."""

import os

os.environ.setdefault("ENVIRONMENT", "development")
os.environ.setdefault("AUTO_SETTLE_ENABLED", "false")

from datetime import datetime

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from paperbet.models import Base
from paperbet.services.wagers import Selection


@pytest.fixture
def engine():
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def file_session_factory(tmp_path):
    """One connection per session, for tests that hit the database from several threads."""
    eng = create_engine(
        f"sqlite:///{tmp_path / 'paperbet_test.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    Base.metadata.create_all(bind=eng)
    yield sessionmaker(autocommit=False, autoflush=False, bind=eng)
    eng.dispose()


def _selection(
    selection="Lakers",
    odds=150,
    bet_type="moneyline",
    home="Lakers",
    away="Celtics",
    event_id="evt-1",
    sport_key="basketball_nba",
):
    return Selection(
        event_id=event_id,
        sport_key=sport_key,
        home_team=home,
        away_team=away,
        commence_time=datetime(2026, 1, 15, 3, 0),
        bet_type=bet_type,
        selection=selection,
        odds=odds,
    )


@pytest.fixture
def make_selection():
    """Factory for wager selections; defaults to Lakers moneyline at +150."""
    return _selection

