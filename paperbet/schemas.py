"""
Pydantic request/response schemas for the PaperBet API.

Requests carry only what a user may set; status, payout and balances are
always derived server-side.  Money arrives as ``Decimal`` and leaves as
``float``.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


def _check_american_odds(v: float) -> float:
    if v == 0:
        raise ValueError("odds cannot be 0")
    if -100 < v < 100:
        raise ValueError(
            f"odds={v} is not valid American odds. Must be >= +100 or <= -100."
        )
    return v


# ---------------------------------------------------------------------------
# Wallet
# ---------------------------------------------------------------------------

class AmountRequest(BaseModel):
    """Payload for POST /api/wallet/deposit and /api/wallet/withdraw."""

    amount: Decimal = Field(..., gt=0, description="Virtual dollars")


class WalletResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    user_id: str
    balance: float
    starting_balance: float
    total_deposited: float
    total_withdrawn: float


class TransactionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    type: str
    amount: float
    balance_after: float
    reference_id: Optional[int] = None
    reference_type: Optional[str] = None
    description: Optional[str] = None
    created_at: Optional[datetime] = None


class LedgerAuditResponse(BaseModel):
    consistent: bool
    balance: float
    transactions_checked: int
    mismatches: List[Dict[str, Any]]


# ---------------------------------------------------------------------------
# Bets and parlays
# ---------------------------------------------------------------------------

class SelectionIn(BaseModel):
    """One side of one event, as offered by the odds feed."""

    event_id: str = Field(..., min_length=1, max_length=128)
    sport_key: str = Field(..., min_length=1, max_length=64)
    home_team: str = Field(..., min_length=1, max_length=128)
    away_team: str = Field(..., min_length=1, max_length=128)
    commence_time: datetime
    bet_type: Literal["moneyline", "spread", "total"]
    selection: str = Field(..., min_length=1, max_length=256, description='e.g. "Lakers -3.5"')
    odds: float = Field(..., description="American odds")

    @field_validator("odds")
    @classmethod
    def validate_american_odds(cls, v: float) -> float:
        return _check_american_odds(v)


class BetCreate(SelectionIn):
    """Payload for POST /api/bets."""

    stake: Decimal = Field(..., gt=0)

    model_config = {
        "json_schema_extra": {
            "example": {
                "event_id": "e912304de2b2ce35b473ce2ecd3d1502",
                "sport_key": "basketball_nba",
                "home_team": "Los Angeles Lakers",
                "away_team": "Boston Celtics",
                "commence_time": "2026-01-15T03:00:00Z",
                "bet_type": "spread",
                "selection": "Los Angeles Lakers -3.5",
                "odds": -110,
                "stake": 25,
            }
        }
    }


class ParlayCreate(BaseModel):
    """Payload for POST /api/parlays.  The two-leg minimum is checked by the service."""

    legs: List[SelectionIn]
    stake: Decimal = Field(..., gt=0)


class OddsLeg(BaseModel):
    odds: float

    @field_validator("odds")
    @classmethod
    def validate_american_odds(cls, v: float) -> float:
        return _check_american_odds(v)


class ParlayCalculateRequest(BaseModel):
    legs: List[OddsLeg] = Field(..., min_length=1)
    stake: Optional[Decimal] = Field(None, gt=0)


class ParlayCalculateResponse(BaseModel):
    decimal_odds: float
    combined_odds: int
    implied_probability: float
    potential_payout: Optional[float] = None


class SettleRequest(BaseModel):
    """Payload for manual settlement of a bet, parlay or parlay leg."""

    status: Literal["won", "lost", "push", "cancelled"]
    result: Optional[str] = Field(None, max_length=1000)


class PlacementResponse(BaseModel):
    id: int
    potential_payout: float
    new_balance: float
    combined_odds: Optional[int] = None


class SettlementResponse(BaseModel):
    id: int
    status: str
    credited: float
    new_balance: float


class BetResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    event_id: str
    sport_key: str
    home_team: str
    away_team: str
    commence_time: datetime
    bet_type: str
    selection: str
    odds: float
    stake: float
    potential_payout: float
    status: str
    result: Optional[str] = None
    settled_at: Optional[datetime] = None
    created_at: Optional[datetime] = None


class ParlayLegResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    position: int
    event_id: str
    sport_key: str
    home_team: str
    away_team: str
    bet_type: str
    selection: str
    odds: float
    status: str
    result: Optional[str] = None


class ParlayResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    stake: float
    combined_odds: float
    potential_payout: float
    status: str
    result: Optional[str] = None
    settled_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    legs: List[ParlayLegResponse] = []


class AutoSettleResponse(BaseModel):
    settled: int
    results: List[Dict[str, Any]]
    legs: List[Dict[str, Any]]
    new_balance: float
    errors: List[str]


# ---------------------------------------------------------------------------
# Predictions
# ---------------------------------------------------------------------------

class EventIn(BaseModel):
    """A provider event: teams plus zero or more bookmaker price tables."""

    id: Optional[str] = None
    sport_key: Optional[str] = None
    home_team: str = Field(..., min_length=1)
    away_team: str = Field(..., min_length=1)
    commence_time: Optional[str] = None
    bookmakers: List[Dict[str, Any]] = []


class ValueBetResponse(BaseModel):
    selection: str
    bet_type: str
    bookmaker: str
    odds: float
    implied_probability: float
    model_probability: float
    expected_value: float
    value_rating: str


class PredictionResponse(BaseModel):
    event_id: Optional[str] = None
    home_team: str
    away_team: str
    predicted_winner: Optional[str] = None
    home_win_probability: float
    away_win_probability: float
    draw_probability: float
    predicted_home_score: float
    predicted_away_score: float
    confidence: float
    value_rating: Literal["strong_value", "moderate_value", "fair_value", "poor_value"]
    rationale: str
    model_used: str
    value_bets: List[ValueBetResponse]


# ---------------------------------------------------------------------------
# Preferences
# ---------------------------------------------------------------------------

class PreferencesUpdate(BaseModel):
    """Payload for PUT /api/preferences.  Omitted fields are left unchanged."""

    risk_tolerance: Optional[Literal["conservative", "moderate", "aggressive"]] = None
    favorite_sports: Optional[List[str]] = None
    max_bet_amount: Optional[Decimal] = Field(None, gt=0)
    daily_bet_limit: Optional[Decimal] = Field(None, gt=0)
    notifications_enabled: Optional[bool] = None
    responsible_gambling_acknowledged: Optional[bool] = None


class PreferencesResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    risk_tolerance: str
    favorite_sports: Optional[List[str]] = None
    max_bet_amount: Optional[float] = None
    daily_bet_limit: Optional[float] = None
    notifications_enabled: Optional[bool] = None
    responsible_gambling_acknowledged: Optional[bool] = None
