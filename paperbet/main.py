"""
FastAPI application for PaperBet
Paper-trading sports betting: odds, predictions, wallet, bets and parlays
"""

from fastapi import FastAPI, Depends, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session
from sqlalchemy import text
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger
from contextlib import asynccontextmanager
from datetime import timezone
from typing import List
import logging
import os

from paperbet import __version__
from paperbet.auth import verify_api_key, verify_admin_api_key
from paperbet.core.errors import AlreadySettled, BettingError, NotFound
from paperbet.core.odds_math import combine_parlay_odds, potential_payout
from paperbet.models import get_db, init_db
from paperbet.schemas import (
    AmountRequest,
    AutoSettleResponse,
    BetCreate,
    BetResponse,
    EventIn,
    LedgerAuditResponse,
    ParlayCalculateRequest,
    ParlayCalculateResponse,
    ParlayCreate,
    ParlayLegResponse,
    ParlayResponse,
    PlacementResponse,
    PredictionResponse,
    PreferencesResponse,
    PreferencesUpdate,
    SelectionIn,
    SettleRequest,
    SettlementResponse,
    TransactionResponse,
    WalletResponse,
)
from paperbet.services import ledger, performance, preferences, wagers
from paperbet.services.odds import OddsAPIClient, get_api_quota
from paperbet.services.prediction import generate_prediction, generate_predictions
from paperbet.services.settlement import auto_settle, auto_settle_all

# Logging setup
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

AUTO_SETTLE_ENABLED = os.getenv("AUTO_SETTLE_ENABLED", "true").lower() == "true"
AUTO_SETTLE_INTERVAL_HOURS = float(os.getenv("AUTO_SETTLE_INTERVAL_HOURS", "2"))

# Scheduler instance
scheduler = BackgroundScheduler()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events"""
    logger.info("Starting PaperBet %s", __version__)
    init_db()

    if AUTO_SETTLE_ENABLED:
        scheduler.add_job(
            _auto_settle_job,
            IntervalTrigger(hours=AUTO_SETTLE_INTERVAL_HOURS),
            id="auto_settle",
            name="Auto-settle Pending Wagers",
            replace_existing=True,
        )
        scheduler.start()
        logger.info("Scheduler started: auto-settle every %sh", AUTO_SETTLE_INTERVAL_HOURS)
    else:
        logger.info("Auto-settle disabled (AUTO_SETTLE_ENABLED=false)")

    yield

    logger.info("Shutting down PaperBet")
    if scheduler.running:
        scheduler.shutdown()


app = FastAPI(
    title="PaperBet",
    description="Paper-trading sports betting API",
    version=__version__,
    lifespan=lifespan,
)

# CORS (adjust origins for production)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000", "http://localhost:5173"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ============================================================================
# SCHEDULED JOB
# ============================================================================

def _auto_settle_job():
    """Settle pending wagers for every user — runs every AUTO_SETTLE_INTERVAL_HOURS."""
    try:
        results = auto_settle_all()
        logger.info("Auto-settle: %s", results)
    except Exception as exc:
        logger.error("Auto-settle job failed: %s", exc, exc_info=True)


# ============================================================================
# DEPENDENCIES
# ============================================================================

def get_odds_client() -> OddsAPIClient:
    try:
        return OddsAPIClient()
    except ValueError as exc:
        raise HTTPException(status_code=503, detail=str(exc))


def _to_selection(leg: SelectionIn) -> wagers.Selection:
    commence = leg.commence_time
    if commence.tzinfo is not None:
        commence = commence.astimezone(timezone.utc).replace(tzinfo=None)
    return wagers.Selection(
        event_id=leg.event_id,
        sport_key=leg.sport_key,
        home_team=leg.home_team,
        away_team=leg.away_team,
        commence_time=commence,
        bet_type=leg.bet_type,
        selection=leg.selection,
        odds=leg.odds,
    )


# ============================================================================
# PUBLIC ENDPOINTS
# ============================================================================

@app.get("/")
async def root():
    """Health check"""
    return {
        "app": "PaperBet",
        "version": __version__,
        "status": "operational",
    }


@app.get("/health")
def health_check(db: Session = Depends(get_db)):
    """Health check endpoint"""
    health = {"status": "healthy", "database": "connected", "scheduler": "running"}

    try:
        db.execute(text("SELECT 1"))
    except Exception as e:
        logger.error("Health check database error: %s", e)
        health["status"] = "degraded"
        health["database"] = f"error: {str(e)}"

    if not AUTO_SETTLE_ENABLED:
        health["scheduler"] = "disabled"
    elif not scheduler.running:
        health["status"] = "degraded"
        health["scheduler"] = "stopped"

    return health


# ============================================================================
# AUTHENTICATED ENDPOINTS - ODDS & PREDICTIONS
# ============================================================================

@app.get("/api/sports")
def list_sports(
    user: str = Depends(verify_api_key),
    client: OddsAPIClient = Depends(get_odds_client),
):
    return client.get_sports()


@app.get("/api/sports/{sport_key}/odds")
def get_sport_odds(
    sport_key: str,
    markets: str = Query("h2h,spreads,totals"),
    user: str = Depends(verify_api_key),
    client: OddsAPIClient = Depends(get_odds_client),
):
    """Upcoming events with bookmaker prices."""
    return client.get_odds(sport_key, markets=markets)


@app.get("/api/odds/quota")
async def odds_quota(user: str = Depends(verify_api_key)):
    return get_api_quota()


@app.get("/api/predictions/{sport_key}", response_model=List[PredictionResponse])
def get_sport_predictions(
    sport_key: str,
    user: str = Depends(verify_api_key),
    client: OddsAPIClient = Depends(get_odds_client),
):
    """Predictions and value bets for every upcoming event of a sport."""
    events = client.get_odds(sport_key, markets="h2h")
    return [p.to_dict() for p in generate_predictions(events)]


@app.post("/api/predictions/event", response_model=PredictionResponse)
async def predict_event(event: EventIn, user: str = Depends(verify_api_key)):
    """Prediction for a single event supplied by the caller."""
    return generate_prediction(event.model_dump()).to_dict()


# ============================================================================
# AUTHENTICATED ENDPOINTS - WALLET
# ============================================================================

@app.get("/api/wallet", response_model=WalletResponse)
def get_wallet(user: str = Depends(verify_api_key), db: Session = Depends(get_db)):
    return ledger.get_wallet(db, user)


@app.post("/api/wallet/deposit", response_model=TransactionResponse)
def deposit(payload: AmountRequest, user: str = Depends(verify_api_key),
            db: Session = Depends(get_db)):
    return ledger.deposit(db, user, payload.amount)


@app.post("/api/wallet/withdraw", response_model=TransactionResponse)
def withdraw(payload: AmountRequest, user: str = Depends(verify_api_key),
             db: Session = Depends(get_db)):
    return ledger.withdraw(db, user, payload.amount)


@app.get("/api/wallet/transactions", response_model=List[TransactionResponse])
def list_transactions(
    limit: int = Query(50, ge=1, le=500),
    user: str = Depends(verify_api_key),
    db: Session = Depends(get_db),
):
    return ledger.get_transactions(db, user, limit=limit)


@app.get("/api/wallet/audit", response_model=LedgerAuditResponse)
def audit_wallet(user: str = Depends(verify_api_key), db: Session = Depends(get_db)):
    """Replay the transaction log against the wallet balance."""
    wallet = ledger.get_wallet(db, user)
    mismatches = ledger.replay_ledger(wallet, wallet.transactions)
    if mismatches:
        logger.warning("Ledger mismatch for %s: %d entries", user, len(mismatches))
    return {
        "consistent": not mismatches,
        "balance": wallet.balance,
        "transactions_checked": len(wallet.transactions),
        "mismatches": [
            {
                "transaction_id": m.transaction_id,
                "expected_balance": float(m.expected_balance),
                "recorded_balance": float(m.recorded_balance),
            }
            for m in mismatches
        ],
    }


# ============================================================================
# AUTHENTICATED ENDPOINTS - BETS
# ============================================================================

@app.post("/api/bets", response_model=PlacementResponse)
def place_bet(payload: BetCreate, user: str = Depends(verify_api_key),
              db: Session = Depends(get_db)):
    placement = wagers.place_bet(db, user, _to_selection(payload), payload.stake)
    return PlacementResponse(
        id=placement.wager_id,
        potential_payout=placement.potential_payout,
        new_balance=placement.new_balance,
    )


@app.get("/api/bets", response_model=List[BetResponse])
def list_bets(
    limit: int = Query(50, ge=1, le=500),
    user: str = Depends(verify_api_key),
    db: Session = Depends(get_db),
):
    return wagers.list_bets(db, user, limit=limit)


@app.get("/api/bets/pending", response_model=List[BetResponse])
def list_pending_bets(user: str = Depends(verify_api_key), db: Session = Depends(get_db)):
    return wagers.pending_bets(db, user)


@app.get("/api/bets/stats")
def get_bet_stats(user: str = Depends(verify_api_key), db: Session = Depends(get_db)):
    return performance.bet_stats(db, user)


@app.get("/api/bets/profit-history")
def get_profit_history(
    days: int = Query(30, ge=1, le=365),
    user: str = Depends(verify_api_key),
    db: Session = Depends(get_db),
):
    return performance.profit_history(db, user, days=days)


@app.get("/api/bets/by-sport")
def get_stats_by_sport(user: str = Depends(verify_api_key), db: Session = Depends(get_db)):
    return performance.stats_by_sport(db, user)


@app.post("/api/bets/{bet_id}/settle", response_model=SettlementResponse)
def settle_bet(bet_id: int, payload: SettleRequest, user: str = Depends(verify_api_key),
               db: Session = Depends(get_db)):
    settlement = wagers.settle_bet(db, user, bet_id, payload.status, payload.result)
    return SettlementResponse(
        id=settlement.wager_id,
        status=settlement.status,
        credited=settlement.credited,
        new_balance=settlement.new_balance,
    )


@app.post("/api/bets/auto-settle", response_model=AutoSettleResponse)
def auto_settle_bets(user: str = Depends(verify_api_key), db: Session = Depends(get_db)):
    """Settle this user's pending bets against completed games."""
    return auto_settle(db, user)


# ============================================================================
# AUTHENTICATED ENDPOINTS - PARLAYS
# ============================================================================

@app.post("/api/parlays/calculate", response_model=ParlayCalculateResponse)
async def calculate_parlay(payload: ParlayCalculateRequest, user: str = Depends(verify_api_key)):
    """Price a parlay without placing it."""
    combined = combine_parlay_odds([leg.odds for leg in payload.legs])
    response = combined.to_dict()
    if payload.stake is not None:
        response["potential_payout"] = potential_payout(payload.stake, combined.american_odds)
    return response


@app.post("/api/parlays", response_model=PlacementResponse)
def place_parlay(payload: ParlayCreate, user: str = Depends(verify_api_key),
                 db: Session = Depends(get_db)):
    legs = [_to_selection(leg) for leg in payload.legs]
    placement = wagers.place_parlay(db, user, legs, payload.stake)
    return PlacementResponse(
        id=placement.wager_id,
        potential_payout=placement.potential_payout,
        new_balance=placement.new_balance,
        combined_odds=placement.combined_odds,
    )


@app.get("/api/parlays", response_model=List[ParlayResponse])
def list_parlays(
    limit: int = Query(50, ge=1, le=500),
    user: str = Depends(verify_api_key),
    db: Session = Depends(get_db),
):
    return wagers.list_parlays(db, user, limit=limit)


@app.post("/api/parlays/{parlay_id}/settle", response_model=SettlementResponse)
def settle_parlay(parlay_id: int, payload: SettleRequest, user: str = Depends(verify_api_key),
                  db: Session = Depends(get_db)):
    settlement = wagers.settle_parlay(db, user, parlay_id, payload.status, payload.result)
    return SettlementResponse(
        id=settlement.wager_id,
        status=settlement.status,
        credited=settlement.credited,
        new_balance=settlement.new_balance,
    )


@app.post("/api/parlays/{parlay_id}/legs/{leg_id}", response_model=ParlayLegResponse)
def update_parlay_leg(parlay_id: int, leg_id: int, payload: SettleRequest,
                      user: str = Depends(verify_api_key), db: Session = Depends(get_db)):
    """Record one leg's outcome; the parlay itself is settled separately."""
    return wagers.update_parlay_leg(db, user, parlay_id, leg_id, payload.status, payload.result)


# ============================================================================
# AUTHENTICATED ENDPOINTS - PREFERENCES
# ============================================================================

@app.get("/api/preferences", response_model=PreferencesResponse)
def get_preferences(user: str = Depends(verify_api_key), db: Session = Depends(get_db)):
    return preferences.get_or_create_preferences(db, user)


@app.put("/api/preferences", response_model=PreferencesResponse)
def update_preferences(payload: PreferencesUpdate, user: str = Depends(verify_api_key),
                       db: Session = Depends(get_db)):
    return preferences.update_preferences(db, user, payload.model_dump(exclude_none=True))


# ============================================================================
# ADMIN ENDPOINTS
# ============================================================================

@app.post("/admin/force-settle")
def force_settle(user: str = Depends(verify_admin_api_key)):
    """Manually trigger the auto-settle job for every user (admin only)."""
    logger.info("Manual auto-settle triggered by %s", user)
    results = auto_settle_all()
    return {"message": "Auto-settle complete", **results}


@app.get("/admin/scheduler/status")
async def get_scheduler_status(user: str = Depends(verify_admin_api_key)):
    """Get scheduler job status"""
    jobs = []
    for job in scheduler.get_jobs():
        jobs.append({
            "id": job.id,
            "name": job.name,
            "next_run": job.next_run_time.isoformat() if job.next_run_time else None,
        })

    return {
        "running": scheduler.running,
        "jobs": jobs,
    }


# ============================================================================
# ERROR HANDLERS
# ============================================================================

_STATUS_BY_ERROR = (
    (NotFound, 404),
    (AlreadySettled, 409),
)


@app.exception_handler(BettingError)
async def betting_error_handler(request, exc: BettingError):
    """Domain errors are client errors; the transaction was already rolled back."""
    status_code = next((code for kind, code in _STATUS_BY_ERROR if isinstance(exc, kind)), 400)
    logger.info("%s on %s: %s", type(exc).__name__, request.url.path, exc)
    return JSONResponse(
        status_code=status_code,
        content={"detail": str(exc), "type": type(exc).__name__},
    )


@app.exception_handler(Exception)
async def global_exception_handler(request, exc):
    """Catch-all exception handler"""
    logger.error("Unhandled exception: %s", exc, exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error", "type": type(exc).__name__}
    )


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
