"""Domain errors raised by the odds, ledger and wager layers.

Every error here is a recoverable, user-facing condition.  The HTTP layer
maps them to status codes in one place (see ``paperbet.main``); services
never translate them into a financial outcome.
"""

from __future__ import annotations

from typing import Optional


class BettingError(Exception):
    """Base class for all PaperBet domain errors."""


class InvalidOdds(BettingError, ValueError):
    """Zero, non-numeric or non-finite odds supplied to odds math."""


class InvalidAmount(BettingError, ValueError):
    """Non-positive or out-of-range currency amount."""


class InvalidSelection(BettingError, ValueError):
    """Unknown bet type or malformed selection."""


class InsufficientBalance(BettingError):
    """A debit would drive the wallet balance below zero."""

    def __init__(self, requested, available):
        self.requested = requested
        self.available = available
        super().__init__(
            f"Insufficient balance: requested {requested}, available {available}"
        )


class InvalidParlay(BettingError):
    """Parlay with fewer legs than the minimum."""


class InvalidStatus(BettingError, ValueError):
    """Settlement target is not a terminal status."""


class NotFound(BettingError):
    """Wager does not exist or belongs to another user."""

    def __init__(self, kind: str, wager_id: int):
        self.kind = kind
        self.wager_id = wager_id
        super().__init__(f"{kind.capitalize()} {wager_id} not found")


class AlreadySettled(BettingError):
    """Settlement attempted on a wager that is no longer pending."""

    def __init__(self, kind: str, wager_id: int, status: str):
        self.kind = kind
        self.wager_id = wager_id
        self.status = status
        super().__init__(f"{kind.capitalize()} {wager_id} already settled as '{status}'")


class UnresolvedBet(BettingError):
    """Automatic settlement could not decide an outcome.

    Raised when no completed game matches or the selection's line cannot be
    parsed.  Callers report the wager as still pending, never as a loss.
    """

    def __init__(self, reason: str, selection: Optional[str] = None):
        self.reason = reason
        self.selection = selection
        super().__init__(reason)


class BetLimitExceeded(BettingError):
    """Stake breaks the user's configured max-bet or daily limit."""
