"""
X-API-Key authentication for the paper-trading API.

``API_KEY_USER<n>`` (n = 1..MAX_KEYED_USERS) grants the key holder the
identity ``user<n>``.  That user id is the only scope PaperBet has: wallets,
bets, parlays and preferences are all looked up by it.  ``user1`` doubles as
the operator and may call the /admin routes.
"""

from fastapi import Security, HTTPException, status
from fastapi.security import APIKeyHeader
from functools import lru_cache
import os
from typing import Dict
from dotenv import load_dotenv

load_dotenv()

API_KEY_HEADER = APIKeyHeader(name="X-API-Key", auto_error=False)

MAX_KEYED_USERS = 5
ADMIN_USER = "user1"
DEV_API_KEY = "dev-key-insecure"
DEV_USER = "dev_user"


def get_valid_api_keys() -> Dict[str, str]:
    """Map each configured key to its user id."""
    keys = {}
    for n in range(1, MAX_KEYED_USERS + 1):
        key = os.getenv(f"API_KEY_USER{n}")
        if key:
            keys[key] = f"user{n}"
    if keys:
        return keys

    if os.getenv("ENVIRONMENT") == "development":
        return {DEV_API_KEY: DEV_USER}
    raise ValueError(
        f"No API keys configured: set API_KEY_USER1..API_KEY_USER{MAX_KEYED_USERS}"
    )


@lru_cache(maxsize=1)
def _api_keys() -> Dict[str, str]:
    # Resolved on first request so the app can be imported without keys set.
    return get_valid_api_keys()


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "ApiKey"},
    )


async def verify_api_key(api_key: str = Security(API_KEY_HEADER)) -> str:
    """Resolve the request's X-API-Key header to a user id, or 401."""
    if not api_key:
        raise _unauthorized("API key required. Include 'X-API-Key' header.")

    user = _api_keys().get(api_key)
    if user is None:
        raise _unauthorized("Invalid API key")
    return user


async def verify_admin_api_key(user: str = Security(verify_api_key)) -> str:
    if user != ADMIN_USER:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required",
        )
    return user
