"""Premium entitlement, derived from the stored expiry at read time."""

from datetime import datetime, timezone
from typing import Optional

from .models import Account


def is_currently_premium(account: Optional[Account], now: datetime) -> bool:
    """
    True iff the account is flagged premium and its expiry is still ahead of `now`.

    The stored is_premium flag is never flipped back on expiry; an expired
    window simply stops counting here.
    """
    if account is None or account.is_premium is not True:
        return False

    expires = account.premium_expires
    if expires is None:
        return False

    # Mongo hands back naive datetimes unless the client is tz-aware
    if expires.tzinfo is None:
        expires = expires.replace(tzinfo=timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)

    return expires > now
