from datetime import datetime, timezone
from typing import Any, Optional

from hostelhub.modules.subscription.security_events import log_null_expires_at_detected


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    # Some drivers hand back naive datetimes for timestamptz columns; those are UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def has_access(subscription: Any, now: Optional[datetime] = None) -> bool:
    """
    True iff the subscription is active and has a future expiry.

    Works on ORM rows, pydantic schemas and cached snapshots alike. An active
    subscription without ``expires_at`` never entitles.
    """
    if subscription is None:
        return False
    if getattr(subscription, "status", None) != "active":
        return False

    expires_at = getattr(subscription, "expires_at", None)
    if expires_at is None:
        log_null_expires_at_detected(getattr(subscription, "id", None), getattr(subscription, "user_id", None))
        return False

    now = as_utc(now or utcnow())
    return as_utc(expires_at) > now
