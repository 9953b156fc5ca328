from __future__ import annotations

import uuid
from datetime import datetime, timezone


# PUBLIC_INTERFACE
def now_utc() -> datetime:
    """Return the current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


# PUBLIC_INTERFACE
def new_id() -> str:
    """Return a fresh row identifier (UUID4 string)."""
    return str(uuid.uuid4())
