"""UTC timezone enforcement.

Sets TZ=UTC for the process and provides the timestamp helper used for
every persisted datetime.
"""

import os
from datetime import datetime, timezone

os.environ["TZ"] = "UTC"


def utcnow() -> datetime:
    """Return the current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)
