"""
Per-IP Request Throttle

This module sets up the slowapi Limiter that decorates the write routes.
It is a coarse flood guard keyed on the client address; the per-user
write budgets (sayings per day, likes per hour) are enforced by
twokinds.services.ratelimit.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address
from twokinds.config import settings

# storage_uri: "memory://" for a single process, "redis://..." when several
# workers must share counters
limiter = Limiter(
    key_func=get_remote_address,
    storage_uri=settings.RATELIMIT_STORAGE_URI,
    strategy="fixed-window"
)
