"""
api/limiter.py -- Shared slowapi rate limiter instance.

Imported by api/main.py (mounted as middleware, default limit for every
route) and by api/routes/v1/auth.py (stricter per-route limits on login,
registration and password-reset endpoints via @limiter.limit()).

A single shared instance keeps one counter store for the whole app; a
limiter per module would give each module its own counters.

Clients are keyed by the socket peer address. Behind a reverse proxy, run
uvicorn with --proxy-headers so that address is the real client.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from core.config import get_settings

limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[get_settings().default_rate_limit],
    storage_uri="memory://",
)
