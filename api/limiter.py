"""
api/limiter.py -- Shared slowapi rate limiter for the auth endpoints.

One instance, imported by api/main.py (mounted as middleware) and by
api/routes/v1/auth.py (per-route @limiter.limit()), so every route counts
against the same in-memory store. Separate instances per module would each
keep their own counters and the limits would never trigger.

Limits are keyed by client address. The login limit string comes from
Settings.login_rate_limit (e.g. "10/minute") and is read per request through
a callable, so changing the setting does not require touching the routes.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from core.config import get_settings

limiter = Limiter(
    key_func=get_remote_address,
    storage_uri="memory://",
    enabled=get_settings().rate_limit_enabled,
)


def login_rate_limit() -> str:
    return get_settings().login_rate_limit
