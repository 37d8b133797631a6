"""
api/limiter.py -- Shared slowapi rate limiter instance.

api/main.py mounts it as middleware; api/routes/v1/auth.py applies the
per-route limits (login and password-reset requests) with @limiter.limit().

All routes share this one instance so they count against one in-memory
store. Per-IP limits are configured in core.config (LOGIN_RATE_LIMIT,
RESET_RATE_LIMIT).
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

limiter = Limiter(key_func=get_remote_address, storage_uri="memory://")
