"""
api/limiter.py -- Shared slowapi rate limiter instance.

Import this in both api/main.py (to mount as middleware) and
api/routes/v1/auth.py (to apply per-route limits with @limiter.limit()).

This is per-IP request throttling in front of the login route. It is
separate from the per-principal lockout in auth/service.py: the limiter
slows a single client hammering many logins, the lockout stops many clients
hammering one login.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

limiter = Limiter(key_func=get_remote_address, storage_uri="memory://")
