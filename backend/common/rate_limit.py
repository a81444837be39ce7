"""Rate limiting configuration using slowapi.

The module-level Limiter is wired into the app in main.py. Expensive admin
endpoints (bulk recalculation) tighten it with ``@limiter.limit``.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

limiter = Limiter(
    key_func=get_remote_address,
    default_limits=["120/minute"],
)
