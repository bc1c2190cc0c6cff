"""
api/limiter.py -- The process-wide slowapi Limiter.

api/main.py registers it on app.state and mounts SlowAPIMiddleware;
api/routes/v1/auth.py decorates POST /oauth/token with it. Both must see the
same object, otherwise the counters of the decorator are never consulted.

Clients are keyed by remote address. Counters live in memory, so limits are
per worker process.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

limiter = Limiter(key_func=get_remote_address, storage_uri="memory://")
