"""Shared rate limiter for the public credential routes.

``POST /api/login`` and ``POST /api/register`` bypass authentication and risk
gating, so they are capped per client address instead. State is in-process
(slowapi's memory storage); there is no cross-instance coordination.

The Limiter instance is created here and shared between:
  - app/proxy/engine.py  (``limiter.limit`` decorator on the public route handler)
  - app/main.py          (app.state.limiter + RateLimitExceeded handler)
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

# Module-level limiter, imported by main.py and proxy/engine.py
limiter = Limiter(key_func=get_remote_address)

# Per-client cap on login/registration attempts
PUBLIC_AUTH_RATE_LIMIT = "20/minute"
