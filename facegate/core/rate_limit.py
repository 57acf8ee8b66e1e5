from slowapi import Limiter
from slowapi.util import get_remote_address

# Default IP-based key. The public webhook gets a tighter per-route limit.
limiter = Limiter(key_func=get_remote_address, default_limits=["200/minute"])

WEBHOOK_RATE_LIMIT = "120/minute"
