"""Rate limiter singleton — import from here to avoid circular deps."""
import hashlib

from slowapi import Limiter
from slowapi.util import get_remote_address
from starlette.requests import Request


def caller_key(request: Request) -> str:
    """Limit per bearer token when present so approvers behind one NAT don't share a bucket."""
    auth = request.headers.get("Authorization")
    if auth:
        return "tok:" + hashlib.sha256(auth.encode()).hexdigest()[:16]
    return get_remote_address(request)


limiter = Limiter(key_func=caller_key)
