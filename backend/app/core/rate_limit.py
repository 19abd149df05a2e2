from __future__ import annotations

from fastapi import Request
from slowapi import Limiter
from slowapi.util import get_remote_address

from app.core.security import decode_access_token, read_request_token


def owner_rate_limit_key(request: Request) -> str:
    token = read_request_token(request)
    if token:
        payload = decode_access_token(token)
        if payload and payload.get("sub"):
            return f"owner:{payload['sub']}"
    return f"anon:{get_remote_address(request)}"


limiter = Limiter(key_func=owner_rate_limit_key)
