from __future__ import annotations

from uuid import UUID

from fastapi import HTTPException, Request
from jose import jwt, JWTError

from app.core.config import settings


def decode_access_token(token: str) -> dict | None:
    try:
        payload = jwt.decode(token, settings.JWT_SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])
        if payload.get("type") != "access":
            return None
        return payload
    except JWTError:
        return None


def read_request_token(request: Request) -> str | None:
    token = request.cookies.get("access_token")
    if token:
        return token
    authorization = request.headers.get("authorization") or ""
    scheme, _, value = authorization.partition(" ")
    if scheme.lower() == "bearer" and value:
        return value.strip()
    return None


async def require_owner_id(request: Request) -> UUID:
    token = read_request_token(request)
    if not token:
        raise HTTPException(status_code=401, detail="Not authenticated")

    payload = decode_access_token(token)
    if not payload or not payload.get("sub"):
        raise HTTPException(status_code=401, detail="Invalid or expired token")

    try:
        return UUID(str(payload["sub"]))
    except ValueError as exc:
        raise HTTPException(status_code=401, detail="Invalid or expired token") from exc
