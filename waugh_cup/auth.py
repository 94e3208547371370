"""Signed-cookie admin session shared by the page and API routers."""

from __future__ import annotations

import hmac
import secrets
import time

from fastapi import HTTPException, Request

from . import config


def _sign_payload(payload: str) -> str:
    secret = config.SESSION_SECRET.encode("utf-8")
    return hmac.new(secret, payload.encode("utf-8"), "sha256").hexdigest()


def encode_session() -> str:
    token = secrets.token_hex(16)
    timestamp = str(int(time.time()))
    payload = f"{token}|{timestamp}"
    signature = _sign_payload(payload)
    return f"{payload}|{signature}"


def decode_session(raw: str) -> bool:
    try:
        token, timestamp, signature = raw.split("|")
    except ValueError:
        return False
    payload = f"{token}|{timestamp}"
    expected = _sign_payload(payload)
    if not hmac.compare_digest(expected, signature):
        return False
    try:
        issued_at = int(timestamp)
    except ValueError:
        return False
    if int(time.time()) - issued_at > config.SESSION_MAX_AGE:
        return False
    return True


def credentials_match(username: str, password: str) -> bool:
    return hmac.compare_digest(username, config.ADMIN_USERNAME) and hmac.compare_digest(
        password, config.ADMIN_PASSWORD
    )


def is_admin(request: Request) -> bool:
    cookie_value = request.cookies.get(config.SESSION_COOKIE_NAME)
    return bool(cookie_value and decode_session(cookie_value))


def require_admin(request: Request) -> None:
    """FastAPI dependency for JSON endpoints that change tournament data."""
    if not is_admin(request):
        raise HTTPException(status_code=401, detail="Admin login required")
