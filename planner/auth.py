"""Magic-link login and the session cookie.

1. The user posts an email address. We mint a random nonce, keep a bcrypt
   hash of it in a short-lived "pending login" cookie on this device, and
   email a link carrying a signed token with the email, the landing page and
   the raw nonce.
2. Opening the link checks the signature and expiry, then checks that the
   nonce matches the hash in the pending cookie so the link only works on
   the device that asked for it.
3. On success the user row is created if needed and a session token (JWT,
   30 days) is set as a cookie. Every protected endpoint depends on
   `require_user`.
"""
from __future__ import annotations
import hashlib
import logging
import secrets
from typing import Optional
from urllib.parse import urlencode

import bcrypt
from fastapi import Depends, HTTPException, Request, Response, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from pydantic import BaseModel
from sqlalchemy import insert, select

from .config import Settings
from .db import gen_id, now_ts, users
from .deps import get_settings, get_store

logger = logging.getLogger(__name__)

JWT_ALG = "HS256"
MAGIC_LINK_PARAM = "magic"

bearer = HTTPBearer(auto_error=False)


class UserOut(BaseModel):
    id: str
    email: str
    createdAt: int


def to_user_out(r) -> UserOut:
    return UserOut(id=r["id"], email=r["email"], createdAt=int(r["created_at"]))


def _nonce_prehash(nonce: str) -> bytes:
    """Pre-hash to stay under bcrypt's 72-byte input limit."""
    return hashlib.sha256(nonce.encode("utf-8")).digest()


def hash_nonce(nonce: str) -> str:
    return bcrypt.hashpw(_nonce_prehash(nonce), bcrypt.gensalt(rounds=10)).decode("utf-8")


def verify_nonce(nonce: str, nonce_hash: str) -> bool:
    try:
        return bcrypt.checkpw(_nonce_prehash(nonce), nonce_hash.encode("utf-8"))
    except ValueError:
        return False


def create_session_token(settings: Settings, user_id: str) -> str:
    exp = now_ts() + settings.session_ttl_seconds
    return jwt.encode({"sub": user_id, "typ": "session", "exp": exp}, settings.session_secret, algorithm=JWT_ALG)


def set_session_cookie(resp: Response, settings: Settings, token: str) -> None:
    resp.set_cookie(
        key=settings.auth_cookie,
        value=token,
        max_age=settings.session_ttl_seconds,
        httponly=True,
        samesite="lax",
        secure=settings.cookie_secure,
        path="/",
    )


def clear_session_cookie(resp: Response, settings: Settings) -> None:
    resp.delete_cookie(key=settings.auth_cookie, path="/")


def is_safe_landing_page(page: str) -> bool:
    return page.startswith("/") and not page.startswith("//")


class MagicLink(BaseModel):
    email: str
    landingPage: str
    nonce: str


def create_login_request(settings: Settings, email: str, landing_page: str) -> tuple[str, str]:
    """Return (magic link url, pending-login cookie value)."""
    nonce = secrets.token_urlsafe(24)
    exp = now_ts() + settings.magic_link_ttl_seconds
    token = jwt.encode(
        {"typ": "magic", "email": email, "landingPage": landing_page, "nonce": nonce, "exp": exp},
        settings.session_secret, algorithm=JWT_ALG,
    )
    pending = jwt.encode(
        {"typ": "pending", "nonce_hash": hash_nonce(nonce), "exp": exp},
        settings.session_secret, algorithm=JWT_ALG,
    )
    link = f"{settings.origin.rstrip('/')}/auth/validate?{urlencode({MAGIC_LINK_PARAM: token})}"
    return link, pending


def invalid_link() -> HTTPException:
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid magic link")


def validate_magic_link(settings: Settings, token: Optional[str], pending: Optional[str]) -> MagicLink:
    if not token:
        raise invalid_link()
    try:
        payload = jwt.decode(token, settings.session_secret, algorithms=[JWT_ALG])
    except JWTError:
        raise invalid_link()
    if payload.get("typ") != "magic":
        raise invalid_link()
    try:
        link = MagicLink(**payload)
    except ValueError:
        raise invalid_link()

    # the link must be opened on the device that asked for it
    try:
        device = jwt.decode(pending or "", settings.session_secret, algorithms=[JWT_ALG])
    except JWTError:
        device = {}
    if device.get("typ") != "pending" or not verify_nonce(link.nonce, device.get("nonce_hash") or ""):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not Authorized")
    return link


def ensure_user_account(conn, email: str):
    u = conn.execute(select(users).where(users.c.email == email)).mappings().first()
    if u:
        return u
    uid = gen_id()
    conn.execute(insert(users).values(id=uid, email=email, created_at=now_ts()))
    logger.info("Created account %s", uid)
    return conn.execute(select(users).where(users.c.id == uid)).mappings().first()


def require_user(
    request: Request,
    creds: HTTPAuthorizationCredentials | None = Depends(bearer),
) -> dict:
    settings = get_settings(request)
    token = None
    if creds and creds.credentials:
        token = creds.credentials
    elif request.headers.get("x-auth-token"):
        token = request.headers.get("x-auth-token")
    else:
        token = request.cookies.get(settings.auth_cookie)
    if not token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")
    try:
        payload = jwt.decode(token, settings.session_secret, algorithms=[JWT_ALG])
        uid = payload.get("sub")
        if not uid or payload.get("typ") != "session":
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")
    except JWTError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")

    with get_store(request).connect() as conn:
        u = conn.execute(select(users).where(users.c.id == uid)).mappings().first()
    if not u:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="User not found")
    return u
