from fastapi import APIRouter, HTTPException, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel, field_validator
from datetime import datetime, timedelta, timezone
import secrets
from ..config import settings
from ..db import get_admin_conn, get_conn
from ..deps import get_session, SESSION_COOKIE_NAME
from ..jsonlog import json_log
from ..security import hash_password, verify_password, needs_rehash, hash_session_token

router = APIRouter(prefix="/auth", tags=["auth"])
SESSION_TTL = timedelta(days=7)


class LoginIn(BaseModel):
    email: str
    password: str

    @field_validator("email")
    @classmethod
    def _normalize_email(cls, v: str) -> str:
        return (v or "").strip().lower()


def _authenticate(cur, email: str, password: str) -> dict:
    cur.execute(
        """
        SELECT id, hashed_password, is_active, user_role, organization_id
        FROM users
        WHERE lower(email) = %s
        """,
        (email,),
    )
    user = cur.fetchone()
    # Same answer for unknown, disabled and wrong-password so emails can't be enumerated.
    if not user or not user["is_active"] or not verify_password(password, user["hashed_password"]):
        raise HTTPException(status_code=401, detail="invalid credentials")
    if needs_rehash(user["hashed_password"]):
        cur.execute("UPDATE users SET hashed_password = %s WHERE id = %s", (hash_password(password), user["id"]))
    return user


def _open_session(cur, user_id: int) -> str:
    token = secrets.token_urlsafe(32)
    cur.execute(
        "INSERT INTO auth_sessions (user_id, token, expires_at) VALUES (%s, %s, %s)",
        (user_id, hash_session_token(token), datetime.now(timezone.utc) + SESSION_TTL),
    )
    return token


@router.post("/login")
def login(data: LoginIn):
    # Admin role: no organization context exists until the user is known.
    with get_admin_conn() as conn:
        with conn.cursor() as cur:
            user = _authenticate(cur, data.email, data.password)
            token = _open_session(cur, user["id"])

    json_log("info", "auth.login", user_id=user["id"], organization_id=user["organization_id"])
    resp = JSONResponse(
        {
            "token": token,
            "user_id": user["id"],
            "role": user["user_role"],
            "organization_id": user["organization_id"],
        }
    )
    resp.set_cookie(
        key=SESSION_COOKIE_NAME,
        value=token,
        httponly=True,
        samesite="lax",
        secure=settings.env not in {"local", "dev"},
        max_age=int(SESSION_TTL.total_seconds()),
        path="/",
    )
    return resp


@router.get("/me")
def me(session=Depends(get_session)):
    return {k: session[k] for k in ("user_id", "email", "role", "organization_id")}


@router.post("/logout")
def logout(session=Depends(get_session)):
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute("UPDATE auth_sessions SET is_active = false WHERE id = %s", (session["session_id"],))
    resp = JSONResponse({"ok": True})
    resp.delete_cookie(key=SESSION_COOKIE_NAME, path="/")
    return resp
