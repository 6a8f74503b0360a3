from fastapi import Header, HTTPException, Depends, Cookie, Request
from .config import settings
from .db import get_conn
from .inventory_ledger import build_inventory_ledger
from .schema_flags import SchemaFlags, flags_from_settings
from .security import hash_session_token
from datetime import datetime, timezone
from typing import Optional


SESSION_COOKIE_NAME = "bizledger_session"


def _extract_session_token(authorization: Optional[str], cookie_token: Optional[str]) -> str:
    if authorization and authorization.lower().startswith("bearer "):
        return authorization.split(" ", 1)[1]
    if cookie_token:
        return cookie_token
    raise HTTPException(status_code=401, detail="missing token")


def get_session(
    authorization: Optional[str] = Header(None),
    cookie_token: Optional[str] = Cookie(None, alias=SESSION_COOKIE_NAME),
):
    token = _extract_session_token(authorization, cookie_token)
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute(
                """
                SELECT s.id AS session_id, s.user_id, u.email, u.user_role, u.organization_id,
                       u.is_active AS user_is_active, s.expires_at, s.is_active
                FROM auth_sessions s
                JOIN users u ON u.id = s.user_id
                WHERE s.token = %s
                """,
                (hash_session_token(token),),
            )
            row = cur.fetchone()
            now = datetime.now(timezone.utc)
            if not row or not row["is_active"] or not row["user_is_active"] or row["expires_at"] < now:
                raise HTTPException(status_code=401, detail="invalid token")
            return {
                "session_id": row["session_id"],
                "user_id": row["user_id"],
                "email": row["email"],
                "role": row["user_role"],
                "organization_id": row["organization_id"],
            }


def get_current_user(session=Depends(get_session)):
    return {
        "user_id": session["user_id"],
        "email": session["email"],
        "role": session["role"],
        "organization_id": session["organization_id"],
    }


def require_organization_user(user=Depends(get_current_user)):
    # Users mid-setup (no organization yet) can't touch tenant data.
    if not user.get("organization_id"):
        raise HTTPException(status_code=401, detail="authentication required")
    return user


def require_admin(user=Depends(require_organization_user)):
    if str(user.get("role") or "").lower() != "admin":
        raise HTTPException(status_code=403, detail="admin only")
    return user


def get_schema_flags(request: Request) -> SchemaFlags:
    flags = getattr(request.app.state, "schema_flags", None)
    if flags is None:
        return flags_from_settings(settings)
    return flags


def get_inventory_ledger(request: Request, flags: SchemaFlags = Depends(get_schema_flags)):
    ledger = getattr(request.app.state, "inventory_ledger", None)
    if ledger is None:
        return build_inventory_ledger(flags)
    return ledger
