#!/usr/bin/env python3
"""
Create the first organization and its admin user.

Runs only when BOOTSTRAP_ADMIN is truthy, so it can sit in a container entrypoint.
Idempotent: an existing user with the same email is left untouched.

Env:
  DATABASE_URL                 required (owner role; runs before RLS context exists)
  BOOTSTRAP_ADMIN_EMAIL        default admin@bizledger.local
  BOOTSTRAP_ADMIN_PASSWORD     generated and printed when unset
  BOOTSTRAP_ORG_NAME           default "My Business"
  BOOTSTRAP_ORG_CURRENCY       ISO 4217 code, default USD
"""
import os
import secrets
import sys

import psycopg
from psycopg.rows import dict_row
from pydantic import TypeAdapter, ValidationError

from backend.app.security import hash_password
from backend.app.validation import CurrencyCode


def _truthy(v: str) -> bool:
    return (v or "").strip().lower() in {"1", "true", "yes", "y", "on"}


def _fail(msg: str) -> int:
    print(f"bootstrap_admin: {msg}", file=sys.stderr)
    return 2


def _ensure_organization(cur, name: str, currency_code: str) -> int:
    cur.execute("SELECT id FROM organizations WHERE name = %s ORDER BY id LIMIT 1", (name,))
    row = cur.fetchone()
    if row:
        return row["id"]
    cur.execute(
        "INSERT INTO organizations (name, currency_code) VALUES (%s, %s) RETURNING id",
        (name, currency_code),
    )
    return cur.fetchone()["id"]


def _create_admin(cur, email: str, password: str, organization_id: int) -> int:
    cur.execute(
        """
        INSERT INTO users (email, hashed_password, user_role, organization_id, is_active)
        VALUES (%s, %s, 'admin', %s, true)
        RETURNING id
        """,
        (email, hash_password(password), organization_id),
    )
    return cur.fetchone()["id"]


def main() -> int:
    if not _truthy(os.getenv("BOOTSTRAP_ADMIN", "")):
        return 0

    db_url = os.getenv("DATABASE_URL")
    if not db_url:
        return _fail("missing DATABASE_URL")
    email = os.getenv("BOOTSTRAP_ADMIN_EMAIL", "admin@bizledger.local").strip().lower()
    if not email:
        return _fail("BOOTSTRAP_ADMIN_EMAIL is empty")
    org_name = os.getenv("BOOTSTRAP_ORG_NAME", "").strip() or "My Business"
    try:
        org_currency = TypeAdapter(CurrencyCode).validate_python(os.getenv("BOOTSTRAP_ORG_CURRENCY") or "USD")
    except ValidationError:
        return _fail("BOOTSTRAP_ORG_CURRENCY must be a 3-letter ISO code")

    password = os.getenv("BOOTSTRAP_ADMIN_PASSWORD") or ""
    generated = not password
    if generated:
        password = secrets.token_urlsafe(16)

    with psycopg.connect(db_url, row_factory=dict_row) as conn:
        with conn.transaction():
            with conn.cursor() as cur:
                cur.execute("SELECT 1 FROM users WHERE lower(email) = %s", (email,))
                if cur.fetchone():
                    return 0
                organization_id = _ensure_organization(cur, org_name, org_currency)
                user_id = _create_admin(cur, email, password, organization_id)

    print("BOOTSTRAP_ADMIN_CREATED")
    print(f"organization: {org_name} #{organization_id} ({org_currency})")
    print(f"user: {email} #{user_id}")
    print(f"password: {password}" if generated else "password: (provided via BOOTSTRAP_ADMIN_PASSWORD)")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
