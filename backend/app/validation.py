from __future__ import annotations

from typing import Annotated, Literal

from pydantic import BeforeValidator, StringConstraints


def _to_upper_str(v):
    if v is None:
        return v
    return str(v).strip().upper()


def _to_lower_str(v):
    if v is None:
        return v
    return str(v).strip().lower()


# Canonical codes mirror the CHECK constraint in `backend/db/migrations/001_init.sql`.
SALE_STATUSES = ("pending", "completed", "cancelled", "refunded")
SaleStatus = Annotated[Literal["pending", "completed", "cancelled", "refunded"], BeforeValidator(_to_lower_str)]

# ISO 4217 alpha code; the FX provider keys rates by lowercase code, we store uppercase.
CurrencyCode = Annotated[
    str,
    BeforeValidator(_to_upper_str),
    StringConstraints(min_length=3, max_length=3, pattern=r"^[A-Z]{3}$"),
]
