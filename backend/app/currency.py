from __future__ import annotations

import json
import time
import urllib.error
import urllib.request
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Dict, Optional, Tuple

from pydantic import TypeAdapter, ValidationError

from .config import settings
from .jsonlog import json_log
from .validation import CurrencyCode

MONEY_Q = Decimal("0.01")

_code_adapter = TypeAdapter(CurrencyCode)

# base currency (lowercase) -> (fetched_at monotonic seconds, rates)
_rates_cache: Dict[str, Tuple[float, Dict[str, Decimal]]] = {}


class CurrencyConversionError(Exception):
    pass


def normalize_currency_code(raw) -> Optional[str]:
    if raw is None or not str(raw).strip():
        return None
    try:
        return _code_adapter.validate_python(raw)
    except ValidationError:
        return None


def _fetch_json(url: str) -> dict:
    req = urllib.request.Request(url, headers={"Accept": "application/json"})
    with urllib.request.urlopen(req, timeout=settings.fx_timeout_seconds) as resp:
        return json.loads(resp.read().decode("utf-8"))


def fetch_rates(base_currency: str) -> Dict[str, Decimal]:
    """
    Rates for 1 unit of `base_currency`, keyed by lowercase currency code.
    Primary CDN first, fallback mirror second; cached in-process for the configured TTL.
    """
    base = base_currency.strip().lower()
    now = time.monotonic()
    cached = _rates_cache.get(base)
    if cached and now - cached[0] < settings.fx_cache_ttl_seconds:
        return cached[1]

    path = f"/currencies/{base}.json"
    try:
        data = _fetch_json(settings.fx_primary_base_url + path)
    except (urllib.error.URLError, OSError, ValueError) as primary_exc:
        try:
            data = _fetch_json(settings.fx_fallback_base_url + path)
        except (urllib.error.URLError, OSError, ValueError) as fallback_exc:
            raise CurrencyConversionError(
                f"currency API failed for base {base}: primary={primary_exc}, fallback={fallback_exc}"
            ) from fallback_exc

    raw_rates = data.get(base) if isinstance(data, dict) else None
    if not isinstance(raw_rates, dict):
        raise CurrencyConversionError(f"unexpected currency API response for base {base}")

    rates: Dict[str, Decimal] = {}
    for code, value in raw_rates.items():
        try:
            rates[str(code).lower()] = Decimal(str(value))
        except (InvalidOperation, ValueError):
            continue
    _rates_cache[base] = (now, rates)
    return rates


def clear_rates_cache() -> None:
    _rates_cache.clear()


def convert_amount(amount: Decimal, from_currency: Optional[str], to_currency: Optional[str]) -> Decimal:
    value = Decimal(str(amount or 0))
    if not value:
        return Decimal("0")
    src = (from_currency or "").strip().lower()
    dst = (to_currency or "").strip().lower()
    if not src or not dst or src == dst:
        return value

    rate = fetch_rates(src).get(dst)
    if not rate:
        raise CurrencyConversionError(f"missing FX rate from {src} to {dst}")
    return value * rate


def _currency_of(cur, table: str, row_id: int) -> Optional[str]:
    cur.execute(f"SELECT currency_code FROM {table} WHERE id = %s", (row_id,))
    row = cur.fetchone()
    return normalize_currency_code(row.get("currency_code")) if row else None


def compute_amount_in_org_currency(cur, organization_id: int, project_id: Optional[int], amount: Decimal) -> Decimal:
    """
    Snapshot `amount` in the organization's base currency.

    The sale is priced in the project's currency when the project overrides it,
    otherwise in the organization's. Any lookup failure falls back to the native
    amount: a missing FX rate must never block recording a sale.
    """
    value = Decimal(str(amount or 0))
    if not value:
        return Decimal("0.00")

    org_ccy = _currency_of(cur, "organizations", organization_id)
    if not org_ccy:
        return value.quantize(MONEY_Q, rounding=ROUND_HALF_UP)
    project_ccy = _currency_of(cur, "projects", project_id) if project_id else None
    from_ccy = project_ccy or org_ccy

    try:
        converted = convert_amount(value, from_ccy, org_ccy)
    except CurrencyConversionError as exc:
        json_log(
            "warning",
            "fx.convert.failed",
            organization_id=organization_id,
            project_id=project_id,
            from_currency=from_ccy,
            to_currency=org_ccy,
            error=str(exc),
        )
        converted = value
    return converted.quantize(MONEY_Q, rounding=ROUND_HALF_UP)
