from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, List, Optional

from pydantic import TypeAdapter, ValidationError

from .validation import SaleStatus

MONEY_Q = Decimal("0.01")
DEFAULT_STATUS = "pending"

_status_adapter = TypeAdapter(SaleStatus)


def q_money(v: Decimal) -> Decimal:
    return (v or Decimal("0")).quantize(MONEY_Q, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class SaleFieldError:
    field: str
    value: Any
    reason: str

    def as_dict(self) -> dict:
        return {"field": self.field, "value": self.value, "reason": self.reason}


@dataclass
class SaleInput:
    quantity: int = 0
    unit_cost: Decimal = Decimal("0")
    price: Decimal = Decimal("0")
    cash_at_hand: Decimal = Decimal("0")
    balance: Decimal = Decimal("0")
    project_id: Optional[int] = None
    cycle_id: Optional[int] = None
    product_id: Optional[int] = None
    variant_id: Optional[int] = None
    inventory_item_variant_id: Optional[int] = None
    customer: Optional[str] = None
    status: str = DEFAULT_STATUS
    sale_date: Optional[date] = None
    errors: List[SaleFieldError] = field(default_factory=list)

    @property
    def amount(self) -> Decimal:
        return q_money(Decimal(self.quantity) * self.price)


def _blank(v) -> bool:
    return v is None or (isinstance(v, str) and not v.strip())


def _parse_quantity(v, errors: List[SaleFieldError]) -> int:
    if _blank(v):
        return 0
    if isinstance(v, bool):
        errors.append(SaleFieldError("quantity", v, "not a number"))
        return 0
    try:
        d = Decimal(str(v).strip())
    except (InvalidOperation, ValueError):
        errors.append(SaleFieldError("quantity", v, "not a number"))
        return 0
    if not d.is_finite() or d != d.to_integral_value():
        errors.append(SaleFieldError("quantity", v, "not an integer"))
        return 0
    if d < 0:
        errors.append(SaleFieldError("quantity", v, "must be >= 0"))
        return 0
    return int(d)


def _parse_money(name: str, v, errors: List[SaleFieldError]) -> Decimal:
    if _blank(v):
        return Decimal("0")
    if isinstance(v, bool):
        errors.append(SaleFieldError(name, v, "not a number"))
        return Decimal("0")
    try:
        d = Decimal(str(v).strip())
    except (InvalidOperation, ValueError):
        errors.append(SaleFieldError(name, v, "not a number"))
        return Decimal("0")
    if not d.is_finite():
        errors.append(SaleFieldError(name, v, "not a number"))
        return Decimal("0")
    if d < 0:
        errors.append(SaleFieldError(name, v, "must be >= 0"))
        return Decimal("0")
    try:
        return q_money(d)
    except InvalidOperation:
        errors.append(SaleFieldError(name, v, "out of range"))
        return Decimal("0")


def _parse_ref(name: str, v, errors: List[SaleFieldError]) -> Optional[int]:
    # Foreign keys: empty/0/null all mean "not set".
    if _blank(v) or v == 0:
        return None
    if isinstance(v, bool):
        errors.append(SaleFieldError(name, v, "not an id"))
        return None
    try:
        n = int(str(v).strip())
    except ValueError:
        errors.append(SaleFieldError(name, v, "not an id"))
        return None
    if n == 0:
        return None
    if n < 0:
        errors.append(SaleFieldError(name, v, "not an id"))
        return None
    return n


def _parse_status(v, errors: List[SaleFieldError]) -> str:
    if _blank(v):
        return DEFAULT_STATUS
    try:
        return _status_adapter.validate_python(v)
    except ValidationError:
        errors.append(SaleFieldError("status", v, "unknown status"))
        return DEFAULT_STATUS


def _parse_sale_date(v, errors: List[SaleFieldError]) -> Optional[date]:
    if _blank(v):
        return None
    if isinstance(v, datetime):
        return v.date()
    if isinstance(v, date):
        return v
    raw = str(v).strip()
    try:
        return date.fromisoformat(raw[:10])
    except ValueError:
        errors.append(SaleFieldError("sale_date", v, "not an ISO date"))
        return None


def _parse_customer(v) -> Optional[str]:
    if not isinstance(v, str):
        return None
    return v.strip() or None


def parse_sale_input(raw: Optional[dict]) -> SaleInput:
    """
    Normalize an inbound sale payload. Never raises.

    Malformed fields fall back to their safe default (0 / None / 'pending') and are
    reported in `errors`, so the caller can either reject the request or carry on
    with the defaults.
    """
    data = raw if isinstance(raw, dict) else {}
    errors: List[SaleFieldError] = []
    return SaleInput(
        quantity=_parse_quantity(data.get("quantity"), errors),
        unit_cost=_parse_money("unit_cost", data.get("unit_cost"), errors),
        price=_parse_money("price", data.get("price"), errors),
        cash_at_hand=_parse_money("cash_at_hand", data.get("cash_at_hand"), errors),
        balance=_parse_money("balance", data.get("balance"), errors),
        project_id=_parse_ref("project_id", data.get("project_id"), errors),
        cycle_id=_parse_ref("cycle_id", data.get("cycle_id"), errors),
        product_id=_parse_ref("product_id", data.get("product_id"), errors),
        variant_id=_parse_ref("variant_id", data.get("variant_id"), errors),
        inventory_item_variant_id=_parse_ref("inventory_item_variant_id", data.get("inventory_item_variant_id"), errors),
        customer=_parse_customer(data.get("customer")),
        status=_parse_status(data.get("status"), errors),
        sale_date=_parse_sale_date(data.get("sale_date"), errors),
        errors=errors,
    )
