import pytest
from pydantic import BaseModel, ValidationError

from backend.app.validation import CurrencyCode, SaleStatus, SALE_STATUSES


class _M(BaseModel):
    currency: CurrencyCode
    status: SaleStatus


def test_validation_types_normalize_case():
    m = _M(currency=" usd ", status="Completed")
    assert m.currency == "USD"
    assert m.status == "completed"


def test_sale_status_rejects_unknown_values():
    with pytest.raises(ValidationError):
        _M(currency="USD", status="shipped")


def test_currency_code_requires_three_letters():
    for bad in ("US", "USDT", "U$D"):
        with pytest.raises(ValidationError):
            _M(currency=bad, status="pending")


def test_sale_statuses_match_literal():
    for s in SALE_STATUSES:
        assert _M(currency="EUR", status=s.upper()).status == s
