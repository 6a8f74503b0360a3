import copy
import os
import sys
from contextlib import contextmanager

import pytest


# Allow running pytest from either the repo root or from within `backend/`.
# Tests import `backend.*`, which requires the repo root on sys.path.
REPO_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", ".."))
if REPO_ROOT not in sys.path:
    sys.path.insert(0, REPO_ROOT)


class RecordingCursor:
    """Cursor stand-in: records every statement and answers fetches from canned rows, in order."""

    def __init__(self, fetchone_results=None, fetchall_results=None):
        self._one = list(fetchone_results or [])
        self._all = list(fetchall_results or [])
        self.executed: list[tuple[str, tuple]] = []

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        return False

    def execute(self, sql, params=None):
        self.executed.append((" ".join(sql.split()), tuple(params or ())))

    def fetchone(self):
        return self._one.pop(0) if self._one else None

    def fetchall(self):
        return self._all.pop(0) if self._all else []

    def sql(self, i: int) -> str:
        return self.executed[i][0]


class FakeStore:
    """
    In-memory stand-in for the tables a sale mutation touches.

    `transaction()` snapshots everything and restores it if the block raises,
    the same all-or-nothing contract as `conn.transaction()`.
    """

    def __init__(self):
        self.products = {}
        self.variants = {}
        self.sales = {}
        self.customers = {}
        self.ledger_entries = []
        self.next_sale_id = 1
        self.transactions_opened = 0

    def add_product(self, product_id: int, stock: int):
        self.products[product_id] = {"id": product_id, "quantity_in_stock": stock}

    def add_variant(self, variant_id: int, product_id: int, stock: int):
        self.variants[variant_id] = {"id": variant_id, "product_id": product_id, "quantity_in_stock": stock}

    def stock(self, product_id: int) -> int:
        return self.products[product_id]["quantity_in_stock"]

    def deltas(self):
        return [e["delta"] for e in self.ledger_entries]

    @contextmanager
    def transaction(self):
        self.transactions_opened += 1
        snap = copy.deepcopy({k: v for k, v in self.__dict__.items() if k != "transactions_opened"})
        try:
            yield
        except BaseException:
            self.__dict__.update(snap)
            raise


class FakeLedger:
    name = "fake"

    def __init__(self, store: FakeStore, fail_on_post: bool = False):
        self.store = store
        self.fail_on_post = fail_on_post

    def post(self, cur, m):
        if self.fail_on_post:
            raise RuntimeError("ledger unavailable")
        self.store.ledger_entries.append(
            {
                "sale_id": m.sale_id,
                "product_id": m.product_id,
                "variant_id": m.variant_id,
                "inventory_item_variant_id": m.inventory_item_variant_id,
                "project_id": m.project_id,
                "cycle_id": m.cycle_id,
                "delta": m.quantity_delta,
            }
        )
        return ["fake"]


class FakeConn:
    def __init__(self, store: FakeStore, cursor: RecordingCursor):
        self.store = store
        self._cursor = cursor

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        return False

    def cursor(self):
        return self._cursor

    def transaction(self):
        return self.store.transaction()


def install_fake_store(monkeypatch, store: FakeStore):
    """Point the reconciliation row/stock helpers at `store` instead of SQL."""
    from backend.app import sales_reconciliation as rec
    from backend.app.sales_input import q_money
    from backend.app.stock import StockReferenceError

    def upsert_customer(_cur, _org, name):
        if not name:
            return None
        return store.customers.setdefault(name, len(store.customers) + 1)

    def insert_sale(_cur, ctx, values):
        sale_id = store.next_sale_id
        store.next_sale_id += 1
        row = {"id": sale_id, "organization_id": ctx.organization_id, "created_by": ctx.user_id, **values}
        row["customer"] = row.get("customer_name")
        store.sales[sale_id] = row
        return dict(row)

    def update_sale_row(_cur, _ctx, sale_id, values):
        row = store.sales[sale_id]
        row.update(values)
        row["customer"] = row.get("customer_name")
        return dict(row)

    def delete_sale_row(_cur, _ctx, sale_id):
        store.sales.pop(sale_id, None)

    def apply_stock_delta(_cur, _org, product_id, variant_id, delta, *, enforce_non_negative=False):
        if not delta:
            return
        if product_id:
            if product_id not in store.products:
                raise StockReferenceError("Failed to update product stock. Product not found or permission denied.")
            store.products[product_id]["quantity_in_stock"] += delta
        if variant_id:
            if variant_id not in store.variants:
                raise StockReferenceError("Failed to update product variant stock. Variant not found.")
            store.variants[variant_id]["quantity_in_stock"] += delta

    monkeypatch.setattr(rec, "upsert_customer", upsert_customer)
    monkeypatch.setattr(rec, "insert_sale", insert_sale)
    monkeypatch.setattr(rec, "update_sale_row", update_sale_row)
    monkeypatch.setattr(rec, "delete_sale_row", delete_sale_row)
    monkeypatch.setattr(rec, "apply_stock_delta", apply_stock_delta)
    monkeypatch.setattr(rec, "compute_amount_in_org_currency", lambda _cur, _org, _pid, amount: q_money(amount))
    return store


@pytest.fixture
def store(monkeypatch):
    return install_fake_store(monkeypatch, FakeStore())
