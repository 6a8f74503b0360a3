from decimal import Decimal

import pytest

from backend.app.sales_input import parse_sale_input
from backend.app.sales_reconciliation import (
    ReconcileContext,
    create_sale,
    delete_sale,
    sale_columns,
    update_sale,
)
from backend.app.schema_flags import SchemaFlags
from backend.app.stock import StockReferenceError

from conftest import FakeLedger

ORG = 10
USER = 7


def _ctx(store, flags=None, **kw):
    return ReconcileContext(
        organization_id=ORG,
        user_id=USER,
        ledger=FakeLedger(store, **kw),
        flags=flags or SchemaFlags(),
    )


def _create(store, ctx=None, **payload):
    body = {"project_id": 3, "cycle_id": 4, "product_id": 1, "quantity": 5, "price": 10, "customer": "Acme"}
    body.update(payload)
    return create_sale(None, ctx or _ctx(store), parse_sale_input(body))


def _update(store, sale, ctx=None, **payload):
    body = {"project_id": 3, "cycle_id": 4, "product_id": 1, "quantity": 5, "price": 10}
    body.update(payload)
    original = dict(store.sales[sale["id"]])
    return update_sale(None, ctx or _ctx(store), original, parse_sale_input(body))


def test_create_decrements_stock_and_posts_one_ledger_entry(store):
    store.add_product(1, 20)
    sale = _create(store)
    assert store.stock(1) == 15
    assert store.deltas() == [-5]
    assert store.ledger_entries[0]["sale_id"] == sale["id"]
    assert sale["amount"] == Decimal("50.00")
    assert sale["amount_org_ccy"] == Decimal("50.00")
    assert sale["status"] == "pending"
    assert sale["customer"] == "Acme"


def test_delete_restores_stock_and_posts_reversal(store):
    store.add_product(1, 20)
    sale = _create(store)
    delete_sale(None, _ctx(store), dict(store.sales[sale["id"]]))
    assert store.stock(1) == 20
    assert store.deltas() == [-5, 5]
    assert store.sales == {}


def test_quantity_only_update_posts_single_delta(store):
    store.add_product(1, 20)
    sale = _create(store)
    updated = _update(store, sale, quantity=8)
    assert store.stock(1) == 12
    assert store.deltas() == [-5, -3]
    assert updated["amount"] == Decimal("80.00")


def test_unchanged_quantity_posts_nothing(store):
    store.add_product(1, 20)
    sale = _create(store)
    _update(store, sale, price=12)
    assert store.stock(1) == 15
    assert store.deltas() == [-5]


def test_quantity_decrease_returns_stock(store):
    store.add_product(1, 20)
    sale = _create(store)
    _update(store, sale, quantity=2)
    assert store.stock(1) == 18
    assert store.deltas() == [-5, 3]


def test_product_change_fully_reverses_old_and_issues_new(store):
    store.add_product(1, 20)
    store.add_product(2, 10)
    sale = _create(store)
    _update(store, sale, product_id=2, quantity=4)
    assert store.stock(1) == 20
    assert store.stock(2) == 6
    assert [(e["product_id"], e["delta"]) for e in store.ledger_entries] == [(1, -5), (1, 5), (2, -4)]


def test_variant_change_is_a_product_change(store):
    store.add_product(1, 20)
    store.add_variant(6, 1, 8)
    store.add_variant(7, 1, 8)
    sale = _create(store, variant_id=6, quantity=3)
    assert store.variants[6]["quantity_in_stock"] == 5
    _update(store, sale, variant_id=7, quantity=3)
    assert store.variants[6]["quantity_in_stock"] == 8
    assert store.variants[7]["quantity_in_stock"] == 5
    assert store.stock(1) == 17
    assert store.deltas() == [-3, 3, -3]


def test_item_variant_change_reposts_ledger_but_moves_stock_by_delta(store):
    flags = SchemaFlags(sales_inventory_item_variant_id=True, inventory_v2=True)
    ctx = _ctx(store, flags)
    store.add_product(1, 20)
    sale = _create(store, ctx, inventory_item_variant_id=9)
    _update(store, sale, ctx, inventory_item_variant_id=11, quantity=6)
    assert store.stock(1) == 14
    assert [(e["inventory_item_variant_id"], e["delta"]) for e in store.ledger_entries] == [(9, -5), (9, 5), (11, -6)]


def test_item_variant_ignored_when_column_absent(store):
    store.add_product(1, 20)
    sale = _create(store, inventory_item_variant_id=9)
    assert "inventory_item_variant_id" not in store.sales[sale["id"]]
    assert store.ledger_entries[0]["inventory_item_variant_id"] is None


def test_zero_quantity_sale_touches_no_stock(store):
    store.add_product(1, 20)
    sale = _create(store, quantity=0)
    assert store.stock(1) == 20
    assert store.deltas() == []
    delete_sale(None, _ctx(store), dict(store.sales[sale["id"]]))
    assert store.deltas() == []


def test_sale_without_product_moves_no_stock(store):
    # The ledger strategy decides whether a product-less movement is recorded.
    sale = _create(store, product_id=None)
    assert sale["product_id"] is None
    assert store.products == {}
    assert store.ledger_entries[0]["product_id"] is None


def test_variant_without_product_moves_variant_stock(store):
    store.add_product(1, 20)
    store.add_variant(6, 1, 8)
    sale = _create(store, product_id=None, variant_id=6, quantity=3)
    assert store.variants[6]["quantity_in_stock"] == 5
    assert store.stock(1) == 20
    delete_sale(None, _ctx(store), dict(store.sales[sale["id"]]))
    assert store.variants[6]["quantity_in_stock"] == 8
    assert store.deltas() == [-3, 3]


def test_missing_variant_without_product_aborts(store):
    with pytest.raises(StockReferenceError):
        with store.transaction():
            _create(store, product_id=None, variant_id=6)
    assert store.sales == {}
    assert store.ledger_entries == []


def test_update_without_project_keeps_the_original(store):
    store.add_product(1, 20)
    sale = _create(store)
    updated = _update(store, sale, project_id=None, quantity=6)
    assert updated["project_id"] == 3
    assert store.ledger_entries[-1]["project_id"] == 3
    assert store.stock(1) == 14


def test_customer_upsert_is_idempotent(store):
    store.add_product(1, 20)
    first = _create(store, quantity=1)
    second = _create(store, quantity=1)
    assert first["customer_id"] == second["customer_id"]
    assert len(store.customers) == 1


def test_update_without_customer_keeps_the_original(store):
    store.add_product(1, 20)
    sale = _create(store)
    updated = _update(store, sale, quantity=5)
    assert updated["customer_name"] == "Acme"
    assert updated["customer_id"] == sale["customer_id"]
    renamed = _update(store, sale, customer="Beta Ltd")
    assert renamed["customer_name"] == "Beta Ltd"
    assert renamed["customer_id"] != sale["customer_id"]


def test_missing_product_aborts_inside_transaction(store):
    with pytest.raises(StockReferenceError):
        with store.transaction():
            _create(store, product_id=99)
    assert store.sales == {}
    assert store.ledger_entries == []
    assert store.customers == {}


def test_ledger_failure_leaves_no_partial_writes(store):
    store.add_product(1, 20)
    with pytest.raises(RuntimeError):
        with store.transaction():
            _create(store, ctx=_ctx(store, fail_on_post=True))
    assert store.stock(1) == 20
    assert store.sales == {}


def test_sale_columns_follow_schema_flag():
    assert "inventory_item_variant_id" not in sale_columns(SchemaFlags())
    assert sale_columns(SchemaFlags(sales_inventory_item_variant_id=True)).endswith(", inventory_item_variant_id")
