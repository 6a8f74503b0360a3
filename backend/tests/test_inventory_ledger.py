from decimal import Decimal

from backend.app.inventory_ledger import (
    LegacyLedger,
    StockMovement,
    V2Ledger,
    _next_avg_cost,
    build_inventory_ledger,
    movement_notes,
)
from backend.app.schema_flags import SchemaFlags

from conftest import RecordingCursor


def _m(**overrides) -> StockMovement:
    base = dict(
        organization_id=10,
        project_id=3,
        cycle_id=4,
        product_id=1,
        variant_id=None,
        inventory_item_variant_id=None,
        quantity_delta=-5,
        unit_cost=Decimal("6.00"),
        sale_id=42,
        customer_name="Acme",
        created_by=7,
    )
    base.update(overrides)
    return StockMovement(**base)


def test_build_inventory_ledger_follows_schema_flag():
    assert isinstance(build_inventory_ledger(SchemaFlags()), LegacyLedger)
    assert isinstance(build_inventory_ledger(SchemaFlags(inventory_v2=True)), V2Ledger)


def test_movement_notes():
    assert movement_notes(_m()) == "Sale #42 - Acme"
    assert movement_notes(_m(quantity_delta=5, customer_name=None)) == "Sale #42 reversal - Walk-in"
    assert movement_notes(_m(customer_name="   ")) == "Sale #42 - Walk-in"


def test_legacy_ledger_posts_product_movement():
    cur = RecordingCursor()
    assert LegacyLedger().post(cur, _m()) == ["legacy"]
    sql, params = cur.executed[0]
    assert sql.startswith("INSERT INTO inventory_transactions")
    assert params == (10, 3, 4, 1, None, 42, "SALE", -5, Decimal("6.00"), "Sale #42 - Acme", 7)


def test_legacy_ledger_reversal_type():
    cur = RecordingCursor()
    LegacyLedger().post(cur, _m(quantity_delta=5))
    assert cur.executed[0][1][6] == "SALE_REVERSAL"


def test_legacy_ledger_skips_without_product_or_delta():
    cur = RecordingCursor()
    assert LegacyLedger().post(cur, _m(product_id=None, inventory_item_variant_id=9)) == []
    assert LegacyLedger().post(cur, _m(quantity_delta=0)) == []
    assert cur.executed == []


def test_v2_ledger_item_variant_only_skips_legacy():
    cur = RecordingCursor(fetchone_results=[{"inventory_item_id": 8}, None])
    assert V2Ledger().post(cur, _m(product_id=None, inventory_item_variant_id=9)) == ["v2"]
    statements = [sql for sql, _ in cur.executed]
    assert not any("inventory_transactions " in s for s in statements)
    tx_sql, tx_params = cur.executed[1]
    assert tx_sql.startswith("INSERT INTO inventory_item_transactions")
    assert tx_params == (10, 3, 4, 8, 9, "SALE_ISSUE", -5, Decimal("6.00"), "sale", 42, "Sale #42 - Acme", 7)
    assert "FOR UPDATE" in cur.sql(2)
    assert cur.sql(3).startswith("INSERT INTO inventory_balances")


def test_v2_ledger_item_variant_wins_over_product():
    cur = RecordingCursor(fetchone_results=[{"inventory_item_id": 8}, None])
    assert V2Ledger().post(cur, _m(inventory_item_variant_id=9)) == ["v2"]
    assert not cur.sql(0).startswith("INSERT INTO inventory_transactions")


def test_v2_ledger_product_posts_legacy_and_mapped_variant():
    cur = RecordingCursor(
        fetchone_results=[
            {"inventory_item_variant_id": 9},  # products mapping
            {"inventory_item_id": 8},
            {"quantity_on_hand": 20, "avg_unit_cost": Decimal("5.00")},
        ]
    )
    assert V2Ledger().post(cur, _m()) == ["legacy", "v2"]
    assert cur.sql(0).startswith("INSERT INTO inventory_transactions")
    assert "FROM products" in cur.sql(1)
    assert cur.sql(-1).startswith("UPDATE inventory_balances")
    # Outbound movement keeps the moving average.
    assert cur.executed[-1][1][:2] == (-5, Decimal("5.00"))


def test_v2_ledger_product_without_mapping_posts_legacy_only():
    cur = RecordingCursor(fetchone_results=[None])
    assert V2Ledger().post(cur, _m()) == ["legacy"]
    assert len(cur.executed) == 2


def test_v2_ledger_prefers_variant_mapping():
    cur = RecordingCursor(fetchone_results=[{"inventory_item_variant_id": 11}, {"inventory_item_id": 8}, None])
    assert V2Ledger().post(cur, _m(variant_id=6)) == ["legacy", "v2"]
    assert "FROM product_variants pv" in cur.sql(1)
    assert cur.executed[2][1] == (11,)


def test_v2_posting_needs_project_and_cycle():
    cur = RecordingCursor()
    assert V2Ledger().post(cur, _m(product_id=None, inventory_item_variant_id=9, cycle_id=None)) == []
    assert cur.executed == []


def test_v2_ledger_nothing_to_post():
    cur = RecordingCursor()
    assert V2Ledger().post(cur, _m(product_id=None)) == []
    assert V2Ledger().post(cur, _m(quantity_delta=0)) == []
    assert cur.executed == []


def test_next_avg_cost_moves_only_on_costed_inbound_stock():
    assert _next_avg_cost(10, Decimal("2.00"), 10, Decimal("4.00")) == Decimal("3.00")
    assert _next_avg_cost(10, Decimal("2.00"), -3, Decimal("4.00")) == Decimal("2.00")
    assert _next_avg_cost(10, Decimal("2.00"), 5, None) == Decimal("2.00")
    assert _next_avg_cost(0, None, 4, Decimal("1.50")) == Decimal("1.50")
