"""
Stock movement ledgers.

Two generations coexist while products are being cut over to Inventory V2:

- the legacy `inventory_transactions` ledger, keyed by product/variant;
- the V2 `inventory_item_transactions` ledger (+ `inventory_balances`), keyed by
  inventory item variant.

Which one a movement lands in is decided by a ledger strategy picked once from
the schema flags (see `build_inventory_ledger`). Both ledgers are append-only.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from .schema_flags import SchemaFlags

LEGACY_SALE = "SALE"
LEGACY_SALE_REVERSAL = "SALE_REVERSAL"
V2_SALE_ISSUE = "SALE_ISSUE"
V2_REVERSAL = "REVERSAL"

SOURCE_TYPE_SALE = "sale"


@dataclass(frozen=True)
class StockMovement:
    organization_id: int
    project_id: Optional[int]
    cycle_id: Optional[int]
    product_id: Optional[int]
    variant_id: Optional[int]
    inventory_item_variant_id: Optional[int]
    quantity_delta: int
    unit_cost: Optional[Decimal]
    sale_id: int
    customer_name: Optional[str]
    created_by: Optional[int]


def legacy_type(delta: int) -> str:
    return LEGACY_SALE if delta < 0 else LEGACY_SALE_REVERSAL


def v2_type(delta: int) -> str:
    return V2_SALE_ISSUE if delta < 0 else V2_REVERSAL


def movement_notes(m: StockMovement) -> str:
    who = (m.customer_name or "").strip() or "Walk-in"
    if m.quantity_delta > 0:
        return f"Sale #{m.sale_id} reversal - {who}"
    return f"Sale #{m.sale_id} - {who}"


def _post_legacy(cur, m: StockMovement):
    cur.execute(
        """
        INSERT INTO inventory_transactions
          (organization_id, project_id, cycle_id, product_id, variant_id, sale_id,
           type, quantity_delta, unit_cost, notes, created_by)
        VALUES
          (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
        """,
        (
            m.organization_id,
            m.project_id,
            m.cycle_id,
            m.product_id,
            m.variant_id,
            m.sale_id,
            legacy_type(m.quantity_delta),
            m.quantity_delta,
            m.unit_cost,
            movement_notes(m),
            m.created_by,
        ),
    )


def resolve_finished_goods_variant_id(cur, organization_id: int, product_id: Optional[int], variant_id: Optional[int]) -> Optional[int]:
    """Map a legacy product (and optional product variant) to its V2 finished-goods item variant."""
    if not product_id:
        return None
    if variant_id:
        cur.execute(
            """
            SELECT pv.inventory_item_variant_id
            FROM product_variants pv
            JOIN products p ON p.id = pv.product_id
            WHERE pv.id = %s AND pv.product_id = %s AND p.organization_id = %s
            LIMIT 1
            """,
            (variant_id, product_id, organization_id),
        )
        row = cur.fetchone()
        if row and row.get("inventory_item_variant_id"):
            return int(row["inventory_item_variant_id"])
    cur.execute(
        """
        SELECT inventory_item_variant_id
        FROM products
        WHERE id = %s AND organization_id = %s
        LIMIT 1
        """,
        (product_id, organization_id),
    )
    row = cur.fetchone()
    if row and row.get("inventory_item_variant_id"):
        return int(row["inventory_item_variant_id"])
    return None


def _next_avg_cost(prev_qty: int, prev_avg: Optional[Decimal], delta: int, unit_cost: Optional[Decimal]) -> Optional[Decimal]:
    # Moving average only moves on inbound stock that carries a cost.
    if delta > 0 and unit_cost and prev_qty + delta > 0:
        prev_total = (prev_avg or Decimal("0")) * prev_qty
        return (prev_total + unit_cost * delta) / (prev_qty + delta)
    return prev_avg


def _post_v2(cur, m: StockMovement, item_variant_id: int) -> bool:
    if not m.project_id or not m.cycle_id or not item_variant_id or not m.quantity_delta:
        return False

    cur.execute(
        "SELECT inventory_item_id FROM inventory_item_variants WHERE id = %s LIMIT 1",
        (item_variant_id,),
    )
    item = cur.fetchone()
    if not item or not item.get("inventory_item_id"):
        return False

    unit_cost = m.unit_cost if m.unit_cost else None
    cur.execute(
        """
        INSERT INTO inventory_item_transactions
          (organization_id, project_id, cycle_id, inventory_item_id, inventory_item_variant_id,
           transaction_type, quantity_delta, unit_cost, source_type, source_id, notes, created_by)
        VALUES
          (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
        """,
        (
            m.organization_id,
            m.project_id,
            m.cycle_id,
            item["inventory_item_id"],
            item_variant_id,
            v2_type(m.quantity_delta),
            m.quantity_delta,
            unit_cost,
            SOURCE_TYPE_SALE,
            m.sale_id,
            movement_notes(m),
            m.created_by,
        ),
    )

    cur.execute(
        """
        SELECT quantity_on_hand, avg_unit_cost
        FROM inventory_balances
        WHERE organization_id = %s AND project_id = %s AND cycle_id = %s AND inventory_item_variant_id = %s
        FOR UPDATE
        """,
        (m.organization_id, m.project_id, m.cycle_id, item_variant_id),
    )
    bal = cur.fetchone()
    if not bal:
        cur.execute(
            """
            INSERT INTO inventory_balances
              (organization_id, project_id, cycle_id, inventory_item_variant_id, quantity_on_hand, avg_unit_cost)
            VALUES
              (%s, %s, %s, %s, %s, %s)
            ON CONFLICT (organization_id, project_id, cycle_id, inventory_item_variant_id) DO UPDATE
            SET quantity_on_hand = inventory_balances.quantity_on_hand + EXCLUDED.quantity_on_hand,
                updated_at = now()
            """,
            (m.organization_id, m.project_id, m.cycle_id, item_variant_id, m.quantity_delta, unit_cost),
        )
        return True

    prev_qty = int(bal.get("quantity_on_hand") or 0)
    prev_avg = Decimal(str(bal["avg_unit_cost"])) if bal.get("avg_unit_cost") is not None else None
    next_avg = _next_avg_cost(prev_qty, prev_avg, m.quantity_delta, unit_cost)
    cur.execute(
        """
        UPDATE inventory_balances
        SET quantity_on_hand = quantity_on_hand + %s,
            avg_unit_cost = COALESCE(%s, avg_unit_cost),
            updated_at = now()
        WHERE organization_id = %s AND project_id = %s AND cycle_id = %s AND inventory_item_variant_id = %s
        """,
        (m.quantity_delta, next_avg, m.organization_id, m.project_id, m.cycle_id, item_variant_id),
    )
    return True


class LegacyLedger:
    """Pre-V2 schema: only `inventory_transactions` exists."""

    name = "legacy"

    def post(self, cur, m: StockMovement) -> list:
        if not m.quantity_delta or not m.product_id:
            return []
        _post_legacy(cur, m)
        return ["legacy"]


class V2Ledger:
    """
    Schema with Inventory V2:
    - item-variant reference present: V2 only;
    - product reference only: legacy ledger plus the product's mapped V2 variant (if any);
    - neither: nothing to post.
    """

    name = "v2"

    def post(self, cur, m: StockMovement) -> list:
        if not m.quantity_delta:
            return []
        if m.inventory_item_variant_id:
            return ["v2"] if _post_v2(cur, m, m.inventory_item_variant_id) else []
        if not m.product_id:
            return []
        written = ["legacy"]
        _post_legacy(cur, m)
        mapped = resolve_finished_goods_variant_id(cur, m.organization_id, m.product_id, m.variant_id)
        if mapped and _post_v2(cur, m, mapped):
            written.append("v2")
        return written


def build_inventory_ledger(flags: SchemaFlags):
    if flags.inventory_v2:
        return V2Ledger()
    return LegacyLedger()
