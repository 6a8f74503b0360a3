"""
Sale <-> inventory reconciliation.

Every function here runs on a cursor that is already inside the caller's
transaction; none of them commit. Access checks and cycle-lock gates happen in
the route before the transaction block is entered.

For each stock-affecting change the ledger movement is posted first, then the
product/variant counters are moved by the same delta, so a failure in either
half aborts both.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import date
from decimal import Decimal
from typing import Optional

from .currency import compute_amount_in_org_currency
from .inventory_ledger import StockMovement
from .sales_input import SaleInput
from .schema_flags import SchemaFlags
from .stock import apply_stock_delta

SALE_COLUMNS = (
    "id, organization_id, project_id, cycle_id, product_id, variant_id, "
    "customer_id, customer_name, customer_name AS customer, quantity, unit_cost, price, "
    "amount, amount_org_ccy, status, cash_at_hand, balance, sale_date, created_by, created_at"
)


@dataclass(frozen=True)
class ReconcileContext:
    organization_id: int
    user_id: Optional[int]
    ledger: object
    flags: SchemaFlags
    enforce_non_negative_stock: bool = False


def sale_columns(flags: SchemaFlags) -> str:
    if flags.sales_inventory_item_variant_id:
        return SALE_COLUMNS + ", inventory_item_variant_id"
    return SALE_COLUMNS


def load_sale(cur, organization_id: int, sale_id: int, flags: SchemaFlags, *, for_update: bool = False) -> Optional[dict]:
    lock = " FOR UPDATE" if for_update else ""
    cur.execute(
        f"SELECT {sale_columns(flags)} FROM sales WHERE id = %s AND organization_id = %s{lock}",
        (sale_id, organization_id),
    )
    return cur.fetchone()


def upsert_customer(cur, organization_id: int, name: Optional[str]) -> Optional[int]:
    # Names are unique per organization (case-sensitive); repeat sales reuse the row.
    if not name:
        return None
    cur.execute(
        """
        INSERT INTO customers (name, organization_id)
        VALUES (%s, %s)
        ON CONFLICT (organization_id, name) DO UPDATE SET name = EXCLUDED.name
        RETURNING id
        """,
        (name, organization_id),
    )
    row = cur.fetchone()
    return row["id"] if row else None


def _row_values(data: SaleInput, customer_name: Optional[str], customer_id: Optional[int], amount_org_ccy: Decimal, flags: SchemaFlags) -> dict:
    values = {
        "project_id": data.project_id,
        "cycle_id": data.cycle_id,
        "product_id": data.product_id,
        "variant_id": data.variant_id,
        "customer_name": customer_name,
        "customer_id": customer_id,
        "quantity": data.quantity,
        "unit_cost": data.unit_cost,
        "price": data.price,
        "status": data.status,
        "cash_at_hand": data.cash_at_hand,
        "balance": data.balance,
        "amount": data.amount,
        "amount_org_ccy": amount_org_ccy,
        "sale_date": data.sale_date or date.today(),
    }
    if flags.sales_inventory_item_variant_id:
        values["inventory_item_variant_id"] = data.inventory_item_variant_id
    return values


def insert_sale(cur, ctx: ReconcileContext, values: dict) -> dict:
    cols = ["organization_id", "created_by"] + list(values.keys())
    params = [ctx.organization_id, ctx.user_id] + list(values.values())
    cur.execute(
        f"""
        INSERT INTO sales ({', '.join(cols)})
        VALUES ({', '.join(['%s'] * len(cols))})
        RETURNING {sale_columns(ctx.flags)}
        """,
        params,
    )
    return cur.fetchone()


def update_sale_row(cur, ctx: ReconcileContext, sale_id: int, values: dict) -> dict:
    sets = ", ".join(f"{k} = %s" for k in values.keys())
    cur.execute(
        f"""
        UPDATE sales
        SET {sets}
        WHERE id = %s AND organization_id = %s
        RETURNING {sale_columns(ctx.flags)}
        """,
        list(values.values()) + [sale_id, ctx.organization_id],
    )
    return cur.fetchone()


def delete_sale_row(cur, ctx: ReconcileContext, sale_id: int) -> None:
    cur.execute(
        "DELETE FROM sales WHERE id = %s AND organization_id = %s",
        (sale_id, ctx.organization_id),
    )


def _item_variant_id(ctx: ReconcileContext, sale: dict) -> Optional[int]:
    if not ctx.flags.sales_inventory_item_variant_id:
        return None
    return sale.get("inventory_item_variant_id")


def _movement(ctx: ReconcileContext, sale: dict, delta: int) -> StockMovement:
    unit_cost = sale.get("unit_cost")
    return StockMovement(
        organization_id=ctx.organization_id,
        project_id=sale.get("project_id"),
        cycle_id=sale.get("cycle_id"),
        product_id=sale.get("product_id"),
        variant_id=sale.get("variant_id"),
        inventory_item_variant_id=_item_variant_id(ctx, sale),
        quantity_delta=delta,
        unit_cost=Decimal(str(unit_cost)) if unit_cost is not None else None,
        sale_id=sale["id"],
        customer_name=sale.get("customer_name"),
        created_by=ctx.user_id,
    )


def _post_ledger(cur, ctx: ReconcileContext, sale: dict, delta: int):
    if delta:
        ctx.ledger.post(cur, _movement(ctx, sale, delta))


def _move_stock(cur, ctx: ReconcileContext, sale: dict, delta: int):
    if delta:
        apply_stock_delta(
            cur,
            ctx.organization_id,
            sale.get("product_id"),
            sale.get("variant_id"),
            delta,
            enforce_non_negative=ctx.enforce_non_negative_stock,
        )


def _post_and_move(cur, ctx: ReconcileContext, sale: dict, delta: int):
    _post_ledger(cur, ctx, sale, delta)
    _move_stock(cur, ctx, sale, delta)


def create_sale(cur, ctx: ReconcileContext, data: SaleInput) -> dict:
    customer_id = upsert_customer(cur, ctx.organization_id, data.customer)
    amount_org_ccy = compute_amount_in_org_currency(cur, ctx.organization_id, data.project_id, data.amount)
    sale = insert_sale(cur, ctx, _row_values(data, data.customer, customer_id, amount_org_ccy, ctx.flags))
    if data.quantity > 0:
        _post_and_move(cur, ctx, sale, -data.quantity)
    return sale


def update_sale(cur, ctx: ReconcileContext, original: dict, data: SaleInput) -> dict:
    """
    Rewrite the sale row and move stock/ledgers by what changed.

    Same product/variant: only the quantity difference is posted. If the V2 item
    variant changed underneath, the ledger gets a full reversal + reissue while
    the product counters still move by the difference.
    Different product/variant: the old position is fully reversed and the new
    one fully issued.
    Omitted project or customer keeps the original's.
    """
    if data.project_id is None and original.get("project_id"):
        data = replace(data, project_id=original["project_id"])
    if data.customer:
        customer_id = upsert_customer(cur, ctx.organization_id, data.customer)
        customer_name = data.customer
    else:
        customer_id = original.get("customer_id")
        customer_name = original.get("customer_name")
    amount_org_ccy = compute_amount_in_org_currency(cur, ctx.organization_id, data.project_id, data.amount)
    sale = update_sale_row(cur, ctx, original["id"], _row_values(data, customer_name, customer_id, amount_org_ccy, ctx.flags))

    q_old = int(original.get("quantity") or 0)
    q_new = int(sale.get("quantity") or 0)
    same_product = (
        original.get("product_id") == sale.get("product_id")
        and original.get("variant_id") == sale.get("variant_id")
    )
    same_item_variant = _item_variant_id(ctx, original) == _item_variant_id(ctx, sale)

    if same_product:
        delta = q_old - q_new
        if same_item_variant:
            _post_and_move(cur, ctx, sale, delta)
        else:
            if q_old > 0:
                _post_ledger(cur, ctx, original, q_old)
            if q_new > 0:
                _post_ledger(cur, ctx, sale, -q_new)
            _move_stock(cur, ctx, sale, delta)
        return sale

    if q_old > 0:
        _post_and_move(cur, ctx, original, q_old)
    if q_new > 0:
        _post_and_move(cur, ctx, sale, -q_new)
    return sale


def delete_sale(cur, ctx: ReconcileContext, original: dict) -> None:
    q = int(original.get("quantity") or 0)
    if q > 0:
        _post_and_move(cur, ctx, original, q)
    delete_sale_row(cur, ctx, original["id"])
