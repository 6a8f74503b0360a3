from fastapi import APIRouter, Depends, HTTPException, Query
from typing import Optional
from ..db import get_conn, set_organization_context
from ..deps import require_organization_user, get_schema_flags
from ..project_access import accessible_project_ids
from ..schema_flags import SchemaFlags

router = APIRouter(prefix="/inventory", tags=["inventory"])


def _check_limit(limit: int):
    if limit <= 0 or limit > 1000:
        raise HTTPException(status_code=400, detail="limit must be between 1 and 1000")


@router.get("/transactions")
def list_inventory_transactions(
    product_id: Optional[int] = None,
    variant_id: Optional[int] = None,
    project_id: Optional[int] = None,
    cycle_id: Optional[int] = None,
    sale_id: Optional[int] = None,
    limit: int = Query(default=200),
    user=Depends(require_organization_user),
):
    """Legacy per-product ledger, newest first."""
    _check_limit(limit)
    organization_id = user["organization_id"]
    with get_conn() as conn:
        set_organization_context(conn, organization_id)
        with conn.cursor() as cur:
            allowed = accessible_project_ids(cur, user)
            sql = """
                SELECT id, organization_id, project_id, cycle_id, product_id, variant_id, sale_id,
                       type, quantity_delta, unit_cost, notes, created_by, created_at
                FROM inventory_transactions
                WHERE organization_id = %s
            """
            params: list = [organization_id]
            if allowed is not None:
                sql += " AND project_id = ANY(%s)"
                params.append(allowed)
            for col, val in (
                ("product_id", product_id),
                ("variant_id", variant_id),
                ("project_id", project_id),
                ("cycle_id", cycle_id),
                ("sale_id", sale_id),
            ):
                if val:
                    sql += f" AND {col} = %s"
                    params.append(val)
            sql += " ORDER BY created_at DESC, id DESC LIMIT %s"
            params.append(limit)
            cur.execute(sql, params)
            return {"status": "success", "transactions": cur.fetchall()}


@router.get("/movements")
def list_inventory_movements(
    inventory_item_variant_id: Optional[int] = None,
    project_id: Optional[int] = None,
    cycle_id: Optional[int] = None,
    source_type: Optional[str] = None,
    source_id: Optional[int] = None,
    limit: int = Query(default=200),
    user=Depends(require_organization_user),
    flags: SchemaFlags = Depends(get_schema_flags),
):
    """Inventory V2 movements (per item variant), newest first."""
    _check_limit(limit)
    if not flags.inventory_v2:
        return {"status": "success", "movements": []}
    organization_id = user["organization_id"]
    with get_conn() as conn:
        set_organization_context(conn, organization_id)
        with conn.cursor() as cur:
            allowed = accessible_project_ids(cur, user)
            sql = """
                SELECT t.id, t.organization_id, t.project_id, t.cycle_id, t.inventory_item_id,
                       t.inventory_item_variant_id, i.name AS item_name, v.label AS variant_label,
                       t.transaction_type, t.quantity_delta, t.unit_cost,
                       t.source_type, t.source_id, t.notes, t.created_by, t.created_at
                FROM inventory_item_transactions t
                JOIN inventory_items i ON i.id = t.inventory_item_id
                LEFT JOIN inventory_item_variants v ON v.id = t.inventory_item_variant_id
                WHERE t.organization_id = %s
            """
            params: list = [organization_id]
            if allowed is not None:
                sql += " AND t.project_id = ANY(%s)"
                params.append(allowed)
            for col, val in (
                ("t.inventory_item_variant_id", inventory_item_variant_id),
                ("t.project_id", project_id),
                ("t.cycle_id", cycle_id),
                ("t.source_id", source_id),
            ):
                if val:
                    sql += f" AND {col} = %s"
                    params.append(val)
            if source_type:
                sql += " AND t.source_type = %s"
                params.append(source_type.strip().lower())
            sql += " ORDER BY t.created_at DESC, t.id DESC LIMIT %s"
            params.append(limit)
            cur.execute(sql, params)
            return {"status": "success", "movements": cur.fetchall()}
