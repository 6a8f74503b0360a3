from fastapi import APIRouter, Depends, HTTPException
from typing import Optional
from ..cycle_locks import lock_cycle_inventory, unlock_cycle_inventory
from ..db import get_conn, set_organization_context
from ..deps import require_organization_user, require_admin, get_schema_flags
from ..jsonlog import json_log
from ..project_access import accessible_project_ids
from ..schema_flags import SchemaFlags

router = APIRouter(prefix="/cycles", tags=["cycles"])


def _require_lock_support(flags: SchemaFlags):
    if not flags.cycle_inventory_lock:
        raise HTTPException(status_code=400, detail="cycle inventory locks are not enabled for this database")


@router.get("")
def list_cycles(
    project_id: Optional[int] = None,
    user=Depends(require_organization_user),
    flags: SchemaFlags = Depends(get_schema_flags),
):
    organization_id = user["organization_id"]
    lock_cols = ", inventory_locked_at, inventory_locked_by" if flags.cycle_inventory_lock else ""
    with get_conn() as conn:
        set_organization_context(conn, organization_id)
        with conn.cursor() as cur:
            allowed = accessible_project_ids(cur, user)
            sql = f"""
                SELECT id, project_id, cycle_number, cycle_name, start_date, end_date{lock_cols}
                FROM cycles
                WHERE organization_id = %s
            """
            params: list = [organization_id]
            if allowed is not None:
                sql += " AND project_id = ANY(%s)"
                params.append(allowed)
            if project_id:
                sql += " AND project_id = %s"
                params.append(project_id)
            sql += " ORDER BY end_date DESC NULLS LAST, start_date DESC NULLS LAST, cycle_number DESC NULLS LAST, id DESC"
            cur.execute(sql, params)
            return {"status": "success", "cycles": cur.fetchall()}


@router.post("/{cycle_id}/inventory-lock")
def lock_cycle(
    cycle_id: int,
    user=Depends(require_admin),
    flags: SchemaFlags = Depends(get_schema_flags),
):
    """
    Freeze inventory for a cycle (typically after its closing stock was carried
    forward). Sales in a locked cycle can no longer be created, edited or deleted.
    """
    _require_lock_support(flags)
    organization_id = user["organization_id"]
    with get_conn() as conn:
        set_organization_context(conn, organization_id)
        with conn.transaction():
            with conn.cursor() as cur:
                row = lock_cycle_inventory(cur, cycle_id, organization_id, user["user_id"])
                if not row:
                    raise HTTPException(status_code=404, detail="cycle not found")
    json_log("info", "cycles.inventory_locked", organization_id=organization_id, user_id=user["user_id"], cycle_id=cycle_id)
    return {"status": "success", "cycle": row}


@router.delete("/{cycle_id}/inventory-lock")
def unlock_cycle(
    cycle_id: int,
    user=Depends(require_admin),
    flags: SchemaFlags = Depends(get_schema_flags),
):
    _require_lock_support(flags)
    organization_id = user["organization_id"]
    with get_conn() as conn:
        set_organization_context(conn, organization_id)
        with conn.transaction():
            with conn.cursor() as cur:
                row = unlock_cycle_inventory(cur, cycle_id, organization_id)
                if not row:
                    raise HTTPException(status_code=404, detail="cycle not found")
    json_log("info", "cycles.inventory_unlocked", organization_id=organization_id, user_id=user["user_id"], cycle_id=cycle_id)
    return {"status": "success", "cycle": row}
