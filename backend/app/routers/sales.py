from contextlib import contextmanager
from fastapi import APIRouter, Body, Depends, HTTPException, Query
from typing import Optional
import psycopg
from ..config import settings
from ..cycle_locks import assert_cycles_open
from ..db import get_conn, set_organization_context
from ..deps import require_organization_user, get_schema_flags, get_inventory_ledger
from ..jsonlog import json_log
from ..project_access import Forbidden, accessible_project_ids, authorize_sale_projects
from ..sales_input import SaleInput, parse_sale_input
from ..sales_reconciliation import (
    ReconcileContext,
    create_sale,
    delete_sale,
    load_sale,
    sale_columns,
    update_sale,
)
from ..schema_flags import SchemaFlags
from ..stock import SalesReconciliationError
from ..validation import SaleStatus

router = APIRouter(prefix="/sales", tags=["sales"])


def _parse_or_reject(payload: Optional[dict], flags: SchemaFlags, user: dict, op: str) -> SaleInput:
    data = parse_sale_input(payload)
    if data.errors:
        errors = [e.as_dict() for e in data.errors]
        if settings.strict_sale_input:
            raise HTTPException(status_code=400, detail={"message": "invalid sale input", "errors": errors})
        json_log(
            "warning",
            "sales.input.coerced",
            op=op,
            organization_id=user["organization_id"],
            user_id=user["user_id"],
            errors=errors,
        )
    if not flags.sales_inventory_item_variant_id:
        # Column not migrated yet: never read or written.
        data.inventory_item_variant_id = None
    return data


def _parse_sale_id(raw) -> int:
    try:
        sale_id = int(str(raw).strip())
    except (TypeError, ValueError):
        raise HTTPException(status_code=400, detail="id is required")
    if sale_id <= 0:
        raise HTTPException(status_code=400, detail="id is required")
    return sale_id


def _raise_if_forbidden(access):
    if isinstance(access, Forbidden):
        raise HTTPException(status_code=403, detail="forbidden")


def _context(user: dict, ledger, flags: SchemaFlags) -> ReconcileContext:
    return ReconcileContext(
        organization_id=user["organization_id"],
        user_id=user["user_id"],
        ledger=ledger,
        flags=flags,
        enforce_non_negative_stock=settings.enforce_non_negative_stock,
    )


@contextmanager
def _mutation_logging(op: str, user: dict, sale_id: Optional[int] = None):
    # Handled failures are logged here with sale context; anything else is logged by the 500 handler.
    try:
        yield
    except (SalesReconciliationError, psycopg.Error) as exc:
        json_log(
            "error",
            "sales.mutation.failed",
            op=op,
            organization_id=user["organization_id"],
            user_id=user["user_id"],
            sale_id=sale_id,
            error=str(exc),
        )
        raise


@router.get("")
def list_sales(
    id: Optional[int] = None,
    project_id: Optional[int] = None,
    cycle_id: Optional[int] = None,
    product_id: Optional[int] = None,
    variant_id: Optional[int] = None,
    status: Optional[SaleStatus] = None,
    limit: int = Query(default=100),
    user=Depends(require_organization_user),
    flags: SchemaFlags = Depends(get_schema_flags),
):
    if limit <= 0 or limit > 500:
        raise HTTPException(status_code=400, detail="limit must be between 1 and 500")
    organization_id = user["organization_id"]
    with get_conn() as conn:
        set_organization_context(conn, organization_id)
        with conn.cursor() as cur:
            allowed = accessible_project_ids(cur, user)
            if id is not None:
                sale = load_sale(cur, organization_id, id, flags)
                if not sale or (allowed is not None and sale.get("project_id") not in allowed):
                    raise HTTPException(status_code=404, detail="sale not found")
                return {"status": "success", "sale": sale}

            sql = f"SELECT {sale_columns(flags)} FROM sales WHERE organization_id = %s"
            params: list = [organization_id]
            if allowed is not None:
                sql += " AND project_id = ANY(%s)"
                params.append(allowed)
            if project_id:
                sql += " AND project_id = %s"
                params.append(project_id)
            if cycle_id:
                sql += " AND cycle_id = %s"
                params.append(cycle_id)
            if product_id:
                sql += " AND product_id = %s"
                params.append(product_id)
            if variant_id:
                sql += " AND variant_id = %s"
                params.append(variant_id)
            if status:
                sql += " AND status = %s"
                params.append(status)
            sql += " ORDER BY sale_date DESC NULLS LAST, id DESC LIMIT %s"
            params.append(limit)
            cur.execute(sql, params)
            return {"status": "success", "sales": cur.fetchall()}


@router.post("")
def create_sale_endpoint(
    payload: dict = Body(...),
    user=Depends(require_organization_user),
    flags: SchemaFlags = Depends(get_schema_flags),
    ledger=Depends(get_inventory_ledger),
):
    data = _parse_or_reject(payload, flags, user, "create")
    organization_id = user["organization_id"]
    with _mutation_logging("create", user):
        with get_conn() as conn:
            set_organization_context(conn, organization_id)
            with conn.cursor() as cur:
                _raise_if_forbidden(authorize_sale_projects(cur, user, data.project_id))
                assert_cycles_open(cur, organization_id, data.cycle_id, enabled=flags.cycle_inventory_lock)
                with conn.transaction():
                    sale = create_sale(cur, _context(user, ledger, flags), data)
    json_log(
        "info",
        "sales.created",
        organization_id=organization_id,
        user_id=user["user_id"],
        sale_id=sale["id"],
        quantity=data.quantity,
        product_id=data.product_id,
    )
    return {"status": "success", "sale": sale}


@router.put("")
def update_sale_endpoint(
    payload: dict = Body(...),
    user=Depends(require_organization_user),
    flags: SchemaFlags = Depends(get_schema_flags),
    ledger=Depends(get_inventory_ledger),
):
    sale_id = _parse_sale_id(payload.get("id"))
    data = _parse_or_reject(payload, flags, user, "update")
    organization_id = user["organization_id"]
    with _mutation_logging("update", user, sale_id):
        with get_conn() as conn:
            set_organization_context(conn, organization_id)
            with conn.cursor() as cur:
                original = load_sale(cur, organization_id, sale_id, flags, for_update=True)
                if not original:
                    raise HTTPException(status_code=404, detail="sale not found")
                assert_cycles_open(
                    cur,
                    organization_id,
                    original.get("cycle_id"),
                    data.cycle_id,
                    enabled=flags.cycle_inventory_lock,
                )
                target_project_id = data.project_id or original.get("project_id")
                _raise_if_forbidden(
                    authorize_sale_projects(cur, user, target_project_id, original.get("project_id"))
                )
                with conn.transaction():
                    sale = update_sale(cur, _context(user, ledger, flags), original, data)
    json_log(
        "info",
        "sales.updated",
        organization_id=organization_id,
        user_id=user["user_id"],
        sale_id=sale_id,
        quantity_before=original.get("quantity"),
        quantity_after=data.quantity,
    )
    return {"status": "success", "sale": sale}


@router.delete("")
def delete_sale_endpoint(
    id: str = Query(...),
    user=Depends(require_organization_user),
    flags: SchemaFlags = Depends(get_schema_flags),
    ledger=Depends(get_inventory_ledger),
):
    sale_id = _parse_sale_id(id)
    organization_id = user["organization_id"]
    with _mutation_logging("delete", user, sale_id):
        with get_conn() as conn:
            set_organization_context(conn, organization_id)
            with conn.cursor() as cur:
                original = load_sale(cur, organization_id, sale_id, flags, for_update=True)
                if not original:
                    raise HTTPException(status_code=404, detail="sale not found")
                assert_cycles_open(cur, organization_id, original.get("cycle_id"), enabled=flags.cycle_inventory_lock)
                _raise_if_forbidden(authorize_sale_projects(cur, user, original.get("project_id")))
                with conn.transaction():
                    delete_sale(cur, _context(user, ledger, flags), original)
    json_log("info", "sales.deleted", organization_id=organization_id, user_id=user["user_id"], sale_id=sale_id)
    return {"status": "success", "message": "Sale deleted successfully"}
