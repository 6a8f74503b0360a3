from fastapi import APIRouter, Depends
from typing import Optional
from ..db import get_conn, set_organization_context
from ..deps import require_organization_user

router = APIRouter(prefix="/customers", tags=["customers"])


@router.get("")
def list_customers(q: Optional[str] = None, user=Depends(require_organization_user)):
    # Customers are created implicitly by sales (upsert by name), so this is read-only.
    organization_id = user["organization_id"]
    with get_conn() as conn:
        set_organization_context(conn, organization_id)
        with conn.cursor() as cur:
            sql = """
                SELECT c.id, c.name, c.created_at,
                       COUNT(s.id) AS sales_count,
                       COALESCE(SUM(s.amount_org_ccy), 0) AS total_amount_org_ccy
                FROM customers c
                LEFT JOIN sales s ON s.customer_id = c.id AND s.organization_id = c.organization_id
                WHERE c.organization_id = %s
            """
            params: list = [organization_id]
            needle = (q or "").strip()
            if needle:
                sql += " AND c.name ILIKE %s"
                params.append(f"%{needle}%")
            sql += " GROUP BY c.id, c.name, c.created_at ORDER BY c.name"
            cur.execute(sql, params)
            return {"status": "success", "customers": cur.fetchall()}
