#!/usr/bin/env python3
"""
Read-only sale/inventory integrity checks.

Verifies the invariants the sales workflow is supposed to keep:
- sales.amount == round(quantity * price, 2)
- the legacy ledger rows tagged with a sale net to -quantity (0 when the sale has
  no product, or carries an inventory item variant under Inventory V2)
- V2 rows sourced from an item-variant sale net to -quantity (0 without project/cycle)
- product and variant stock never went negative

Safe to run against production databases.
"""

from __future__ import annotations

import argparse
import os
import sys
from dataclasses import dataclass
from decimal import Decimal


# Allow running from repo root without installing as a package.
REPO_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if REPO_ROOT not in sys.path:
    sys.path.insert(0, REPO_ROOT)

from backend.app.config import settings  # noqa: E402
from backend.app.db import get_conn, set_organization_context  # noqa: E402
from backend.app.inventory_ledger import SOURCE_TYPE_SALE  # noqa: E402
from backend.app.sales_input import q_money  # noqa: E402
from backend.app.schema_flags import resolve_schema_flags  # noqa: E402


def d(v) -> Decimal:
    return Decimal(str(v or 0))


@dataclass
class Finding:
    kind: str
    id: int
    message: str


def _parse_args() -> argparse.Namespace:
    p = argparse.ArgumentParser()
    p.add_argument(
        "--organization-id",
        type=int,
        default=int(os.environ.get("ORGANIZATION_ID") or 0),
        help="Organization id (or env ORGANIZATION_ID)",
    )
    p.add_argument("--limit", type=int, default=200, help="Rows per check (default: 200)")
    return p.parse_args()


def sale_amount_findings(rows) -> list[Finding]:
    findings: list[Finding] = []
    for r in rows:
        expected = q_money(d(r["quantity"]) * d(r["price"]))
        got = d(r["amount"])
        if got != expected:
            findings.append(
                Finding(
                    kind="sale_amount_mismatch",
                    id=r["id"],
                    message=f"amount {got} != quantity {r['quantity']} x price {d(r['price'])} = {expected}",
                )
            )
    return findings


def _expected_nets(r) -> tuple[int, int | None]:
    """(legacy, v2) net a sale's ledger rows should sum to; None means V2 isn't checked for it."""
    issued = -int(r["quantity"] or 0)
    if r.get("inventory_item_variant_id"):
        # Item-variant sales post to V2 only, and only with a project and cycle.
        return 0, (issued if r.get("project_id") and r.get("cycle_id") else 0)
    return (issued if r["product_id"] else 0), None


def sale_ledger_findings(rows) -> list[Finding]:
    findings: list[Finding] = []
    for r in rows:
        expected_legacy, expected_v2 = _expected_nets(r)
        got_legacy = int(r["legacy_net"] or 0)
        if got_legacy != expected_legacy:
            findings.append(
                Finding(
                    kind="sale_ledger_mismatch",
                    id=r["id"],
                    message=f"legacy ledger nets to {got_legacy}, expected {expected_legacy}",
                )
            )
        if expected_v2 is None:
            continue
        got_v2 = int(r.get("v2_net") or 0)
        if got_v2 != expected_v2:
            findings.append(
                Finding(
                    kind="sale_v2_ledger_mismatch",
                    id=r["id"],
                    message=f"V2 ledger nets to {got_v2}, expected {expected_v2}",
                )
            )
    return findings


def check_sales(organization_id: int, limit: int) -> list[Finding]:
    with get_conn() as conn:
        set_organization_context(conn, organization_id)
        with conn.cursor() as cur:
            flags = resolve_schema_flags(cur, settings)
            v2_sales = flags.inventory_v2 and flags.sales_inventory_item_variant_id
            item_variant_col = "s.inventory_item_variant_id" if v2_sales else "NULL::integer"
            v2_net = (
                """
                (SELECT COALESCE(SUM(it.quantity_delta), 0)
                 FROM inventory_item_transactions it
                 WHERE it.source_type = %s AND it.source_id = s.id
                   AND it.organization_id = s.organization_id)
                """
                if flags.inventory_v2
                else "0"
            )
            params = ([SOURCE_TYPE_SALE] if flags.inventory_v2 else []) + [organization_id, limit]
            cur.execute(
                f"""
                SELECT s.id, s.product_id, s.project_id, s.cycle_id, s.quantity, s.price, s.amount,
                       {item_variant_col} AS inventory_item_variant_id,
                       (SELECT COALESCE(SUM(t.quantity_delta), 0)
                        FROM inventory_transactions t
                        WHERE t.sale_id = s.id AND t.organization_id = s.organization_id) AS legacy_net,
                       {v2_net} AS v2_net
                FROM sales s
                WHERE s.organization_id = %s
                ORDER BY s.id DESC
                LIMIT %s
                """,
                params,
            )
            rows = cur.fetchall()
    return sale_amount_findings(rows) + sale_ledger_findings(rows)


def check_negative_stock(organization_id: int, limit: int) -> list[Finding]:
    findings: list[Finding] = []
    with get_conn() as conn:
        set_organization_context(conn, organization_id)
        with conn.cursor() as cur:
            cur.execute(
                """
                SELECT 'product' AS kind, id, quantity_in_stock
                FROM products
                WHERE organization_id = %s AND quantity_in_stock < 0
                UNION ALL
                SELECT 'variant' AS kind, pv.id, pv.quantity_in_stock
                FROM product_variants pv
                JOIN products p ON p.id = pv.product_id
                WHERE p.organization_id = %s AND pv.quantity_in_stock < 0
                LIMIT %s
                """,
                (organization_id, organization_id, limit),
            )
            for r in cur.fetchall():
                findings.append(
                    Finding(
                        kind=f"negative_{r['kind']}_stock",
                        id=r["id"],
                        message=f"quantity_in_stock={r['quantity_in_stock']}",
                    )
                )
    return findings


def main() -> int:
    args = _parse_args()
    if not args.organization_id:
        print("Missing --organization-id (or env ORGANIZATION_ID).", file=sys.stderr)
        return 2
    limit = max(1, min(int(args.limit or 200), 5000))

    findings: list[Finding] = []
    findings.extend(check_sales(args.organization_id, limit))
    findings.extend(check_negative_stock(args.organization_id, limit))

    if not findings:
        print("OK: no integrity issues found.")
        return 0

    print(f"Found {len(findings)} issue(s):")
    for f in findings[:200]:
        print(f"- {f.kind}: {f.id} -> {f.message}")
    if len(findings) > 200:
        print(f"... plus {len(findings) - 200} more")
    return 1


if __name__ == "__main__":
    raise SystemExit(main())
