from __future__ import annotations

from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class SchemaFlags:
    """
    Which optional migrations are present in the database this process talks to.

    Resolved once at startup (env override first, then a single information_schema
    probe) and carried on `app.state`. A migration applied while the process is
    running is picked up on the next restart, or immediately via the env override.
    """

    # sales.inventory_item_variant_id (migration 002)
    sales_inventory_item_variant_id: bool = False
    # inventory_balances / inventory_item_transactions (migration 003)
    inventory_v2: bool = False
    # cycles.inventory_locked_at (migration 004)
    cycle_inventory_lock: bool = False


def _column_exists(cur, table: str, column: str) -> bool:
    cur.execute(
        """
        SELECT 1
        FROM information_schema.columns
        WHERE table_schema = 'public' AND table_name = %s AND column_name = %s
        LIMIT 1
        """,
        (table, column),
    )
    return cur.fetchone() is not None


def _table_exists(cur, table: str) -> bool:
    cur.execute(
        """
        SELECT 1
        FROM information_schema.tables
        WHERE table_schema = 'public' AND table_name = %s
        LIMIT 1
        """,
        (table,),
    )
    return cur.fetchone() is not None


def _pick(override: Optional[bool], probe) -> bool:
    if override is not None:
        return bool(override)
    return bool(probe())


def resolve_schema_flags(cur, settings) -> SchemaFlags:
    return SchemaFlags(
        sales_inventory_item_variant_id=_pick(
            settings.schema_sales_inventory_item_variant_id,
            lambda: _column_exists(cur, "sales", "inventory_item_variant_id"),
        ),
        inventory_v2=_pick(
            settings.schema_inventory_v2,
            lambda: _table_exists(cur, "inventory_balances"),
        ),
        cycle_inventory_lock=_pick(
            settings.schema_cycle_inventory_lock,
            lambda: _column_exists(cur, "cycles", "inventory_locked_at"),
        ),
    )


def flags_from_settings(settings) -> SchemaFlags:
    # Used when the startup probe can't reach the database: only explicit env flags count.
    return SchemaFlags(
        sales_inventory_item_variant_id=bool(settings.schema_sales_inventory_item_variant_id),
        inventory_v2=bool(settings.schema_inventory_v2),
        cycle_inventory_lock=bool(settings.schema_cycle_inventory_lock),
    )
