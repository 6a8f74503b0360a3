from typing import Optional

CYCLE_INVENTORY_LOCKED_MESSAGE = (
    "This cycle is locked because inventory was carried forward. "
    "Create an adjustment in the current cycle instead."
)


class CycleInventoryLockedError(Exception):
    code = "CYCLE_INVENTORY_LOCKED"

    def __init__(self, cycle_id: int, message: str = CYCLE_INVENTORY_LOCKED_MESSAGE):
        super().__init__(message)
        self.cycle_id = cycle_id
        self.message = message


def is_cycle_inventory_locked(cur, cycle_id: Optional[int], organization_id: int) -> bool:
    if not cycle_id:
        return False
    cur.execute(
        """
        SELECT inventory_locked_at
        FROM cycles
        WHERE id = %s AND organization_id = %s
        """,
        (cycle_id, organization_id),
    )
    row = cur.fetchone()
    return bool(row and row.get("inventory_locked_at"))


def assert_cycle_not_inventory_locked(cur, cycle_id: Optional[int], organization_id: int):
    if is_cycle_inventory_locked(cur, cycle_id, organization_id):
        raise CycleInventoryLockedError(cycle_id)


def assert_cycles_open(cur, organization_id: int, *cycle_ids: Optional[int], enabled: bool = True):
    # `enabled` is the cycle_inventory_lock schema flag; without the column nothing can be locked.
    if not enabled:
        return
    checked = set()
    for cid in cycle_ids:
        if not cid or cid in checked:
            continue
        checked.add(cid)
        assert_cycle_not_inventory_locked(cur, cid, organization_id)


def lock_cycle_inventory(cur, cycle_id: int, organization_id: int, user_id: int) -> Optional[dict]:
    cur.execute(
        """
        UPDATE cycles
        SET inventory_locked_at = COALESCE(inventory_locked_at, now()),
            inventory_locked_by = COALESCE(inventory_locked_by, %s)
        WHERE id = %s AND organization_id = %s
        RETURNING id, inventory_locked_at, inventory_locked_by
        """,
        (user_id, cycle_id, organization_id),
    )
    return cur.fetchone()


def unlock_cycle_inventory(cur, cycle_id: int, organization_id: int) -> Optional[dict]:
    cur.execute(
        """
        UPDATE cycles
        SET inventory_locked_at = NULL,
            inventory_locked_by = NULL
        WHERE id = %s AND organization_id = %s
        RETURNING id, inventory_locked_at, inventory_locked_by
        """,
        (cycle_id, organization_id),
    )
    return cur.fetchone()
