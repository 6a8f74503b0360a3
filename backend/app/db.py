from contextlib import contextmanager
from threading import Lock
from typing import Dict

from psycopg.rows import dict_row
from psycopg_pool import ConnectionPool

from .config import settings

# Two roles: "app" is subject to row-level security, "admin" is used for login,
# the startup schema probe and health checks.
_POOL_SPECS = {
    "app": lambda: (settings.db_url, settings.db_pool_min_size, settings.db_pool_max_size),
    "admin": lambda: (settings.db_admin_url, settings.db_admin_pool_min_size, settings.db_admin_pool_max_size),
}
_pools: Dict[str, ConnectionPool] = {}
_pools_lock = Lock()


def _get_pool(role: str) -> ConnectionPool:
    # Created on first use so importing the app never needs a reachable database.
    pool = _pools.get(role)
    if pool is not None:
        return pool
    with _pools_lock:
        pool = _pools.get(role)
        if pool is None:
            conninfo, min_size, max_size = _POOL_SPECS[role]()
            pool = ConnectionPool(
                conninfo=conninfo,
                min_size=min_size,
                max_size=max_size,
                kwargs={"row_factory": dict_row},
                open=True,
            )
            _pools[role] = pool
    return pool


@contextmanager
def _pooled_conn(role: str):
    # `with get_conn() as conn:` commits on success, rolls back on exception
    # and hands the connection back to the pool either way.
    with _get_pool(role).connection() as conn:
        with conn:
            yield conn


def get_conn():
    return _pooled_conn("app")


def get_admin_conn():
    return _pooled_conn("admin")


def close_pools() -> None:
    with _pools_lock:
        pools = list(_pools.values())
        _pools.clear()
    for pool in pools:
        pool.close()


def set_organization_context(conn, organization_id: int):
    """Scope RLS policies on this transaction to one organization."""
    with conn.cursor() as cur:
        # Parameterized SET isn't allowed under the extended protocol; set_config() is.
        cur.execute(
            "SELECT set_config('app.current_organization_id', %s::text, true)",
            (str(organization_id),),
        )
