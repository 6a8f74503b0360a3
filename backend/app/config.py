import os
from typing import List, Optional


def _truthy(raw: str) -> bool:
    return str(raw or "").strip().lower() in {"1", "true", "yes", "on"}


def _optional_flag(name: str) -> Optional[bool]:
    # Unset means "probe the schema at startup"; any explicit value wins over the probe.
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return None
    return _truthy(raw)


def _env_int(name: str, default: int) -> int:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


class Settings:
    def _split_csv(self, raw: str, *, default: List[str]) -> List[str]:
        parts = [p.strip() for p in (raw or "").split(",")]
        return [p for p in parts if p] or default

    def __init__(self) -> None:
        self.env = os.getenv('APP_ENV', 'local')
        default_db = os.getenv("DATABASE_URL") or "postgresql://localhost/bizledger"
        # APP_DATABASE_URL: non-owner role so RLS applies; DATABASE_URL_ADMIN: owner role.
        self.db_url = os.getenv("APP_DATABASE_URL") or default_db
        self.db_admin_url = os.getenv("DATABASE_URL_ADMIN") or default_db
        self.db_pool_min_size = _env_int("DB_POOL_MIN_SIZE", 1)
        self.db_pool_max_size = _env_int("DB_POOL_MAX_SIZE", 10)
        self.db_admin_pool_min_size = _env_int("DB_ADMIN_POOL_MIN_SIZE", 1)
        self.db_admin_pool_max_size = _env_int("DB_ADMIN_POOL_MAX_SIZE", 5)
        # Comma-separated list of allowed CORS origins for browser clients.
        self.cors_origins = self._split_csv(
            os.getenv("CORS_ORIGINS", "").strip(),
            default=["http://localhost:3000", "http://127.0.0.1:3000"],
        )
        self.api_version = os.getenv("APP_VERSION", "0.1.0").strip() or "0.1.0"

        # FX lookups (amount_org_ccy snapshots).
        self.fx_primary_base_url = (
            os.getenv("FX_PRIMARY_BASE_URL", "").strip()
            or "https://cdn.jsdelivr.net/npm/@fawazahmed0/currency-api@latest/v1"
        ).rstrip("/")
        self.fx_fallback_base_url = (
            os.getenv("FX_FALLBACK_BASE_URL", "").strip()
            or "https://latest.currency-api.pages.dev/v1"
        ).rstrip("/")
        self.fx_cache_ttl_seconds = _env_float("FX_CACHE_TTL_SECONDS", 3600.0)
        self.fx_timeout_seconds = _env_float("FX_TIMEOUT_SECONDS", 5.0)

        # Reject malformed numeric sale fields (400) instead of defaulting them to zero.
        self.strict_sale_input = _truthy(os.getenv("STRICT_SALE_INPUT", ""))
        # Refuse stock decrements that would go below zero (conditional UPDATE).
        self.enforce_non_negative_stock = _truthy(os.getenv("ENFORCE_NON_NEGATIVE_STOCK", ""))

        # Schema flags. None => resolved once from information_schema at startup.
        self.schema_sales_inventory_item_variant_id = _optional_flag("SCHEMA_SALES_INVENTORY_ITEM_VARIANT_ID")
        self.schema_inventory_v2 = _optional_flag("SCHEMA_INVENTORY_V2")
        self.schema_cycle_inventory_lock = _optional_flag("SCHEMA_CYCLE_INVENTORY_LOCK")

settings = Settings()
