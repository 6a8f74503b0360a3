from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
import time
import uuid
from .config import settings
from .db import get_admin_conn, close_pools
from .errors import install_error_handlers
from .inventory_ledger import build_inventory_ledger
from .jsonlog import json_log
from .routers.auth import router as auth_router
from .routers.customers import router as customers_router
from .routers.cycles import router as cycles_router
from .routers.health import router as health_router
from .routers.inventory import router as inventory_router
from .routers.sales import router as sales_router
from .schema_flags import flags_from_settings, resolve_schema_flags

app = FastAPI(title="bizledger API", version=settings.api_version)
install_error_handlers(app)


@app.middleware("http")
async def _request_logging(request: Request, call_next):
    # Correlation id in, correlation id out; one structured line per request.
    rid = (request.headers.get("X-Request-Id") or "").strip() or uuid.uuid4().hex
    request.state.request_id = rid
    started = time.monotonic()
    fields = {
        "request_id": rid,
        "method": request.method,
        "path": request.url.path,
        "client_ip": request.client.host if request.client else None,
    }
    try:
        response = await call_next(request)
    except Exception as exc:
        json_log("error", "http.request.error", duration_ms=int((time.monotonic() - started) * 1000), error=str(exc), **fields)
        raise

    response.headers["X-Request-Id"] = rid
    response.headers["X-Content-Type-Options"] = "nosniff"
    if not fields["path"].startswith("/health"):
        json_log(
            "info",
            "http.request",
            status_code=response.status_code,
            duration_ms=int((time.monotonic() - started) * 1000),
            **fields,
        )
    return response


app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
for _router in (health_router, auth_router, sales_router, cycles_router, inventory_router, customers_router):
    app.include_router(_router)


@app.on_event("startup")
def _startup():
    """Pin the schema flags (and with them the ledger strategy) for this process."""
    try:
        with get_admin_conn() as conn:
            with conn.cursor() as cur:
                flags = resolve_schema_flags(cur, settings)
    except Exception as exc:
        flags = flags_from_settings(settings)
        json_log("warning", "startup.schema_probe_failed", env=settings.env, error=str(exc))
    app.state.schema_flags = flags
    app.state.inventory_ledger = build_inventory_ledger(flags)
    json_log(
        "info",
        "startup.schema_flags",
        env=settings.env,
        version=settings.api_version,
        ledger=app.state.inventory_ledger.name,
        sales_inventory_item_variant_id=flags.sales_inventory_item_variant_id,
        inventory_v2=flags.inventory_v2,
        cycle_inventory_lock=flags.cycle_inventory_lock,
    )


@app.on_event("shutdown")
def _shutdown():
    close_pools()
