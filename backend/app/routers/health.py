from datetime import datetime, timezone
from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from ..config import settings
from ..db import get_admin_conn
from ..errors import request_id_of

router = APIRouter(tags=["health"])
STARTED_AT_UTC = datetime.now(timezone.utc)
SERVICE_NAME = "bizledger-backend"


def _db_health():
    try:
        with get_admin_conn() as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT 1 AS ok")
                cur.fetchone()
        return True, None
    except Exception as exc:
        return False, str(exc)


def _schema_summary(req: Request) -> dict:
    flags = getattr(req.app.state, "schema_flags", None)
    return {
        "sales_inventory_item_variant_id": bool(flags and flags.sales_inventory_item_variant_id),
        "inventory_v2": bool(flags and flags.inventory_v2),
        "cycle_inventory_lock": bool(flags and flags.cycle_inventory_lock),
    }


def _db_report(req: Request, ok_status: str, **extra):
    ok, err = _db_health()
    content = {
        "status": ok_status if ok else "degraded",
        "env": settings.env,
        "db": "ok" if ok else "down",
        "service": SERVICE_NAME,
        "version": settings.api_version,
        "request_id": request_id_of(req),
        **extra,
    }
    if ok:
        return content
    if settings.env in {"local", "dev"}:
        content["error"] = err
    return JSONResponse(status_code=503, content=content)


@router.get("/")
def root():
    return {"status": "ok", "service": "api"}


@router.get("/health")
def health(req: Request):
    return _db_report(req, "ok", started_at=STARTED_AT_UTC.isoformat())


@router.get("/health/live")
def health_live(req: Request):
    # No DB round-trip: the process is up.
    return {"status": "ok", "env": settings.env, "service": SERVICE_NAME, "request_id": request_id_of(req)}


@router.get("/health/ready")
def health_ready(req: Request):
    return _db_report(req, "ready", schema=_schema_summary(req))
