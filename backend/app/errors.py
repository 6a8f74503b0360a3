from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from psycopg import errors as pg_errors

from .config import settings
from .cycle_locks import CycleInventoryLockedError
from .jsonlog import json_log
from .stock import SalesReconciliationError

# Constraint/cast failures the client can fix: (status, detail).
PG_ERROR_RESPONSES = {
    pg_errors.InvalidTextRepresentation: (400, "invalid value"),
    pg_errors.ForeignKeyViolation: (400, "invalid reference"),
    pg_errors.CheckViolation: (400, "constraint violation"),
    pg_errors.UniqueViolation: (409, "conflict"),
}


def _debug_enabled() -> bool:
    return settings.env in {"local", "dev"}


def request_id_of(req: Request) -> str:
    return getattr(req.state, "request_id", "") or req.headers.get("x-request-id") or "startup"


def cycle_inventory_locked(_req: Request, exc: CycleInventoryLockedError):
    return JSONResponse(
        status_code=409,
        content={"status": "error", "code": exc.code, "message": exc.message},
    )


def sales_reconciliation_failed(_req: Request, exc: SalesReconciliationError):
    return JSONResponse(status_code=exc.status_code, content={"status": "error", "message": exc.message})


def database_error(_req: Request, exc: Exception):
    status, detail = next(
        (resp for cls, resp in PG_ERROR_RESPONSES.items() if isinstance(exc, cls)),
        (400, "invalid request"),
    )
    content = {"detail": detail}
    if _debug_enabled():
        content["error"] = str(exc)
    return JSONResponse(status_code=status, content=content)


def request_validation_failed(_req: Request, exc: RequestValidationError):
    content = {"detail": "validation failed"}
    if _debug_enabled():
        content["errors"] = exc.errors()
    return JSONResponse(status_code=422, content=content)


def unhandled(req: Request, exc: Exception):
    rid = request_id_of(req)
    json_log(
        "error",
        "http.request.unhandled",
        request_id=rid,
        method=req.method,
        path=req.url.path,
        error=str(exc),
    )
    content = {"status": "error", "message": "internal error", "detail": "internal error", "request_id": rid}
    if _debug_enabled():
        content["error"] = str(exc)
    return JSONResponse(status_code=500, content=content)


def install_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(CycleInventoryLockedError, cycle_inventory_locked)
    app.add_exception_handler(SalesReconciliationError, sales_reconciliation_failed)
    for cls in PG_ERROR_RESPONSES:
        app.add_exception_handler(cls, database_error)
    app.add_exception_handler(RequestValidationError, request_validation_failed)
    app.add_exception_handler(Exception, unhandled)
