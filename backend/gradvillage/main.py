"""FastAPI application entry point.

Wires the routers together, installs the error envelope handlers and runs
startup work: table creation, school seeding and the optional periodic
counter reconciliation.
"""

import os
import logging
import asyncio

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.openapi.docs import get_swagger_ui_html
from fastapi.openapi.utils import get_openapi
from starlette.exceptions import HTTPException as StarletteHTTPException

from gradvillage.routes import (
    auth,
    donors,
    students,
    donations,
    admin,
    admin_verification,
    donation_admin,
    settings,
)
from gradvillage.database import create_db_and_tables, async_session
from gradvillage.crud import ensure_schools_exist, get_settings
from gradvillage.errors import GradVillageError
from gradvillage.ledger import reconcile_counters

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
logging.basicConfig(level=getattr(logging, LOG_LEVEL))
logger = logging.getLogger(__name__)

SEED_SCHOOLS = os.getenv("SEED_SCHOOLS", "true").lower() == "true"
RECONCILE_INTERVAL_HOURS = float(os.getenv("RECONCILE_INTERVAL_HOURS", "0"))

STATUS_CODES = {
    400: "validation_error",
    401: "auth_error",
    403: "forbidden",
    404: "not_found",
    405: "method_not_allowed",
    409: "conflict",
}

app = FastAPI(title="GradVillage API", docs_url=None)


def custom_openapi():
    """Generate an OpenAPI schema that is aware of our `/api` proxy prefix."""

    if app.openapi_schema:
        return app.openapi_schema
    openapi_schema = get_openapi(
        title=app.title,
        version=app.version,
        description=app.description,
        routes=app.routes,
    )
    openapi_schema["servers"] = [{"url": "/api"}]
    app.openapi_schema = openapi_schema
    return app.openapi_schema


app.openapi = custom_openapi

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.on_event("startup")
async def on_startup():
    """Create tables, seed the school catalogue and start maintenance."""

    await create_db_and_tables()
    if SEED_SCHOOLS:
        try:
            async with async_session() as session:
                added = await ensure_schools_exist(session)
            if added:
                logger.info("Seeded %d schools", added)
        except Exception:
            logger.exception("School seeding failed")
    if RECONCILE_INTERVAL_HOURS > 0:
        asyncio.create_task(reconcile_task(RECONCILE_INTERVAL_HOURS))


async def reconcile_task(interval_hours: float):
    """Periodically rebuild denormalized counters from the donation rows."""

    logger.info("Starting reconciliation task every %s hours", interval_hours)
    while True:
        try:
            async with async_session() as session:
                report = await reconcile_counters(session, apply=True)
            if report["driftCount"]:
                logger.warning("Reconciliation fixed %d values", report["driftCount"])
        except Exception as exc:
            logger.exception("Reconciliation task failed: %s", exc)
        await asyncio.sleep(interval_hours * 60 * 60)


app.include_router(auth.router)
app.include_router(donors.router)
app.include_router(students.router)
app.include_router(donations.router)
app.include_router(admin.router)
app.include_router(admin_verification.router)
app.include_router(donation_admin.router)
app.include_router(settings.router)


@app.get("/docs", include_in_schema=False)
async def custom_swagger_ui_html():
    """Serve the interactive docs with the correct API prefix."""

    # The proxy only forwards `/api/*`, so the schema must be fetched from there.
    return get_swagger_ui_html(openapi_url="/api/openapi.json", title="API Docs")


@app.get("/")
async def read_root():
    async with async_session() as session:
        s = await get_settings(session)
        name = s.site_name
    return {"message": f"Welcome to {name} API"}


def _error(status_code: int, code: str, message: str, errors=None) -> JSONResponse:
    content = {"success": False, "code": code, "message": message}
    if errors:
        content["errors"] = errors
    return JSONResponse(status_code=status_code, content=content)


@app.exception_handler(GradVillageError)
async def domain_error_handler(request: Request, exc: GradVillageError):
    if exc.status_code >= 500:
        logger.error("Domain error on %s: %s", request.url.path, exc.message)
    return _error(exc.status_code, exc.code, exc.message, exc.errors)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = []
    for err in exc.errors():
        # Drop the leading "body"/"query" segment so fields read like the payload.
        loc = [str(part) for part in err.get("loc", ())[1:]]
        errors.append({"field": ".".join(loc) or "request", "message": err.get("msg", "")})
    return _error(400, "validation_error", "Request validation failed", errors)


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    if isinstance(exc.detail, dict):
        code = exc.detail.get("code", STATUS_CODES.get(exc.status_code, "error"))
        message = exc.detail.get("message", "")
    else:
        code = STATUS_CODES.get(exc.status_code, "error")
        message = str(exc.detail)
    response = _error(exc.status_code, code, message)
    if exc.headers:
        response.headers.update(exc.headers)
    return response


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Catch-all exception handler that logs the stack trace once."""
    logger.exception("Unhandled error during request %s", request.url.path)
    return _error(500, "internal_server_error", "An unexpected error occurred")
