"""
ZRS CRM - API Backend
Vehicle purchase / investor allocation / sale settlement

Start with:
    uvicorn server:app --host 0.0.0.0 --port 8001 --reload
"""

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
import logging

from config import db, CORS_ORIGINS
from email_service import EmailService
from scheduler_service import TaskScheduler
from services.collaborators import Collaborators
from services.errors import CRMError
from services.esign_client import ESignClient

# Logging configuration
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger("zrs_crm")

# Create the app
app = FastAPI(
    title="ZRS CRM",
    description="Vehicle trading CRM: purchases, investors, sales",
    version="1.0.0"
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ==================== ERROR ENVELOPE ====================

@app.exception_handler(CRMError)
async def crm_error_handler(request: Request, exc: CRMError):
    body = {"success": False, "message": exc.message}
    if exc.details:
        body["data"] = exc.details
    return JSONResponse(status_code=exc.status_code, content=body)


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "message": str(exc.detail)},
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    first = errors[0] if errors else {}
    field = ".".join(str(p) for p in first.get("loc", []) if p != "body")
    message = f"{field}: {first.get('msg')}" if field else (first.get("msg") or "Invalid request")
    return JSONResponse(
        status_code=422,
        content={"success": False, "message": message, "data": {"errors": jsonable_errors(errors)}},
    )


def jsonable_errors(errors):
    return [{"loc": [str(p) for p in e.get("loc", [])], "msg": e.get("msg"), "type": e.get("type")} for e in errors]


# ==================== ROUTES ====================

from routes import auth, leads, purchase_orders, investors, sales, invoices, settings, webhooks

# Routes under /api
app.include_router(auth.router, prefix="/api")
app.include_router(purchase_orders.router, prefix="/api")
app.include_router(leads.router, prefix="/api")
app.include_router(investors.router, prefix="/api")
app.include_router(sales.router, prefix="/api")
app.include_router(invoices.router, prefix="/api")
app.include_router(settings.router, prefix="/api")
app.include_router(webhooks.router, prefix="/api")


@app.get("/")
async def root():
    return {
        "name": "ZRS CRM API",
        "version": "1.0.0",
        "status": "running",
        "docs": "/docs"
    }


# ==================== STARTUP / SHUTDOWN ====================

scheduler = TaskScheduler()


async def create_indexes():
    await db.sessions.create_index("token")
    await db.sessions.create_index("expires_at")
    await db.admins.create_index("id", unique=True)
    await db.managers.create_index("id", unique=True)
    await db.investors.create_index("id", unique=True)
    await db.investors.create_index("email", unique=True)
    await db.leads.create_index("id", unique=True)
    await db.leads.create_index("lead_number", unique=True)
    await db.leads.create_index([("type", 1), ("seq", -1)])
    await db.leads.create_index("status")
    await db.leads.create_index("assigned_to")
    await db.purchase_orders.create_index("id", unique=True)
    await db.purchase_orders.create_index("po_number", unique=True)
    await db.purchase_orders.create_index("lead_id", unique=True)
    await db.purchase_orders.create_index("docusign_envelopes.envelope_id")
    await db.sales.create_index("id", unique=True)
    await db.sales.create_index("sale_number", unique=True)
    await db.sales.create_index("lead_id")
    await db.invoices.create_index("id", unique=True)
    await db.invoices.create_index("invoice_number", unique=True)
    await db.invoices.create_index([("purchase_order_id", 1), ("investor_id", 1)], unique=True)
    await db.admin_groups.create_index("name", unique=True)
    await db.follow_ups.create_index([("status", 1), ("due_date", 1)])
    await db.settings.create_index("key", unique=True)


@app.on_event("startup")
async def startup():
    logger.info("🚀 ZRS CRM starting")

    await create_indexes()
    logger.info("✅ MongoDB indexes created")

    app.state.collaborators = Collaborators(signature=ESignClient(), email=EmailService())
    scheduler.start(app.state.collaborators)


@app.on_event("shutdown")
async def shutdown():
    scheduler.stop()
    logger.info("ZRS CRM stopped")


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8001)
