import logging
import os
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles

from billing.core.config import settings
from billing.core.database import init_db
from billing.routers import (
    invoices,
    payment_anomalies,
    payment_callbacks,
    portal,
    recurring_templates,
    sweeps,
)
from billing.services.pdf_service import browser_pool

logging.basicConfig(
    level=settings.LOG_LEVEL.upper(),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)

OPENAPI_TAGS = [
    {"name": "Invoices", "description": "Manage invoices and their lifecycle."},
    {
        "name": "Recurring Templates",
        "description": "Schedule invoices that are generated on a fixed cadence.",
    },
    {
        "name": "Payment Anomalies",
        "description": "Payment notifications that could not be applied to an invoice.",
    },
    {"name": "Portal", "description": "Public invoice view and payment for clients."},
    {"name": "Payments", "description": "Inbound Paystack webhooks and M-Pesa callbacks."},
    {"name": "Sweeps", "description": "Trigger background sweeps outside their schedule."},
]


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    init_db()
    yield
    await browser_pool.close()


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.version,
    description=(
        "Invoicing API: recurring templates, invoice lifecycle, payment reminders, "
        "M-Pesa and Paystack reconciliation, and PDF rendering."
    ),
    openapi_tags=OPENAPI_TAGS,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in settings.CORS_ORIGINS.split(",") if o.strip()],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(invoices.router, prefix="/v1/invoices", tags=["Invoices"])
app.include_router(
    recurring_templates.router,
    prefix="/v1/recurring_templates",
    tags=["Recurring Templates"],
)
app.include_router(
    payment_anomalies.router,
    prefix="/v1/payment_anomalies",
    tags=["Payment Anomalies"],
)
app.include_router(sweeps.router, prefix="/v1/sweeps", tags=["Sweeps"])
app.include_router(portal.router, prefix="/portal", tags=["Portal"])
app.include_router(payment_callbacks.router, prefix="/payments", tags=["Payments"])

os.makedirs(settings.PDF_STORAGE_PATH, exist_ok=True)
app.mount(
    settings.PDF_PUBLIC_PREFIX,
    StaticFiles(directory=settings.PDF_STORAGE_PATH),
    name="invoice_pdfs",
)


@app.get("/")
async def root() -> dict[str, str]:
    return {
        "app": settings.APP_NAME,
        "version": settings.version,
        "status": "running",
    }
