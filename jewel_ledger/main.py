# jewel_ledger/main.py

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError

from jewel_ledger import config
from jewel_ledger.api.catalog import router as catalog_router
from jewel_ledger.api.customers import router as customers_router
from jewel_ledger.api.dashboard import router as dashboard_router
from jewel_ledger.api.invoices import router as invoices_router
from jewel_ledger.api.old_gold import router as old_gold_router
from jewel_ledger.api.orders import router as orders_router
from jewel_ledger.api.outflows import router as outflows_router
from jewel_ledger.api.transactions import router as transactions_router
from jewel_ledger.errors import AlreadyDelivered, ConsistencyViolation, LedgerError

logging.basicConfig(
    level=config.log_level(),
    format="%(asctime)s [%(levelname)s] %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Jewel Ledger settlement API",
    version="0.1.0",
)


@app.exception_handler(LedgerError)
async def ledger_error_handler(request: Request, exc: LedgerError) -> JSONResponse:
    body = {"detail": exc.message, "error": type(exc).__name__}
    if isinstance(exc, AlreadyDelivered) and exc.invoice_id is not None:
        body["invoice_id"] = exc.invoice_id
    if isinstance(exc, ConsistencyViolation):
        body["details"] = exc.details
    return JSONResponse(status_code=exc.status_code, content=body)


@app.exception_handler(IntegrityError)
async def integrity_error_handler(request: Request, exc: IntegrityError) -> JSONResponse:
    # a constraint caught what the service checks missed (usually a concurrent write)
    logger.warning("Integrity error on %s %s: %s", request.method, request.url.path, exc.orig)
    return JSONResponse(
        status_code=409,
        content={"detail": "The change conflicts with existing data; reload and retry", "error": "ConcurrencyConflict"},
    )


@app.get("/health")
def health_check():
    return {"status": "ok"}


app.include_router(customers_router)
app.include_router(invoices_router)
app.include_router(orders_router)
app.include_router(old_gold_router)
app.include_router(transactions_router)
app.include_router(dashboard_router)
app.include_router(outflows_router)
app.include_router(catalog_router)
