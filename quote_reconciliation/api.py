"""
FastAPI REST layer for the quote reconciliation engine.
Can be run with: uvicorn quote_reconciliation.api:app --reload

The caller's organization comes from the X-Org-Id header.
"""

from typing import Any, Dict, List, Optional

from fastapi import Body, Depends, FastAPI, Header, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from sqlalchemy.orm import sessionmaker

from quote_reconciliation import __version__, main
from quote_reconciliation.config import get_config
from quote_reconciliation.db.engine import get_session_factory
from quote_reconciliation.errors import QuoteEngineError, TransientError, ValidationError
from quote_reconciliation.schemas.acceptance import AcceptanceResult, SessionSyncResult
from quote_reconciliation.schemas.extraction import QuoteExtraction
from quote_reconciliation.schemas.orders import CreatedOrder, OrderCreationResult, OrderPreview
from quote_reconciliation.schemas.output import ReconciliationOutput
from quote_reconciliation.schemas.responses import (
    DeclineRequest,
    QuoteSubmission,
    RequestStatusSummary,
    SupplierRequestState,
)
from quote_reconciliation.schemas.review import SessionState
from quote_reconciliation.services.statuses import OrderStatus
from quote_reconciliation.utils.logging import setup_logging


logger = setup_logging(__name__)
config = get_config()

app = FastAPI(
    title="Quote Reconciliation API",
    description="Supplier quote reconciliation and order generation",
    version=__version__,
)

STATUS_BY_CODE = {
    "VALIDATION_ERROR": 400,
    "NOT_FOUND": 404,
    "CONFLICT": 409,
    "UPSTREAM_ERROR": 502,
    "TRANSIENT_ERROR": 429,
}


class ReconcileRequest(BaseModel):
    extraction: Optional[QuoteExtraction] = None
    document_text: Optional[str] = None


class SyncRequest(BaseModel):
    markup_percent: Optional[float] = Field(default=None, ge=0)
    actor: Optional[str] = None


class AcceptQuoteRequest(BaseModel):
    quote_line_id: str
    markup_percent: Optional[float] = Field(default=None, ge=0)
    actor: Optional[str] = None


class CreateOrdersRequest(BaseModel):
    item_ids: Optional[List[str]] = None
    actor: Optional[str] = None


class OrderStatusUpdate(BaseModel):
    status: OrderStatus
    actor: Optional[str] = None
    note: Optional[str] = None


def org_id_header(x_org_id: str = Header(...)) -> str:
    if not x_org_id.strip():
        raise ValidationError("X-Org-Id header is required", field="X-Org-Id")
    return x_org_id


def session_factory() -> sessionmaker:
    return get_session_factory()


def error_response(error: QuoteEngineError) -> JSONResponse:
    headers = {}
    if isinstance(error, TransientError) and error.retry_after:
        headers["Retry-After"] = str(error.retry_after)
    return JSONResponse(
        content=jsonable_encoder(error.to_dict()),
        status_code=STATUS_BY_CODE.get(error.code, 500),
        headers=headers or None,
    )


@app.exception_handler(QuoteEngineError)
async def quote_engine_error_handler(request: Request, exc: QuoteEngineError):
    logger.warning(f"{request.method} {request.url.path} failed: {exc.code} {exc.context}")
    return error_response(exc)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = [{"loc": list(e["loc"]), "msg": e["msg"], "type": e["type"]} for e in exc.errors()]
    return error_response(ValidationError("Invalid request", errors=errors))


@app.post("/supplier-requests/{request_id}/reconcile", response_model=ReconciliationOutput)
def reconcile_endpoint(request_id: str, body: ReconcileRequest, org_id: str = Depends(org_id_header),
                       factory: sessionmaker = Depends(session_factory)):
    """Reconcile an extraction (or raw document text) against the request's items."""
    return main.reconcile(org_id, request_id, extraction=body.extraction,
                          document_text=body.document_text, session_factory=factory)


@app.post("/supplier-requests/{request_id}/view", response_model=SupplierRequestState)
def view_endpoint(request_id: str, org_id: str = Depends(org_id_header),
                  factory: sessionmaker = Depends(session_factory)):
    return main.mark_viewed(org_id, request_id, session_factory=factory)


@app.post("/supplier-requests/{request_id}/submit", response_model=SupplierRequestState)
def submit_endpoint(request_id: str, body: QuoteSubmission, org_id: str = Depends(org_id_header),
                    factory: sessionmaker = Depends(session_factory)):
    return main.submit_quote(org_id, request_id, body, session_factory=factory)


@app.post("/supplier-requests/{request_id}/decline", response_model=SupplierRequestState)
def decline_endpoint(request_id: str, body: DeclineRequest, org_id: str = Depends(org_id_header),
                     factory: sessionmaker = Depends(session_factory)):
    return main.decline_request(org_id, request_id, body.reason, session_factory=factory)


@app.get("/rfqs/{rfq_id}/status", response_model=RequestStatusSummary)
def rfq_status_endpoint(rfq_id: str, org_id: str = Depends(org_id_header),
                        factory: sessionmaker = Depends(session_factory)):
    return main.request_status(org_id, rfq_id, session_factory=factory)


@app.get("/sessions/{session_id}", response_model=SessionState)
def session_endpoint(session_id: str, org_id: str = Depends(org_id_header),
                     factory: sessionmaker = Depends(session_factory)):
    return main.get_session_snapshot(org_id, session_id, session_factory=factory)


@app.post("/sessions/{session_id}/review", response_model=SessionState)
def review_endpoint(session_id: str, action: Dict[str, Any] = Body(...), org_id: str = Depends(org_id_header),
                    factory: sessionmaker = Depends(session_factory)):
    """Body is one review action, told apart by its ``action`` field."""
    return main.apply_review(org_id, session_id, action, session_factory=factory)


@app.post("/sessions/{session_id}/sync", response_model=SessionSyncResult)
def sync_endpoint(session_id: str, body: SyncRequest, org_id: str = Depends(org_id_header),
                  factory: sessionmaker = Depends(session_factory)):
    return main.sync_session(org_id, session_id, body.markup_percent, body.actor, session_factory=factory)


@app.post("/items/{item_id}/accept-quote", response_model=AcceptanceResult)
def accept_quote_endpoint(item_id: str, body: AcceptQuoteRequest, org_id: str = Depends(org_id_header),
                          factory: sessionmaker = Depends(session_factory)):
    """Failures keep the AcceptanceResult body and carry the matching error status."""
    result = main.accept_quote_line(org_id, item_id, body.quote_line_id, body.markup_percent,
                                    body.actor, session_factory=factory)
    if not result.success:
        return JSONResponse(content=result.model_dump(mode="json"),
                            status_code=STATUS_BY_CODE.get(result.code, 500))
    return result


@app.get("/invoices/{invoice_id}/order-preview", response_model=OrderPreview)
def order_preview_endpoint(invoice_id: str, org_id: str = Depends(org_id_header),
                           factory: sessionmaker = Depends(session_factory)):
    return main.preview_orders(org_id, invoice_id, session_factory=factory)


@app.post("/invoices/{invoice_id}/orders", response_model=OrderCreationResult, status_code=201)
def create_orders_endpoint(invoice_id: str, body: CreateOrdersRequest, org_id: str = Depends(org_id_header),
                           factory: sessionmaker = Depends(session_factory)):
    return main.create_orders_from_invoice(org_id, invoice_id, body.item_ids, body.actor, session_factory=factory)


@app.post("/orders/{order_id}/status", response_model=CreatedOrder)
def order_status_endpoint(order_id: str, body: OrderStatusUpdate, org_id: str = Depends(org_id_header),
                          factory: sessionmaker = Depends(session_factory)):
    return main.update_order_status(org_id, order_id, body.status, body.actor, body.note, session_factory=factory)


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "version": __version__}


@app.get("/config")
async def get_config_endpoint():
    """Get current configuration (sanitized)."""
    return {
        "llm_provider": config.LLM_PROVIDER,
        "llm_model": config.LLM_MODEL,
        "llm_mock_mode": config.LLM_MOCK_MODE,
        "matched_threshold": config.MATCHED_THRESHOLD,
        "total_mismatch_tolerance": config.TOTAL_MISMATCH_TOLERANCE,
        "default_markup_percent": config.DEFAULT_MARKUP_PERCENT,
        "default_currency": config.DEFAULT_CURRENCY,
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        app,
        host=config.API_HOST,
        port=config.API_PORT,
        log_level=config.LOG_LEVEL.lower(),
    )
