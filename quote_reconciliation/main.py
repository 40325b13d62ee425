"""
Main entry point for the quote reconciliation engine.

Every operation runs in its own unit of work: services raise, this layer
commits or rolls back, and notifications go out only after a commit.
"""

from datetime import datetime, timezone
from typing import Iterable, Optional, Sequence, Union

import pydantic
from pydantic import TypeAdapter
from sqlalchemy.orm import sessionmaker

from quote_reconciliation.agents.document_intelligence import extract_quote
from quote_reconciliation.config import get_config
from quote_reconciliation.db.base import utcnow
from quote_reconciliation.db.engine import get_session_factory, unit_of_work
from quote_reconciliation.db.locks import advisory_lock
from quote_reconciliation.errors import QuoteEngineError, ValidationError
from quote_reconciliation.graph import run_reconciliation
from quote_reconciliation.notifications import MATCH_NEEDS_REVIEW, ORDER_CREATED, QUOTE_RECEIVED, emit
from quote_reconciliation.schemas.acceptance import AcceptanceResult, SessionSyncResult
from quote_reconciliation.schemas.extraction import QuoteExtraction
from quote_reconciliation.schemas.matching import MatchingSettings
from quote_reconciliation.schemas.orders import CreatedOrder, OrderCreationResult, OrderPreview
from quote_reconciliation.schemas.output import ReconciliationOutput
from quote_reconciliation.schemas.responses import QuoteSubmission, RequestStatusSummary, SupplierRequestState
from quote_reconciliation.schemas.review import ReviewAction, SessionState
from quote_reconciliation.services import acceptance, catalog, orders, responses, sessions
from quote_reconciliation.services.statuses import OrderStatus
from quote_reconciliation.state import ReconciliationState
from quote_reconciliation.utils import dict_to_json_string
from quote_reconciliation.utils.logging import setup_logging


logger = setup_logging(__name__)
config = get_config()

review_action_adapter = TypeAdapter(ReviewAction)


def _factory(session_factory: Optional[sessionmaker]) -> sessionmaker:
    return session_factory or get_session_factory()


def _coerce(adapter_or_model, value, label: str):
    """Validate caller input into a schema, reporting problems as ValidationError."""
    try:
        if isinstance(adapter_or_model, TypeAdapter):
            return adapter_or_model.validate_python(value)
        if isinstance(value, adapter_or_model):
            return value
        return adapter_or_model.model_validate(value)
    except pydantic.ValidationError as e:
        raise ValidationError(f"Invalid {label}", errors=e.errors(include_url=False, include_context=False)) from e


def reconcile(
    org_id: str,
    supplier_request_id: str,
    extraction: Union[QuoteExtraction, dict, None] = None,
    document_text: Optional[str] = None,
    settings: Optional[MatchingSettings] = None,
    session_factory: Optional[sessionmaker] = None,
) -> ReconciliationOutput:
    """
    Reconcile one supplier quote against the items requested from that supplier.

    Either a ready extraction or the raw document text is required; text goes
    through the extraction client first, outside any transaction.

    Returns:
        ReconciliationOutput with the new session round and the review verdict
    """
    catalog.require_id(supplier_request_id, "supplier_request_id")
    if extraction is None and not document_text:
        raise ValidationError("Either an extraction or document text is required",
                              supplier_request_id=supplier_request_id)
    factory = _factory(session_factory)

    with unit_of_work(factory) as session:
        request = catalog.get_supplier_request(session, org_id, supplier_request_id)
        requested_items = catalog.load_requested_items(session, org_id, request.rfq_id)
        expected_supplier = request.display_name

    if extraction is None:
        extraction = extract_quote(document_text, requested_items)
    else:
        extraction = _coerce(QuoteExtraction, extraction, "extraction")

    logger.info(f"Starting quote reconciliation for supplier request {supplier_request_id}")
    logger.info(f"Requested items: {len(requested_items)}, quoted lines: {len(extraction.extracted_items)}")

    state = ReconciliationState(
        supplier_request_id=supplier_request_id,
        requested_items=requested_items,
        extraction=extraction,
        expected_supplier_name=expected_supplier,
        settings=settings or MatchingSettings(),
        total_tolerance=config.TOTAL_MISMATCH_TOLERANCE,
    )
    final_state = run_reconciliation(state)

    with advisory_lock(("supplier-request", supplier_request_id)):
        with unit_of_work(factory) as session:
            request = catalog.get_supplier_request(session, org_id, supplier_request_id)
            responses.record_upload(session, request)
            record = sessions.open_session(session, request, final_state)
            snapshot = sessions.to_session_state(record)

    output = ReconciliationOutput(
        supplier_request_id=supplier_request_id,
        processing_timestamp=datetime.now(timezone.utc),
        session=snapshot,
        needs_review=final_state.needs_review,
        review_reasons=final_state.review_reasons,
        agent_reasoning=final_state.get_agent_reasoning(),
    )

    emit(QUOTE_RECEIVED, {"supplier_request_id": supplier_request_id, "session_id": snapshot.session_id})
    if output.needs_review:
        emit(MATCH_NEEDS_REVIEW, {"session_id": snapshot.session_id, "reasons": output.review_reasons})

    logger.info(f"Reconciliation round {snapshot.round} stored as session {snapshot.session_id}")
    return output


def apply_review(org_id: str, session_id: str, action, session_factory: Optional[sessionmaker] = None) -> SessionState:
    """Apply one review action (approve, reassign, reject, resolve_extra, finalize)."""
    catalog.require_id(session_id, "session_id")
    action = _coerce(review_action_adapter, action, "review action")
    with advisory_lock(("session", session_id)):
        with unit_of_work(_factory(session_factory)) as session:
            return sessions.apply_review(session, org_id, session_id, action)


def get_session_snapshot(org_id: str, session_id: str,
                         session_factory: Optional[sessionmaker] = None) -> SessionState:
    with unit_of_work(_factory(session_factory)) as session:
        return sessions.to_session_state(sessions.load_session(session, org_id, session_id))


def sync_session(org_id: str, session_id: str, markup_percent: Optional[float] = None,
                 actor: Optional[str] = None, session_factory: Optional[sessionmaker] = None) -> SessionSyncResult:
    """Commit a session's approved matches into the catalog as accepted quote lines."""
    catalog.require_id(session_id, "session_id")
    with advisory_lock(("session", session_id)):
        with unit_of_work(_factory(session_factory)) as session:
            return acceptance.sync_session(session, org_id, session_id, markup_percent, actor)


def accept_quote_line(org_id: str, item_id: str, quote_line_id: str, markup_percent: Optional[float] = None,
                      actor: Optional[str] = None, session_factory: Optional[sessionmaker] = None) -> AcceptanceResult:
    """
    Accept a quote line for an item. Failures come back as
    AcceptanceResult(success=False) after the transaction rolls back.
    """
    try:
        catalog.require_id(item_id, "item_id")
        with advisory_lock(("item", item_id)):
            with unit_of_work(_factory(session_factory)) as session:
                return acceptance.accept_line(session, org_id, item_id, quote_line_id, markup_percent, actor)
    except QuoteEngineError as e:
        logger.warning(f"Quote line {quote_line_id} not accepted for item {item_id}: {e.code}")
        return AcceptanceResult(success=False, error=e.message, code=e.code,
                                item_id=item_id, quote_line_id=quote_line_id)


def preview_orders(org_id: str, invoice_id: str, item_ids: Optional[Iterable[str]] = None,
                   session_factory: Optional[sessionmaker] = None) -> OrderPreview:
    catalog.require_id(invoice_id, "invoice_id")
    with unit_of_work(_factory(session_factory)) as session:
        return orders.preview_orders(session, org_id, invoice_id, item_ids)


def create_orders_from_invoice(org_id: str, invoice_id: str, item_ids: Optional[Sequence[str]] = None,
                               actor: Optional[str] = None,
                               session_factory: Optional[sessionmaker] = None) -> OrderCreationResult:
    """
    Generate supplier orders for a paid invoice, all or nothing.

    Numbering for the organization's year and every item involved stay locked
    until the transaction commits.
    """
    catalog.require_id(invoice_id, "invoice_id")
    factory = _factory(session_factory)

    with unit_of_work(factory) as session:
        invoice = orders.get_invoice(session, org_id, invoice_id)
        ids = orders.invoice_item_ids(invoice, item_ids)

    keys = [("order-number", org_id, utcnow().year)] + [("item", item_id) for item_id in ids]
    with advisory_lock(*keys):
        with unit_of_work(factory) as session:
            result = orders.create_orders(session, org_id, invoice_id, ids, actor)

    for order in result.orders:
        emit(ORDER_CREATED, {"invoice_id": invoice_id, "order_id": order.id, "order_number": order.order_number})

    logger.info(f"Invoice {invoice_id}: {len(result.orders)} orders created, "
                f"{len(result.already_ordered)} already ordered, "
                f"{len(result.items_without_supplier)} without supplier")
    return result


def update_order_status(org_id: str, order_id: str, status: Union[OrderStatus, str], actor: Optional[str] = None,
                        note: Optional[str] = None, session_factory: Optional[sessionmaker] = None) -> CreatedOrder:
    catalog.require_id(order_id, "order_id")
    try:
        target = OrderStatus(status)
    except ValueError as e:
        raise ValidationError(f"Unknown order status: {status}", order_id=order_id) from e
    with advisory_lock(("order", order_id)):
        with unit_of_work(_factory(session_factory)) as session:
            return orders.update_order_status(session, org_id, order_id, target, actor, note)


def mark_viewed(org_id: str, request_id: str,
                session_factory: Optional[sessionmaker] = None) -> SupplierRequestState:
    with unit_of_work(_factory(session_factory)) as session:
        return responses.to_request_state(responses.mark_viewed(session, org_id, request_id))


def submit_quote(org_id: str, request_id: str, submission: Union[QuoteSubmission, dict],
                 session_factory: Optional[sessionmaker] = None) -> SupplierRequestState:
    submission = _coerce(QuoteSubmission, submission, "quote submission")
    with advisory_lock(("supplier-request", request_id)):
        with unit_of_work(_factory(session_factory)) as session:
            quote = responses.submit_quote(session, org_id, request_id, submission)
            state = responses.to_request_state(quote.supplier_request)

    emit(QUOTE_RECEIVED, {"supplier_request_id": request_id, "quote_id": state.latest_quote_id,
                          "version": state.latest_quote_version})
    return state


def decline_request(org_id: str, request_id: str, reason: Optional[str] = None,
                    session_factory: Optional[sessionmaker] = None) -> SupplierRequestState:
    with advisory_lock(("supplier-request", request_id)):
        with unit_of_work(_factory(session_factory)) as session:
            return responses.to_request_state(responses.decline_request(session, org_id, request_id, reason))


def request_status(org_id: str, rfq_id: str,
                   session_factory: Optional[sessionmaker] = None) -> RequestStatusSummary:
    with unit_of_work(_factory(session_factory)) as session:
        return responses.request_status(session, org_id, rfq_id)


def format_output_json(output: ReconciliationOutput) -> str:
    """Format output as JSON string."""
    return dict_to_json_string(output.model_dump(mode="json"))
