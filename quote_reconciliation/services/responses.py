"""
Response State Machine.
Tracks one supplier's response to a request (pending, viewed, submitted,
declined) and derives the aggregate request status from all of them.
"""

import time
from typing import Dict, Optional

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from quote_reconciliation.config import get_config
from quote_reconciliation.db.base import utcnow
from quote_reconciliation.db.models import QuoteLineItem, SupplierQuote, SupplierRequest
from quote_reconciliation.errors import ValidationError
from quote_reconciliation.schemas.responses import (
    QuoteSubmission,
    RequestStatusSummary,
    SupplierRequestState,
)
from quote_reconciliation.services import catalog
from quote_reconciliation.services.sessions import supersede_open_sessions
from quote_reconciliation.services.statuses import (
    ItemSpecStatus,
    ResponseStatus,
    can_transition,
    check_transition,
    derive_request_status,
)
from quote_reconciliation.utils import round_money
from quote_reconciliation.utils.logging import log_agent_action, setup_logging


logger = setup_logging(__name__)
config = get_config()


def to_request_state(request: SupplierRequest) -> SupplierRequestState:
    latest = request.quotes[-1] if request.quotes else None
    return SupplierRequestState(
        id=request.id,
        rfq_id=request.rfq_id,
        status=ResponseStatus(request.status),
        viewed_at=request.viewed_at,
        responded_at=request.responded_at,
        decline_reason=request.decline_reason,
        latest_quote_id=latest.id if latest else None,
        latest_quote_version=latest.version if latest else None,
    )


def mark_viewed(session: Session, org_id: str, request_id: str) -> SupplierRequest:
    """
    Record the first portal access.
    The timestamp is set once; later views and views after a response change nothing.
    """
    request = catalog.get_supplier_request(session, org_id, request_id)

    if request.viewed_at is None:
        request.viewed_at = utcnow()
        logger.info(f"Supplier request {request.id} viewed for the first time")

    if ResponseStatus(request.status) == ResponseStatus.PENDING:
        request.status = check_transition(
            request.status, ResponseStatus.VIEWED, "SupplierRequest", request.id
        ).value
    return request


def decline_request(session: Session, org_id: str, request_id: str,
                    reason: Optional[str] = None) -> SupplierRequest:
    """Decline with an optional reason. Declined is terminal."""
    request = catalog.get_supplier_request(session, org_id, request_id)
    request.status = check_transition(
        request.status, ResponseStatus.DECLINED, "SupplierRequest", request.id
    ).value
    request.responded_at = utcnow()
    request.decline_reason = (reason or "").strip() or None

    log_agent_action(logger, "ResponseStateMachine", "request_declined",
                     details={"supplier_request_id": request.id, "rfq_id": request.rfq_id})
    return request


def next_quote_version(session: Session, request_id: str) -> int:
    current = session.scalar(
        select(func.max(SupplierQuote.version)).where(SupplierQuote.supplier_request_id == request_id)
    )
    return (current or 0) + 1


def retire_previous_lines(session: Session, request_id: str) -> None:
    """Earlier versions' lines stop being the latest for their items."""
    previous_quote_ids = select(SupplierQuote.id).where(SupplierQuote.supplier_request_id == request_id)
    session.execute(
        update(QuoteLineItem)
        .where(QuoteLineItem.quote_id.in_(previous_quote_ids))
        .values(is_latest_version=False)
        .execution_options(synchronize_session="fetch")
    )


def create_quote_version(
    session: Session,
    request: SupplierRequest,
    submission: QuoteSubmission,
    source: str = "portal",
    session_id: Optional[str] = None,
    taxes: Optional[float] = None,
) -> SupplierQuote:
    """
    Persist a new quote version with its lines (total = unit x quantity).
    Quantity defaults to the requested quantity of the item.
    """
    if not submission.lines:
        raise ValidationError("A quote submission needs at least one line", supplier_request_id=request.id)

    requested = {item.id: item for item in catalog.load_requested_items(session, request.org_id, request.rfq_id)}
    unknown = [line.requested_item_id for line in submission.lines if line.requested_item_id not in requested]
    if unknown:
        raise ValidationError(
            "Quote lines reference items outside this request",
            supplier_request_id=request.id,
            item_ids=unknown,
        )

    version = next_quote_version(session, request.id)
    retire_previous_lines(session, request.id)

    quote = SupplierQuote(
        org_id=request.org_id,
        supplier_request=request,
        supplier_id=request.supplier_id,
        quote_number=submission.quote_number or f"SQ-{int(time.time() * 1000)}",
        version=version,
        source=source,
        shipping_cost=submission.shipping_cost,
        taxes=taxes,
        deposit_required=submission.deposit_required,
        deposit_percent=submission.deposit_percent,
        payment_terms=submission.payment_terms,
        shipping_terms=submission.shipping_terms,
        valid_until=submission.valid_until,
        supplier_notes=submission.supplier_notes,
        session_id=session_id,
    )

    subtotal = 0.0
    for line in submission.lines:
        item = requested[line.requested_item_id]
        quantity = line.quantity or item.quantity
        total = round_money(line.unit_price * quantity)
        subtotal += total
        quote.lines.append(QuoteLineItem(
            requested_item_id=item.id,
            item_name=item.name,
            sku=item.sku,
            quantity=quantity,
            unit_price=round_money(line.unit_price),
            total_price=total,
            currency=line.currency,
            lead_time=line.lead_time,
            notes=line.notes,
            is_latest_version=True,
        ))

    quote.subtotal = round_money(subtotal)
    quote.total = round_money(subtotal + (submission.shipping_cost or 0) + (taxes or 0))
    session.add(quote)
    session.flush()
    return quote


def submit_quote(session: Session, org_id: str, request_id: str,
                 submission: QuoteSubmission) -> SupplierQuote:
    """
    Supplier submits (or resubmits) a priced quote.

    Creates quote version n+1, moves the request to SUBMITTED, moves quoted
    items to QUOTE_RECEIVED where they have not progressed further, and
    supersedes any open reconciliation round for the request.
    """
    request = catalog.get_supplier_request(session, org_id, request_id)
    check_transition(request.status, ResponseStatus.SUBMITTED, "SupplierRequest", request.id)

    quote = create_quote_version(session, request, submission)

    request.status = ResponseStatus.SUBMITTED.value
    request.responded_at = utcnow()

    for line in quote.lines:
        item = catalog.get_requested_item(session, org_id, line.requested_item_id)
        if can_transition(item.spec_status, ItemSpecStatus.QUOTE_RECEIVED):
            previous = item.spec_status
            item.spec_status = ItemSpecStatus.QUOTE_RECEIVED.value
            if previous != item.spec_status:
                catalog.record_item_activity(
                    session, item, "STATUS_CHANGED",
                    from_status=previous, to_status=item.spec_status, quote_id=quote.id,
                )

    superseded = supersede_open_sessions(session, request.id)

    log_agent_action(
        logger,
        "ResponseStateMachine",
        "quote_submitted",
        details={
            "supplier_request_id": request.id,
            "quote_id": quote.id,
            "version": quote.version,
            "lines": len(quote.lines),
            "superseded_sessions": superseded,
        },
    )
    return quote


def record_upload(session: Session, request: SupplierRequest) -> SupplierRequest:
    """A quote document uploaded on the supplier's behalf counts as their response."""
    request.status = check_transition(
        request.status, ResponseStatus.SUBMITTED, "SupplierRequest", request.id
    ).value
    request.responded_at = utcnow()
    return request


def request_status(session: Session, org_id: str, rfq_id: str) -> RequestStatusSummary:
    """Derive the aggregate status; it is never stored, so it cannot drift."""
    rfq = catalog.get_rfq(session, org_id, rfq_id)
    statuses = [ResponseStatus(r.status) for r in rfq.supplier_requests]

    counts: Dict[str, int] = {status.value: 0 for status in ResponseStatus}
    for status in statuses:
        counts[status.value] += 1

    return RequestStatusSummary(
        rfq_id=rfq.id,
        status=derive_request_status(statuses),
        response_counts=counts,
    )
