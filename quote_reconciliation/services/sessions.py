"""
Reconciliation Session aggregate.

A session holds one round of match results for one supplier request plus
the review decision recorded against each result. Results and reviews are
parallel lists, so a match index stays valid for the life of the session.

States: OPEN -> UNDER_REVIEW (first effective review action) -> FINALIZED
(caller-driven). A resubmission supersedes every earlier round.
"""

from typing import List, Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from quote_reconciliation.agents.discrepancy import check_line_quantities
from quote_reconciliation.agents.matching import summarize_results
from quote_reconciliation.db.base import utcnow
from quote_reconciliation.db.models import ReconciliationSessionRecord, RfqItem, SupplierRequest
from quote_reconciliation.errors import ConflictError, NotFoundError, ValidationError
from quote_reconciliation.schemas.discrepancy import QuoteDiscrepancyReport
from quote_reconciliation.schemas.extraction import SupplierInfo
from quote_reconciliation.schemas.matching import (
    ExtraResult,
    MatchedResult,
    MissingResult,
    PartialResult,
    linked_item_id,
    match_results_adapter,
)
from quote_reconciliation.schemas.review import (
    ApproveAction,
    ExtraResolution,
    FinalizeAction,
    ReassignAction,
    RejectAction,
    ResolveExtraAction,
    ReviewDecision,
    ReviewRecord,
    SessionState,
)
from quote_reconciliation.services import catalog
from quote_reconciliation.services.statuses import SessionStatus, check_transition
from quote_reconciliation.state import ReconciliationState
from quote_reconciliation.utils import format_quantity
from quote_reconciliation.utils.logging import log_agent_action, setup_logging


logger = setup_logging(__name__)

LIVE_STATUSES = (SessionStatus.OPEN.value, SessionStatus.UNDER_REVIEW.value, SessionStatus.FINALIZED.value)


def supersede_open_sessions(session: Session, supplier_request_id: str) -> int:
    """Mark every live round of a request superseded. Returns how many changed."""
    records = session.scalars(
        select(ReconciliationSessionRecord).where(
            ReconciliationSessionRecord.supplier_request_id == supplier_request_id,
            ReconciliationSessionRecord.status.in_(LIVE_STATUSES),
        )
    ).all()
    for record in records:
        record.status = check_transition(
            record.status, SessionStatus.SUPERSEDED, "ReconciliationSession", record.id
        ).value
        record.superseded_at = utcnow()
    if records:
        logger.info(f"Superseded {len(records)} reconciliation rounds for request {supplier_request_id}")
    return len(records)


def open_session(session: Session, request: SupplierRequest,
                 state: ReconciliationState) -> ReconciliationSessionRecord:
    """Persist a finished graph run as the next round for the request."""
    supersede_open_sessions(session, request.id)

    last_round = session.scalar(
        select(func.max(ReconciliationSessionRecord.round)).where(
            ReconciliationSessionRecord.supplier_request_id == request.id
        )
    )
    report = state.discrepancy_report or QuoteDiscrepancyReport()

    record = ReconciliationSessionRecord(
        org_id=request.org_id,
        supplier_request_id=request.id,
        round=(last_round or 0) + 1,
        status=SessionStatus.OPEN.value,
        results=match_results_adapter.dump_python(state.match_results, mode="json"),
        reviews=[None] * len(state.match_results),
        supplier_info=state.extraction.supplier_info.model_dump(mode="json"),
        discrepancy_report=report.model_dump(mode="json"),
        notes=state.extraction.notes,
    )
    session.add(record)
    session.flush()
    return record


def load_session(session: Session, org_id: str, session_id: str) -> ReconciliationSessionRecord:
    return catalog.get_scoped(session, ReconciliationSessionRecord, org_id, session_id, "ReconciliationSession")


def load_results(record: ReconciliationSessionRecord) -> list:
    return match_results_adapter.validate_python(record.results or [])


def load_reviews(record: ReconciliationSessionRecord) -> List[Optional[ReviewRecord]]:
    reviews = [ReviewRecord.model_validate(r) if r else None for r in (record.reviews or [])]
    return reviews + [None] * (len(record.results or []) - len(reviews))


def to_session_state(record: ReconciliationSessionRecord) -> SessionState:
    results = load_results(record)
    reviews = load_reviews(record)
    return SessionState(
        session_id=record.id,
        supplier_request_id=record.supplier_request_id,
        round=record.round,
        status=SessionStatus(record.status),
        results=results,
        reviews=reviews,
        supplier_info=SupplierInfo.model_validate(record.supplier_info or {}),
        discrepancy_report=(QuoteDiscrepancyReport.model_validate(record.discrepancy_report)
                            if record.discrepancy_report else None),
        summary=summarize_results(results, reviews),
        updated_at=record.updated_at,
    )


def propagate_quantity(session: Session, org_id: str, item_id: str, quantity: float,
                       actor: str, session_id: str) -> bool:
    """
    Write a reviewer-corrected quantity back to the requested item.
    Returns False when the item already has that quantity.
    """
    item = catalog.get_requested_item(session, org_id, item_id)
    if item.quantity == quantity:
        return False

    previous = item.quantity
    item.quantity = quantity
    links = session.scalars(select(RfqItem).where(RfqItem.requested_item_id == item.id)).all()
    for link in links:
        if link.quantity is not None:
            link.quantity = quantity

    catalog.record_item_activity(
        session, item, "QUANTITY_UPDATED", actor=actor,
        previous_quantity=previous, quantity=quantity, session_id=session_id,
    )
    log_agent_action(
        logger,
        "ReconciliationSession",
        "quantity_propagated",
        details={"item_id": item.id, "from": format_quantity(previous),
                 "to": format_quantity(quantity), "session_id": session_id},
    )
    return True


def _release_item(results: list, reviews: list, item) -> None:
    """Report an item as missing again once no matched/partial result holds it."""
    if item is None:
        return
    held = any(linked_item_id(r) == item.id for r in results)
    listed = any(isinstance(r, MissingResult) and r.requested_item.id == item.id for r in results)
    if not held and not listed:
        # Appended so existing match indexes stay valid
        results.append(MissingResult(requested_item=item))
        reviews.append(None)


def _claim_item(results: list, reviews: list, item_id: str) -> None:
    """Drop the Missing entry of an item a result now holds.

    Missing results always trail the quoted lines, so removing one never
    shifts the index of a result that can be reviewed.
    """
    for index in range(len(results) - 1, -1, -1):
        result = results[index]
        if isinstance(result, MissingResult) and result.requested_item.id == item_id:
            del results[index]
            del reviews[index]


def _refresh_quantity(results: list, item_id: str, quantity: float) -> None:
    """Point every result for the item at its new quantity and redo its quantity messages."""
    for index, result in enumerate(results):
        if getattr(result, "requested_item", None) is None or result.requested_item.id != item_id:
            continue
        kept = [m for m in result.discrepancies if not m.startswith("Quantity:")]
        refreshed = result.model_copy(update={
            "requested_item": result.requested_item.model_copy(update={"quantity": quantity}),
            "discrepancies": kept,
        })
        results[index] = check_line_quantities([refreshed])[0][0]


def _approved_holder(results: list, reviews: list, item_id: str, skip_index: int) -> Optional[int]:
    """Index of another approved result already holding item_id, if any."""
    for index, (result, review) in enumerate(zip(results, reviews)):
        if index == skip_index or review is None:
            continue
        if review.decision == ReviewDecision.APPROVED and linked_item_id(result) == item_id:
            return index
    return None


def _approve(session, record, results, reviews, action: ApproveAction) -> bool:
    index = action.match_index
    result = results[index]
    if not isinstance(result, (MatchedResult, PartialResult)):
        raise ValidationError(
            f"Only matched or partial results can be approved (result {index} is {result.status})",
            session_id=record.id, match_index=index,
        )

    item_id = result.requested_item.id
    holder = _approved_holder(results, reviews, item_id, index)
    if holder is not None:
        raise ConflictError(
            f"Requested item already approved on result {holder}",
            session_id=record.id, match_index=index, item_id=item_id,
        )

    review = ReviewRecord(
        decision=ReviewDecision.APPROVED,
        reviewer=action.reviewer,
        reviewed_at=utcnow(),
        unit_price=action.unit_price,
        quantity=action.quantity,
    )
    if review.same_as(reviews[index]):
        return False

    reviews[index] = review
    if action.quantity is not None and action.quantity != result.requested_item.quantity:
        propagate_quantity(session, record.org_id, item_id, action.quantity, action.reviewer, record.id)
        _refresh_quantity(results, item_id, action.quantity)
    return True


def _reassign(session, record, results, reviews, action: ReassignAction) -> bool:
    index = action.match_index
    result = results[index]
    if isinstance(result, MissingResult):
        raise ValidationError(
            "A missing result has no quoted line to reassign",
            session_id=record.id, match_index=index,
        )

    request = record.supplier_request
    catalog_items = catalog.load_requested_items(session, record.org_id, request.rfq_id)
    target = next((item for item in catalog_items if item.id == action.requested_item_id), None)
    if target is None:
        raise NotFoundError("RequestedItem", action.requested_item_id, session_id=record.id)

    holder = _approved_holder(results, reviews, target.id, index)
    if holder is not None:
        raise ConflictError(
            f"Requested item already approved on result {holder}",
            session_id=record.id, match_index=index, item_id=target.id,
        )

    relinked = MatchedResult(
        confidence=100,
        requested_item=target,
        extracted_item=result.extracted_item,
        manually_matched=True,
    )
    relinked = check_line_quantities([relinked])[0][0]
    review = ReviewRecord(
        decision=ReviewDecision.REASSIGNED,
        reviewer=action.reviewer,
        reviewed_at=utcnow(),
        requested_item_id=target.id,
    )
    if review.same_as(reviews[index]) and relinked == result:
        return False

    released = getattr(result, "requested_item", None)
    results[index] = relinked
    reviews[index] = review
    _claim_item(results, reviews, target.id)
    if released is not None and released.id != target.id:
        _release_item(results, reviews, released)
    return True


def _reject(session, record, results, reviews, action: RejectAction) -> bool:
    index = action.match_index
    result = results[index]
    if isinstance(result, MissingResult):
        raise ValidationError(
            "A missing result has no quoted line to reject",
            session_id=record.id, match_index=index,
        )

    review = ReviewRecord(decision=ReviewDecision.REJECTED, reviewer=action.reviewer, reviewed_at=utcnow())
    if review.same_as(reviews[index]):
        return False

    reviews[index] = review
    if not isinstance(result, ExtraResult):
        results[index] = ExtraResult(extracted_item=result.extracted_item)
        _release_item(results, reviews, result.requested_item)
    return True


def _resolve_extra(session, record, results, reviews, action: ResolveExtraAction) -> bool:
    index = action.match_index
    result = results[index]
    if not isinstance(result, ExtraResult):
        raise ValidationError(
            f"Only extra results can be resolved outside matching (result {index} is {result.status})",
            session_id=record.id, match_index=index,
        )
    if action.resolution == ExtraResolution.COMPONENT:
        if not action.parent_item_id:
            raise ValidationError("A component resolution needs a parent item", session_id=record.id)
        catalog.get_requested_item(session, record.org_id, action.parent_item_id)

    review = ReviewRecord(
        decision=ReviewDecision.RESOLVED,
        reviewer=action.reviewer,
        reviewed_at=utcnow(),
        resolution=action.resolution,
        parent_item_id=action.parent_item_id,
    )
    if review.same_as(reviews[index]):
        return False
    reviews[index] = review
    return True


_HANDLERS = {
    ApproveAction: _approve,
    ReassignAction: _reassign,
    RejectAction: _reject,
    ResolveExtraAction: _resolve_extra,
}


def apply_review(session: Session, org_id: str, session_id: str, action) -> SessionState:
    """
    Apply one review action.

    Re-applying an action with the same payload leaves the session untouched,
    timestamps included.

    Raises:
        ConflictError: session finalized or superseded, item already approved elsewhere
        ValidationError: bad index or an action that does not fit the result variant
    """
    record = load_session(session, org_id, session_id)
    status = SessionStatus(record.status)
    if status in (SessionStatus.FINALIZED, SessionStatus.SUPERSEDED):
        raise ConflictError(
            f"Session is {status.value.lower()} and no longer accepts review actions",
            session_id=record.id, status=status.value,
        )

    if isinstance(action, FinalizeAction):
        record.status = check_transition(status, SessionStatus.FINALIZED, "ReconciliationSession", record.id).value
        record.finalized_at = utcnow()
        session.flush()
        log_agent_action(logger, "ReconciliationSession", "finalized",
                         details={"session_id": record.id, "reviewer": action.reviewer})
        return to_session_state(record)

    results = load_results(record)
    reviews = load_reviews(record)
    if action.match_index >= len(results):
        raise ValidationError(
            f"Match index {action.match_index} out of range ({len(results)} results)",
            session_id=record.id, match_index=action.match_index,
        )

    changed = _HANDLERS[type(action)](session, record, results, reviews, action)
    if changed:
        record.results = match_results_adapter.dump_python(results, mode="json")
        record.reviews = [r.model_dump(mode="json") if r else None for r in reviews]
        record.status = check_transition(
            status, SessionStatus.UNDER_REVIEW, "ReconciliationSession", record.id
        ).value
        session.flush()
        log_agent_action(
            logger,
            "ReconciliationSession",
            f"review_{action.action}",
            details={"session_id": record.id, "match_index": action.match_index, "reviewer": action.reviewer},
        )
    else:
        logger.debug(f"Review {action.action} on session {record.id} result {action.match_index} already applied")

    return to_session_state(record)
