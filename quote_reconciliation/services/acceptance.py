"""
Quote Acceptance & Item Sync.

Accepting a quote line copies its unit price into the requested item as the
trade price, derives the retail price from the markup, advances the item to
QUOTE_APPROVED and un-accepts every other line for the same item.
"""

from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from quote_reconciliation.config import get_config
from quote_reconciliation.db.models import ItemComponentRecord, QuoteLineItem, SupplierQuote
from quote_reconciliation.errors import ConflictError, NotFoundError, ValidationError
from quote_reconciliation.schemas.acceptance import AcceptanceResult, SessionSyncResult
from quote_reconciliation.schemas.matching import MatchedResult, PartialResult
from quote_reconciliation.schemas.responses import QuoteSubmission, QuoteSubmissionLine
from quote_reconciliation.schemas.review import ExtraResolution, ReviewDecision
from quote_reconciliation.services import catalog
from quote_reconciliation.services.responses import create_quote_version
from quote_reconciliation.services.sessions import load_results, load_reviews, load_session
from quote_reconciliation.services.statuses import ItemSpecStatus, SessionStatus, check_transition
from quote_reconciliation.utils import round_money
from quote_reconciliation.utils.logging import log_agent_action, setup_logging


logger = setup_logging(__name__)
config = get_config()

ORDERED_STATUSES = frozenset({
    ItemSpecStatus.ORDERED.value,
    ItemSpecStatus.SHIPPED.value,
    ItemSpecStatus.DELIVERED.value,
})


def resolve_markup(explicit: Optional[float], quote: SupplierQuote) -> float:
    """Explicit argument, else the supplier's configured markup, else the default."""
    if explicit is not None:
        return float(explicit)
    if quote.supplier is not None and quote.supplier.markup_percent is not None:
        return float(quote.supplier.markup_percent)
    return config.DEFAULT_MARKUP_PERCENT


def retail_price(trade_price: float, markup_percent: float) -> float:
    return round_money(trade_price * (1 + markup_percent / 100))


def accept_line(session: Session, org_id: str, item_id: str, quote_line_id: str,
                markup_percent: Optional[float] = None, actor: Optional[str] = None) -> AcceptanceResult:
    """
    Accept one quote line for one requested item.
    Accepting the line that is already accepted changes nothing.

    Raises:
        NotFoundError: item or line absent or outside the organization
        ValidationError: the line prices a different item
        ConflictError: the item is already ordered
    """
    item = catalog.get_requested_item(session, org_id, item_id)
    catalog.require_id(quote_line_id, "quote_line_id")
    line = session.get(QuoteLineItem, quote_line_id)
    if line is None or line.quote.org_id != org_id:
        raise NotFoundError("QuoteLineItem", quote_line_id, org_id=org_id)
    if line.requested_item_id != item.id:
        raise ValidationError("Quote line prices a different item", item_id=item.id, quote_line_id=line.id)

    markup = resolve_markup(markup_percent, line.quote)
    trade = round_money(line.unit_price)
    rrp = retail_price(trade, markup)

    already_current = (
        item.accepted_quote_line_id == line.id
        and line.is_accepted
        and item.trade_price == trade
        and item.rrp == rrp
    )
    if already_current:
        return AcceptanceResult(success=True, item_id=item.id, quote_line_id=line.id,
                                trade_price=trade, rrp=rrp, markup_percent=markup)

    if item.spec_status in ORDERED_STATUSES:
        raise ConflictError("Item is already ordered", item_id=item.id, status=item.spec_status)

    previous_status = item.spec_status
    item.spec_status = check_transition(
        item.spec_status, ItemSpecStatus.QUOTE_APPROVED, "RequestedItem", item.id
    ).value

    session.execute(
        update(QuoteLineItem)
        .where(QuoteLineItem.requested_item_id == item.id, QuoteLineItem.id != line.id)
        .values(is_accepted=False)
        .execution_options(synchronize_session="fetch")
    )
    line.is_accepted = True

    previous_line_id = item.accepted_quote_line_id
    quote = line.quote
    item.accepted_quote_line_id = line.id
    item.trade_price = trade
    item.rrp = rrp
    item.markup_percent = markup
    item.supplier_id = quote.supplier_id
    item.supplier_name = quote.supplier_request.display_name
    item.lead_time = line.lead_time or item.lead_time
    item.currency = line.currency or item.currency

    catalog.record_item_activity(
        session, item, "PRICE_SYNCED", actor=actor,
        quote_line_id=line.id, previous_quote_line_id=previous_line_id,
        trade_price=trade, rrp=rrp, markup_percent=markup,
    )
    if previous_status != item.spec_status:
        catalog.record_item_activity(
            session, item, "STATUS_CHANGED", actor=actor,
            from_status=previous_status, to_status=item.spec_status,
        )

    log_agent_action(
        logger,
        "QuoteAcceptance",
        "quote_line_accepted",
        details={"item_id": item.id, "quote_line_id": line.id, "superseded_line_id": previous_line_id},
    )
    return AcceptanceResult(success=True, item_id=item.id, quote_line_id=line.id,
                            trade_price=trade, rrp=rrp, markup_percent=markup)


def _session_quote(session: Session, session_id: str) -> Optional[SupplierQuote]:
    return session.scalars(
        select(SupplierQuote).where(SupplierQuote.session_id == session_id).order_by(SupplierQuote.version.desc())
    ).first()


def _file_component(session: Session, org_id: str, parent_item_id: str, extracted) -> bool:
    """Attach a resolved extra line as a component of its parent item, once."""
    parent = catalog.get_requested_item(session, org_id, parent_item_id)
    if any(c.name == extracted.product_name for c in parent.components):
        return False
    parent.components.append(ItemComponentRecord(
        name=extracted.product_name,
        model_number=extracted.sku,
        quantity=extracted.quantity or 1,
        price=round_money(extracted.unit_price) if extracted.unit_price else None,
    ))
    catalog.record_item_activity(session, parent, "COMPONENT_ADDED", name=extracted.product_name)
    return True


def sync_session(session: Session, org_id: str, session_id: str,
                 markup_percent: Optional[float] = None, actor: Optional[str] = None) -> SessionSyncResult:
    """
    Commit a session's approved matches into the catalog.

    Each approved matched/partial result becomes a quote line (overridden
    price and quantity win over the extracted ones) on the session's quote,
    which is created on first sync. Every line is then accepted through
    accept_line. Results without a positive price are skipped and reported.
    Extras resolved as components are filed under their parent item.
    """
    record = load_session(session, org_id, session_id)
    if record.status == SessionStatus.SUPERSEDED.value:
        raise ConflictError("Superseded sessions cannot be synced", session_id=record.id)

    results = load_results(record)
    reviews = load_reviews(record)
    outcome = SessionSyncResult(session_id=record.id)

    planned = []
    for index, (result, review) in enumerate(zip(results, reviews)):
        if review is None:
            continue
        if review.decision == ReviewDecision.RESOLVED and review.resolution == ExtraResolution.COMPONENT:
            if _file_component(session, org_id, review.parent_item_id, result.extracted_item):
                outcome.components_created += 1
            continue
        if review.decision != ReviewDecision.APPROVED or not isinstance(result, (MatchedResult, PartialResult)):
            continue

        extracted = result.extracted_item
        unit_price = review.unit_price if review.unit_price is not None else extracted.unit_price
        if unit_price is None and extracted.total_price and extracted.quantity:
            unit_price = extracted.total_price / extracted.quantity
        if not unit_price or unit_price <= 0:
            outcome.skipped_indexes.append(index)
            continue

        quantity = review.quantity or extracted.quantity or result.requested_item.quantity
        planned.append(QuoteSubmissionLine(
            requested_item_id=result.requested_item.id,
            unit_price=unit_price,
            quantity=quantity,
            lead_time=extracted.lead_time,
        ))

    if not planned:
        logger.info(f"Session {record.id} has no approved priced results to sync")
        return outcome

    quote = _session_quote(session, record.id)
    if quote is None:
        info = record.supplier_info or {}
        submission = QuoteSubmission(
            quote_number=info.get("quote_number"),
            lines=planned,
            shipping_cost=info.get("shipping"),
            supplier_notes=record.notes,
        )
        quote = create_quote_version(
            session, record.supplier_request, submission,
            source="upload", session_id=record.id, taxes=info.get("taxes"),
        )
    else:
        by_item = {line.requested_item_id: line for line in quote.lines}
        for plan in planned:
            line = by_item.get(plan.requested_item_id)
            if line is None:
                item = catalog.get_requested_item(session, org_id, plan.requested_item_id)
                line = QuoteLineItem(requested_item_id=item.id, item_name=item.name, sku=item.sku)
                quote.lines.append(line)
            line.unit_price = round_money(plan.unit_price)
            line.quantity = plan.quantity
            line.total_price = round_money(plan.unit_price * plan.quantity)
            line.lead_time = plan.lead_time or line.lead_time
        quote.subtotal = round_money(sum(line.total_price for line in quote.lines))
        quote.total = round_money(quote.subtotal + (quote.shipping_cost or 0) + (quote.taxes or 0))
        session.flush()

    outcome.supplier_quote_id = quote.id
    lines_by_item = {line.requested_item_id: line for line in quote.lines}
    for plan in planned:
        line = lines_by_item[plan.requested_item_id]
        outcome.accepted.append(
            accept_line(session, org_id, plan.requested_item_id, line.id, markup_percent, actor)
        )

    log_agent_action(
        logger,
        "QuoteAcceptance",
        "session_synced",
        details={"session_id": record.id, "quote_id": quote.id,
                 "accepted": len(outcome.accepted), "skipped": len(outcome.skipped_indexes)},
    )
    return outcome
