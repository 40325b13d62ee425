"""
Item Catalog Accessor.
Tenant-scoped reads of requested items and the records around them.
"""

from typing import List, Optional, Type, TypeVar

from sqlalchemy import select
from sqlalchemy.orm import Session

from quote_reconciliation.db.models import (
    ItemActivity,
    QuoteLineItem,
    RequestedItemRecord,
    Rfq,
    SupplierQuote,
    SupplierRequest,
)
from quote_reconciliation.errors import NotFoundError, ValidationError
from quote_reconciliation.schemas.catalog import ItemComponent, RequestedItem


T = TypeVar("T")


def require_id(value: Optional[str], name: str) -> str:
    """Reject a blank identifier before any lookup or side effect."""
    if not value or not str(value).strip():
        raise ValidationError(f"{name} is required", field=name)
    return str(value)


def get_scoped(session: Session, model: Type[T], org_id: str, record_id: str, entity: str) -> T:
    """Fetch a row by id. A row outside the caller's organization is reported as missing."""
    require_id(org_id, "org_id")
    require_id(record_id, f"{entity} id")
    record = session.get(model, record_id)
    if record is None or record.org_id != org_id:
        raise NotFoundError(entity, record_id, org_id=org_id)
    return record


def to_requested_item(record: RequestedItemRecord, quantity: Optional[float] = None) -> RequestedItem:
    return RequestedItem(
        id=record.id,
        name=record.name,
        sku=record.sku,
        model_number=record.model_number,
        brand=record.brand,
        quantity=quantity if quantity is not None else (record.quantity or 1),
        unit_type=record.unit_type,
        trade_price=record.trade_price,
        components=[
            ItemComponent(
                id=component.id,
                name=component.name,
                model_number=component.model_number,
                quantity=component.quantity,
                price=component.price,
            )
            for component in record.components
        ],
    )


def get_requested_item(session: Session, org_id: str, item_id: str) -> RequestedItemRecord:
    return get_scoped(session, RequestedItemRecord, org_id, item_id, "RequestedItem")


def get_supplier_request(session: Session, org_id: str, request_id: str) -> SupplierRequest:
    return get_scoped(session, SupplierRequest, org_id, request_id, "SupplierRequest")


def get_rfq(session: Session, org_id: str, rfq_id: str) -> Rfq:
    return get_scoped(session, Rfq, org_id, rfq_id, "Rfq")


def load_requested_items(session: Session, org_id: str, rfq_id: str) -> List[RequestedItem]:
    """Catalog snapshot for one request batch, in the order items were added."""
    rfq = get_rfq(session, org_id, rfq_id)
    return [
        to_requested_item(link.requested_item, link.quantity)
        for link in rfq.items
        if link.requested_item.org_id == org_id
    ]


def latest_quote_line(session: Session, item_id: str) -> Optional[QuoteLineItem]:
    """Most recent quote line for an item: latest-version lines first, then newest."""
    stmt = (
        select(QuoteLineItem)
        .join(SupplierQuote, QuoteLineItem.quote_id == SupplierQuote.id)
        .where(QuoteLineItem.requested_item_id == item_id)
        .order_by(
            QuoteLineItem.is_latest_version.desc(),
            QuoteLineItem.created_at.desc(),
            SupplierQuote.version.desc(),
        )
        .limit(1)
    )
    return session.scalars(stmt).first()


def accepted_or_latest_line(session: Session, item: RequestedItemRecord) -> Optional[QuoteLineItem]:
    if item.accepted_quote_line_id:
        line = session.get(QuoteLineItem, item.accepted_quote_line_id)
        if line is not None:
            return line
    return latest_quote_line(session, item.id)


def record_item_activity(session: Session, item: RequestedItemRecord, activity_type: str,
                         actor: Optional[str] = None, **details) -> ItemActivity:
    activity = ItemActivity(
        org_id=item.org_id,
        item_id=item.id,
        type=activity_type,
        actor=actor,
        details=details or None,
    )
    session.add(activity)
    return activity
