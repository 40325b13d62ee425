"""
Order Generator.

Turns a paid client invoice into one purchase order per supplier:
1. drop items already on a live (non-cancelled) order
2. group the rest by the supplier of their accepted, else latest, quote line
3. expand each item into its priced components
4. roll up subtotal, shipping, deposit and balance per group
5. number orders per organization per year and persist everything in the
   caller's unit of work

The preview runs steps 1-4 only.
"""

from collections import OrderedDict
from typing import Dict, Iterable, List, Optional, Tuple

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from quote_reconciliation.config import get_config
from quote_reconciliation.db.base import utcnow
from quote_reconciliation.db.models import (
    Invoice,
    InvoiceActivity,
    Order,
    OrderActivity,
    OrderLineItem,
    OrderNumberCounter,
    QuoteLineItem,
    RequestedItemRecord,
)
from quote_reconciliation.errors import ValidationError
from quote_reconciliation.schemas.orders import (
    CreatedOrder,
    ExcludedItem,
    OrderCreationResult,
    OrderLinePlan,
    OrderPreview,
    SupplierOrderGroup,
)
from quote_reconciliation.services import catalog
from quote_reconciliation.services.statuses import (
    ItemSpecStatus,
    OrderStatus,
    PaymentRecordStatus,
    PaymentStatus,
    can_transition,
    check_transition,
)
from quote_reconciliation.utils import round_money, safe_divide
from quote_reconciliation.utils.logging import log_agent_action, setup_logging


logger = setup_logging(__name__)
config = get_config()

COUNTED_PAYMENTS = (PaymentRecordStatus.PAID.value, PaymentRecordStatus.PARTIAL.value)

# Item status each order status pushes its items to
ITEM_STATUS_FOR_ORDER = {
    OrderStatus.SHIPPED: ItemSpecStatus.SHIPPED,
    OrderStatus.DELIVERED: ItemSpecStatus.DELIVERED,
    OrderStatus.CANCELLED: ItemSpecStatus.QUOTE_APPROVED,
}


def get_invoice(session: Session, org_id: str, invoice_id: str) -> Invoice:
    return catalog.get_scoped(session, Invoice, org_id, invoice_id, "Invoice")


def paid_amount(invoice: Invoice) -> float:
    return round_money(sum(p.amount or 0 for p in invoice.payments if p.status in COUNTED_PAYMENTS))


def invoice_item_ids(invoice: Invoice, item_ids: Optional[Iterable[str]] = None) -> List[str]:
    """
    Requested item ids on the invoice, in line order, without duplicates.

    Raises:
        ValidationError: item_ids names items that are not on the invoice
    """
    on_invoice = list(OrderedDict.fromkeys(
        line.requested_item_id for line in invoice.lines if line.requested_item_id
    ))
    if item_ids is None:
        return on_invoice

    wanted = list(OrderedDict.fromkeys(item_ids))
    unknown = [item_id for item_id in wanted if item_id not in on_invoice]
    if unknown:
        raise ValidationError("Items are not on this invoice", invoice_id=invoice.id, item_ids=unknown)
    return wanted


def active_order_numbers(session: Session, org_id: str, item_ids: List[str]) -> Dict[str, str]:
    """Map item id -> order number for items already on a non-cancelled order."""
    if not item_ids:
        return {}
    rows = session.execute(
        select(OrderLineItem.requested_item_id, Order.order_number)
        .join(Order, OrderLineItem.order_id == Order.id)
        .where(
            Order.org_id == org_id,
            Order.status != OrderStatus.CANCELLED.value,
            OrderLineItem.is_component.is_(False),
            OrderLineItem.requested_item_id.in_(item_ids),
        )
    ).all()
    return {item_id: number for item_id, number in rows}


def invoiced_quantities(invoice: Invoice) -> Dict[str, float]:
    """Quantity the client was invoiced for, per requested item."""
    quantities: Dict[str, float] = {}
    for line in invoice.lines:
        if line.requested_item_id and line.quantity:
            quantities[line.requested_item_id] = quantities.get(line.requested_item_id, 0) + line.quantity
    return quantities


def _item_line(item: RequestedItemRecord, quote_line: QuoteLineItem,
               invoiced: Optional[float] = None) -> OrderLinePlan:
    # The accepted line's price already lives on the item as its trade price
    if item.accepted_quote_line_id == quote_line.id and item.trade_price is not None:
        unit_price = item.trade_price
    else:
        unit_price = quote_line.unit_price
    quantity = invoiced or item.quantity or quote_line.quantity or 1
    return OrderLinePlan(
        requested_item_id=item.id,
        name=item.name,
        description=quote_line.notes,
        quantity=quantity,
        unit_price=round_money(unit_price),
        total_price=round_money(unit_price * quantity),
        currency=quote_line.currency or item.currency,
        quote_line_id=quote_line.id,
        lead_time=quote_line.lead_time or item.lead_time,
    )


def _component_lines(item: RequestedItemRecord, currency: Optional[str]) -> List[OrderLinePlan]:
    lines = []
    for component in item.components:
        if component.price is None:
            continue
        quantity = component.quantity or 1
        lines.append(OrderLinePlan(
            requested_item_id=item.id,
            name=component.name,
            description=f"Component of {item.name}",
            quantity=quantity,
            unit_price=round_money(component.price),
            total_price=round_money(component.price * quantity),
            currency=currency,
            is_component=True,
            parent_item_id=item.id,
            component_id=component.id,
        ))
    return lines


def _group_currency(lines: List[OrderLinePlan]) -> str:
    currencies = {line.currency for line in lines if line.currency}
    if len(currencies) == 1:
        return currencies.pop()
    return config.DEFAULT_CURRENCY


def _finish_group(group: SupplierOrderGroup, quote) -> None:
    """Fill in terms and financial roll-ups from the group's quote."""
    group.supplier_quote_id = quote.id
    group.payment_terms = quote.payment_terms
    group.shipping_terms = quote.shipping_terms
    group.currency = _group_currency(group.lines)
    group.subtotal = round_money(sum(line.total_price for line in group.lines))
    group.shipping_cost = round_money(quote.shipping_cost)
    group.total = round_money(group.subtotal + group.shipping_cost)

    if quote.deposit_required:
        group.deposit_required = round_money(quote.deposit_required)
    elif quote.deposit_percent:
        group.deposit_percent = quote.deposit_percent
        group.deposit_required = round_money(group.total * quote.deposit_percent / 100)
    if group.deposit_required is not None:
        group.balance_due = round_money(group.total - group.deposit_required)


def plan_orders(session: Session, org_id: str, invoice: Invoice,
                item_ids: Optional[Iterable[str]] = None
                ) -> Tuple[List[SupplierOrderGroup], List[ExcludedItem], List[ExcludedItem]]:
    """
    Group the invoice's orderable items by supplier.

    Returns:
        (groups, items_without_supplier, already_ordered)
    """
    ids = invoice_item_ids(invoice, item_ids)
    ordered = active_order_numbers(session, org_id, ids)
    invoiced = invoiced_quantities(invoice)

    groups: "OrderedDict[str, SupplierOrderGroup]" = OrderedDict()
    group_quotes = {}
    without_supplier: List[ExcludedItem] = []
    already_ordered: List[ExcludedItem] = []

    for item_id in ids:
        item = catalog.get_requested_item(session, org_id, item_id)
        if item_id in ordered:
            already_ordered.append(ExcludedItem(
                id=item.id, name=item.name, reason="Already ordered", order_number=ordered[item_id],
            ))
            continue

        quote_line = catalog.accepted_or_latest_line(session, item)
        if quote_line is None:
            without_supplier.append(ExcludedItem(id=item.id, name=item.name, reason="No supplier quote"))
            continue

        quote = quote_line.quote
        request = quote.supplier_request
        key = quote.supplier_id or f"request:{request.id}"
        group = groups.get(key)
        if group is None:
            group = SupplierOrderGroup(
                supplier_key=key,
                supplier_id=quote.supplier_id,
                supplier_name=request.display_name,
                supplier_email=request.vendor_email or (quote.supplier.email if quote.supplier else None),
                currency=config.DEFAULT_CURRENCY,
            )
            groups[key] = group

        # The newest quote in a group carries its shipping, deposit and terms
        current = group_quotes.get(key)
        if current is None or quote.version > current.version:
            group_quotes[key] = quote

        item_line = _item_line(item, quote_line, invoiced.get(item.id))
        group.lines.append(item_line)
        group.lines.extend(_component_lines(item, item_line.currency))

    for key, group in groups.items():
        _finish_group(group, group_quotes[key])

    return list(groups.values()), without_supplier, already_ordered


def preview_orders(session: Session, org_id: str, invoice_id: str,
                   item_ids: Optional[Iterable[str]] = None) -> OrderPreview:
    """Dry run of create_orders. Writes nothing."""
    invoice = get_invoice(session, org_id, invoice_id)
    groups, without_supplier, already_ordered = plan_orders(session, org_id, invoice, item_ids)

    total = round_money(invoice.total_amount)
    paid = paid_amount(invoice)
    return OrderPreview(
        invoice_id=invoice.id,
        invoice_number=invoice.invoice_number,
        invoice_total=total,
        total_paid=paid,
        is_paid=total > 0 and paid >= total,
        payment_percent=round(safe_divide(paid, total) * 100, 2),
        groups=groups,
        items_without_supplier=without_supplier,
        already_ordered=already_ordered,
        can_create_orders=paid > 0 and bool(groups),
    )


def order_number_prefix(year: int) -> str:
    return f"{config.ORDER_NUMBER_PREFIX}-{year}-"


def next_order_sequence(session: Session, org_id: str, year: int) -> int:
    """
    Allocate the next order sequence for the organization and year.

    The counter row stays locked (SELECT ... FOR UPDATE) until the caller's
    transaction ends, and a rollback gives the number back. A missing
    counter starts from the orders already numbered that year.
    """
    counter = session.execute(
        select(OrderNumberCounter)
        .where(OrderNumberCounter.org_id == org_id, OrderNumberCounter.year == year)
        .with_for_update()
        .execution_options(populate_existing=True)
    ).scalar_one_or_none()

    if counter is None:
        existing = session.scalar(
            select(func.count(Order.id)).where(
                Order.org_id == org_id,
                Order.order_number.like(f"{order_number_prefix(year)}%"),
            )
        )
        # A concurrent first allocation trips the unique constraint and rolls back as a conflict
        counter = OrderNumberCounter(org_id=org_id, year=year, current_value=existing or 0)
        session.add(counter)

    counter.current_value += 1
    session.flush()
    logger.debug(f"Order sequence {counter.current_value} allocated for {org_id}/{year}")
    return counter.current_value


def lock_items(session: Session, org_id: str, item_ids: List[str]) -> List[RequestedItemRecord]:
    """Row-lock the items about to be ordered so no other transaction orders them too."""
    return list(session.scalars(
        select(RequestedItemRecord)
        .where(RequestedItemRecord.org_id == org_id, RequestedItemRecord.id.in_(item_ids))
        .order_by(RequestedItemRecord.id)
        .with_for_update()
    ).all())


def format_order_number(year: int, sequence: int) -> str:
    return f"{order_number_prefix(year)}{sequence:0{config.ORDER_NUMBER_WIDTH}d}"


def _internal_notes(group: SupplierOrderGroup) -> Optional[str]:
    parts = []
    if group.payment_terms:
        parts.append(f"Payment terms: {group.payment_terms}")
    if group.shipping_terms:
        parts.append(f"Shipping terms: {group.shipping_terms}")
    return "\n".join(parts) or None


def to_created_order(order: Order) -> CreatedOrder:
    return CreatedOrder(
        id=order.id,
        order_number=order.order_number,
        status=OrderStatus(order.status),
        supplier_id=order.supplier_id,
        supplier_name=order.vendor_name,
        currency=order.currency,
        line_count=len(order.items),
        subtotal=order.subtotal,
        shipping_cost=order.shipping_cost,
        total=order.total_amount,
        deposit_required=order.deposit_required,
        balance_due=order.balance_due,
    )


def _mark_item_ordered(session: Session, item: RequestedItemRecord, order: Order, actor: Optional[str]) -> None:
    previous = item.spec_status
    item.spec_status = check_transition(
        item.spec_status, ItemSpecStatus.ORDERED, "RequestedItem", item.id
    ).value
    item.payment_status = check_transition(
        item.payment_status, PaymentStatus.FULLY_PAID, "RequestedItem", item.id
    ).value
    catalog.record_item_activity(
        session, item, "STATUS_CHANGED", actor=actor,
        from_status=previous, to_status=item.spec_status,
        order_id=order.id, order_number=order.order_number,
    )


def create_orders(session: Session, org_id: str, invoice_id: str,
                  item_ids: Optional[Iterable[str]] = None,
                  actor: Optional[str] = None) -> OrderCreationResult:
    """
    Persist one order per supplier group.

    Must run inside one unit of work; the caller holds the order-number and
    item locks. Items already on a live order are skipped, so a second call
    for the same invoice creates nothing.

    Raises:
        ValidationError: invoice unpaid, or no items to order
        ConflictError: an item cannot move to ORDERED, or the number is taken
    """
    invoice = get_invoice(session, org_id, invoice_id)
    paid = paid_amount(invoice)
    if paid <= 0:
        raise ValidationError("Invoice has no recorded payment", invoice_id=invoice.id)

    ids = invoice_item_ids(invoice, item_ids)
    if not ids:
        raise ValidationError("Invoice has no requested items to order", invoice_id=invoice.id)

    lock_items(session, org_id, ids)

    groups, without_supplier, already_ordered = plan_orders(session, org_id, invoice, ids)
    result = OrderCreationResult(
        invoice_id=invoice.id,
        items_without_supplier=without_supplier,
        already_ordered=already_ordered,
    )
    if not groups:
        logger.info(f"Invoice {invoice.id} has nothing left to order")
        return result

    year = utcnow().year

    for group in groups:
        sequence = next_order_sequence(session, org_id, year)
        order = Order(
            org_id=org_id,
            project_id=invoice.project_id,
            order_number=format_order_number(year, sequence),
            invoice_id=invoice.id,
            supplier_id=group.supplier_id,
            supplier_quote_id=group.supplier_quote_id,
            vendor_name=group.supplier_name,
            vendor_email=group.supplier_email,
            status=OrderStatus.PAYMENT_RECEIVED.value,
            currency=group.currency,
            subtotal=group.subtotal,
            shipping_cost=group.shipping_cost,
            total_amount=group.total,
            deposit_required=group.deposit_required,
            deposit_percent=group.deposit_percent,
            balance_due=group.balance_due,
            internal_notes=_internal_notes(group),
            created_by=actor,
        )
        for line in group.lines:
            order.items.append(OrderLineItem(**line.model_dump()))
        order.activities.append(OrderActivity(
            type="CREATED",
            message=f"Order created from invoice {invoice.invoice_number or invoice.id}",
            actor=actor,
            details={"invoice_id": invoice.id, "line_count": len(group.lines)},
        ))
        session.add(order)
        session.flush()

        for item_id in group.item_ids:
            _mark_item_ordered(session, catalog.get_requested_item(session, org_id, item_id), order, actor)

        result.orders.append(to_created_order(order))
        log_agent_action(
            logger,
            "OrderGenerator",
            "order_created",
            details={"order_id": order.id, "order_number": order.order_number,
                     "invoice_id": invoice.id, "lines": len(group.lines)},
        )

    session.add(InvoiceActivity(
        invoice_id=invoice.id,
        type="ORDERS_CREATED",
        message=f"{len(result.orders)} supplier order(s) created",
        details={"order_numbers": [o.order_number for o in result.orders]},
    ))
    session.flush()
    return result


def get_order(session: Session, org_id: str, order_id: str) -> Order:
    return catalog.get_scoped(session, Order, org_id, order_id, "Order")


def update_order_status(session: Session, org_id: str, order_id: str, status: OrderStatus,
                        actor: Optional[str] = None, note: Optional[str] = None) -> CreatedOrder:
    """
    Move an order along its lifecycle and carry its items with it.

    Shipping and delivery advance the ordered items; cancelling hands them
    back to QUOTE_APPROVED so they can be ordered again.
    """
    order = get_order(session, org_id, order_id)
    target = OrderStatus(status)
    previous = order.status
    order.status = check_transition(order.status, target, "Order", order.id).value
    if note:
        order.notes = f"{order.notes}\n{note}" if order.notes else note

    item_status = ITEM_STATUS_FOR_ORDER.get(target)
    if item_status is not None:
        for line in order.items:
            if line.is_component:
                continue
            item = catalog.get_requested_item(session, org_id, line.requested_item_id)
            if not can_transition(item.spec_status, item_status):
                logger.debug(f"Item {item.id} stays {item.spec_status} on order {order.order_number}")
                continue
            from_status = item.spec_status
            item.spec_status = item_status.value
            catalog.record_item_activity(
                session, item, "STATUS_CHANGED", actor=actor,
                from_status=from_status, to_status=item.spec_status, order_id=order.id,
            )

    order.activities.append(OrderActivity(
        type="STATUS_CHANGED",
        message=f"Status changed from {previous} to {order.status}",
        actor=actor,
        details={"from": previous, "to": order.status},
    ))
    session.flush()

    log_agent_action(logger, "OrderGenerator", "order_status_changed",
                     details={"order_id": order.id, "from": previous, "to": order.status})
    return to_created_order(order)
