"""
Tests for order generation from paid invoices.
"""

import pytest
from sqlalchemy import select

from quote_reconciliation import main
from quote_reconciliation.db.base import utcnow
from quote_reconciliation.db.engine import unit_of_work
from quote_reconciliation.db.models import (
    Invoice,
    InvoiceActivity,
    InvoiceLine,
    InvoicePayment,
    Order,
    OrderLineItem,
    OrderNumberCounter,
    RequestedItemRecord,
)
from quote_reconciliation.errors import ConflictError, NotFoundError, ValidationError
from quote_reconciliation.services.orders import format_order_number, invoice_item_ids
from quote_reconciliation.services.statuses import (
    ItemSpecStatus,
    OrderStatus,
    PaymentRecordStatus,
    PaymentStatus,
)

from conftest import ORG, OTHER_ORG


YEAR = utcnow().year


def group_for(preview, supplier_id):
    return next(g for g in preview.groups if g.supplier_id == supplier_id)


def test_order_number_format():
    assert format_order_number(2026, 1) == "PO-2026-0001"
    assert format_order_number(2026, 12345) == "PO-2026-12345"


def test_preview_groups_by_supplier(session_factory, paid_invoice):
    preview = main.preview_orders(ORG, paid_invoice.invoice, session_factory=session_factory)

    assert preview.is_paid
    assert preview.payment_percent == 100.0
    assert preview.can_create_orders
    assert len(preview.groups) == 2

    acme = group_for(preview, paid_invoice.acme)
    assert [line.name for line in acme.lines] == ["Faucet", "Wall Sconce"]
    assert acme.subtotal == 470.0
    assert acme.shipping_cost == 25.0
    assert acme.total == 495.0
    assert acme.deposit_percent == 50
    assert acme.deposit_required == 247.5
    assert acme.balance_due == 247.5
    assert acme.payment_terms == "Net 30"
    assert acme.currency == "CAD"


def test_preview_expands_priced_components(session_factory, paid_invoice):
    preview = main.preview_orders(ORG, paid_invoice.invoice, session_factory=session_factory)
    nordic = group_for(preview, paid_invoice.nordic)

    assert [(line.name, line.is_component) for line in nordic.lines] == [
        ("Porter Ottoman", False),
        ("Seat Cushion", True),
    ]
    cushion = nordic.lines[1]
    assert cushion.total_price == 80.0
    assert cushion.parent_item_id == paid_invoice.ottoman
    assert cushion.description == "Component of Porter Ottoman"
    assert nordic.subtotal == 380.0
    assert nordic.deposit_required is None
    assert nordic.balance_due is None


def test_preview_reports_items_without_supplier(session_factory, paid_invoice):
    preview = main.preview_orders(ORG, paid_invoice.invoice, session_factory=session_factory)
    assert [item.id for item in preview.items_without_supplier] == [paid_invoice.rug]
    assert preview.already_ordered == []


def test_preview_writes_nothing(session_factory, paid_invoice):
    main.preview_orders(ORG, paid_invoice.invoice, session_factory=session_factory)
    with unit_of_work(session_factory) as session:
        assert session.scalars(select(Order)).all() == []


def test_create_orders(session_factory, paid_invoice):
    result = main.create_orders_from_invoice(ORG, paid_invoice.invoice, actor="pat",
                                             session_factory=session_factory)

    assert [o.order_number for o in result.orders] == [f"PO-{YEAR}-0001", f"PO-{YEAR}-0002"]
    assert all(o.status == OrderStatus.PAYMENT_RECEIVED for o in result.orders)
    assert result.orders[0].total == 495.0
    assert result.orders[1].line_count == 2
    assert [item.id for item in result.items_without_supplier] == [paid_invoice.rug]

    with unit_of_work(session_factory) as session:
        for item_id in (paid_invoice.faucet, paid_invoice.ottoman, paid_invoice.sconce):
            item = session.get(RequestedItemRecord, item_id)
            assert item.spec_status == ItemSpecStatus.ORDERED.value
            assert item.payment_status == PaymentStatus.FULLY_PAID.value

        order = session.get(Order, result.orders[0].id)
        assert order.internal_notes == "Payment terms: Net 30\nShipping terms: FOB origin"
        assert order.created_by == "pat"
        assert [a.type for a in order.activities] == ["CREATED"]

        activity = session.scalars(select(InvoiceActivity)).one()
        assert activity.type == "ORDERS_CREATED"
        assert activity.details["order_numbers"] == [o.order_number for o in result.orders]


def test_second_run_creates_nothing(session_factory, paid_invoice):
    main.create_orders_from_invoice(ORG, paid_invoice.invoice, session_factory=session_factory)
    again = main.create_orders_from_invoice(ORG, paid_invoice.invoice, session_factory=session_factory)

    assert again.orders == []
    assert {item.id for item in again.already_ordered} == {
        paid_invoice.faucet, paid_invoice.ottoman, paid_invoice.sconce,
    }
    assert all(item.order_number.startswith(f"PO-{YEAR}-") for item in again.already_ordered)


def test_subset_of_items(session_factory, paid_invoice):
    result = main.create_orders_from_invoice(ORG, paid_invoice.invoice, item_ids=[paid_invoice.ottoman],
                                             session_factory=session_factory)
    assert len(result.orders) == 1
    assert result.orders[0].supplier_id == paid_invoice.nordic

    with unit_of_work(session_factory) as session:
        assert session.get(RequestedItemRecord, paid_invoice.faucet).spec_status \
            == ItemSpecStatus.QUOTE_APPROVED.value


def test_unknown_item_ids_rejected(session_factory, paid_invoice):
    with pytest.raises(ValidationError):
        main.create_orders_from_invoice(ORG, paid_invoice.invoice, item_ids=[paid_invoice.foreign],
                                        session_factory=session_factory)


def test_requested_item_ids_deduplicated(session_factory, paid_invoice):
    with unit_of_work(session_factory) as session:
        invoice = session.get(Invoice, paid_invoice.invoice)
        ids = invoice_item_ids(invoice, [paid_invoice.sconce, paid_invoice.faucet, paid_invoice.sconce])
    assert ids == [paid_invoice.sconce, paid_invoice.faucet]


def test_unpaid_invoice_rejected(session_factory, paid_invoice):
    with unit_of_work(session_factory) as session:
        for payment in session.scalars(select(InvoicePayment)).all():
            payment.status = PaymentRecordStatus.PENDING.value

    preview = main.preview_orders(ORG, paid_invoice.invoice, session_factory=session_factory)
    assert not preview.can_create_orders
    assert preview.total_paid == 0.0

    with pytest.raises(ValidationError):
        main.create_orders_from_invoice(ORG, paid_invoice.invoice, session_factory=session_factory)


def test_partial_payment_still_orders(session_factory, paid_invoice):
    with unit_of_work(session_factory) as session:
        payment = session.scalars(select(InvoicePayment)).one()
        payment.amount = 600
        payment.status = PaymentRecordStatus.PARTIAL.value

    preview = main.preview_orders(ORG, paid_invoice.invoice, session_factory=session_factory)
    assert not preview.is_paid
    assert preview.payment_percent == 40.0
    assert preview.can_create_orders


def test_failure_rolls_back_every_order(session_factory, paid_invoice):
    with unit_of_work(session_factory) as session:
        session.get(RequestedItemRecord, paid_invoice.ottoman).spec_status = ItemSpecStatus.DELIVERED.value

    with pytest.raises(ConflictError):
        main.create_orders_from_invoice(ORG, paid_invoice.invoice, session_factory=session_factory)

    with unit_of_work(session_factory) as session:
        assert session.scalars(select(Order)).all() == []
        assert session.scalars(select(OrderLineItem)).all() == []
        assert session.get(RequestedItemRecord, paid_invoice.faucet).spec_status \
            == ItemSpecStatus.QUOTE_APPROVED.value


def test_orders_are_immutable(session_factory, paid_invoice):
    result = main.create_orders_from_invoice(ORG, paid_invoice.invoice, session_factory=session_factory)

    with pytest.raises(ConflictError):
        with unit_of_work(session_factory) as session:
            session.get(Order, result.orders[0].id).vendor_name = "Someone else"

    with unit_of_work(session_factory) as session:
        order = session.get(Order, result.orders[0].id)
        assert order.vendor_name == "Acme Lighting Ltd"
        order.deposit_paid = 247.5


def test_duplicate_order_number_is_conflict(session_factory, paid_invoice):
    result = main.create_orders_from_invoice(ORG, paid_invoice.invoice, item_ids=[paid_invoice.faucet],
                                             session_factory=session_factory)
    with pytest.raises(ConflictError):
        with unit_of_work(session_factory) as session:
            session.add(Order(
                org_id=ORG, order_number=result.orders[0].order_number, vendor_name="Copy",
                currency="CAD", subtotal=0, total_amount=0,
            ))


def test_status_updates_carry_items(session_factory, paid_invoice):
    result = main.create_orders_from_invoice(ORG, paid_invoice.invoice, session_factory=session_factory)
    order_id = result.orders[1].id

    for status in ("SENT_TO_SUPPLIER", "CONFIRMED", "SHIPPED"):
        updated = main.update_order_status(ORG, order_id, status, actor="pat", session_factory=session_factory)
    assert updated.status == OrderStatus.SHIPPED

    main.update_order_status(ORG, order_id, OrderStatus.DELIVERED, note="Signed by client",
                             session_factory=session_factory)
    with unit_of_work(session_factory) as session:
        assert session.get(RequestedItemRecord, paid_invoice.ottoman).spec_status \
            == ItemSpecStatus.DELIVERED.value
        order = session.get(Order, order_id)
        assert order.notes == "Signed by client"
        assert len(order.activities) == 5


def test_illegal_order_transition(session_factory, paid_invoice):
    result = main.create_orders_from_invoice(ORG, paid_invoice.invoice, session_factory=session_factory)
    with pytest.raises(ConflictError):
        main.update_order_status(ORG, result.orders[0].id, "DELIVERED", session_factory=session_factory)
    with pytest.raises(ValidationError):
        main.update_order_status(ORG, result.orders[0].id, "LOST", session_factory=session_factory)


def test_cancelled_order_frees_items(session_factory, paid_invoice):
    first = main.create_orders_from_invoice(ORG, paid_invoice.invoice, session_factory=session_factory)
    main.update_order_status(ORG, first.orders[0].id, "CANCELLED", session_factory=session_factory)

    with unit_of_work(session_factory) as session:
        assert session.get(RequestedItemRecord, paid_invoice.faucet).spec_status \
            == ItemSpecStatus.QUOTE_APPROVED.value

    again = main.create_orders_from_invoice(ORG, paid_invoice.invoice, session_factory=session_factory)
    assert [o.order_number for o in again.orders] == [f"PO-{YEAR}-0003"]
    assert [item.id for item in again.already_ordered] == [paid_invoice.ottoman]


def test_invoice_scoped_to_org(session_factory, paid_invoice):
    with pytest.raises(NotFoundError):
        main.preview_orders(OTHER_ORG, paid_invoice.invoice, session_factory=session_factory)
    with pytest.raises(NotFoundError):
        main.create_orders_from_invoice(OTHER_ORG, paid_invoice.invoice, session_factory=session_factory)
    with pytest.raises(ValidationError):
        main.create_orders_from_invoice(ORG, "", session_factory=session_factory)


def test_line_quantity_follows_invoice(session_factory, paid_invoice):
    with unit_of_work(session_factory) as session:
        line = session.scalars(
            select(InvoiceLine).where(InvoiceLine.requested_item_id == paid_invoice.faucet)
        ).one()
        line.quantity = 3

    preview = main.preview_orders(ORG, paid_invoice.invoice, session_factory=session_factory)
    faucet = group_for(preview, paid_invoice.acme).lines[0]
    assert faucet.name == "Faucet"
    assert faucet.quantity == 3
    assert faucet.total_price == 450.0

    result = main.create_orders_from_invoice(ORG, paid_invoice.invoice, item_ids=[paid_invoice.faucet],
                                             session_factory=session_factory)
    with unit_of_work(session_factory) as session:
        ordered = session.scalars(
            select(OrderLineItem).where(OrderLineItem.order_id == result.orders[0].id)
        ).one()
        assert ordered.quantity == 3
        assert ordered.total_price == 450.0


def test_order_numbers_come_from_counter(session_factory, paid_invoice):
    main.create_orders_from_invoice(ORG, paid_invoice.invoice, session_factory=session_factory)

    with unit_of_work(session_factory) as session:
        counter = session.scalars(select(OrderNumberCounter)).one()
        assert (counter.org_id, counter.year, counter.current_value) == (ORG, YEAR, 2)


def test_counter_seeded_from_existing_orders(session_factory, paid_invoice):
    with unit_of_work(session_factory) as session:
        session.add(Order(
            org_id=ORG, order_number=f"PO-{YEAR}-0001", vendor_name="Imported",
            currency="CAD", subtotal=0, total_amount=0,
        ))

    result = main.create_orders_from_invoice(ORG, paid_invoice.invoice, item_ids=[paid_invoice.faucet],
                                             session_factory=session_factory)
    assert [o.order_number for o in result.orders] == [f"PO-{YEAR}-0002"]


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
