"""
ORM models for the procurement store the engine reads and writes.
Every org-owned row carries org_id; lookups are always tenant-scoped.
"""

from datetime import datetime
from typing import List, Optional

from sqlalchemy import JSON, Boolean, Float, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from quote_reconciliation.db.base import Base, Money, TimestampedBase, utcnow
from quote_reconciliation.services.statuses import (
    ItemSpecStatus,
    OrderStatus,
    PaymentRecordStatus,
    PaymentStatus,
    ResponseStatus,
    SessionStatus,
)


class Supplier(TimestampedBase):
    __tablename__ = "suppliers"

    org_id: Mapped[str] = mapped_column(String(36), index=True)
    name: Mapped[str]
    email: Mapped[Optional[str]]
    markup_percent: Mapped[Optional[float]] = mapped_column(Float)
    currency: Mapped[Optional[str]] = mapped_column(String(3))


class Rfq(TimestampedBase):
    """A request for quote covering several items and suppliers."""
    __tablename__ = "rfqs"

    org_id: Mapped[str] = mapped_column(String(36), index=True)
    project_id: Mapped[Optional[str]] = mapped_column(String(36))
    rfq_number: Mapped[Optional[str]]
    title: Mapped[Optional[str]]

    items: Mapped[List["RfqItem"]] = relationship(back_populates="rfq", cascade="all, delete-orphan")
    supplier_requests: Mapped[List["SupplierRequest"]] = relationship(back_populates="rfq")


class RfqItem(Base):
    __tablename__ = "rfq_items"

    rfq_id: Mapped[str] = mapped_column(ForeignKey("rfqs.id"), index=True)
    requested_item_id: Mapped[str] = mapped_column(ForeignKey("requested_items.id"))
    quantity: Mapped[Optional[float]] = mapped_column(Float)

    rfq: Mapped[Rfq] = relationship(back_populates="items")
    requested_item: Mapped["RequestedItemRecord"] = relationship()


class RequestedItemRecord(TimestampedBase):
    __tablename__ = "requested_items"

    org_id: Mapped[str] = mapped_column(String(36), index=True)
    project_id: Mapped[Optional[str]] = mapped_column(String(36))
    name: Mapped[str]
    sku: Mapped[Optional[str]]
    model_number: Mapped[Optional[str]]
    brand: Mapped[Optional[str]]
    quantity: Mapped[float] = mapped_column(Float, default=1)
    unit_type: Mapped[Optional[str]] = mapped_column(String(50))
    trade_price: Mapped[Optional[float]] = mapped_column(Money)
    rrp: Mapped[Optional[float]] = mapped_column(Money)
    markup_percent: Mapped[Optional[float]] = mapped_column(Float)
    currency: Mapped[Optional[str]] = mapped_column(String(3))
    lead_time: Mapped[Optional[str]]
    supplier_id: Mapped[Optional[str]] = mapped_column(String(36))
    supplier_name: Mapped[Optional[str]]
    accepted_quote_line_id: Mapped[Optional[str]] = mapped_column(String(36))
    spec_status: Mapped[str] = mapped_column(String(30), default=ItemSpecStatus.SELECTED.value)
    payment_status: Mapped[str] = mapped_column(String(30), default=PaymentStatus.NOT_INVOICED.value)

    components: Mapped[List["ItemComponentRecord"]] = relationship(
        back_populates="item", cascade="all, delete-orphan", order_by="ItemComponentRecord.created_at"
    )


class ItemComponentRecord(TimestampedBase):
    __tablename__ = "item_components"

    item_id: Mapped[str] = mapped_column(ForeignKey("requested_items.id"), index=True)
    name: Mapped[str]
    model_number: Mapped[Optional[str]]
    quantity: Mapped[Optional[float]] = mapped_column(Float)
    price: Mapped[Optional[float]] = mapped_column(Money)

    item: Mapped[RequestedItemRecord] = relationship(back_populates="components")


class ItemActivity(Base):
    """Audit trail of side effects applied to a requested item."""
    __tablename__ = "item_activities"

    org_id: Mapped[str] = mapped_column(String(36), index=True)
    item_id: Mapped[str] = mapped_column(ForeignKey("requested_items.id"), index=True)
    type: Mapped[str] = mapped_column(String(50))
    actor: Mapped[Optional[str]]
    details: Mapped[Optional[dict]] = mapped_column(JSON)
    created_at: Mapped[datetime] = mapped_column(default=utcnow)


class SupplierRequest(TimestampedBase):
    """One supplier's slot in a request for quote."""
    __tablename__ = "supplier_requests"

    org_id: Mapped[str] = mapped_column(String(36), index=True)
    rfq_id: Mapped[str] = mapped_column(ForeignKey("rfqs.id"), index=True)
    supplier_id: Mapped[Optional[str]] = mapped_column(ForeignKey("suppliers.id"))
    vendor_name: Mapped[Optional[str]]
    vendor_email: Mapped[Optional[str]]
    status: Mapped[str] = mapped_column(String(20), default=ResponseStatus.PENDING.value)
    viewed_at: Mapped[Optional[datetime]]
    responded_at: Mapped[Optional[datetime]]
    decline_reason: Mapped[Optional[str]] = mapped_column(Text)

    rfq: Mapped[Rfq] = relationship(back_populates="supplier_requests")
    supplier: Mapped[Optional[Supplier]] = relationship()
    quotes: Mapped[List["SupplierQuote"]] = relationship(
        back_populates="supplier_request", order_by="SupplierQuote.version"
    )

    @property
    def display_name(self) -> str:
        if self.supplier is not None:
            return self.supplier.name
        return self.vendor_name or "Unknown supplier"


class SupplierQuote(TimestampedBase):
    """One submitted version of a supplier's quote."""
    __tablename__ = "supplier_quotes"

    org_id: Mapped[str] = mapped_column(String(36), index=True)
    supplier_request_id: Mapped[str] = mapped_column(ForeignKey("supplier_requests.id"), index=True)
    supplier_id: Mapped[Optional[str]] = mapped_column(ForeignKey("suppliers.id"))
    quote_number: Mapped[Optional[str]]
    version: Mapped[int] = mapped_column(Integer, default=1)
    source: Mapped[str] = mapped_column(String(20), default="portal")
    subtotal: Mapped[Optional[float]] = mapped_column(Money)
    shipping_cost: Mapped[Optional[float]] = mapped_column(Money)
    taxes: Mapped[Optional[float]] = mapped_column(Money)
    total: Mapped[Optional[float]] = mapped_column(Money)
    deposit_required: Mapped[Optional[float]] = mapped_column(Money)
    deposit_percent: Mapped[Optional[float]] = mapped_column(Float)
    payment_terms: Mapped[Optional[str]] = mapped_column(Text)
    shipping_terms: Mapped[Optional[str]] = mapped_column(Text)
    valid_until: Mapped[Optional[datetime]]
    supplier_notes: Mapped[Optional[str]] = mapped_column(Text)
    session_id: Mapped[Optional[str]] = mapped_column(String(36))

    supplier_request: Mapped[SupplierRequest] = relationship(back_populates="quotes")
    supplier: Mapped[Optional[Supplier]] = relationship()
    lines: Mapped[List["QuoteLineItem"]] = relationship(back_populates="quote", cascade="all, delete-orphan")


class QuoteLineItem(TimestampedBase):
    __tablename__ = "quote_line_items"

    quote_id: Mapped[str] = mapped_column(ForeignKey("supplier_quotes.id"), index=True)
    requested_item_id: Mapped[Optional[str]] = mapped_column(ForeignKey("requested_items.id"), index=True)
    item_name: Mapped[str]
    sku: Mapped[Optional[str]]
    quantity: Mapped[float] = mapped_column(Float, default=1)
    unit_price: Mapped[float] = mapped_column(Money)
    total_price: Mapped[float] = mapped_column(Money)
    currency: Mapped[Optional[str]] = mapped_column(String(3))
    lead_time: Mapped[Optional[str]]
    notes: Mapped[Optional[str]] = mapped_column(Text)
    is_latest_version: Mapped[bool] = mapped_column(Boolean, default=True)
    is_accepted: Mapped[bool] = mapped_column(Boolean, default=False)

    quote: Mapped[SupplierQuote] = relationship(back_populates="lines")
    requested_item: Mapped[Optional[RequestedItemRecord]] = relationship()


class ReconciliationSessionRecord(TimestampedBase):
    """One reconciliation round for one supplier request."""
    __tablename__ = "reconciliation_sessions"

    org_id: Mapped[str] = mapped_column(String(36), index=True)
    supplier_request_id: Mapped[str] = mapped_column(ForeignKey("supplier_requests.id"), index=True)
    round: Mapped[int] = mapped_column(Integer, default=1)
    status: Mapped[str] = mapped_column(String(20), default=SessionStatus.OPEN.value)
    results: Mapped[list] = mapped_column(JSON, default=list)
    reviews: Mapped[list] = mapped_column(JSON, default=list)
    supplier_info: Mapped[dict] = mapped_column(JSON, default=dict)
    discrepancy_report: Mapped[Optional[dict]] = mapped_column(JSON)
    notes: Mapped[Optional[str]] = mapped_column(Text)
    finalized_at: Mapped[Optional[datetime]]
    superseded_at: Mapped[Optional[datetime]]

    supplier_request: Mapped[SupplierRequest] = relationship()


class Invoice(TimestampedBase):
    """Client invoice whose payment unlocks ordering."""
    __tablename__ = "invoices"

    org_id: Mapped[str] = mapped_column(String(36), index=True)
    project_id: Mapped[Optional[str]] = mapped_column(String(36))
    invoice_number: Mapped[Optional[str]]
    total_amount: Mapped[float] = mapped_column(Money, default=0)
    currency: Mapped[Optional[str]] = mapped_column(String(3))

    lines: Mapped[List["InvoiceLine"]] = relationship(back_populates="invoice", cascade="all, delete-orphan")
    payments: Mapped[List["InvoicePayment"]] = relationship(back_populates="invoice", cascade="all, delete-orphan")


class InvoiceLine(Base):
    __tablename__ = "invoice_lines"

    invoice_id: Mapped[str] = mapped_column(ForeignKey("invoices.id"), index=True)
    requested_item_id: Mapped[Optional[str]] = mapped_column(ForeignKey("requested_items.id"))
    description: Mapped[Optional[str]]
    quantity: Mapped[float] = mapped_column(Float, default=1)
    unit_price: Mapped[float] = mapped_column(Money, default=0)

    invoice: Mapped[Invoice] = relationship(back_populates="lines")
    requested_item: Mapped[Optional[RequestedItemRecord]] = relationship()


class InvoicePayment(Base):
    __tablename__ = "invoice_payments"

    invoice_id: Mapped[str] = mapped_column(ForeignKey("invoices.id"), index=True)
    amount: Mapped[float] = mapped_column(Money)
    status: Mapped[str] = mapped_column(String(20), default=PaymentRecordStatus.PAID.value)
    paid_at: Mapped[datetime] = mapped_column(default=utcnow)

    invoice: Mapped[Invoice] = relationship(back_populates="payments")


class InvoiceActivity(Base):
    __tablename__ = "invoice_activities"

    invoice_id: Mapped[str] = mapped_column(ForeignKey("invoices.id"), index=True)
    type: Mapped[str] = mapped_column(String(50))
    message: Mapped[Optional[str]] = mapped_column(Text)
    details: Mapped[Optional[dict]] = mapped_column(JSON)
    created_at: Mapped[datetime] = mapped_column(default=utcnow)


class Order(TimestampedBase):
    """
    Supplier purchase order.
    Immutable once created apart from status and payment tracking; see
    db/immutability.py.
    """
    __tablename__ = "orders"
    __table_args__ = (UniqueConstraint("org_id", "order_number", name="uq_orders_org_number"),)

    org_id: Mapped[str] = mapped_column(String(36), index=True)
    project_id: Mapped[Optional[str]] = mapped_column(String(36))
    order_number: Mapped[str] = mapped_column(String(30))
    invoice_id: Mapped[Optional[str]] = mapped_column(ForeignKey("invoices.id"))
    supplier_id: Mapped[Optional[str]] = mapped_column(ForeignKey("suppliers.id"))
    supplier_quote_id: Mapped[Optional[str]] = mapped_column(String(36))
    vendor_name: Mapped[str]
    vendor_email: Mapped[Optional[str]]
    status: Mapped[str] = mapped_column(String(30), default=OrderStatus.PENDING.value)
    currency: Mapped[str] = mapped_column(String(3))
    subtotal: Mapped[float] = mapped_column(Money)
    shipping_cost: Mapped[float] = mapped_column(Money, default=0)
    total_amount: Mapped[float] = mapped_column(Money)
    deposit_required: Mapped[Optional[float]] = mapped_column(Money)
    deposit_percent: Mapped[Optional[float]] = mapped_column(Float)
    deposit_paid: Mapped[Optional[float]] = mapped_column(Money)
    balance_due: Mapped[Optional[float]] = mapped_column(Money)
    balance_paid: Mapped[Optional[float]] = mapped_column(Money)
    paid_at: Mapped[Optional[datetime]]
    internal_notes: Mapped[Optional[str]] = mapped_column(Text)
    notes: Mapped[Optional[str]] = mapped_column(Text)
    created_by: Mapped[Optional[str]]

    items: Mapped[List["OrderLineItem"]] = relationship(back_populates="order", cascade="all, delete-orphan")
    activities: Mapped[List["OrderActivity"]] = relationship(back_populates="order", cascade="all, delete-orphan")


class OrderLineItem(Base):
    __tablename__ = "order_line_items"

    order_id: Mapped[str] = mapped_column(ForeignKey("orders.id"), index=True)
    requested_item_id: Mapped[str] = mapped_column(ForeignKey("requested_items.id"), index=True)
    name: Mapped[str]
    description: Mapped[Optional[str]] = mapped_column(Text)
    quantity: Mapped[float] = mapped_column(Float)
    unit_price: Mapped[float] = mapped_column(Money)
    total_price: Mapped[float] = mapped_column(Money)
    currency: Mapped[Optional[str]] = mapped_column(String(3))
    is_component: Mapped[bool] = mapped_column(Boolean, default=False)
    parent_item_id: Mapped[Optional[str]] = mapped_column(String(36))
    component_id: Mapped[Optional[str]] = mapped_column(String(36))
    quote_line_id: Mapped[Optional[str]] = mapped_column(String(36))
    lead_time: Mapped[Optional[str]]

    order: Mapped[Order] = relationship(back_populates="items")


class OrderActivity(Base):
    __tablename__ = "order_activities"

    order_id: Mapped[str] = mapped_column(ForeignKey("orders.id"), index=True)
    type: Mapped[str] = mapped_column(String(50))
    message: Mapped[Optional[str]] = mapped_column(Text)
    actor: Mapped[Optional[str]]
    details: Mapped[Optional[dict]] = mapped_column(JSON)
    created_at: Mapped[datetime] = mapped_column(default=utcnow)

    order: Mapped[Order] = relationship(back_populates="activities")


class OrderNumberCounter(Base):
    """Last order sequence handed out per organization and year. Locked on allocation."""
    __tablename__ = "order_number_counters"
    __table_args__ = (UniqueConstraint("org_id", "year", name="uq_order_counters_org_year"),)

    org_id: Mapped[str] = mapped_column(String(36))
    year: Mapped[int] = mapped_column(Integer)
    current_value: Mapped[int] = mapped_column(Integer, default=0)
