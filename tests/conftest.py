"""
Shared fixtures: an in-memory store seeded with one organization's catalog.
"""

import os

os.environ["ENV"] = "test"

from types import SimpleNamespace

import pytest

from quote_reconciliation.db.engine import make_engine, make_session_factory, unit_of_work
from quote_reconciliation.db.models import (
    Invoice,
    InvoiceLine,
    InvoicePayment,
    ItemComponentRecord,
    RequestedItemRecord,
    Rfq,
    RfqItem,
    Supplier,
    SupplierRequest,
)
from quote_reconciliation.schemas.responses import QuoteSubmission, QuoteSubmissionLine
from quote_reconciliation.services.acceptance import accept_line
from quote_reconciliation.services.responses import submit_quote
from quote_reconciliation.services.statuses import ItemSpecStatus, PaymentRecordStatus


ORG = "org-1"
OTHER_ORG = "org-2"


@pytest.fixture
def session_factory():
    """Fresh in-memory database per test."""
    engine = make_engine("sqlite://")
    factory = make_session_factory(engine)
    yield factory
    engine.dispose()


@pytest.fixture
def seed(session_factory):
    """
    Two suppliers asked to price three requested items:
    - Faucet (SKU K-1234, Kohler)
    - Porter Ottoman (one priced component, one unpriced)
    - Wall Sconce (SKU WS-200, model WS200-BRS, quantity 4)
    Plus a rug nobody was asked to quote and an item owned by another org.
    """
    with unit_of_work(session_factory) as session:
        acme = Supplier(org_id=ORG, name="Acme Lighting Ltd", email="sales@acme.test", markup_percent=30)
        nordic = Supplier(org_id=ORG, name="Nordic Furniture Inc", email="orders@nordic.test")

        faucet = RequestedItemRecord(org_id=ORG, project_id="proj-1", name="Faucet", sku="K-1234",
                                     brand="Kohler", quantity=1, spec_status=ItemSpecStatus.RFQ_SENT.value)
        ottoman = RequestedItemRecord(
            org_id=ORG, project_id="proj-1", name="Porter Ottoman", quantity=1,
            spec_status=ItemSpecStatus.RFQ_SENT.value,
            components=[
                ItemComponentRecord(name="Seat Cushion", quantity=2, price=40),
                ItemComponentRecord(name="Leg Set"),
            ],
        )
        sconce = RequestedItemRecord(org_id=ORG, project_id="proj-1", name="Wall Sconce", sku="WS-200",
                                     model_number="WS200-BRS", brand="Acme", quantity=4,
                                     spec_status=ItemSpecStatus.RFQ_SENT.value)
        rug = RequestedItemRecord(org_id=ORG, project_id="proj-1", name="Wool Rug", quantity=1)
        foreign = RequestedItemRecord(org_id=OTHER_ORG, name="Faucet", sku="K-1234")

        rfq = Rfq(org_id=ORG, project_id="proj-1", rfq_number="RFQ-001", items=[
            RfqItem(requested_item=faucet),
            RfqItem(requested_item=ottoman),
            RfqItem(requested_item=sconce, quantity=4),
        ])
        req_acme = SupplierRequest(org_id=ORG, rfq=rfq, supplier=acme, vendor_email="sales@acme.test")
        req_nordic = SupplierRequest(org_id=ORG, rfq=rfq, supplier=nordic)

        session.add_all([acme, nordic, faucet, ottoman, sconce, rug, foreign, rfq, req_acme, req_nordic])
        session.flush()

        ids = SimpleNamespace(
            acme=acme.id,
            nordic=nordic.id,
            faucet=faucet.id,
            ottoman=ottoman.id,
            sconce=sconce.id,
            rug=rug.id,
            foreign=foreign.id,
            rfq=rfq.id,
            req_acme=req_acme.id,
            req_nordic=req_nordic.id,
        )
    return ids


@pytest.fixture
def priced(session_factory, seed):
    """
    Acme quotes the faucet (150) and sconces (4 x 80) with 25 shipping and a
    50% deposit; Nordic quotes the ottoman (300). Every line is accepted.
    """
    with unit_of_work(session_factory) as session:
        acme_quote = submit_quote(session, ORG, seed.req_acme, QuoteSubmission(
            quote_number="AC-100",
            lines=[
                QuoteSubmissionLine(requested_item_id=seed.faucet, unit_price=150),
                QuoteSubmissionLine(requested_item_id=seed.sconce, unit_price=80, quantity=4),
            ],
            shipping_cost=25,
            deposit_percent=50,
            payment_terms="Net 30",
            shipping_terms="FOB origin",
        ))
        nordic_quote = submit_quote(session, ORG, seed.req_nordic, QuoteSubmission(
            lines=[QuoteSubmissionLine(requested_item_id=seed.ottoman, unit_price=300)],
        ))
        lines = {line.requested_item_id: line.id for quote in (acme_quote, nordic_quote) for line in quote.lines}
        for item_id, line_id in lines.items():
            accept_line(session, ORG, item_id, line_id)

        seed.acme_quote = acme_quote.id
        seed.nordic_quote = nordic_quote.id
        seed.lines = lines
    return seed


@pytest.fixture
def paid_invoice(session_factory, priced):
    """Client invoice covering every priced item plus the unquoted rug, fully paid."""
    with unit_of_work(session_factory) as session:
        invoice = Invoice(
            org_id=ORG,
            project_id="proj-1",
            invoice_number="INV-001",
            total_amount=1500,
            lines=[
                InvoiceLine(requested_item_id=priced.faucet, description="Faucet", quantity=1, unit_price=200),
                InvoiceLine(requested_item_id=priced.ottoman, description="Ottoman", quantity=1, unit_price=500),
                InvoiceLine(requested_item_id=priced.sconce, description="Sconces", quantity=4, unit_price=150),
                InvoiceLine(requested_item_id=priced.rug, description="Rug", quantity=1, unit_price=200),
            ],
            payments=[InvoicePayment(amount=1500, status=PaymentRecordStatus.PAID.value)],
        )
        session.add(invoice)
        session.flush()
        priced.invoice = invoice.id
    return priced


@pytest.fixture
def sample_extraction():
    """Quote from Acme: one SKU hit, one fuzzy name hit with a quantity change, one stray line."""
    return {
        "supplier_info": {
            "company_name": "Acme Lighting",
            "quote_number": "Q-1001",
            "subtotal": 800.0,
            "shipping": 25.0,
            "taxes": 104.0,
            "total": 800.0,
        },
        "extracted_items": [
            {"product_name": "Kohler K-1234 Faucet", "sku": "K-1234", "brand": "Kohler",
             "quantity": 1, "unit_price": 150.0, "total_price": 150.0},
            {"product_name": "Ottoman", "quantity": 2, "unit_price": 300.0, "total_price": 600.0},
            {"product_name": "Delivery surcharge", "quantity": 1, "unit_price": 50.0, "total_price": 50.0},
        ],
        "notes": "Prices valid 30 days",
    }
