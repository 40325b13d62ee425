"""
Tests for supplier responses: viewing, declining, quote versions and request status.
"""

import pytest
from sqlalchemy import select

from quote_reconciliation import main
from quote_reconciliation.db.engine import unit_of_work
from quote_reconciliation.db.models import QuoteLineItem, RequestedItemRecord, SupplierQuote
from quote_reconciliation.errors import ConflictError, NotFoundError, ValidationError
from quote_reconciliation.schemas.responses import QuoteSubmission, QuoteSubmissionLine
from quote_reconciliation.services.statuses import (
    ItemSpecStatus,
    RequestStatus,
    ResponseStatus,
    derive_request_status,
)

from conftest import ORG, OTHER_ORG


def faucet_quote(seed, price=150.0, **extra):
    return QuoteSubmission(lines=[QuoteSubmissionLine(requested_item_id=seed.faucet, unit_price=price)], **extra)


def test_first_view_sets_timestamp_once(session_factory, seed):
    first = main.mark_viewed(ORG, seed.req_acme, session_factory=session_factory)
    second = main.mark_viewed(ORG, seed.req_acme, session_factory=session_factory)

    assert first.status == ResponseStatus.VIEWED
    assert first.viewed_at is not None
    assert second.viewed_at == first.viewed_at


def test_view_after_response_keeps_status(session_factory, seed):
    main.submit_quote(ORG, seed.req_acme, faucet_quote(seed), session_factory=session_factory)
    state = main.mark_viewed(ORG, seed.req_acme, session_factory=session_factory)
    assert state.status == ResponseStatus.SUBMITTED


@pytest.mark.parametrize("statuses,expected", [
    ([], RequestStatus.OPEN),
    ([ResponseStatus.PENDING, ResponseStatus.VIEWED], RequestStatus.OPEN),
    ([ResponseStatus.SUBMITTED, ResponseStatus.VIEWED], RequestStatus.PARTIALLY_QUOTED),
    ([ResponseStatus.DECLINED, ResponseStatus.PENDING], RequestStatus.PARTIALLY_QUOTED),
    ([ResponseStatus.SUBMITTED, ResponseStatus.DECLINED], RequestStatus.FULLY_QUOTED),
])
def test_derive_request_status(statuses, expected):
    assert derive_request_status(statuses) == expected


def test_request_status_follows_responses(session_factory, seed):
    status = main.request_status(ORG, seed.rfq, session_factory=session_factory)
    assert status.status == RequestStatus.OPEN
    assert status.response_counts["PENDING"] == 2

    main.submit_quote(ORG, seed.req_acme, faucet_quote(seed), session_factory=session_factory)
    assert main.request_status(ORG, seed.rfq, session_factory=session_factory).status \
        == RequestStatus.PARTIALLY_QUOTED

    main.decline_request(ORG, seed.req_nordic, "Out of stock", session_factory=session_factory)
    status = main.request_status(ORG, seed.rfq, session_factory=session_factory)
    assert status.status == RequestStatus.FULLY_QUOTED
    assert status.response_counts == {"PENDING": 0, "VIEWED": 0, "SUBMITTED": 1, "DECLINED": 1}


def test_decline_records_reason(session_factory, seed):
    state = main.decline_request(ORG, seed.req_nordic, "  Discontinued  ", session_factory=session_factory)
    assert state.status == ResponseStatus.DECLINED
    assert state.decline_reason == "Discontinued"
    assert state.responded_at is not None


def test_declined_is_terminal(session_factory, seed):
    main.decline_request(ORG, seed.req_nordic, session_factory=session_factory)
    with pytest.raises(ConflictError):
        main.submit_quote(ORG, seed.req_nordic, faucet_quote(seed), session_factory=session_factory)
    with pytest.raises(ConflictError):
        main.decline_request(ORG, seed.req_nordic, session_factory=session_factory)


def test_cannot_decline_after_submitting(session_factory, seed):
    main.submit_quote(ORG, seed.req_acme, faucet_quote(seed), session_factory=session_factory)
    with pytest.raises(ConflictError):
        main.decline_request(ORG, seed.req_acme, session_factory=session_factory)


def test_resubmission_creates_new_version(session_factory, seed):
    first = main.submit_quote(ORG, seed.req_acme, faucet_quote(seed), session_factory=session_factory)
    second = main.submit_quote(ORG, seed.req_acme, faucet_quote(seed, price=140), session_factory=session_factory)

    assert first.latest_quote_version == 1
    assert second.latest_quote_version == 2
    assert second.status == ResponseStatus.SUBMITTED

    with unit_of_work(session_factory) as session:
        lines = session.scalars(
            select(QuoteLineItem).where(QuoteLineItem.requested_item_id == seed.faucet)
        ).all()
        latest = {line.quote.version: line.is_latest_version for line in lines}
        assert latest == {1: False, 2: True}


def test_quote_totals_use_requested_quantity(session_factory, seed):
    state = main.submit_quote(ORG, seed.req_acme, QuoteSubmission(
        lines=[QuoteSubmissionLine(requested_item_id=seed.sconce, unit_price=80)],
        shipping_cost=25,
    ), session_factory=session_factory)

    with unit_of_work(session_factory) as session:
        quote = session.get(SupplierQuote, state.latest_quote_id)
        assert quote.lines[0].quantity == 4
        assert quote.lines[0].total_price == 320.0
        assert quote.subtotal == 320.0
        assert quote.total == 345.0
        assert quote.quote_number.startswith("SQ-")


def test_submission_moves_items_to_quote_received(session_factory, seed):
    main.submit_quote(ORG, seed.req_acme, faucet_quote(seed), session_factory=session_factory)
    with unit_of_work(session_factory) as session:
        assert session.get(RequestedItemRecord, seed.faucet).spec_status == ItemSpecStatus.QUOTE_RECEIVED.value
        assert session.get(RequestedItemRecord, seed.sconce).spec_status == ItemSpecStatus.RFQ_SENT.value


def test_lines_outside_request_rejected(session_factory, seed):
    submission = QuoteSubmission(lines=[QuoteSubmissionLine(requested_item_id=seed.rug, unit_price=10)])
    with pytest.raises(ValidationError):
        main.submit_quote(ORG, seed.req_acme, submission, session_factory=session_factory)


def test_empty_submission_rejected(session_factory, seed):
    with pytest.raises(ValidationError):
        main.submit_quote(ORG, seed.req_acme, {"lines": []}, session_factory=session_factory)
    with pytest.raises(ValidationError):
        main.submit_quote(ORG, seed.req_acme, {"lines": [{"requested_item_id": seed.faucet, "unit_price": -1}]},
                          session_factory=session_factory)


def test_requests_scoped_to_org(session_factory, seed):
    with pytest.raises(NotFoundError):
        main.mark_viewed(OTHER_ORG, seed.req_acme, session_factory=session_factory)
    with pytest.raises(NotFoundError):
        main.request_status(OTHER_ORG, seed.rfq, session_factory=session_factory)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
