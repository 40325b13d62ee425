"""
Tests for discrepancy detection.
"""

import pytest

from quote_reconciliation.agents.discrepancy import (
    analyze_quote,
    check_line_quantities,
    quantity_severity,
    validate_supplier_match,
)
from quote_reconciliation.agents.matching import match_items
from quote_reconciliation.schemas.catalog import RequestedItem
from quote_reconciliation.schemas.extraction import ExtractedLineItem, QuoteExtraction, SupplierInfo


@pytest.fixture
def requested():
    return [
        RequestedItem(id="ottoman", name="Porter Ottoman", quantity=1),
        RequestedItem(id="sconce", name="Wall Sconce", sku="WS-200", quantity=4),
    ]


def make_extraction(items, **info):
    return QuoteExtraction(supplier_info=SupplierInfo(**info), extracted_items=items)


def test_quantity_message_on_matched_line(requested):
    """'Ottoman' x2 against 'Porter Ottoman' x1 carries the quantity message."""
    extraction = make_extraction([ExtractedLineItem(product_name="Ottoman", quantity=2, unit_price=300)])
    results, report = analyze_quote(match_items(extraction.extracted_items, requested), extraction)

    assert "Quantity: requested 1, quoted 2" in results[0].discrepancies
    assert report.quantity_discrepancy_count == 1


def test_quantity_check_is_idempotent(requested):
    items = [ExtractedLineItem(product_name="Ottoman", quantity=2)]
    once, _ = check_line_quantities(match_items(items, requested))
    twice, details = check_line_quantities(once)

    assert once[0].discrepancies == twice[0].discrepancies
    assert len(twice[0].discrepancies) == 1
    assert len(details) == 1


def test_equal_or_missing_quantity_is_clean(requested):
    items = [
        ExtractedLineItem(product_name="Sconce", sku="WS-200", quantity=4),
        ExtractedLineItem(product_name="Ottoman"),
    ]
    results, details = check_line_quantities(match_items(items, requested))
    assert details == []
    assert all(not r.discrepancies for r in results)


def test_quantity_severity_bands():
    assert quantity_severity(10, 13) == "high"
    assert quantity_severity(10, 11.5) == "medium"
    assert quantity_severity(10, 11) == "low"


def test_total_mismatch_beyond_tolerance(requested):
    extraction = make_extraction(
        [ExtractedLineItem(product_name="Sconce", sku="WS-200", quantity=4, unit_price=80)],
        total=350.0, shipping=20.0, taxes=10.0,
    )
    _, report = analyze_quote(match_items(extraction.extracted_items, requested), extraction)

    assert report.calculated_total == 320.0
    assert report.total_mismatch
    mismatch = next(d for d in report.details if d.type == "total_mismatch")
    assert mismatch.severity == "medium"


def test_total_within_tolerance_is_clean(requested):
    extraction = make_extraction(
        [ExtractedLineItem(product_name="Sconce", sku="WS-200", quantity=4, total_price=320.0)],
        total=320.75, shipping=20.0, taxes=10.0,
    )
    _, report = analyze_quote(match_items(extraction.extracted_items, requested), extraction)
    assert not report.total_mismatch
    assert report.details == []


def test_large_total_gap_is_high_severity(requested):
    extraction = make_extraction(
        [ExtractedLineItem(product_name="Sconce", sku="WS-200", quantity=4, unit_price=80)],
        total=500.0,
    )
    _, report = analyze_quote([], extraction)
    assert next(d for d in report.details if d.type == "total_mismatch").severity == "high"


def test_zero_totals_never_mismatch():
    extraction = make_extraction([ExtractedLineItem(product_name="Sample")], total=0)
    _, report = analyze_quote([], extraction)
    assert not report.total_mismatch


def test_missing_shipping_and_taxes_flagged_low():
    extraction = make_extraction([ExtractedLineItem(product_name="Lamp", unit_price=10)])
    _, report = analyze_quote([], extraction)

    types = {d.type: d.severity for d in report.details}
    assert types["missing_shipping"] == "low"
    assert types["missing_taxes"] == "low"
    assert not report.has_shipping
    assert not report.has_taxes


def test_supplier_name_ignores_legal_suffixes():
    matched, similarity = validate_supplier_match("ACME LIGHTING INC.", "Acme Lighting Ltd")
    assert matched
    assert similarity == 1.0


def test_supplier_mismatch_reported():
    extraction = make_extraction([], company_name="Bright Lamps Co", shipping=5, taxes=1)
    _, report = analyze_quote([], extraction, expected_supplier_name="Acme Lighting Ltd")

    mismatch = next(d for d in report.details if d.type == "supplier_mismatch")
    assert mismatch.severity == "medium"
    assert report.supplier_name_similarity < 0.85


def test_missing_supplier_names_skip_check():
    matched, similarity = validate_supplier_match(None, "Acme")
    assert not matched
    assert similarity == 0.0


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
