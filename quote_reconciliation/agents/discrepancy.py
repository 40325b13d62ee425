"""
Discrepancy Detection Agent
Compares matched lines and quote-level figures against what was requested.

CHECKS:
1. Quantity: requested vs quoted on every matched/partial line
2. Total: computed line totals vs the supplier's declared grand total
3. Shipping and taxes: presence of the figures on the quote
4. Supplier identity: extracted company name vs the supplier we asked

Every finding is informational. Nothing here blocks submission or review.
"""

from typing import List, Optional, Sequence, Tuple

from rapidfuzz import fuzz

from quote_reconciliation.config import get_config
from quote_reconciliation.schemas.discrepancy import DiscrepancyDetail, QuoteDiscrepancyReport
from quote_reconciliation.schemas.extraction import QuoteExtraction
from quote_reconciliation.state import ReconciliationState
from quote_reconciliation.utils import calculate_percentage_variance, format_quantity, round_money, safe_divide
from quote_reconciliation.utils.logging import log_discrepancy, setup_logging
from quote_reconciliation.utils.text import normalize_company_name


logger = setup_logging(__name__)
config = get_config()


def quantity_message(requested: float, quoted: float) -> str:
    return f"Quantity: requested {format_quantity(requested)}, quoted {format_quantity(quoted)}"


def quantity_severity(requested: float, quoted: float) -> str:
    variance = calculate_percentage_variance(quoted, requested)
    if requested == 0 or variance > config.QUANTITY_VARIANCE_HIGH:
        return "high"
    if variance > config.QUANTITY_VARIANCE_MEDIUM:
        return "medium"
    return "low"


def validate_supplier_match(extracted_supplier: Optional[str], expected_supplier: Optional[str],
                            threshold: Optional[float] = None) -> Tuple[bool, float]:
    """
    Compare supplier names after stripping casing, punctuation and legal
    suffixes (Ltd, Inc, LLC, Corp).

    Returns:
        (is_matched, similarity in 0..1)
    """
    if not extracted_supplier or not expected_supplier:
        return False, 0.0

    threshold = config.SUPPLIER_NAME_MATCH_THRESHOLD if threshold is None else threshold
    similarity = fuzz.token_set_ratio(
        normalize_company_name(extracted_supplier),
        normalize_company_name(expected_supplier),
    ) / 100.0
    return similarity >= threshold, similarity


def check_line_quantities(results: Sequence) -> Tuple[list, List[DiscrepancyDetail]]:
    """
    Attach quantity messages to matched/partial results.
    Re-running on already analyzed results adds nothing new.
    """
    updated = []
    details = []
    for index, result in enumerate(results):
        if result.status not in ("matched", "partial"):
            updated.append(result)
            continue

        quoted = result.extracted_item.quantity
        requested = result.requested_item.quantity
        if not quoted or quoted == requested:
            updated.append(result)
            continue

        message = quantity_message(requested, quoted)
        severity = quantity_severity(requested, quoted)
        details.append(DiscrepancyDetail(
            type="quantity_mismatch",
            severity=severity,
            match_index=index,
            requested_value=requested,
            quoted_value=quoted,
            explanation=message,
        ))
        log_discrepancy(logger, "quantity_mismatch", severity, f"result {index}: {message}")

        if message in result.discrepancies:
            updated.append(result)
        else:
            updated.append(result.model_copy(update={"discrepancies": result.discrepancies + [message]}))
    return updated, details


def analyze_quote(
    results: Sequence,
    extraction: QuoteExtraction,
    expected_supplier_name: Optional[str] = None,
    tolerance: Optional[float] = None,
) -> Tuple[list, QuoteDiscrepancyReport]:
    """
    Run every check over one reconciliation round.

    Args:
        results: Match results from the matcher
        extraction: The full extraction (lines and supplier-level figures)
        expected_supplier_name: Name of the supplier the request went to
        tolerance: Currency tolerance for the total check (default from config)

    Returns:
        (results with quantity messages attached, quote-level report)
    """
    tolerance = config.TOTAL_MISMATCH_TOLERANCE if tolerance is None else tolerance
    info = extraction.supplier_info

    updated, details = check_line_quantities(results)

    calculated_total = round_money(sum(item.line_total() for item in extraction.extracted_items))
    quote_total = info.total or 0.0
    total_mismatch = (
        quote_total > 0
        and calculated_total > 0
        and abs(quote_total - calculated_total) > tolerance
    )
    if total_mismatch:
        gap = abs(quote_total - calculated_total)
        severity = "high" if safe_divide(gap, calculated_total) > config.TOTAL_VARIANCE_HIGH else "medium"
        explanation = (
            f"Quote total {quote_total:.2f} differs from the sum of its lines "
            f"{calculated_total:.2f} by {gap:.2f}"
        )
        details.append(DiscrepancyDetail(
            type="total_mismatch",
            severity=severity,
            requested_value=calculated_total,
            quoted_value=quote_total,
            explanation=explanation,
        ))
        log_discrepancy(logger, "total_mismatch", severity, explanation)

    has_shipping = bool(info.shipping and info.shipping > 0)
    if not has_shipping:
        details.append(DiscrepancyDetail(
            type="missing_shipping",
            severity="low",
            explanation="No shipping or freight charge found on the quote",
        ))

    has_taxes = bool(info.taxes and info.taxes > 0)
    if not has_taxes:
        details.append(DiscrepancyDetail(
            type="missing_taxes",
            severity="low",
            explanation="No tax amount found on the quote",
        ))

    similarity = None
    if info.company_name and expected_supplier_name:
        matched, similarity = validate_supplier_match(info.company_name, expected_supplier_name)
        if not matched:
            explanation = (
                f"Quote issued by '{info.company_name}' but the request went to "
                f"'{expected_supplier_name}' (similarity {similarity:.2f})"
            )
            details.append(DiscrepancyDetail(
                type="supplier_mismatch",
                severity="medium",
                requested_value=expected_supplier_name,
                quoted_value=info.company_name,
                explanation=explanation,
            ))
            log_discrepancy(logger, "supplier_mismatch", "medium", explanation)

    report = QuoteDiscrepancyReport(
        calculated_total=calculated_total,
        quote_total=info.total,
        total_mismatch=total_mismatch,
        has_shipping=has_shipping,
        shipping_fee=info.shipping if has_shipping else None,
        has_taxes=has_taxes,
        taxes=info.taxes if has_taxes else None,
        supplier_name_similarity=similarity,
        quantity_discrepancy_count=sum(1 for d in details if d.type == "quantity_mismatch"),
        details=details,
    )
    return updated, report


def discrepancy_detection_agent(state: ReconciliationState) -> dict:
    """Discrepancy Detection Agent - annotates results and builds the quote report."""
    logger.info(f"[DiscrepancyDetectionAgent] Analyzing request {state.supplier_request_id}")

    results, report = analyze_quote(
        state.match_results,
        state.extraction,
        expected_supplier_name=state.expected_supplier_name,
        tolerance=state.total_tolerance,
    )

    if report.details:
        message = (
            f"{len(report.details)} discrepancies (highest severity {report.highest_severity()}): "
            f"{report.quantity_discrepancy_count} quantity, "
            f"total mismatch {'yes' if report.total_mismatch else 'no'}"
        )
    else:
        message = "No discrepancies detected"

    state.add_reasoning(
        agent_name="DiscrepancyDetectionAgent",
        message=message,
        action="discrepancies_analyzed",
    )

    return {
        "match_results": results,
        "discrepancy_report": report,
        "reasoning_log": state.reasoning_log,
    }


def review_flag_agent(state: ReconciliationState) -> dict:
    """Decide whether this round needs a human look before syncing."""
    reasons = []
    statuses = [r.status for r in state.match_results]
    if "partial" in statuses:
        reasons.append(f"{statuses.count('partial')} partial matches need confirmation")
    if "extra" in statuses:
        reasons.append(f"{statuses.count('extra')} quoted lines have no requested counterpart")
    if "missing" in statuses:
        reasons.append(f"{statuses.count('missing')} requested items were not quoted")

    report = state.discrepancy_report
    if report is not None:
        if report.quantity_discrepancy_count:
            reasons.append(f"{report.quantity_discrepancy_count} quantity discrepancies")
        if report.total_mismatch:
            reasons.append("declared total does not match line totals")
        if any(d.type == "supplier_mismatch" for d in report.details):
            reasons.append("supplier name on the quote does not match the request")

    state.add_reasoning(
        agent_name="ReviewFlagAgent",
        message="; ".join(reasons) if reasons else "All lines matched cleanly",
        action="flag_for_review" if reasons else "ready_to_sync",
    )

    return {
        "needs_review": bool(reasons),
        "review_reasons": reasons,
        "reasoning_log": state.reasoning_log,
    }
