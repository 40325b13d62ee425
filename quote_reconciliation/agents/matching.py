"""
Matching Agent
Pairs extracted quote lines with requested catalog items using additive
point scoring over identifier, brand and word-overlap channels.

SCORING (per candidate pair):
- SKU channel: exact normalized match 70, containment 50
- Model-number channel: same rule against the catalog model number
- Brand: containment either way adds 15, never anchors a match alone
- Name overlap: only when no identifier channel fired

CLASSIFICATION:
- score >= 50 → matched
- threshold <= score < 50 → partial (threshold 25 after an identifier hit, else 35)
- below threshold → extra, with ranked suggestions
- every unclaimed requested item → missing
"""

from typing import List, Optional, Sequence, Tuple

from pydantic import BaseModel

from quote_reconciliation.config import get_config
from quote_reconciliation.errors import ValidationError
from quote_reconciliation.schemas.catalog import RequestedItem
from quote_reconciliation.schemas.extraction import ExtractedLineItem
from quote_reconciliation.schemas.matching import (
    ExtraResult,
    MatchedResult,
    MatchingSettings,
    MatchSummary,
    MissingResult,
    PartialResult,
    SuggestedMatch,
)
from quote_reconciliation.state import ReconciliationState
from quote_reconciliation.utils.confidence import clamp_confidence, interpret_confidence
from quote_reconciliation.utils.logging import log_agent_action, setup_logging
from quote_reconciliation.utils.text import normalize, tokenize, words_match


logger = setup_logging(__name__)
config = get_config()


class CandidateScore(BaseModel):
    """Raw score of one extracted/requested pair."""
    score: int = 0
    identifier_hit: bool = False
    explanation: List[str] = []


def score_identifier(extracted_value: Optional[str], catalog_value: Optional[str],
                     settings: MatchingSettings) -> int:
    """Exact normalized match, else mutual containment. Empty values never score."""
    a, b = normalize(extracted_value), normalize(catalog_value)
    if not a or not b:
        return 0
    if a == b:
        return settings.sku_exact_score
    if a in b or b in a:
        return settings.sku_partial_score
    return 0


def count_word_matches(extracted_words: Sequence[str], catalog_words: Sequence[str],
                       min_length: int) -> int:
    """Number of extracted words that fuzzy-equal at least one catalog word."""
    count = 0
    for ew in extracted_words:
        for cw in catalog_words:
            if words_match(ew, cw, min_length):
                count += 1
                break
    return count


def score_name_overlap(extracted_name: str, catalog_name: str, settings: MatchingSettings) -> int:
    extracted_words = tokenize(extracted_name, settings.min_token_length)
    catalog_words = tokenize(catalog_name, settings.min_token_length)
    matches = count_word_matches(extracted_words, catalog_words, settings.min_token_length)

    if matches >= 2:
        return settings.name_multi_word_score
    if matches == 1:
        short = (len(extracted_words) <= settings.short_name_max_tokens
                 or len(catalog_words) <= settings.short_name_max_tokens)
        return settings.name_short_single_word_score if short else settings.name_single_word_score
    return 0


def score_candidate(extracted: ExtractedLineItem, requested: RequestedItem,
                    settings: MatchingSettings) -> CandidateScore:
    """Cumulative score for one pair. Missing fields contribute nothing."""
    result = CandidateScore()

    sku_points = score_identifier(extracted.sku, requested.sku, settings)
    if sku_points:
        result.score += sku_points
        result.identifier_hit = True
        result.explanation.append(f"sku +{sku_points}")

    model_points = score_identifier(extracted.sku, requested.model_number, settings)
    if model_points:
        result.score += model_points
        result.identifier_hit = True
        result.explanation.append(f"model number +{model_points}")

    brand_a, brand_b = normalize(extracted.brand), normalize(requested.brand)
    if brand_a and brand_b and (brand_a in brand_b or brand_b in brand_a):
        result.score += settings.brand_bonus
        result.explanation.append(f"brand +{settings.brand_bonus}")

    if not result.identifier_hit:
        name_points = score_name_overlap(extracted.product_name, requested.name, settings)
        if name_points:
            result.score += name_points
            result.explanation.append(f"name overlap +{name_points}")

    return result


def find_best_candidate(
    extracted: ExtractedLineItem,
    candidates: Sequence[RequestedItem],
    settings: MatchingSettings,
) -> Tuple[Optional[RequestedItem], CandidateScore]:
    """Highest cumulative score wins; ties keep the first candidate encountered."""
    best_item: Optional[RequestedItem] = None
    best = CandidateScore()
    for candidate in candidates:
        scored = score_candidate(extracted, candidate, settings)
        if scored.score > best.score:
            best_item, best = candidate, scored
    return best_item, best


def suggest_matches(
    extracted: ExtractedLineItem,
    candidates: Sequence[RequestedItem],
    settings: MatchingSettings,
) -> List[SuggestedMatch]:
    """
    Lighter word-overlap pass for an unmatched line.
    Every matching word pair adds points; each suggestion is capped.
    """
    extracted_words = tokenize(extracted.product_name, settings.min_token_length)
    suggestions = []
    for candidate in candidates:
        catalog_words = tokenize(candidate.name, settings.min_token_length)
        score = 0
        for ew in extracted_words:
            for cw in catalog_words:
                if words_match(ew, cw, settings.min_token_length):
                    score += settings.suggestion_word_score
        if score > 0:
            suggestions.append(SuggestedMatch(
                requested_item=candidate,
                confidence=clamp_confidence(min(score, settings.suggestion_max_confidence)),
            ))

    # sorted() is stable, so equal scores keep catalog order
    suggestions = sorted(suggestions, key=lambda s: s.confidence, reverse=True)
    return suggestions[:settings.suggestion_limit]


def match_items(
    extracted_items: Optional[Sequence[ExtractedLineItem]],
    requested_items: Optional[Sequence[RequestedItem]],
    settings: Optional[MatchingSettings] = None,
) -> list:
    """
    Produce one result per extracted line plus one Missing per unclaimed item.

    A requested item claimed by a matched/partial result leaves the candidate
    pool for the rest of the run, so extraction order decides ties between
    lines competing for the same item.

    Raises:
        ValidationError: if either list is missing entirely
    """
    if extracted_items is None:
        raise ValidationError("Extracted item list is required")
    if requested_items is None:
        raise ValidationError("Requested item list is required")

    settings = settings or MatchingSettings()
    claimed_ids = set()
    results = []

    for extracted in extracted_items:
        pool = [item for item in requested_items if item.id not in claimed_ids]
        best_item, best = find_best_candidate(extracted, pool, settings)

        threshold = (settings.identifier_accept_threshold if best.identifier_hit
                     else settings.name_accept_threshold)

        if best_item is not None and best.score >= threshold:
            claimed_ids.add(best_item.id)
            confidence = clamp_confidence(best.score)
            result_cls = MatchedResult if best.score >= settings.matched_threshold else PartialResult
            results.append(result_cls(
                confidence=confidence,
                requested_item=best_item,
                extracted_item=extracted,
            ))
            logger.debug(
                f"[MatchingAgent] Line '{extracted.product_name}' -> item {best_item.id} "
                f"({', '.join(best.explanation)}) = {confidence}"
            )
        else:
            remaining = [item for item in requested_items if item.id not in claimed_ids]
            results.append(ExtraResult(
                extracted_item=extracted,
                suggested_matches=suggest_matches(extracted, remaining, settings),
            ))

    for item in requested_items:
        if item.id not in claimed_ids:
            results.append(MissingResult(requested_item=item))

    return results


def summarize_results(results: Sequence, reviews: Optional[Sequence] = None) -> MatchSummary:
    """
    Count results by variant.

    With reviews, extras resolved outside the matching flow count as matched
    and approved/rejected decisions are tallied.
    """
    reviews = list(reviews or [])
    reviews += [None] * (len(results) - len(reviews))
    summary = MatchSummary()

    for result, review in zip(results, reviews):
        decision = review.decision.value if review is not None else None
        if result.status == "matched":
            summary.matched += 1
        elif result.status == "partial":
            summary.partial += 1
        elif result.status == "missing":
            summary.missing += 1
        elif decision == "resolved":
            summary.matched += 1
        else:
            summary.extra += 1

        if result.status != "missing":
            summary.total_extracted += 1
        if decision == "approved":
            summary.approved += 1
        elif decision == "rejected":
            summary.rejected += 1
        if any("quantity" in message.lower() for message in result.discrepancies):
            summary.quantity_discrepancies += 1

    summary.total_requested = len({
        result.requested_item.id for result in results
        if getattr(result, "requested_item", None) is not None
    })
    return summary


def matching_agent(state: ReconciliationState) -> dict:
    """
    Matching Agent - pairs every extracted line with the catalog.
    Pure computation over the state; never raises on poor content.
    """
    logger.info(
        f"[MatchingAgent] Matching {len(state.extraction.extracted_items)} lines "
        f"against {len(state.requested_items)} requested items "
        f"(request {state.supplier_request_id})"
    )

    results = match_items(state.extraction.extracted_items, state.requested_items, state.settings)
    summary = summarize_results(results)

    paired = [r for r in results if r.status in ("matched", "partial")]
    avg_confidence = sum(r.confidence for r in paired) / len(paired) if paired else 0.0
    level, description = interpret_confidence(avg_confidence)

    log_agent_action(
        logger,
        "MatchingAgent",
        "items_matched",
        details={
            "supplier_request_id": state.supplier_request_id,
            "matched": summary.matched,
            "partial": summary.partial,
            "missing": summary.missing,
            "extra": summary.extra,
        },
        confidence=avg_confidence,
    )

    state.add_reasoning(
        agent_name="MatchingAgent",
        message=(
            f"{summary.matched} matched, {summary.partial} partial, {summary.extra} extra, "
            f"{summary.missing} missing. Average pairing confidence {level}: {description}."
        ),
        confidence=avg_confidence,
        action="items_matched",
    )

    return {
        "match_results": results,
        "reasoning_log": state.reasoning_log,
    }
